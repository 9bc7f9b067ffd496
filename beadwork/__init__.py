"""Git-branch storage, sync, migrations, templating and wrapping for an issue tracker."""

__version__ = "0.1.0"