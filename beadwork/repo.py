"""The beadwork branch of a git repository: setup, configuration and sync."""

from __future__ import annotations

import os
import re
import stat
from pathlib import Path
from typing import Optional

from beadwork.gitstore import CommitInfo, GitError
from beadwork.treefs import TreeFS, open_treefs

__all__ = [
    "BRANCH_NAME",
    "CURRENT_VERSION",
    "REF_LOCAL",
    "REF_REMOTE",
    "RepoError",
    "Repo",
    "find_repo",
    "find_git_dir",
    "resolve_worktree_git_dir",
    "validate_prefix",
]

BRANCH_NAME = "beadwork"

# The highest repository schema version this package understands.
CURRENT_VERSION = 2

REF_LOCAL = "refs/heads/" + BRANCH_NAME
REF_REMOTE = "refs/remotes/origin/" + BRANCH_NAME

_CONFIG_FILE = ".bwconfig"
_SKELETON_DIRS = (
    "issues",
    "status/open",
    "status/in_progress",
    "status/closed",
    "labels",
    "blocks",
    "parent",
)
_PREFIX_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")
_PREFIX_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_"
)
_INT_RE = re.compile(r"[+-]?[0-9]+")


class RepoError(Exception):
    """A repository operation failed."""


def validate_prefix(prefix: str) -> None:
    """Raise :class:`RepoError` if ``prefix`` is not a usable issue prefix.

    An empty prefix is accepted; it is derived from the directory name later.
    """
    if not prefix:
        return
    if len(prefix.encode("utf-8")) > 16:
        raise RepoError("prefix too long (max 16 characters)")
    if not _PREFIX_RE.fullmatch(prefix):
        raise RepoError(
            "prefix must be alphanumeric (hyphens and underscores allowed)"
        )


def resolve_worktree_git_dir(dot_git_file) -> Path:
    """Resolve a worktree's ``.git`` file to the shared git directory."""
    dot_git_file = os.fspath(dot_git_file)
    try:
        data = Path(dot_git_file).read_text(encoding="utf-8")
    except OSError as exc:
        raise RepoError(f"read {dot_git_file}: {exc}") from exc
    line = data.strip()
    marker = "gitdir: "
    if not line.startswith(marker):
        raise RepoError(f"invalid .git file: {dot_git_file}")

    gitdir = line[len(marker):]
    if not os.path.isabs(gitdir):
        gitdir = os.path.join(os.path.dirname(dot_git_file), gitdir)
    gitdir = os.path.normpath(gitdir)

    try:
        common = Path(gitdir, "commondir").read_text(encoding="utf-8")
    except OSError:
        # Without a commondir file the gitdir is the common directory.
        return Path(gitdir)
    common = common.strip()
    if not os.path.isabs(common):
        common = os.path.join(gitdir, common)
    return Path(os.path.abspath(common))


def find_git_dir(start=None) -> Path:
    """Walk up from ``start`` (default: the current directory) to the git directory."""
    directory = Path(os.path.abspath(start if start is not None else os.getcwd()))
    while True:
        dot_git = directory / ".git"
        try:
            info = os.stat(dot_git)
        except OSError:
            info = None
        if info is not None:
            if stat.S_ISDIR(info.st_mode):
                return dot_git
            return resolve_worktree_git_dir(dot_git)
        parent = directory.parent
        if parent == directory:
            raise RepoError("not a git repository")
        directory = parent


def find_repo() -> "Repo":
    """Open the repository that contains the current directory."""
    try:
        git_dir = find_git_dir()
    except RepoError as exc:
        raise RepoError("not a git repository") from exc
    try:
        tfs = open_treefs(git_dir.parent, REF_LOCAL)
    except GitError as exc:
        raise RepoError(f"open repo: {exc}") from exc
    return Repo(git_dir, tfs)


class Repo:
    """A git repository together with its beadwork branch."""

    def __init__(self, git_dir, tfs: TreeFS) -> None:
        self.git_dir = Path(git_dir)
        self.tfs = tfs
        self.initialized = tfs.has_ref()
        self.prefix = self._read_prefix() if self.initialized else ""

    @property
    def repo_dir(self) -> Path:
        """The repository root, the parent of the git directory."""
        return self.git_dir.parent

    def user_name(self) -> str:
        """The configured git user name, or ``"unknown"``."""
        return self.tfs.repository.config_value("user.name") or "unknown"

    # -- setup ------------------------------------------------------------

    def force_reinit(self, prefix: str) -> None:
        """Drop the local beadwork branch and initialise it again."""
        validate_prefix(prefix)
        if self._local_branch_exists():
            self.tfs.delete_ref(REF_LOCAL)
        self.initialized = False
        self.tfs = TreeFS(self.tfs.repository, REF_LOCAL, self.tfs.clock)
        self.init(prefix)

    def init(self, prefix: str) -> None:
        """Create the beadwork branch, or adopt the one on ``origin``."""
        if self.initialized:
            raise RepoError("beadwork already initialized")
        validate_prefix(prefix)

        remote_exists = self._remote_branch_exists()
        local_exists = self._local_branch_exists()

        if remote_exists:
            try:
                self._fetch()
            except RepoError as exc:
                raise RepoError(f"fetch failed: {exc}") from exc
            if not local_exists:
                remote_hash = self.tfs.lookup_ref(REF_REMOTE)
                if remote_hash is None:
                    raise RepoError(f"lookup remote ref: {REF_REMOTE} not found")
                self.tfs.set_ref(REF_LOCAL, remote_hash)
            self.tfs = TreeFS(self.tfs.repository, REF_LOCAL, self.tfs.clock)
            self.prefix = self._read_prefix()
        elif not local_exists:
            if not prefix:
                prefix = self._derive_prefix()
            self.prefix = prefix
            for directory in _SKELETON_DIRS:
                self.tfs.write_file(f"{directory}/.gitkeep", b"")
            self.tfs.write_file(
                _CONFIG_FILE, f"prefix={prefix}\nversion={CURRENT_VERSION}\n"
            )
            try:
                self.tfs.commit("init beadwork")
            except GitError as exc:
                raise RepoError(f"init commit: {exc}") from exc

        if prefix:
            self.prefix = prefix
        self.initialized = True

    def _derive_prefix(self) -> str:
        clean = "".join(c for c in self.repo_dir.name if c in _PREFIX_CHARS)
        return clean[:8] if clean else "bw"

    def _read_prefix(self) -> str:
        data = self._config_text()
        if data is not None:
            for line in data.split("\n"):
                if line.startswith("prefix="):
                    return line[len("prefix="):]
        return self._derive_prefix()

    # -- history ------------------------------------------------------------

    def all_commits(self) -> list[CommitInfo]:
        """All commits on the beadwork branch, newest first."""
        return self.tfs.all_commits()

    def commit(self, message: str) -> None:
        """Commit pending changes to the beadwork branch."""
        self.tfs.commit(message)

    # -- configuration ------------------------------------------------------

    def _config_text(self) -> Optional[str]:
        try:
            data = self.tfs.read_file(_CONFIG_FILE)
        except (OSError, GitError):
            return None
        return data.decode("utf-8", "replace")

    def version(self) -> int:
        """The repository schema version, 0 if unset or not a number."""
        value = self.get_config("version")
        if value is None or not _INT_RE.fullmatch(value):
            return 0
        return int(value)

    def get_config(self, key: str) -> Optional[str]:
        """Return the value of ``key``, or None if it is not set."""
        return self.list_config().get(key)

    def set_config(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``, keeping every other entry."""
        config = self.list_config()
        config[key] = value
        lines = sorted(f"{k}={v}" for k, v in config.items())
        self.tfs.write_file(_CONFIG_FILE, "\n".join(lines) + "\n")

    def list_config(self) -> dict[str, str]:
        """Every ``key=value`` pair of the configuration file."""
        config: dict[str, str] = {}
        data = self._config_text()
        if data is None:
            return config
        for line in data.split("\n"):
            key, sep, value = line.partition("=")
            if sep and key:
                config[key] = value
        return config

    # -- remotes ------------------------------------------------------------

    def _git(self, *args: str) -> str:
        try:
            return self.tfs.repository.run(*args).decode("utf-8", "replace")
        except GitError as exc:
            raise RepoError(str(exc)) from exc

    def _fetch(self) -> None:
        self._git("fetch", "origin", f"+{REF_LOCAL}:{REF_REMOTE}")

    def _has_remote(self) -> bool:
        try:
            return self.tfs.has_remotes()
        except GitError:
            return False

    def _local_branch_exists(self) -> bool:
        return self.tfs.lookup_ref(REF_LOCAL) is not None

    def _remote_branch_exists(self) -> bool:
        if self.tfs.lookup_ref(REF_REMOTE) is not None:
            return True
        if not self._has_remote():
            return False
        try:
            out = self._git("ls-remote", "--heads", "origin", BRANCH_NAME)
        except RepoError:
            return False
        return out.strip() != ""

    def push(self) -> None:
        """Push the beadwork branch to ``origin``."""
        self._git("push", "origin", f"{REF_LOCAL}:{REF_LOCAL}")

    def _push_or_fail(self, context: str) -> None:
        try:
            self.push()
        except RepoError as exc:
            raise RepoError(f"{context}: {exc}") from exc

    def sync(self) -> tuple[str, list[str]]:
        """Exchange the beadwork branch with ``origin``.

        Returns a status and, when local commits could not be merged, the
        messages of those commits for replay on top of the remote state.
        """
        if not self._has_remote():
            return "no remote configured", []

        try:
            self._fetch()
        except RepoError:
            # The remote branch may not exist yet.
            self._push_or_fail("push failed")
            return "pushed", []

        remote_hash = self.tfs.lookup_ref(REF_REMOTE)
        if remote_hash is None:
            self._push_or_fail("push failed")
            return "pushed", []

        local_hash = self.tfs.ref_hash
        if local_hash is None:
            raise RepoError("walk local commits: no local beadwork branch")

        try:
            local_commits = self.tfs.commits_between(local_hash, remote_hash)
        except GitError as exc:
            raise RepoError(f"walk local commits: {exc}") from exc

        if not local_commits:
            if local_hash != remote_hash:
                try:
                    self.tfs.reset(remote_hash)
                except GitError as exc:
                    raise RepoError(f"fast-forward: {exc}") from exc
            return "up to date", []

        try:
            remote_commits = self.tfs.commits_between(remote_hash, local_hash)
        except GitError as exc:
            raise RepoError(f"walk remote commits: {exc}") from exc

        if not remote_commits:
            self._push_or_fail("push failed")
            return "pushed", []

        local_messages = [c.message for c in local_commits]
        try:
            merged = self.tfs.merge_commit(local_hash, remote_hash, local_messages)
        except GitError as exc:
            raise RepoError(f"merge: {exc}") from exc

        if merged:
            self._push_or_fail("push after merge")
            return "rebased and pushed", []

        try:
            self.tfs.reset(remote_hash)
        except GitError as exc:
            raise RepoError(f"reset to remote: {exc}") from exc
        return "needs replay", local_messages