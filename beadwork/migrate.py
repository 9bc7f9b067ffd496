"""Schema migrations for the beadwork branch."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable

from beadwork.gitstore import GitError
from beadwork.repo import CURRENT_VERSION, Repo, RepoError

__all__ = ["Migration", "MIGRATIONS", "upgrade"]


@dataclass(frozen=True)
class Migration:
    """One step from schema version N to N + 1."""

    description: str
    apply: Callable[[Repo], None]


def _add_version_marker(repo: Repo) -> None:
    # Nothing changes in the data; upgrading stamps the version key.
    return None


def _shift_priorities(repo: Repo) -> None:
    for entry in repo.tfs.read_dir("issues"):
        name = entry.name
        if not name.endswith(".json") or name == ".gitkeep":
            continue
        path = f"issues/{name}"
        try:
            data = repo.tfs.read_file(path)
        except (OSError, GitError) as exc:
            raise RepoError(f"read {name}: {exc}") from exc
        try:
            raw = json.loads(data)
        except ValueError as exc:
            raise RepoError(f"parse {name}: {exc}") from exc
        if not isinstance(raw, dict):
            raise RepoError(f"parse {name}: not a JSON object")

        priority = raw.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, int):
            continue
        if priority <= 0:
            continue
        raw["priority"] = priority - 1
        out = json.dumps(raw, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        repo.tfs.write_file(path, out)


# MIGRATIONS[n] moves a repository from version n to n + 1.
MIGRATIONS: list[Migration] = [
    Migration("add version marker", _add_version_marker),
    Migration("shift priority scale from 1-5 to 0-4", _shift_priorities),
]


def upgrade(repo: Repo) -> tuple[int, int]:
    """Migrate ``repo`` to the current schema version in a single commit.

    Returns the version before and after. On failure pending changes are
    discarded and :class:`RepoError` is raised.
    """
    start = repo.version()
    if start >= CURRENT_VERSION:
        return start, start
    if start < 0 or start >= len(MIGRATIONS):
        raise RepoError(f"repo version {start} has no migration path")

    for version in range(start, CURRENT_VERSION):
        migration = MIGRATIONS[version]
        try:
            migration.apply(repo)
        except Exception as exc:
            repo.tfs.refresh()
            raise RepoError(
                f"migration v{version} → v{version + 1} "
                f"({migration.description}) failed: {exc}"
            ) from exc

    try:
        repo.set_config("version", str(CURRENT_VERSION))
    except (OSError, GitError, ValueError) as exc:
        repo.tfs.refresh()
        raise RepoError(f"set version: {exc}") from exc

    try:
        repo.commit(f"upgrade repo v{start} -> v{CURRENT_VERSION}")
    except GitError as exc:
        raise RepoError(f"commit upgrade: {exc}") from exc

    return start, CURRENT_VERSION