"""A mutable, filesystem-like view of a git tree.

A :class:`TreeFS` reads the tree a reference points to, keeps changes in
memory, and writes them back as a new tree and commit. The reference moves
only if nobody else has moved it in the meantime.
"""

from __future__ import annotations

import os
import posixpath
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

from beadwork.gitstore import (
    MODE_DIR,
    MODE_FILE,
    CommitInfo,
    GitError,
    GitRepository,
    TreeEntry,
)

__all__ = ["ConflictError", "DirEntry", "FileInfo", "TreeFS", "open_treefs"]

Clock = Callable[[], datetime]


class ConflictError(GitError):
    """The tracked reference moved since this view was loaded."""


@dataclass(frozen=True)
class DirEntry:
    """A name in a directory listing."""

    name: str
    is_dir: bool = False


@dataclass(frozen=True)
class FileInfo:
    """Metadata about a file or directory."""

    name: str
    size: int = 0
    is_dir: bool = False


def _clean(path: str) -> str:
    """Normalise ``path``: resolve ``.`` and ``..`` and drop leading slashes."""
    cleaned = posixpath.normpath(path).lstrip("/")
    return "" if cleaned == "." else cleaned


def _parse_env_clock(value: str) -> Optional[datetime]:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(timezone.utc)


class TreeFS:
    """An in-memory overlay on top of the tree a git reference points to."""

    def __init__(
        self,
        repository: GitRepository,
        ref: str,
        clock: Optional[Clock] = None,
    ) -> None:
        self.repository = repository
        self.ref = ref
        self.clock = clock
        self._trees: dict[str, dict[str, TreeEntry]] = {}
        # path -> content; None marks a deletion.
        self._overlay: dict[str, Optional[bytes]] = {}
        self._dirs: set[str] = set()
        self._base_ref: Optional[str] = repository.read_ref(ref)
        self._base_tree: Optional[str] = None
        self._reload_base()

    # -- state -----------------------------------------------------------

    @property
    def ref_hash(self) -> Optional[str]:
        """The commit the view is based on, or None if the ref does not exist."""
        return self._base_ref

    @property
    def ref_name(self) -> str:
        return self.ref

    def has_ref(self) -> bool:
        """Return True if the tracked reference exists."""
        return self._base_ref is not None

    def _now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        value = os.environ.get("BW_CLOCK", "")
        if value:
            parsed = _parse_env_clock(value)
            if parsed is not None:
                return parsed
        return datetime.now().astimezone()

    def _clear_pending(self) -> None:
        self._overlay = {}
        self._dirs = set()

    def _reload_base(self) -> None:
        if self._base_ref is None:
            self._base_tree = None
        else:
            self._base_tree = self.repository.commit_tree_hash(self._base_ref)

    def _advance(self, commit_hash: Optional[str]) -> None:
        self._base_ref = commit_hash
        self._clear_pending()
        self._reload_base()

    def refresh(self) -> None:
        """Reload from the reference, discarding every pending change."""
        self._advance(self.repository.read_ref(self.ref))

    def _maybe_refresh(self) -> None:
        if self._overlay or self._dirs:
            return
        current = self.repository.read_ref(self.ref)
        if current is None or current == self._base_ref:
            return
        self._base_ref = current
        self._reload_base()

    # -- base tree access -----------------------------------------------

    def _entries(self, tree_hash: str) -> dict[str, TreeEntry]:
        cached = self._trees.get(tree_hash)
        if cached is None:
            cached = {e.name: e for e in self.repository.read_tree(tree_hash)}
            self._trees[tree_hash] = cached
        return cached

    def _find_entry(self, path: str) -> Optional[TreeEntry]:
        if self._base_tree is None or not path:
            return None
        tree = self._base_tree
        parts = path.split("/")
        for position, part in enumerate(parts):
            entry = self._entries(tree).get(part)
            if entry is None:
                return None
            if position == len(parts) - 1:
                return entry
            if not entry.is_dir:
                return None
            tree = entry.object_hash
        return None

    def _subtree(self, path: str) -> Optional[str]:
        if self._base_tree is None:
            return None
        if not path:
            return self._base_tree
        entry = self._find_entry(path)
        if entry is not None and entry.is_dir:
            return entry.object_hash
        return None

    def _collect(self, tree_hash: str, prefix: str, out: dict[str, str]) -> None:
        for entry in self._entries(tree_hash).values():
            full = f"{prefix}/{entry.name}" if prefix else entry.name
            if entry.is_dir:
                self._collect(entry.object_hash, full, out)
            else:
                out[full] = entry.object_hash

    def _commit_files(self, commit_hash: Optional[str]) -> dict[str, str]:
        files: dict[str, str] = {}
        if commit_hash is None:
            return files
        try:
            tree = self.repository.commit_tree_hash(commit_hash)
        except GitError:
            return files
        self._collect(tree, "", files)
        return files

    # -- file operations ------------------------------------------------

    def read_file(self, path: str) -> bytes:
        """Return the contents of the file at ``path``."""
        self._maybe_refresh()
        path = _clean(path)
        if path in self._overlay:
            data = self._overlay[path]
            if data is None:
                raise FileNotFoundError(f"file not found: {path}")
            return bytes(data)
        entry = self._find_entry(path)
        if entry is None:
            raise FileNotFoundError(f"file not found: {path}")
        if entry.is_dir:
            raise IsADirectoryError(f"is a directory: {path}")
        return self.repository.read_blob(entry.object_hash)

    def write_file(self, path: str, data: Union[bytes, str]) -> None:
        """Write ``data`` at ``path``; parent directories are implied."""
        path = _clean(path)
        if not path:
            raise ValueError("empty path")
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._overlay[path] = bytes(data)
        parent = posixpath.dirname(path)
        while parent:
            self._dirs.add(parent)
            parent = posixpath.dirname(parent)

    def remove(self, path: str) -> None:
        """Mark the file at ``path`` as deleted."""
        self._overlay[_clean(path)] = None

    def mkdir_all(self, path: str) -> None:
        """Record that ``path`` and its parents exist as directories."""
        path = _clean(path)
        while path:
            self._dirs.add(path)
            path = posixpath.dirname(path)

    def read_dir(self, path: str) -> list[DirEntry]:
        """List the entries of a directory, sorted by name."""
        self._maybe_refresh()
        path = _clean(path)
        entries: dict[str, DirEntry] = {}

        subtree = self._subtree(path)
        if subtree is not None:
            for entry in self._entries(subtree).values():
                entries[entry.name] = DirEntry(entry.name, entry.is_dir)

        prefix = f"{path}/" if path else ""
        for overlay_path, data in self._overlay.items():
            if not overlay_path.startswith(prefix):
                continue
            rest = overlay_path[len(prefix):]
            head, sep, _ = rest.partition("/")
            if not sep:
                if data is None:
                    entries.pop(rest, None)
                else:
                    entries[rest] = DirEntry(rest, False)
            else:
                entries.setdefault(head, DirEntry(head, True))

        for dir_path in self._dirs:
            if not dir_path.startswith(prefix):
                continue
            rest = dir_path[len(prefix):]
            head, sep, _ = rest.partition("/")
            if not sep or not prefix:
                entries.setdefault(head, DirEntry(head, True))

        return sorted(entries.values(), key=lambda e: e.name)

    def stat(self, path: str) -> FileInfo:
        """Return metadata for ``path``."""
        self._maybe_refresh()
        path = _clean(path)
        name = posixpath.basename(path)

        if path in self._overlay:
            data = self._overlay[path]
            if data is None:
                raise FileNotFoundError(f"not found: {path}")
            return FileInfo(name, len(data), False)

        if path in self._dirs and self._dir_has_content(path):
            return FileInfo(name, 0, True)

        entry = self._find_entry(path)
        if entry is not None:
            if entry.is_dir:
                return FileInfo(name, 0, True)
            try:
                size = int(self.repository.run("cat-file", "-s", entry.object_hash))
            except GitError:
                pass
            else:
                return FileInfo(name, size, False)
        if path and self._subtree(path) is not None:
            return FileInfo(name, 0, True)

        prefix = f"{path}/"
        if any(
            p.startswith(prefix) and data is not None
            for p, data in self._overlay.items()
        ):
            return FileInfo(name, 0, True)

        raise FileNotFoundError(f"not found: {path}")

    def _dir_has_content(self, path: str) -> bool:
        prefix = f"{path}/"
        pending = [data for p, data in self._overlay.items() if p.startswith(prefix)]
        if not pending:
            # Only created with mkdir_all.
            return True
        if any(data is not None for data in pending):
            return True
        if self._subtree(path) is not None:
            return bool(self.read_dir(path))
        return False

    # -- committing -----------------------------------------------------

    def _write_tree(self, files: dict[str, str]) -> str:
        blobs: dict[str, str] = {}
        nested: dict[str, dict[str, str]] = defaultdict(dict)
        for path, blob_hash in files.items():
            head, sep, rest = path.partition("/")
            if sep:
                nested[head][rest] = blob_hash
            else:
                blobs[head] = blob_hash

        entries = [TreeEntry(name, h, MODE_FILE) for name, h in blobs.items()]
        entries += [
            TreeEntry(name, self._write_tree(sub), MODE_DIR)
            for name, sub in nested.items()
        ]
        # Git orders directories as though their names ended with a slash.
        entries.sort(
            key=lambda e: (e.name + "/" if e.is_dir else e.name).encode("utf-8")
        )
        return self.repository.write_tree(entries)

    def commit(self, message: str) -> None:
        """Write pending changes as a commit and move the reference.

        Does nothing when there are no pending file changes. Raises
        :class:`ConflictError` if the reference moved since it was loaded.
        """
        if not self._overlay:
            return
        files = self._commit_files(self._base_ref)
        for path, data in self._overlay.items():
            if data is None:
                files.pop(path, None)
            else:
                files[path] = self.repository.write_blob(data)
        tree = self._write_tree(files)
        parents = [self._base_ref] if self._base_ref is not None else []
        new_hash = self.repository.write_commit(tree, parents, message, self._now())
        self._cas_update_ref(new_hash)

    def _cas_update_ref(self, new_hash: str) -> None:
        current = self.repository.read_ref(self.ref)
        if current is None:
            if self._base_ref is not None:
                raise ConflictError(f"ref disappeared: {self.ref}")
        elif current != self._base_ref:
            expected = (self._base_ref or "0" * 40)[:8]
            raise ConflictError(
                f"conflict: ref {self.ref} has moved "
                f"(expected {expected}, got {current[:8]})"
            )
        try:
            self.repository.run("update-ref", self.ref, new_hash, self._base_ref or "")
        except GitError as exc:
            raise ConflictError(f"conflict: ref {self.ref} has moved") from exc
        self._advance(new_hash)

    def reset(self, commit_hash: str) -> None:
        """Point the reference at ``commit_hash`` and drop pending changes."""
        self.repository.set_ref(self.ref, commit_hash)
        self._advance(commit_hash)

    # -- history --------------------------------------------------------

    def commits_between(
        self, local_hash: str, remote_hash: Optional[str]
    ) -> list[CommitInfo]:
        """Commits reachable from ``local_hash`` but not ``remote_hash``, oldest first."""
        remote_set: set[str] = set()
        if remote_hash:
            try:
                remote_set = {c.hash for c in self.repository.log(remote_hash)}
            except GitError:
                remote_set = set()
        commits = []
        for info in self.repository.log(local_hash):
            if info.hash in remote_set:
                break
            commits.append(info)
        commits.reverse()
        return commits

    def all_commits(self) -> list[CommitInfo]:
        """All commits on the tracked reference, newest first."""
        if self._base_ref is None:
            return []
        return self.repository.log(self._base_ref)

    # -- references -----------------------------------------------------

    def lookup_ref(self, name: str) -> Optional[str]:
        """Return the commit ``name`` points to, or None if it does not exist."""
        return self.repository.read_ref(name)

    def has_remotes(self) -> bool:
        return self.repository.has_remotes()

    def set_ref(self, name: str, commit_hash: str) -> None:
        self.repository.set_ref(name, commit_hash)

    def delete_ref(self, name: str) -> None:
        self.repository.delete_ref(name)

    # -- merging --------------------------------------------------------

    def _merge_base(self, a: str, b: str) -> Optional[str]:
        b_ancestors = {c.hash for c in self.repository.log(b)}
        for info in self.repository.log(a):
            if info.hash in b_ancestors:
                return info.hash
        return None

    def merge_commit(
        self, local_hash: str, remote_hash: str, messages: Iterable[str]
    ) -> bool:
        """Three-way merge ``local_hash`` onto ``remote_hash``.

        On success one commit per message is written on top of the remote
        commit, the reference moves to the last of them and True is
        returned. If any file changed differently on both sides, nothing
        changes and False is returned.
        """
        base_files = self._commit_files(self._merge_base(local_hash, remote_hash))
        local_files = self._commit_files(local_hash)
        remote_files = self._commit_files(remote_hash)

        merged: dict[str, str] = {}
        for path in base_files.keys() | local_files.keys() | remote_files.keys():
            base = base_files.get(path)
            local = local_files.get(path)
            remote = remote_files.get(path)
            local_changed = local != base
            remote_changed = remote != base
            if local_changed and remote_changed:
                if local != remote:
                    return False
                chosen = local
            elif local_changed:
                chosen = local
            elif remote_changed:
                chosen = remote
            else:
                chosen = base
            if chosen is not None:
                merged[path] = chosen

        tree = self._write_tree(merged)
        parent = remote_hash
        for message in messages:
            parent = self.repository.write_commit(tree, [parent], message, self._now())
        self.repository.set_ref(self.ref, parent)
        self._advance(parent)
        return True


def open_treefs(git_dir, ref: str) -> TreeFS:
    """Open the repository at ``git_dir`` and load the tree of ``ref``."""
    repository = GitRepository(git_dir)
    repository.run("rev-parse", "--git-dir")
    return TreeFS(repository, ref)