"""Access to a git object store and its references through the git command."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

__all__ = [
    "GitError",
    "TreeEntry",
    "CommitInfo",
    "GitRepository",
    "MODE_FILE",
    "MODE_DIR",
    "SIGNATURE_NAME",
    "SIGNATURE_EMAIL",
]

MODE_FILE = "100644"
MODE_DIR = "040000"

SIGNATURE_NAME = "beadwork"
SIGNATURE_EMAIL = "beadwork@localhost"

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class GitError(Exception):
    """A git command failed."""

    def __init__(self, message: str, returncode: int = 1, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a git tree: a file blob or a subtree."""

    name: str
    object_hash: str
    mode: str = MODE_FILE

    @property
    def is_dir(self) -> bool:
        return self.mode.lstrip("0") == MODE_DIR.lstrip("0")

    @property
    def object_type(self) -> str:
        return "tree" if self.is_dir else "blob"


@dataclass(frozen=True)
class CommitInfo:
    """A commit's hash, trimmed message, author time and author name."""

    hash: str
    message: str
    time: datetime = field(compare=False)
    author: str = ""


def _git_date(when: datetime) -> str:
    if when.tzinfo is None:
        when = when.astimezone()
    offset = when.utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{int(when.timestamp())} {sign}{hours:02d}{mins:02d}"


class GitRepository:
    """A git repository addressed by its working directory or git directory."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def _execute(
        self,
        args: Sequence[str],
        input: Optional[bytes] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> bytes:
        environ = dict(os.environ)
        if env:
            environ.update(env)
        try:
            proc = subprocess.run(
                ["git", "-C", str(self.path), *args],
                input=input,
                capture_output=True,
                env=environ,
            )
        except OSError as exc:
            raise GitError(f"git {' '.join(args)}: {exc}") from exc
        if proc.returncode != 0:
            output = (proc.stderr or proc.stdout).decode("utf-8", "replace").strip()
            raise GitError(
                f"git {' '.join(args)}: {output}", proc.returncode, output
            )
        return proc.stdout

    def run(self, *args: str, input: Optional[bytes] = None) -> bytes:
        """Run a git command in this repository and return its standard output."""
        return self._execute(args, input=input)

    def _text(self, *args: str, input: Optional[bytes] = None) -> str:
        return self.run(*args, input=input).decode("utf-8").strip()

    def read_ref(self, name: str) -> Optional[str]:
        """Return the commit a reference points to, or None if it is missing."""
        try:
            value = self._text("rev-parse", "--verify", "--quiet", f"{name}^{{commit}}")
        except GitError:
            return None
        return value or None

    def set_ref(self, name: str, commit_hash: str) -> None:
        """Point reference ``name`` at ``commit_hash``."""
        self.run("update-ref", name, commit_hash)

    def delete_ref(self, name: str) -> None:
        """Remove reference ``name``."""
        self.run("update-ref", "-d", name)

    def read_blob(self, blob_hash: str) -> bytes:
        """Return the contents of a blob."""
        return self.run("cat-file", "blob", blob_hash)

    def write_blob(self, data: bytes) -> str:
        """Store ``data`` as a blob and return its hash."""
        return self._text("hash-object", "-w", "--stdin", input=bytes(data))

    def read_tree(self, tree_hash: str) -> list[TreeEntry]:
        """Return the entries of a tree, in the order git stores them."""
        raw = self.run("ls-tree", "-z", tree_hash).decode("utf-8")
        entries = []
        for record in raw.split("\0"):
            if not record:
                continue
            meta, _, name = record.partition("\t")
            mode, _kind, object_hash = meta.split(" ")
            entries.append(TreeEntry(name=name, object_hash=object_hash, mode=mode))
        return entries

    def write_tree(self, entries: Iterable[TreeEntry]) -> str:
        """Store a tree made of ``entries`` and return its hash."""
        payload = "".join(
            f"{entry.mode} {entry.object_type} {entry.object_hash}\t{entry.name}\0"
            for entry in entries
        )
        return self._text("mktree", "-z", input=payload.encode("utf-8"))

    def commit_tree_hash(self, commit_hash: str) -> str:
        """Return the hash of the tree a commit records."""
        return self._text("rev-parse", "--verify", f"{commit_hash}^{{tree}}")

    def write_commit(
        self,
        tree_hash: str,
        parents: Sequence[str],
        message: str,
        when: datetime,
    ) -> str:
        """Store a commit of ``tree_hash`` and return its hash."""
        date = _git_date(when)
        env = {
            "GIT_AUTHOR_NAME": SIGNATURE_NAME,
            "GIT_AUTHOR_EMAIL": SIGNATURE_EMAIL,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": SIGNATURE_NAME,
            "GIT_COMMITTER_EMAIL": SIGNATURE_EMAIL,
            "GIT_COMMITTER_DATE": date,
        }
        args = ["commit-tree", "--no-gpg-sign", tree_hash]
        for parent in parents:
            args += ["-p", parent]
        out = self._execute(args, input=message.encode("utf-8"), env=env)
        return out.decode("utf-8").strip()

    def log(self, start: str) -> list[CommitInfo]:
        """Return the commits reachable from ``start``, newest first."""
        fmt = f"%H{_FIELD_SEP}%an{_FIELD_SEP}%aI{_FIELD_SEP}%B{_RECORD_SEP}"
        raw = self.run("log", f"--format={fmt}", start, "--").decode("utf-8")
        commits = []
        for record in raw.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            commit_hash, author, stamp, message = record.split(_FIELD_SEP, 3)
            when = datetime.fromisoformat(stamp)
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            commits.append(
                CommitInfo(
                    hash=commit_hash.strip(),
                    message=message.strip(),
                    time=when,
                    author=author,
                )
            )
        return commits

    def has_remotes(self) -> bool:
        """Return True if at least one remote is configured."""
        return bool(self._text("remote"))

    def config_value(self, key: str) -> Optional[str]:
        """Return a git configuration value, or None when it is unset."""
        try:
            value = self._text("config", "--get", key)
        except GitError:
            return None
        return value