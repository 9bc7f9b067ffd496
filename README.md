# beadwork

Beadwork is the storage layer for an issue tracker that lives inside a
git repository, on its own orphan branch named `beadwork`. Nothing
touches your working tree: files are read from and written to git
objects directly, and each batch of changes lands as one commit that
moves the branch only if nobody else moved it first. It needs the `git`
executable on your `PATH`.

## Install

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## Modules

- `beadwork.repo` — `find_repo()` locates the repository containing the
  current directory (worktrees included, via `find_git_dir` and
  `resolve_worktree_git_dir`). `Repo.init(prefix)` creates the branch
  skeleton or adopts an existing `beadwork` branch from `origin`;
  `Repo.force_reinit(prefix)` drops the local branch and starts over.
  `get_config`, `set_config` and `list_config` read and write the
  `key=value` file `.bwconfig`; `version()` gives its schema version.
  `sync()` and `push()` exchange the branch with `origin`.
  `validate_prefix` checks an issue prefix (at most 16 characters,
  alphanumeric plus `-` and `_`). Failures raise `RepoError`.
- `beadwork.migrate` — `upgrade(repo)` brings an older branch up to the
  current schema version in a single commit and returns the versions
  before and after. `MIGRATIONS` lists the steps.
- `beadwork.treefs` — `TreeFS`, a file-system-like view of a git ref
  with `read_file`, `write_file`, `remove`, `read_dir`, `mkdir_all`,
  `stat` and `commit`, plus `reset`, `commits_between`, `all_commits`
  and a three-way `merge_commit`. Commits are compare-and-swap on the
  ref and raise `ConflictError` when another writer got there first.
  `open_treefs(git_dir, ref)` opens one.
- `beadwork.gitstore` — `GitRepository`, a small layer over git
  plumbing commands (refs, blobs, trees, commits, log), with `TreeEntry`,
  `CommitInfo` and `GitError`.
- `beadwork.template` — `render`, `process` and `process_with_commands`
  evaluate `<!-- IF key == value -->` … `<!-- END -->` blocks, named
  section markers such as `<!-- STATE -->`, and `<!-- bw ... -->`
  command markers; other HTML comments are stripped and runs of blank
  lines collapse to one.
- `beadwork.wrap` — `wrap_text(text, width)` wraps text to a width,
  repeating each line's indent and breaking words that are too long.

## Example

    from beadwork.repo import find_repo

    repo = find_repo()
    if not repo.initialized:
        repo.init("proj")

    repo.set_config("default.priority", "2")
    repo.commit("config default.priority=2")
    print(repo.list_config())

    status, replay = repo.sync()
    print(status)

`sync` returns one of `"no remote configured"`, `"pushed"`,
`"up to date"`, `"rebased and pushed"` or `"needs replay"`; in the last
case the branch has been reset to the remote state and the second value
holds the messages of the local commits that were set aside, oldest
first.

Commit timestamps come from `TreeFS.clock` when set, otherwise from the
`BW_CLOCK` environment variable when it holds an RFC 3339 time, which
makes histories reproducible in tests.

## What it does not do

This package has no command-line program and no issue model: it does
not create, list, close, label or link issues, and it does not replay
the messages that `sync` hands back after a conflict. It provides the
branch, the configuration, the in-memory tree and the sync machinery
that such tools would be built on.