from datetime import datetime, timedelta, timezone

import pytest

from beadwork.gitstore import (
    MODE_DIR,
    MODE_FILE,
    CommitInfo,
    GitError,
    GitRepository,
    TreeEntry,
)


@pytest.fixture
def repo(tmp_path):
    r = GitRepository(tmp_path)
    r.run("init", "-q")
    return r


def _commit(repo, name, data, parents=(), message="msg", when=None):
    blob = repo.write_blob(data)
    tree = repo.write_tree([TreeEntry(name, blob)])
    when = when or datetime(2025, 6, 15, 10, 30, tzinfo=timezone.utc)
    return repo.write_commit(tree, list(parents), message, when)


def test_blob_hash_matches_git_format(repo):
    assert repo.write_blob(b"") == "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"
    assert repo.write_blob(b"hello") == "b6fc4c620b67d95f953a5c1c1230aaab5db5a1b0"


def test_blob_round_trip(repo):
    data = b'{"id":"test-1234"}\n\x00binary'
    h = repo.write_blob(data)
    assert len(h) == 40
    assert repo.read_blob(h) == data


def test_tree_round_trip_with_subtree(repo):
    blob = repo.write_blob(b"x")
    sub = repo.write_tree([TreeEntry("test-1234", blob)])
    root = repo.write_tree(
        [TreeEntry("status", sub, MODE_DIR), TreeEntry(".bwconfig", blob, MODE_FILE)]
    )
    entries = repo.read_tree(root)
    assert [e.name for e in entries] == [".bwconfig", "status"]
    by_name = {e.name: e for e in entries}
    assert by_name["status"].is_dir
    assert not by_name[".bwconfig"].is_dir
    assert by_name["status"].object_hash == sub
    assert repo.read_tree(sub) == [TreeEntry("test-1234", blob, MODE_FILE)]


def test_commit_records_tree_and_metadata(repo):
    blob = repo.write_blob(b"hello")
    tree = repo.write_tree([TreeEntry("file1.txt", blob)])
    when = datetime(2025, 6, 15, 10, 30, tzinfo=timezone.utc)
    c = repo.write_commit(tree, [], "bw-1234: add file1", when)
    assert repo.commit_tree_hash(c) == tree
    commits = repo.log(c)
    assert len(commits) == 1
    info = commits[0]
    assert info.hash == c
    assert info.message == "bw-1234: add file1"
    assert info.author == "beadwork"
    assert info.time == when


def test_commit_keeps_time_zone(repo):
    when = datetime(2025, 6, 15, 10, 30, tzinfo=timezone(timedelta(hours=2)))
    c = _commit(repo, "a", b"a", when=when)
    info = repo.log(c)[0]
    assert info.time == when
    assert info.time.utcoffset() == timedelta(hours=2)


def test_log_newest_first(repo):
    first = _commit(repo, "a", b"a", message="first extra")
    second = _commit(repo, "b", b"b", parents=[first], message="second extra")
    commits = repo.log(second)
    assert [c.message for c in commits] == ["second extra", "first extra"]
    assert [c.hash for c in commits] == [second, first]
    assert isinstance(commits[0], CommitInfo)


def test_refs_set_read_delete(repo):
    assert repo.read_ref("refs/heads/beadwork") is None
    c = _commit(repo, "a", b"a")
    repo.set_ref("refs/heads/beadwork", c)
    assert repo.read_ref("refs/heads/beadwork") == c
    repo.delete_ref("refs/heads/beadwork")
    assert repo.read_ref("refs/heads/beadwork") is None


def test_has_remotes(repo, tmp_path):
    assert repo.has_remotes() is False
    repo.run("remote", "add", "origin", str(tmp_path / "remote.git"))
    assert repo.has_remotes() is True


def test_config_value(repo):
    assert repo.config_value("beadwork.nothing") is None
    repo.run("config", "user.name", "Repo User")
    assert repo.config_value("user.name") == "Repo User"


def test_run_failure_raises(repo):
    with pytest.raises(GitError) as info:
        repo.run("no-such-subcommand-here")
    assert info.value.returncode != 0


def test_read_missing_blob_raises(repo):
    with pytest.raises(GitError):
        repo.read_blob("0" * 40)