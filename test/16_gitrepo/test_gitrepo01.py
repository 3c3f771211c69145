# Standard library
import os
import subprocess

# Third-party
import pytest

# Local imports
from blobsy.blobsyerror import BlobsyGitError, BlobsyValidationError
from blobsy.gitrepo import GitRepo, find_repo_root


def test_gitrepo01_root(gitrepo):
    # From top level
    repo = GitRepo()
    assert os.path.realpath(repo.gitdir) == gitrepo
    assert not repo.bare
    # From subfolder
    os.mkdir("sub")
    assert os.path.realpath(find_repo_root("sub")) == gitrepo


def test_gitrepo02_outside(tmp_path, monkeypatch):
    # Plain folder with no repo above it
    fdir = tmp_path / "plain"
    fdir.mkdir()
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    with pytest.raises(BlobsyValidationError):
        find_repo_root(str(fdir))
    with pytest.raises(BlobsyValidationError):
        GitRepo(str(fdir))


def test_gitrepo03_files(gitrepo):
    # Interface
    repo = GitRepo()
    # New files
    with open("a.txt", "w") as fp:
        fp.write("a\n")
    with open(".gitignore", "w") as fp:
        fp.write("*.log\n")
    # Not tracked yet
    assert not repo.check_track("a.txt")
    assert repo.check_ignore("x.log")
    assert not repo.check_ignore("a.txt")
    # Stage
    repo.add("a.txt")
    assert repo.check_track("a.txt")
    assert repo.ls_staged() == ["a.txt"]
    # Move tracked file through git
    repo.mv("a.txt", "b.txt")
    assert repo.ls_staged() == ["b.txt"]
    assert os.path.isfile("b.txt")
    # Move untracked file
    with open("c.txt", "w") as fp:
        fp.write("c\n")
    repo.mv("c.txt", "d.txt")
    assert os.path.isfile("d.txt")
    assert not repo.check_track("d.txt")
    # Unstage, keeping file
    repo.rm_cached("b.txt", "d.txt")
    assert not repo.check_track("b.txt")
    assert os.path.isfile("b.txt")


def test_gitrepo04_hooks(gitrepo):
    repo = GitRepo()
    # Default hooks folder
    assert os.path.realpath(repo.get_hooksdir()) == \
        os.path.join(gitrepo, ".git", "hooks")
    # Custom hooks folder
    subprocess.run(
        ["git", "config", "core.hooksPath", "githooks"], check=True)
    assert os.path.realpath(repo.get_hooksdir()) == \
        os.path.join(gitrepo, "githooks")


def test_gitrepo05_errors(gitrepo):
    repo = GitRepo()
    # Bad git command
    with pytest.raises(BlobsyGitError):
        repo.check_o(["git", "not-a-command"])
    # Allowed nonzero code
    assert repo.check_call(["git", "not-a-command"], codes=[1]) == 1


def test_gitrepo06_bare(tmp_path):
    # Bare repo
    fbare = tmp_path / "bare.git"
    subprocess.run(["git", "init", "-q", "--bare", str(fbare)], check=True)
    repo = GitRepo(str(fbare))
    assert repo.bare
    with pytest.raises(BlobsyValidationError):
        repo.assert_working("add")
