# Standard library
import os
import subprocess

# Third-party
import pytest


# Folder name of sandboxed repo within *tmp_path*
REPO_NAME = "repo"


# Sandboxed home folder (global config and trust store)
@pytest.fixture
def home(tmp_path, monkeypatch):
    # Create folder
    fhome = tmp_path / "home"
    fhome.mkdir()
    # Point "~" at it
    monkeypatch.setenv("HOME", str(fhome))
    # Don't let the caller's environment pick a backend
    monkeypatch.delenv("BLOBSY_BACKEND_URL", raising=False)
    return str(fhome)


# Fresh working repo as current folder
@pytest.fixture
def gitrepo(tmp_path, monkeypatch, home):
    # Create folder
    frepo = tmp_path / REPO_NAME
    frepo.mkdir()
    # Initialize repo with an identity for commits
    for cmd in (
            ["git", "init", "-q"],
            ["git", "config", "user.email", "test@example.com"],
            ["git", "config", "user.name", "Test User"],
            ["git", "config", "commit.gpgsign", "false"]):
        subprocess.run(cmd, cwd=str(frepo), check=True)
    # Enter it
    monkeypatch.chdir(frepo)
    return os.path.realpath(str(frepo))


# Working repo with a local backend outside of it
@pytest.fixture
def blobsyrepo(gitrepo, tmp_path):
    # Backend folder next to repo
    fremote = tmp_path / "remote"
    # Config
    with open(os.path.join(gitrepo, ".blobsy.yml"), "w") as fp:
        fp.write("backends:\n")
        fp.write("  default:\n")
        fp.write("    url: local:../remote\n")
    fremote.mkdir()
    return gitrepo
