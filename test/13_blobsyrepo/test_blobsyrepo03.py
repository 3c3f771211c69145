# Standard library
import json
import os

# Third-party
import pytest

# Local imports
from blobsy.backend_command import CommandBackend
from blobsy.blobsyerror import (
    BlobsyFileNotFoundError,
    BlobsyKeyError,
    BlobsyPermissionError,
    BlobsyValidationError)
from blobsy.blobsyrepo import (
    HOOK_MARKER,
    BlobsyRepo,
    format_size,
    genr8_hook_script)
from blobsy.bref import read_bref
from blobsy.config import load_config_file


def _write(fname, content):
    # Create folder and write bytes
    fdir = os.path.dirname(fname)
    if fdir:
        os.makedirs(fdir, exist_ok=True)
    with open(fname, "wb") as fp:
        fp.write(content)


def test_hooks01_install(blobsyrepo, home, capsys):
    # Interface
    repo = BlobsyRepo(home=home)
    hooksdir = repo.get_hooksdir()
    os.makedirs(hooksdir, exist_ok=True)
    # Someone else's pre-push hook
    fpush = os.path.join(hooksdir, "pre-push")
    with open(fpush, "w") as fp:
        fp.write("#!/bin/sh\necho custom\n")
    # Install
    repo.blobsy_install_hooks()
    out = capsys.readouterr().out
    assert "Installed pre-commit hook" in out
    assert "hooks/pre-push hook already exists; skipping" in out
    # Contents
    with open(os.path.join(hooksdir, "pre-commit")) as fp:
        assert HOOK_MARKER in fp.read()
    with open(fpush) as fp:
        assert fp.read() == "#!/bin/sh\necho custom\n"
    # Uninstall only removes ours
    repo.blobsy_uninstall_hooks()
    assert "Removed pre-commit hook" in capsys.readouterr().out
    assert not os.path.isfile(os.path.join(hooksdir, "pre-commit"))
    assert os.path.isfile(fpush)


def test_hooks02_manager(blobsyrepo, home, capsys):
    # Interface
    repo = BlobsyRepo(home=home)
    # Another hook manager
    _write("lefthook.yml", b"pre-commit:\n")
    repo.blobsy_install_hooks()
    assert "Found lefthook.yml" in capsys.readouterr().out
    assert not os.path.isfile(
        os.path.join(repo.get_hooksdir(), "pre-commit"))


def test_hooks03_script():
    # Script text
    txt = genr8_hook_script("pre-push", "/usr/bin/blobsy")
    assert txt.startswith("#!/bin/sh\n")
    assert "# To bypass: git push --no-verify" in txt
    assert txt.endswith("exec /usr/bin/blobsy hook pre-push\n")


def test_hooks04_pre_commit(blobsyrepo, home, monkeypatch, capsys):
    # Interface
    repo = BlobsyRepo(home=home)
    _write("a.bin", b"aaa")
    repo.blobsy_add("a.bin", quiet=True)
    # Staged record matches file
    assert repo.blobsy_hook("pre-commit") == 0
    # File changed after staging
    _write("a.bin", b"aaaa")
    assert repo.blobsy_hook("pre-commit") == 1
    err = capsys.readouterr().err
    assert "tracked files changed" in err
    assert "  a.bin" in err
    # Bypass
    monkeypatch.setenv("BLOBSY_NO_HOOKS", "1")
    assert repo.blobsy_hook("pre-commit") == 0
    # Unknown hook
    monkeypatch.delenv("BLOBSY_NO_HOOKS")
    with pytest.raises(BlobsyValidationError):
        repo.blobsy_hook("post-merge")


def test_hooks05_pre_push(blobsyrepo, home):
    # Interface
    repo = BlobsyRepo(home=home)
    _write("a.bin", b"aaa")
    repo.blobsy_track("a.bin", quiet=True)
    # Hook uploads unpushed files
    assert repo.blobsy_hook("pre-push", quiet=True) == 0
    assert read_bref("a.bin.bref").get("remote_key")


def test_checks01(blobsyrepo, home, tmp_path, capsys):
    # Interface
    repo = BlobsyRepo(home=home)
    _write("a.bin", b"aaa")
    _write("b.bin", b"bbb")
    repo.blobsy_track("a.bin", "b.bin", quiet=True)
    repo.blobsy_push("a.bin", quiet=True)
    # One unpushed
    capsys.readouterr()
    assert repo.blobsy_check_unpushed() == 1
    out = capsys.readouterr().out
    assert "1 tracked file(s) not pushed:" in out
    assert "  b.bin" in out
    # JSON
    repo.blobsy_check_unpushed(json=True)
    data = json.loads(capsys.readouterr().out)
    assert data["unpushed"] == ["b.bin"]
    assert data["count"] == 1
    # Push the rest, then lose a blob
    repo.blobsy_push(quiet=True)
    assert repo.blobsy_pre_push_check(quiet=True) == 0
    ref = read_bref("a.bin.bref")
    tmp_path.joinpath("remote", *ref["remote_key"].split("/")).unlink()
    assert repo.blobsy_pre_push_check() == 1
    assert "a.bin: blob missing from remote" in capsys.readouterr().out


def test_health01(blobsyrepo, home, tmp_path, capsys):
    # Interface
    repo = BlobsyRepo(home=home)
    # Working backend
    assert repo.blobsy_health() == 0
    assert "Backend OK (local)" in capsys.readouterr().out
    repo.blobsy_health(json=True)
    data = json.loads(capsys.readouterr().out)
    assert data == {"schema_version": "0.1", "backend": "local", "status": "ok"}
    # Missing folder
    os.rmdir(tmp_path / "remote")
    with pytest.raises(BlobsyFileNotFoundError):
        repo.blobsy_health()


def test_trust01(gitrepo, home, capsys):
    # Command backend config
    with open(".blobsy.yml", "w") as fp:
        fp.write(
            "backends:\n"
            "  default:\n"
            "    push_command: cp {local} /tmp/{remote}\n"
            "    pull_command: cp /tmp/{remote} {local}\n")
    repo = BlobsyRepo(home=home)
    # Not trusted yet
    with pytest.raises(BlobsyPermissionError):
        repo.get_backend()
    # Trust
    repo.blobsy_trust()
    assert "Trusted" in capsys.readouterr().out
    assert isinstance(repo.get_backend(), CommandBackend)
    assert os.path.isfile(
        os.path.join(home, ".blobsy", "trusted-repos.json"))
    # Untrust
    repo.blobsy_untrust()
    assert "Removed trust for" in capsys.readouterr().out
    repo.blobsy_untrust()
    assert "Repository was not trusted" in capsys.readouterr().out
    with pytest.raises(BlobsyPermissionError):
        repo.get_backend()


def test_config01(blobsyrepo, home, capsys):
    # Interface
    repo = BlobsyRepo(home=home)
    # Default value
    repo.blobsy_config("compress.algorithm")
    assert capsys.readouterr().out == "zstd\n"
    # Whole section as YAML
    repo.blobsy_config("backends")
    assert capsys.readouterr().out == \
        "default:\n  url: local:../remote\n"
    # Set in repo file
    repo.blobsy_config("compress.algorithm", "gzip")
    assert load_config_file(".blobsy.yml")["compress"] == \
        {"algorithm": "gzip"}
    repo.blobsy_config("compress.algorithm", json=True)
    data = json.loads(capsys.readouterr().out)
    assert data["value"] == "gzip"
    # Set in user file; value parsed as YAML
    repo.blobsy_config("sync.parallel", "4", **{"global": True})
    fglobal = os.path.join(home, ".blobsy.yml")
    assert load_config_file(fglobal) == {"sync": {"parallel": 4}}
    repo.blobsy_config("sync.parallel")
    assert capsys.readouterr().out == "4\n"
    # Missing option
    with pytest.raises(BlobsyKeyError):
        repo.blobsy_config("compress.nope")
    # Bad section type
    with pytest.raises(BlobsyValidationError):
        repo.blobsy_config("ignore", "notalist")


def test_format01_size():
    assert format_size(0) == "0 B"
    assert format_size(1023) == "1023 B"
    assert format_size(1536) == "1.5 KB"
    assert format_size(5 * 1024 * 1024) == "5.0 MB"
    assert format_size(3 * 1024 ** 4) == "3072.0 GB"
