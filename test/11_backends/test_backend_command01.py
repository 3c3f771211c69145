# Standard library
import os

# Third-party
import pytest

# Local imports
from blobsy import backend_command
from blobsy.backend_command import CommandBackend, expand_command_template
from blobsy.blobsyerror import BlobsyError, BlobsyValidationError
from blobsy.hashutils import compute_hash


def _no_exec(*a, **kw):
    raise AssertionError("command should not run")


def test_command01_roundtrip(tmp_path, monkeypatch):
    # Remote folder via environment
    remote = tmp_path / "remote"
    remote.mkdir()
    monkeypatch.setenv("BLOBSY_TEST_REMOTE", str(remote))
    # Backend
    backend = CommandBackend(
        "cp {local} ${BLOBSY_TEST_REMOTE}/{remote}",
        "cp ${BLOBSY_TEST_REMOTE}/{remote} {local}",
        "test -f $BLOBSY_TEST_REMOTE/{remote}",
        repo_root=str(tmp_path))
    assert backend.type == "command"
    # Local file
    fsrc = tmp_path / "data.bin"
    fsrc.write_bytes(b"0123456789" * 50)
    # Push
    backend.push(str(fsrc), "blob.bin")
    assert (remote / "blob.bin").read_bytes() == fsrc.read_bytes()
    assert backend.exists("blob.bin")
    assert not backend.exists("other.bin")
    # Pull via temp file
    fdst = tmp_path / "copy.bin"
    backend.pull("blob.bin", str(fdst), compute_hash(str(fsrc)))
    assert fdst.read_bytes() == fsrc.read_bytes()
    # No delete
    with pytest.raises(BlobsyError):
        backend.delete("blob.bin")


def test_command02_unsafe_name(tmp_path, monkeypatch):
    # Fail if anything runs
    monkeypatch.setattr(backend_command, "call_oe", _no_exec)
    # File with shell metacharacter
    fsrc = tmp_path / "a;rm.bin"
    fsrc.write_bytes(b"x")
    backend = CommandBackend(
        "cp {local} /tmp/{remote}", "cp /tmp/{remote} {local}",
        repo_root=str(tmp_path))
    with pytest.raises(BlobsyValidationError):
        backend.push(str(fsrc), "k/a.bin")
    # Bad remote key
    with pytest.raises(BlobsyValidationError):
        backend.pull("$(reboot)", str(tmp_path / "b.bin"))
    assert not (tmp_path / "b.bin").exists()


def test_command03_expand(monkeypatch):
    # Environment
    monkeypatch.setenv("BLOBSY_DEST", "host:/blobs")
    monkeypatch.delenv("BLOBSY_UNSET", raising=False)
    vals = {
        "local": "/w/data/x.bin",
        "remote": "k/x.bin",
        "relative_path": "data/x.bin",
        "bucket": "bkt",
    }
    # Both passes
    cmd = expand_command_template(
        "scp {local} $BLOBSY_DEST/{bucket}/{remote} $BLOBSY_UNSET", vals)
    assert cmd == ["scp", "/w/data/x.bin", "host:/blobs/bkt/k/x.bin"]
    # Relative path
    cmd = expand_command_template("echo {relative_path}", vals)
    assert cmd == ["echo", "data/x.bin"]
    # Unsafe character from environment
    monkeypatch.setenv("BLOBSY_DEST", "x|y")
    with pytest.raises(BlobsyValidationError):
        expand_command_template("echo $BLOBSY_DEST", vals)
    # Empty
    with pytest.raises(BlobsyValidationError):
        expand_command_template("   ", vals)
    with pytest.raises(BlobsyValidationError):
        expand_command_template("$BLOBSY_UNSET", vals)


def test_command04_config():
    # Push and pull required
    with pytest.raises(BlobsyValidationError):
        CommandBackend("", "cp {remote} {local}")
    # No exists command
    backend = CommandBackend("cp a b", "cp b a")
    assert not backend.exists("k")


def test_command05_pull_fails(tmp_path):
    # Command that succeeds but writes nothing
    backend = CommandBackend("true", "true", repo_root=str(tmp_path))
    fdst = tmp_path / "x.bin"
    with pytest.raises(BlobsyError):
        backend.pull("k/x.bin", str(fdst))
    assert os.listdir(tmp_path) == []


def test_command06_trailing_newline(monkeypatch):
    # Fail if anything runs
    monkeypatch.setattr(backend_command, "call_oe", _no_exec)
    # Value ending in a line break
    monkeypatch.setenv("BLOBSY_DEST", "x\n")
    with pytest.raises(BlobsyValidationError):
        expand_command_template("echo $BLOBSY_DEST", {})
    # Same from a template variable
    with pytest.raises(BlobsyValidationError):
        expand_command_template("echo {remote}", {"remote": "k/x.bin\n"})
