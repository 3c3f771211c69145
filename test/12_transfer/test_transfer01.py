# Standard library
import os
from datetime import datetime, timezone

# Third-party
import pytest

# Local imports
from blobsy.backend_command import CommandBackend
from blobsy.backend_local import LocalBackend
from blobsy.blobsyerror import BlobsyPermissionError, BlobsyValidationError
from blobsy.bref import new_bref
from blobsy.config import get_builtin_defaults
from blobsy.hashutils import compute_hash
from blobsy.transfer import (
    create_backend,
    pull_file,
    push_file,
    resolve_backend,
    sync_file)
from blobsy.trust import TrustStore


# Fixed time for keys
TIMESTAMP = datetime(2026, 2, 21, 15, 30, 45, tzinfo=timezone.utc)


class RecordingBackend(object):
    r"""Backend that records calls and stores blobs in a dict"""
    __slots__ = ("calls", "blobs")

    type = "fake"

    def __init__(self):
        self.calls = []
        self.blobs = {}

    def push(self, fname, remote_key):
        self.calls.append(("push", remote_key))
        with open(fname, "rb") as fp:
            self.blobs[remote_key] = fp.read()

    def pull(self, remote_key, fname, expected_hash=None):
        self.calls.append(("pull", remote_key))
        with open(fname, "wb") as fp:
            fp.write(self.blobs[remote_key])

    def exists(self, remote_key):
        self.calls.append(("exists", remote_key))
        return remote_key in self.blobs


def _setup(tmp_path):
    # Repo and remote folders
    root = tmp_path / "repo"
    (root / "data").mkdir(parents=True)
    (tmp_path / "remote").mkdir()
    # Settings
    config = get_builtin_defaults()
    config["backends"] = {"default": {"url": "local:../remote"}}
    return str(root), config


def _track(fname):
    return new_bref(compute_hash(fname), os.path.getsize(fname))


def test_transfer01_resolve(monkeypatch):
    monkeypatch.delenv("BLOBSY_BACKEND_URL", raising=False)
    # Named backend from URL
    config = {
        "backend": "cloud",
        "backends": {
            "default": {"url": "local:../remote"},
            "cloud": {"url": "s3://bkt/proj", "region": "us-east-1"},
        },
    }
    resolved = resolve_backend(config)
    assert resolved["type"] == "s3"
    assert resolved["bucket"] == "bkt"
    assert resolved["prefix"] == "proj/"
    assert resolved["region"] == "us-east-1"
    # Command backend without URL
    resolved = resolve_backend({"backends": {"default": {
        "push_command": "cp {local} x", "pull_command": "cp x {local}"}}})
    assert resolved["type"] == "command"
    # Environment override
    monkeypatch.setenv("BLOBSY_BACKEND_URL", "local:/tmp/elsewhere")
    resolved = resolve_backend(config)
    assert resolved["type"] == "local"
    assert resolved["path"] == "/tmp/elsewhere"


def test_transfer02_resolve_errors(monkeypatch):
    monkeypatch.delenv("BLOBSY_BACKEND_URL", raising=False)
    # Nothing configured
    with pytest.raises(BlobsyValidationError):
        resolve_backend({})
    # Unknown name
    with pytest.raises(BlobsyValidationError):
        resolve_backend({"backend": "x", "backends": {"default": {}}})
    # No way to tell type
    with pytest.raises(BlobsyValidationError):
        resolve_backend({"backends": {"default": {"region": "x"}}})
    # Unknown type
    with pytest.raises(BlobsyValidationError):
        resolve_backend({"backends": {"default": {"type": "ftp"}}})


def test_transfer03_create(tmp_path):
    # Local backend relative to repo
    root = str(tmp_path / "repo")
    backend = create_backend({"type": "local", "path": "../remote"}, root)
    assert isinstance(backend, LocalBackend)
    assert backend.remote_dir == os.path.join(str(tmp_path), "remote")
    # Command backend needs trust
    resolved = {
        "type": "command",
        "push_command": "cp {local} x",
        "pull_command": "cp x {local}",
    }
    store = TrustStore(str(tmp_path / "home"))
    with pytest.raises(BlobsyPermissionError):
        create_backend(resolved, root, trust=store)
    # Trusted
    store.trust(root)
    backend = create_backend(resolved, root, trust=store)
    assert isinstance(backend, CommandBackend)


def test_transfer04_roundtrip(tmp_path):
    # Layout
    root, config = _setup(tmp_path)
    fname = os.path.join(root, "data", "model.bin")
    with open(fname, "wb") as fp:
        fp.write(b"\x00\x01weights" * 1000)
    ref = _track(fname)
    # Push, no compression for *.bin below threshold
    result = push_file(
        fname, "data/model.bin", ref, config, root, timestamp=TIMESTAMP)
    assert result.success
    updates = result.ref_updates
    hexhash = ref["hash"][7:]
    assert updates["remote_key"] == \
        f"20260221T153045Z-{hexhash[:12]}/data/model.bin"
    assert updates["compressed"] is None
    assert updates["compressed_size"] is None
    assert os.path.isfile(os.path.join(
        str(tmp_path), "remote", *updates["remote_key"].split("/")))
    # Pull after deleting working file
    ref["remote_key"] = updates["remote_key"]
    os.remove(fname)
    result = pull_file(ref, fname, config, root)
    assert result.success
    assert compute_hash(fname) == ref["hash"]
    # Output
    data = result.to_dict()
    assert data["path"] == "data/model.bin"
    assert data["action"] == "pull"


def test_transfer05_compressed(tmp_path):
    # Layout
    root, config = _setup(tmp_path)
    fname = os.path.join(root, "data", "table.csv")
    with open(fname, "w") as fp:
        fp.write("a,b,c\n" * 5000)
    ref = _track(fname)
    # Push; *.csv is always compressed
    result = push_file(
        fname, "data/table.csv", ref, config, root, timestamp=TIMESTAMP)
    assert result.success
    updates = result.ref_updates
    assert updates["compressed"] == "zstd"
    assert updates["remote_key"].endswith("/data/table.csv.zst")
    assert updates["compressed_size"] < ref["size"]
    assert result.bytes_transferred == updates["compressed_size"]
    # No temp file left in working folder
    assert os.listdir(os.path.join(root, "data")) == ["table.csv"]
    # Pull
    ref.update(updates)
    os.remove(fname)
    result = pull_file(ref, fname, config, root)
    assert result.success
    assert compute_hash(fname) == ref["hash"]
    assert os.listdir(os.path.join(root, "data")) == ["table.csv"]


def test_transfer06_compressed_mismatch(tmp_path):
    # Layout
    root, config = _setup(tmp_path)
    fname = os.path.join(root, "data", "table.csv")
    with open(fname, "w") as fp:
        fp.write("x,y\n" * 100)
    ref = _track(fname)
    result = push_file(
        fname, "data/table.csv", ref, config, root, timestamp=TIMESTAMP)
    ref.update(result.ref_updates)
    # Change the record's hash and the local file
    ref["hash"] = "sha256:" + "0" * 64
    with open(fname, "w") as fp:
        fp.write("local edits\n")
    # Pull fails, leaving local file alone
    result = pull_file(ref, fname, config, root)
    assert not result.success
    assert result.error_category == "validation"
    with open(fname) as fp:
        assert fp.read() == "local edits\n"
    assert os.listdir(os.path.join(root, "data")) == ["table.csv"]


def test_transfer07_pull_unpushed(tmp_path):
    root, config = _setup(tmp_path)
    ref = new_bref("sha256:" + "0" * 64, 10)
    # Never pushed
    result = pull_file(ref, os.path.join(root, "x.bin"), config, root)
    assert not result.success
    assert result.error_category == "not_found"


def test_transfer08_sync(tmp_path):
    # Layout
    root, config = _setup(tmp_path)
    fname = os.path.join(root, "data", "model.bin")
    with open(fname, "wb") as fp:
        fp.write(b"version 1")
    ref = _track(fname)
    backend = RecordingBackend()
    # Never pushed -> push
    outcome = sync_file(
        fname, "data/model.bin", ref, config, root, backend,
        timestamp=TIMESTAMP)
    assert outcome.action == "push"
    assert outcome.success
    ref = outcome.ref
    assert ref["remote_key"] in backend.blobs
    # Unchanged -> no backend calls at all
    backend.calls.clear()
    outcome = sync_file(fname, "data/model.bin", ref, config, root, backend)
    assert outcome.action == "up_to_date"
    assert outcome.ref is None
    assert backend.calls == []
    # Missing -> pull
    os.remove(fname)
    outcome = sync_file(fname, "data/model.bin", ref, config, root, backend)
    assert outcome.action == "pull"
    assert outcome.success
    with open(fname, "rb") as fp:
        assert fp.read() == b"version 1"
    # Modified -> push new content under new key
    with open(fname, "wb") as fp:
        fp.write(b"version 2")
    oldkey = ref["remote_key"]
    outcome = sync_file(
        fname, "data/model.bin", ref, config, root, backend,
        timestamp=TIMESTAMP)
    assert outcome.action == "push"
    assert outcome.ref["hash"] == compute_hash(fname)
    assert outcome.ref["size"] == len(b"version 2")
    assert outcome.ref["remote_key"] != oldkey


def test_transfer09_push_failure(tmp_path):
    # Layout; remote is a file, so pushing into it fails
    root, config = _setup(tmp_path)
    os.rmdir(os.path.join(str(tmp_path), "remote"))
    with open(os.path.join(str(tmp_path), "remote"), "w") as fp:
        fp.write("not a folder")
    fname = os.path.join(root, "data", "model.bin")
    with open(fname, "wb") as fp:
        fp.write(b"x")
    ref = _track(fname)
    # Failure is a result, not an exception
    result = push_file(fname, "data/model.bin", ref, config, root)
    assert not result.success
    assert result.error
    assert result.ref_updates is None


def test_transfer10_corrupt_compressed_blob(tmp_path):
    # Layout
    root, config = _setup(tmp_path)
    fname = os.path.join(root, "data", "table.csv")
    with open(fname, "w") as fp:
        fp.write("a,b,c\n" * 5000)
    ref = _track(fname)
    result = push_file(
        fname, "data/table.csv", ref, config, root, timestamp=TIMESTAMP)
    ref.update(result.ref_updates)
    # Replace stored blob with something zstd can't read
    fblob = os.path.join(
        str(tmp_path), "remote", *ref["remote_key"].split("/"))
    with open(fblob, "wb") as fp:
        fp.write(b"not zstd at all")
    os.remove(fname)
    # Failure is a validation result
    result = pull_file(ref, fname, config, root)
    assert not result.success
    assert result.error_category == "validation"
    # No partial or temp files
    assert os.listdir(os.path.join(root, "data")) == []


def test_transfer11_os_error_category(tmp_path):
    # Layout; a folder where the file should be
    root, config = _setup(tmp_path)
    fname = os.path.join(root, "data", "big.json")
    os.mkdir(fname)
    ref = new_bref("sha256:" + "0" * 64, 10)
    # *.json is always compressed, so reading fails
    result = push_file(fname, "data/big.json", ref, config, root)
    assert not result.success
    assert result.error_category == "validation"
    assert "Errno" not in result.error
    assert "data/big.json" in result.error
