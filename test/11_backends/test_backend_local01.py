# Standard library
import os

# Third-party
import pytest

# Local imports
from blobsy.backend_local import LocalBackend
from blobsy.blobsyerror import BlobsyFileNotFoundError, BlobsyValidationError
from blobsy.hashutils import compute_hash


def test_local01_roundtrip(tmp_path):
    # Layout
    remote = tmp_path / "remote"
    remote.mkdir()
    fsrc = tmp_path / "model.bin"
    fsrc.write_bytes(b"weights" * 100)
    backend = LocalBackend(str(remote))
    # Push into nested key
    key = "20260221T153045Z-0123456789ab/model.bin"
    backend.push(str(fsrc), key)
    assert (remote / "20260221T153045Z-0123456789ab" / "model.bin").is_file()
    assert backend.exists(key)
    assert not backend.exists("other/model.bin")
    # Pull with verification
    fdst = tmp_path / "out" / "model.bin"
    backend.pull(key, str(fdst), compute_hash(str(fsrc)))
    assert fdst.read_bytes() == fsrc.read_bytes()
    # No temp files left behind
    assert os.listdir(tmp_path / "out") == ["model.bin"]
    # Delete twice
    backend.delete(key)
    backend.delete(key)
    assert not backend.exists(key)
    # Health
    backend.health_check()


def test_local02_mismatch(tmp_path):
    # Layout
    remote = tmp_path / "remote"
    remote.mkdir()
    fsrc = tmp_path / "a.bin"
    fsrc.write_bytes(b"remote contents")
    backend = LocalBackend(str(remote))
    backend.push(str(fsrc), "k/a.bin")
    # Existing local file
    fdst = tmp_path / "dst.bin"
    fdst.write_bytes(b"original")
    # Wrong hash
    with pytest.raises(BlobsyValidationError):
        backend.pull("k/a.bin", str(fdst), "sha256:" + "0" * 64)
    # Destination untouched, temp file removed
    assert fdst.read_bytes() == b"original"
    assert sorted(os.listdir(tmp_path)) == ["a.bin", "dst.bin", "remote"]


def test_local03_missing(tmp_path):
    backend = LocalBackend(str(tmp_path / "nope"))
    # Missing blob
    with pytest.raises(BlobsyFileNotFoundError):
        backend.pull("k/a.bin", str(tmp_path / "a.bin"))
    # Missing local file
    with pytest.raises(BlobsyFileNotFoundError):
        backend.push(str(tmp_path / "a.bin"), "k/a.bin")
    # Missing folder
    with pytest.raises(BlobsyFileNotFoundError):
        backend.health_check()
