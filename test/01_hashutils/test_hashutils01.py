# Standard library
import hashlib

# Third-party
import pytest

# Local imports
from blobsy.blobsyerror import (
    BlobsyFileNotFoundError,
    BlobsyValidationError)
from blobsy.hashutils import (
    compute_hash,
    format_hash,
    hash_string,
    is_valid_hash,
    parse_hash,
    verify_hash)


# Contents of test file
CONTENT = b"hello blobsy\n" * 1000


def test_hash01_determinism(tmp_path):
    # Two files with the same bytes
    f1 = tmp_path / "a.bin"
    f2 = tmp_path / "b.bin"
    f1.write_bytes(CONTENT)
    f2.write_bytes(CONTENT)
    # Hash both
    h1 = compute_hash(str(f1))
    h2 = compute_hash(str(f2))
    # Same hash, matching hashlib
    assert h1 == h2
    assert h1 == "sha256:" + hashlib.sha256(CONTENT).hexdigest()
    assert is_valid_hash(h1)
    # Different contents, different hash
    f2.write_bytes(CONTENT + b"x")
    assert compute_hash(str(f2)) != h1


def test_hash02_empty(tmp_path):
    # Empty file
    fname = tmp_path / "empty.txt"
    fname.write_bytes(b"")
    # Well-known hash of nothing
    assert compute_hash(str(fname)) == format_hash(
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855")


def test_hash03_missing(tmp_path):
    with pytest.raises(BlobsyFileNotFoundError):
        compute_hash(str(tmp_path / "nope.bin"))


def test_hash04_parse():
    # Hex part
    hexhash = "ab" * 32
    assert parse_hash("sha256:" + hexhash) == hexhash
    # Missing prefix
    with pytest.raises(BlobsyValidationError):
        parse_hash(hexhash)
    # Validity checks
    assert not is_valid_hash("sha256:xyz")
    assert not is_valid_hash(None)
    assert not is_valid_hash("sha256:" + hexhash + "\n")
    assert is_valid_hash("sha256:" + hexhash)
    # Plain hex for text
    assert len(hash_string("data/model.bin")) == 64


def test_hash05_verify(tmp_path):
    # Create file
    fname = tmp_path / "a.bin"
    fname.write_bytes(CONTENT)
    # Correct hash passes
    verify_hash(str(fname), compute_hash(str(fname)))
    # Wrong hash fails
    try:
        verify_hash(str(fname), "sha256:" + "0" * 64)
    except BlobsyValidationError as err:
        assert "mismatch" in str(err).lower()
    else:
        assert False
