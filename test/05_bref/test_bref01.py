# Third-party
import pytest

# Local imports
from blobsy.blobsyerror import (
    BlobsyFileNotFoundError,
    BlobsyValidationError)
from blobsy.bref import (
    BREF_COMMENT_HEADER,
    BREF_FORMAT,
    clear_remote_fields,
    merge_ref_updates,
    new_bref,
    read_bref,
    validate_format_version,
    write_bref)


# Sample hash
FHASH = "sha256:" + "ab" * 32


def test_bref01_roundtrip(tmp_path):
    # Full record
    ref = new_bref(FHASH, 1234)
    ref = merge_ref_updates(ref, {
        "remote_key": "20260221T153045Z-abababababab/data/x.csv.zst",
        "compressed": "zstd",
        "compressed_size": 99,
    })
    # Write
    fbref = tmp_path / "x.csv.bref"
    write_bref(str(fbref), ref)
    # Read back
    assert read_bref(str(fbref)) == ref
    # Header and field order
    txt = fbref.read_text()
    assert txt.startswith(BREF_COMMENT_HEADER)
    keys = [
        line.split(":")[0] for line in txt.splitlines()
        if line and not line.startswith("#")
    ]
    assert keys == [
        "format", "hash", "size", "remote_key", "compressed",
        "compressed_size"]


def test_bref02_minimal(tmp_path):
    # Never-pushed record has only three fields
    fbref = tmp_path / "a.bin.bref"
    write_bref(str(fbref), new_bref(FHASH, 0))
    ref = read_bref(str(fbref))
    assert ref == {"format": BREF_FORMAT, "hash": FHASH, "size": 0}
    assert "remote_key" not in fbref.read_text()


def test_bref03_versions():
    # Same major, any minor
    validate_format_version("blobsy-bref/0.1")
    validate_format_version("blobsy-bref/0.9")
    # Other major
    with pytest.raises(BlobsyValidationError):
        validate_format_version("blobsy-bref/1.0")
    # Other namespace
    with pytest.raises(BlobsyValidationError):
        validate_format_version("git-lfs/0.1")
    # Malformed
    with pytest.raises(BlobsyValidationError):
        validate_format_version("blobsy-bref/0")


def test_bref04_invalid(tmp_path):
    # Missing file
    with pytest.raises(BlobsyFileNotFoundError):
        read_bref(str(tmp_path / "nope.bin.bref"))
    # Not YAML mapping
    fbref = tmp_path / "bad.bin.bref"
    fbref.write_text("- just\n- a list\n")
    with pytest.raises(BlobsyValidationError):
        read_bref(str(fbref))
    # Missing hash
    fbref.write_text(f"format: {BREF_FORMAT}\nsize: 3\n")
    with pytest.raises(BlobsyValidationError):
        read_bref(str(fbref))
    # Bool is not a size
    fbref.write_text(f"format: {BREF_FORMAT}\nhash: {FHASH}\nsize: true\n")
    with pytest.raises(BlobsyValidationError):
        read_bref(str(fbref))


def test_bref05_updates():
    # Pushed record
    ref = merge_ref_updates(new_bref(FHASH, 10), {
        "remote_key": "k",
        "compressed": "gzip",
        "compressed_size": 5,
    })
    # Push without compression removes old compression fields
    ref2 = merge_ref_updates(ref, {
        "remote_key": "k2",
        "compressed": None,
        "compressed_size": None,
    })
    assert ref2 == {
        "format": BREF_FORMAT, "hash": FHASH, "size": 10,
        "remote_key": "k2"}
    # Original unchanged
    assert ref["compressed"] == "gzip"
    # Clear remote fields
    assert clear_remote_fields(ref) == new_bref(FHASH, 10)
