# Standard library
import errno
import os

# Third-party
import pytest

# Local imports
from blobsy.blobsyerror import (
    BlobsyConflictError,
    BlobsyError,
    BlobsyFileNotFoundError,
    BlobsyKeyError,
    BlobsyPermissionError,
    BlobsyTransferError,
    BlobsyValidationError,
    assert_isfile,
    categorize_error_text,
    error_to_dict,
    format_error,
    wrap_os_error)


def test_error01_classes():
    # Categories and builtin parents
    err = BlobsyValidationError("bad")
    assert isinstance(err, ValueError)
    assert isinstance(err, BlobsyError)
    assert err.category == "validation"
    assert err.exit_code == 1
    assert isinstance(BlobsyFileNotFoundError("x"), FileNotFoundError)
    assert BlobsyFileNotFoundError("x").category == "not_found"
    assert BlobsyPermissionError("x").category == "permission"
    # Conflicts get their own exit code
    assert BlobsyConflictError("x").exit_code == 2
    # KeyError message isn't quoted
    assert str(BlobsyKeyError("No config setting 'a.b'")) == \
        "No config setting 'a.b'"
    # Instance category
    err = BlobsyTransferError("slow", "network", ["Retry"])
    assert err.category == "network"
    assert err.suggestions == ["Retry"]
    # Unknown category
    with pytest.raises(ValueError):
        BlobsyError("x", "weird")


@pytest.mark.parametrize("text,category", [
    ("An error occurred (AccessDenied): Access Denied", "authentication"),
    ("HTTP 403 Forbidden", "authentication"),
    ("fatal error: Not Found", "not_found"),
    ("Connection refused by endpoint", "network"),
    ("read timed out", "network"),
    ("Permission denied", "permission"),
    ("QuotaExceeded", "quota"),
    ("write failed: No space left on device", "storage_full"),
    ("", "unknown"),
    ("something odd", "unknown"),
])
def test_error02_categorize(text, category):
    assert categorize_error_text(text) == category


def test_error03_wrap():
    # Missing file
    err = wrap_os_error(
        FileNotFoundError(errno.ENOENT, "No such file or directory"),
        "Failed to read 'x.bin'")
    assert isinstance(err, BlobsyFileNotFoundError)
    assert str(err) == "Failed to read 'x.bin': No such file or directory"
    # Permission
    err = wrap_os_error(PermissionError(errno.EACCES, "denied"), "Write")
    assert err.category == "permission"
    # Disk full
    err = wrap_os_error(OSError(errno.ENOSPC, "No space"), "Write")
    assert err.category == "storage_full"
    # Other
    err = wrap_os_error(OSError(errno.EIO, "I/O error"), "Write")
    assert err.category == "unknown"
    # Folder where a file was expected
    err = wrap_os_error(
        IsADirectoryError(errno.EISDIR, "Is a directory"), "Read")
    assert err.category == "validation"
    assert "Errno" not in str(err)
    # Already categorized
    orig = BlobsyPermissionError("x")
    assert wrap_os_error(orig, "Write") is orig


def test_error04_format():
    # Message and suggestions
    err = BlobsyValidationError("Bad URL", suggestions=["Try A", "Try B"])
    assert format_error(err) == "Error: Bad URL\n  Try A\n  Try B"
    assert error_to_dict(err) == {
        "error": "Bad URL",
        "category": "validation",
        "suggestions": ["Try A", "Try B"],
    }
    # Non-blobsy error
    assert format_error(RuntimeError("boom")) == "Error: boom"
    assert error_to_dict(RuntimeError("boom"))["category"] == "unknown"


def test_error05_isfile(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    # Existing file passes
    (tmp_path / "a.bin").write_bytes(b"x")
    assert_isfile("a.bin")
    # Relative path mentions folder
    with pytest.raises(BlobsyFileNotFoundError) as excinfo:
        assert_isfile("b.bin")
    assert os.getcwd() in str(excinfo.value)
