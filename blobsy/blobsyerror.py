r"""
``blobsyerror``: Errors for :mod:`blobsy` modules
===========================================================

This module provides a collection of error types relevant to the
:mod:`blobsy` package. They are essentially the same as standard error
types such as :class:`KeyError`, :class:`ValueError`, etc. but with an
extra parent of :class:`BlobsyError` to enable catching all errors
specifically raised by this package.

Every :class:`BlobsyError` carries a *category* from a fixed taxonomy,
an *exit_code* for the command-line interface, and an ordered list of
*suggestions* shown to the user below the message.
"""

# Standard library
import errno
import os


# Fixed set of error categories
ERROR_CATEGORIES = (
    "authentication",
    "not_found",
    "network",
    "permission",
    "quota",
    "storage_full",
    "validation",
    "conflict",
    "unknown",
)

# Exit codes
IERR_OK = 0
IERR_FAIL = 1
IERR_CONFLICT = 2

# Substrings of tool output and the category they indicate, in order
_STDERR_CATEGORIES = (
    (("access denied", "forbidden", "401", "403"), "authentication"),
    (("not found", "404", "no such"), "not_found"),
    (("network", "connection", "timeout", "timed out"), "network"),
    (("permission", "denied"), "permission"),
    (("quota", "limit"), "quota"),
    (("disk full", "no space"), "storage_full"),
)


# Basic error family
class BlobsyError(Exception):
    r"""Parent error class for :mod:`blobsy` errors

    :Call:
        >>> err = BlobsyError(msg, category=None, suggestions=None)
    :Inputs:
        *msg*: :class:`str`
            Human-readable message
        *category*: {``None``} | :class:`str`
            One of :data:`ERROR_CATEGORIES`; default from class
        *suggestions*: {``None``} | :class:`list`\ [:class:`str`]
            Ordered list of follow-up actions for the user
    """
    # Default category for this class
    category = "unknown"

    def __init__(self, msg="", category=None, suggestions=None):
        # Initialize with message only so str(err) is just *msg*
        Exception.__init__(self, msg)
        # Save message
        self.message = msg
        # Category (instance overrides class default)
        if category is not None:
            # Check it
            if category not in ERROR_CATEGORIES:
                raise ValueError("Unknown error category '%s'" % category)
            self.category = category
        # Suggestions
        self.suggestions = list(suggestions or [])

    def __str__(self) -> str:
        return self.message

    @property
    def exit_code(self) -> int:
        # Conflicts are distinguishable from ordinary failures
        if self.category == "conflict":
            return IERR_CONFLICT
        return IERR_FAIL


class BlobsyValidationError(ValueError, BlobsyError):
    r"""Error for bad configuration, bad input, or failed verification

    Inherits from :class:`ValueError` and :class:`BlobsyError`
    """
    category = "validation"

    def __init__(self, msg="", category=None, suggestions=None):
        BlobsyError.__init__(self, msg, category, suggestions)


class BlobsyFileNotFoundError(FileNotFoundError, BlobsyError):
    r"""Error for missing files, either local or remote

    Inherits from :class:`FileNotFoundError` and :class:`BlobsyError`
    """
    category = "not_found"

    def __init__(self, msg="", category=None, suggestions=None):
        BlobsyError.__init__(self, msg, category, suggestions)


class BlobsyPermissionError(PermissionError, BlobsyError):
    r"""Error for filesystem or remote permission problems
    """
    category = "permission"

    def __init__(self, msg="", category=None, suggestions=None):
        BlobsyError.__init__(self, msg, category, suggestions)


class BlobsyConflictError(BlobsyError):
    r"""Error when local and tracked state disagree in a way that
    requires the user to choose (exit code 2)
    """
    category = "conflict"


class BlobsyTransferError(SystemError, BlobsyError):
    r"""Error from a backend transfer, categorized by cause

    Inherits from :class:`SystemError` and :class:`BlobsyError`
    """

    def __init__(self, msg="", category=None, suggestions=None):
        BlobsyError.__init__(self, msg, category, suggestions)


class BlobsyGitError(SystemError, BlobsyError):
    r"""Error from a ``git`` command with an unexpected exit code
    """

    def __init__(self, msg="", category=None, suggestions=None):
        BlobsyError.__init__(self, msg, category, suggestions)


class BlobsyKeyError(KeyError, BlobsyError):
    r"""Exception for missing key in :mod:`blobsy` config
    """
    category = "validation"

    def __init__(self, msg="", category=None, suggestions=None):
        BlobsyError.__init__(self, msg, category, suggestions)

    def __str__(self) -> str:
        return self.message


# Categorize text from an external tool
def categorize_error_text(text: str) -> str:
    r"""Guess error category from STDERR of an external command

    :Call:
        >>> category = categorize_error_text(text)
    :Inputs:
        *text*: :class:`str`
            Captured STDERR (or message) from external tool
    :Outputs:
        *category*: :class:`str`
            Category from :data:`ERROR_CATEGORIES`
    """
    # Case-insensitive search
    txt = (text or "").lower()
    # Loop through patterns in priority order
    for patterns, category in _STDERR_CATEGORIES:
        if any(pat in txt for pat in patterns):
            return category
    # Nothing recognized
    return "unknown"


# Translate OSError into the taxonomy
def wrap_os_error(err: OSError, what: str) -> BlobsyError:
    r"""Convert an :class:`OSError` into a categorized error

    :Call:
        >>> blobsy_err = wrap_os_error(err, what)
    :Inputs:
        *err*: :class:`OSError`
            Original error
        *what*: :class:`str`
            Short description of the failed action, for the message
    :Outputs:
        *blobsy_err*: :class:`BlobsyError`
            Categorized error (not raised)
    """
    # Pass through errors that are already categorized
    if isinstance(err, BlobsyError):
        return err
    # Reason without the raw errno
    reason = err.strerror or str(err)
    msg = f"{what}: {reason}"
    # Check codes
    if err.errno == errno.ENOENT:
        return BlobsyFileNotFoundError(msg)
    elif err.errno in (errno.EACCES, errno.EPERM):
        return BlobsyPermissionError(
            msg, suggestions=["Check file permissions"])
    elif err.errno in (errno.EISDIR, errno.ENOTDIR):
        return BlobsyValidationError(
            msg, suggestions=["Check that the path names a regular file"])
    elif err.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
        return BlobsyTransferError(
            msg, "storage_full", ["Free up disk space and retry"])
    # Fallback
    return BlobsyTransferError(msg, "unknown")


# Render error for terminal
def format_error(err: Exception) -> str:
    r"""Format an error message with its suggestions

    :Call:
        >>> txt = format_error(err)
    :Inputs:
        *err*: :class:`Exception`
            Any exception; suggestions shown for :class:`BlobsyError`
    :Outputs:
        *txt*: :class:`str`
            Multi-line message
    """
    # Message
    lines = [f"Error: {err}"]
    # Suggestions
    for suggestion in getattr(err, "suggestions", []):
        lines.append(f"  {suggestion}")
    # Output
    return "\n".join(lines)


def error_to_dict(err: Exception) -> dict:
    # Category of non-blobsy errors is unknown
    return {
        "error": str(err),
        "category": getattr(err, "category", "unknown"),
        "suggestions": list(getattr(err, "suggestions", [])),
    }


# Assert that file exists
def assert_isfile(fname: str):
    # Check for file
    if not os.path.isfile(fname):
        # Start message
        msg = "File '%s' does not exist" % fname
        # Check for absolute path
        if not os.path.isabs(fname):
            # Show working directory
            msg += "\n  relative to '%s'" % os.getcwd()
        raise BlobsyFileNotFoundError(msg)
