r"""
``bref``: Read and write ``.bref`` pointer records
====================================================

A pointer record is a small YAML file committed to git in place of a
large file. It looks like

.. code-block:: yaml

    # blobsy: large file stored outside git
    # Run: blobsy status | blobsy --help

    format: blobsy-bref/0.1
    hash: sha256:7d865e959b2466918c9863afca942d0fb89d7c9ac0c99bafc3749504ded97730
    size: 1048576
    remote_key: 20260221T153045Z-7d865e959b24/data/model.bin.zst
    compressed: zstd
    compressed_size: 524288

Fields are always written in the order above, and fields whose value is
``None`` are omitted. The ``format`` tag is versioned as
``blobsy-bref/MAJOR.MINOR``; a different *MAJOR* is refused while a
different *MINOR* is accepted.
"""

# Standard library
import os

# Third-party
import yaml

# Local imports
from .blobsyerror import (
    BlobsyFileNotFoundError,
    BlobsyPermissionError,
    BlobsyValidationError)
from .paths import atomic_write, strip_bref_ext


# Current format tag
BREF_FORMAT_PREFIX = "blobsy-bref/"
BREF_FORMAT = "blobsy-bref/0.1"
# Order of fields in file
BREF_FIELD_ORDER = (
    "format",
    "hash",
    "size",
    "remote_key",
    "compressed",
    "compressed_size",
)
# Fields cleared when content changes
BREF_REMOTE_FIELDS = (
    "remote_key",
    "compressed",
    "compressed_size",
)
# Header written at top of each file
BREF_COMMENT_HEADER = (
    "# blobsy: large file stored outside git\n"
    "# Run: blobsy status | blobsy --help\n"
    "\n")


# Create a new record
def new_bref(fhash: str, size: int) -> dict:
    r"""Create a pointer record for a never-pushed file

    :Call:
        >>> ref = new_bref(fhash, size)
    :Inputs:
        *fhash*: :class:`str`
            Prefixed content hash
        *size*: :class:`int`
            Size of original file in bytes
    :Outputs:
        *ref*: :class:`dict`
            Pointer record w/o remote fields
    """
    return {
        "format": BREF_FORMAT,
        "hash": fhash,
        "size": size,
    }


# Read pointer file
def read_bref(fname: str) -> dict:
    r"""Read and validate a ``.bref`` file

    :Call:
        >>> ref = read_bref(fname)
    :Inputs:
        *fname*: :class:`str`
            Name of ``.bref`` file
    :Outputs:
        *ref*: :class:`dict`
            Pointer record; optional fields present only if set
    :Raises:
        * :class:`BlobsyFileNotFoundError` if *fname* doesn't exist
        * :class:`BlobsyValidationError` if contents are invalid
    """
    # Read the file
    try:
        with open(fname, "r", encoding="utf-8") as fp:
            txt = fp.read()
    except FileNotFoundError:
        # Name of tracked file
        ftrack = os.path.basename(strip_bref_ext(fname))
        raise BlobsyFileNotFoundError(
            f"File not tracked: {ftrack}",
            suggestions=[f"Run: blobsy track {ftrack}"])
    except PermissionError:
        raise BlobsyPermissionError(
            f"Permission denied reading .bref file: {fname}",
            suggestions=[f"Check file permissions: chmod +r {fname}"])
    # Parse YAML
    try:
        data = yaml.safe_load(txt)
    except yaml.YAMLError:
        # Name of tracked file
        ftrack = os.path.basename(strip_bref_ext(fname))
        raise BlobsyValidationError(
            f"Invalid .bref file format: {fname}",
            suggestions=[
                "File may be corrupted. Regenerate with: "
                f"blobsy track {ftrack}"])
    # Check type
    if not isinstance(data, dict):
        raise BlobsyValidationError(
            f"Invalid .bref file (not a mapping): {fname}")
    # Check format
    fmt = data.get("format")
    if not isinstance(fmt, str):
        raise BlobsyValidationError(
            f"Missing or invalid 'format' field in .bref file: {fname}")
    validate_format_version(fmt, fname)
    # Check hash
    if not isinstance(data.get("hash"), str):
        raise BlobsyValidationError(
            f"Missing or invalid 'hash' field in .bref file: {fname}")
    # Check size
    if not _isint(data.get("size")):
        raise BlobsyValidationError(
            f"Missing or invalid 'size' field in .bref file: {fname}")
    # Required fields
    ref = {
        "format": fmt,
        "hash": data["hash"],
        "size": data["size"],
    }
    # Optional fields, ignored if wrong type
    if isinstance(data.get("remote_key"), str):
        ref["remote_key"] = data["remote_key"]
    if isinstance(data.get("compressed"), str):
        ref["compressed"] = data["compressed"]
    if _isint(data.get("compressed_size")):
        ref["compressed_size"] = data["compressed_size"]
    # Output
    return ref


# Write pointer file
def write_bref(fname: str, ref: dict):
    r"""Write a ``.bref`` file with header and fixed field order

    The file is written to a temporary name and renamed into place so
    an interrupted write never leaves a partial record.

    :Call:
        >>> write_bref(fname, ref)
    :Inputs:
        *fname*: :class:`str`
            Name of ``.bref`` file
        *ref*: :class:`dict`
            Pointer record
    """
    # Lines of YAML (one per field to guarantee order)
    lines = []
    # Loop through fields in order
    for key in BREF_FIELD_ORDER:
        # Get value
        val = ref.get(key)
        # Skip unset fields
        if val is None:
            continue
        # Dump one key at a time (handles quoting)
        lines.append(yaml.safe_dump(
            {key: val}, default_flow_style=False, width=float("inf")))
    # Write
    atomic_write(fname, BREF_COMMENT_HEADER + "".join(lines))


def validate_format_version(fmt: str, fname=None):
    r"""Check that a ``format`` tag is a supported version

    :Call:
        >>> validate_format_version(fmt, fname=None)
    :Inputs:
        *fmt*: :class:`str`
            Format tag like ``"blobsy-bref/0.1"``
        *fname*: {``None``} | :class:`str`
            File name for error messages
    :Raises:
        :class:`BlobsyValidationError` on wrong prefix or major version
    """
    # Location for messages
    loc = f" in {fname}" if fname else ""
    # Check prefix
    if not fmt.startswith(BREF_FORMAT_PREFIX):
        raise BlobsyValidationError(
            f"Unsupported .bref format: {fmt}{loc}",
            suggestions=[f"Expected format starting with "
                         f"'{BREF_FORMAT_PREFIX}'"])
    # Split version
    parts = fmt[len(BREF_FORMAT_PREFIX):].split(".")
    # Need MAJOR.MINOR
    if len(parts) != 2:
        raise BlobsyValidationError(f"Invalid format version: {fmt}{loc}")
    # Current major version
    cur_major = BREF_FORMAT[len(BREF_FORMAT_PREFIX):].split(".")[0]
    # Compare
    if not parts[0].isdigit() or int(parts[0]) != int(cur_major):
        raise BlobsyValidationError(
            f"Unsupported .bref major version: {fmt} "
            f"(supported: {BREF_FORMAT}){loc}",
            suggestions=["Upgrade blobsy to support this format version"])


def merge_ref_updates(ref: dict, updates: dict) -> dict:
    r"""Apply remote fields from a successful push to a record

    :Call:
        >>> newref = merge_ref_updates(ref, updates)
    :Inputs:
        *ref*: :class:`dict`
            Current pointer record
        *updates*: :class:`dict`
            Values for *remote_key*, *compressed*, *compressed_size*;
            ``None`` removes a field
    :Outputs:
        *newref*: :class:`dict`
            New record (*ref* is not modified)
    """
    # Copy
    newref = dict(ref)
    # Apply each update
    for key in BREF_REMOTE_FIELDS:
        # Only keys that were given
        if key not in updates:
            continue
        # Set or clear
        if updates[key] is None:
            newref.pop(key, None)
        else:
            newref[key] = updates[key]
    # Output
    return newref


def clear_remote_fields(ref: dict) -> dict:
    # New record as if never pushed
    return {k: v for k, v in ref.items() if k not in BREF_REMOTE_FIELDS}


def _isint(val) -> bool:
    return isinstance(val, int) and not isinstance(val, bool)
