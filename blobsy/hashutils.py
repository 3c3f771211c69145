r"""
``hashutils``: Content hashes for large files
==============================================

Compute the SHA-256 content hash of tracked files. Hashes are always
streamed in fixed-size chunks so memory use does not depend on file
size, and are stored in the prefixed form ``sha256:<hex>``.
"""

# Standard library
import hashlib
import os
import re

# Local imports
from .blobsyerror import BlobsyFileNotFoundError, BlobsyValidationError


# Prefix for content hashes
HASH_PREFIX = "sha256:"
# Chunk size for streaming reads
HASH_CHUNK_SIZE = 64 * 1024
# Valid prefixed hash
REGEX_HASH = re.compile(r"sha256:[0-9a-f]{64}")


# Hash a file
def compute_hash(fname: str) -> str:
    r"""Calculate prefixed SHA-256 hash of a file's bytes

    :Call:
        >>> fhash = compute_hash(fname)
    :Inputs:
        *fname*: :class:`str`
            Name of file to hash
    :Outputs:
        *fhash*: :class:`str`
            Hash in the form ``"sha256:<64 lowercase hex>"``
    :Raises:
        :class:`BlobsyFileNotFoundError` if *fname* does not exist
    """
    # Check if file exists
    if not os.path.isfile(fname):
        raise BlobsyFileNotFoundError(f"Can't hash '{fname}'; no such file")
    # Stream the file
    with open(fname, "rb") as fp:
        return hash_stream(fp)


def hash_stream(fp) -> str:
    r"""Calculate prefixed SHA-256 hash of an open binary stream

    :Call:
        >>> fhash = hash_stream(fp)
    :Inputs:
        *fp*: :class:`io.BufferedReader`
            Stream opened in binary mode
    :Outputs:
        *fhash*: :class:`str`
            Hash in the form ``"sha256:<hex>"``
    """
    # Initialize hasher
    obj = hashlib.sha256()
    # Read in chunks
    for chunk in iter(lambda: fp.read(HASH_CHUNK_SIZE), b""):
        obj.update(chunk)
    # Output
    return format_hash(obj.hexdigest())


def hash_string(txt: str) -> str:
    # Plain hex digest of UTF-8 text (not prefixed)
    return hashlib.sha256(txt.encode("utf-8")).hexdigest()


def format_hash(hexhash: str) -> str:
    return HASH_PREFIX + hexhash


def parse_hash(fhash: str) -> str:
    r"""Get hex digest from a prefixed hash

    :Call:
        >>> hexhash = parse_hash(fhash)
    :Inputs:
        *fhash*: :class:`str`
            Hash like ``"sha256:abc..."``
    :Outputs:
        *hexhash*: :class:`str`
            Hex portion only
    """
    # Check prefix
    if not isinstance(fhash, str) or not fhash.startswith(HASH_PREFIX):
        raise BlobsyValidationError(
            f"Invalid hash format '{fhash}'; expected '{HASH_PREFIX}<hex>'")
    # Strip it
    return fhash[len(HASH_PREFIX):]


def is_valid_hash(fhash) -> bool:
    return isinstance(fhash, str) and REGEX_HASH.fullmatch(fhash) is not None


def verify_hash(fname: str, expected: str):
    r"""Check that a file has an expected hash

    :Call:
        >>> verify_hash(fname, expected)
    :Inputs:
        *fname*: :class:`str`
            Name of file to check
        *expected*: :class:`str`
            Expected prefixed hash
    :Raises:
        :class:`BlobsyValidationError` if hashes differ
    """
    # Calculate actual hash
    actual = compute_hash(fname)
    # Compare
    if actual != expected:
        raise BlobsyValidationError(
            f"Hash mismatch: expected {expected}, got {actual}",
            suggestions=[
                "The remote blob may be corrupted; "
                "try pushing again from a machine with a good copy"])
