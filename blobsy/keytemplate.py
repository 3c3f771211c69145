r"""
``keytemplate``: Remote storage keys from templates
=====================================================

This module evaluates key templates such as

.. code-block:: none

    {iso_date_secs}-{content_sha256_short}/{repo_path}{compress_suffix}

into the remote object key under which a blob is stored. Recognized
placeholders are

    ========================  ==========================================
    Placeholder               Value
    ========================  ==========================================
    ``{iso_date_secs}``       UTC time as ``YYYYMMDDTHHMMSSZ``
    ``{content_sha256}``      Full 64-char hex hash
    ``{content_sha256_short}``  First 12 hex chars of hash
    ``{repo_path}``           Repo-relative path (POSIX separators)
    ``{filename}``            Base name of *repo_path*
    ``{dirname}``             Parent of *repo_path* with trailing ``/``
    ``{compress_suffix}``     ``.zst``, ``.gz``, ``.br``, or empty
    ========================  ==========================================

Unknown placeholders are left in the key as-is and a warning is logged.
"""

# Standard library
import logging
import posixpath
import re
from datetime import datetime, timezone

# Local imports
from .hashutils import parse_hash


# Default template
DEFAULT_KEY_TEMPLATE = (
    "{iso_date_secs}-{content_sha256_short}/{repo_path}{compress_suffix}")
# Length of short hash
SHORT_HASH_LENGTH = 12
# Suffix for each compression algorithm
COMPRESS_SUFFIXES = {
    "zstd": ".zst",
    "gzip": ".gz",
    "brotli": ".br",
}
# Placeholder pattern
REGEX_PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_]+)\}")
# Patterns used to sanitize key components
REGEX_WHITESPACE = re.compile(r"\s+")
REGEX_UNSAFE_KEY_CHARS = re.compile(r"[\\{}^`\[\]#|~<>\x00-\x1f\x7f-\x9f]")
REGEX_SEP_RUN = re.compile(r"[_-]{2,}")
REGEX_LEADING_DOTS = re.compile(r"(^|/)\.+")
REGEX_TRAILING_DOTS = re.compile(r"\.+(/|$)")

# Logger
LOG = logging.getLogger(__name__)


# Evaluate template
def evaluate_template(
        template: str,
        fhash: str,
        repo_path: str,
        compress_suffix: str = "",
        timestamp=None) -> str:
    r"""Expand a key template for one file

    :Call:
        >>> key = evaluate_template(template, fhash, repo_path, **kw)
    :Inputs:
        *template*: :class:`str`
            Key template with ``{name}`` placeholders
        *fhash*: :class:`str`
            Prefixed content hash of the original (uncompressed) file
        *repo_path*: :class:`str`
            Path relative to repo root, POSIX separators
        *compress_suffix*: {``""``} | :class:`str`
            Suffix added for compressed blobs
        *timestamp*: {``None``} | :class:`datetime.datetime`
            Time to use for ``{iso_date_secs}``; default is now
    :Outputs:
        *key*: :class:`str`
            Remote key (relative to backend prefix)
    """
    # Default time
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    # Get hex hash
    hexhash = parse_hash(fhash)
    # Normalize path
    repo_path = repo_path.replace("\\", "/")
    # Parent folder, with trailing slash unless at top level
    dirname = posixpath.dirname(repo_path)
    dirname = f"{dirname}/" if dirname else ""
    # Values for each known variable
    values = {
        "iso_date_secs": format_iso_date_secs(timestamp),
        "content_sha256": hexhash,
        "content_sha256_short": hexhash[:SHORT_HASH_LENGTH],
        "repo_path": sanitize_key_component(repo_path),
        "filename": sanitize_key_component(posixpath.basename(repo_path)),
        "dirname": sanitize_key_component(dirname),
        "compress_suffix": compress_suffix,
    }

    # Substitute each match
    def _sub(m):
        # Variable name
        name = m.group(1)
        # Check if known
        if name in values:
            return values[name]
        # Leave unknown names literally
        LOG.warning("Unknown key template variable '{%s}' left as-is", name)
        return m.group(0)

    # Expand
    return REGEX_PLACEHOLDER.sub(_sub, template)


def format_iso_date_secs(dt: datetime) -> str:
    r"""Format a time as compact UTC ISO 8601 (``20260221T153045Z``)

    Naive datetimes are assumed to be UTC already.
    """
    # Convert to UTC
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    # Format
    return dt.strftime("%Y%m%dT%H%M%SZ")


def get_compress_suffix(algorithm) -> str:
    # Empty for "none" or missing
    return COMPRESS_SUFFIXES.get(algorithm, "")


def sanitize_key_component(txt: str) -> str:
    r"""Make a path or file name safe for use in an object key

    :Call:
        >>> key = sanitize_key_component(txt)
    :Inputs:
        *txt*: :class:`str`
            Path or file name
    :Outputs:
        *key*: :class:`str`
            Text with whitespace runs replaced by ``-``, characters
            that are unsafe in S3 keys replaced by ``_``, runs of ``_``
            and ``-`` collapsed, and leading/trailing dots stripped from
            each path segment
    """
    # Whitespace runs -> single hyphen
    txt = REGEX_WHITESPACE.sub("-", txt)
    # Unsafe characters
    txt = REGEX_UNSAFE_KEY_CHARS.sub("_", txt)
    # Collapse runs of separators
    txt = REGEX_SEP_RUN.sub("_", txt)
    # Leading and trailing dots in each segment
    txt = REGEX_LEADING_DOTS.sub(r"\1", txt)
    return REGEX_TRAILING_DOTS.sub(r"\1", txt)
