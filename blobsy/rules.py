r"""
``rules``: Decide which files to externalize and compress
===========================================================

Both decisions use the same three-step rule with a policy mapping of
the form

.. code-block:: python

    {
        "min_size": "1mb",
        "always": ["*.bin", "*.parquet"],
        "never": ["*.md"],
    }

1.  If the file matches any ``never`` glob, the answer is ``False``
2.  Else if it matches any ``always`` glob, the answer is ``True``
3.  Else the answer is whether its size is at least ``min_size``

Globs are tested against both the base name and the full repo-relative
path, so ``*.bin`` matches ``data/model.bin`` while ``data/*`` only
matches files directly inside ``data/``.
"""

# Standard library
import functools
import posixpath
import re

# Local imports
from .blobsyerror import BlobsyValidationError


# Size units (binary multiples)
SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
}
# Size strings like "100kb" or "1.5 MB"
REGEX_SIZE = re.compile(r"^(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb)$", re.I)
# One visible path segment, and any number of them
REGEX_ANY_NAME = r"(?!\.)[^/]+"
REGEX_ANY_PATH = REGEX_ANY_NAME + "(?:/" + REGEX_ANY_NAME + ")*"


# Parse a size
def parse_size(size) -> int:
    r"""Convert a size setting to a number of bytes

    :Call:
        >>> nbytes = parse_size(size)
    :Inputs:
        *size*: :class:`int` | :class:`str`
            Byte count or string like ``"100kb"``, ``"1.5 MB"``
    :Outputs:
        *nbytes*: :class:`int`
            Number of bytes (fractions rounded down)
    :Raises:
        :class:`BlobsyValidationError` if *size* can't be parsed
    """
    # Check for integer (but not bool)
    if isinstance(size, int) and not isinstance(size, bool):
        return size
    # Otherwise must be a string
    if not isinstance(size, str):
        raise BlobsyValidationError(
            f"Invalid size: {size!r}; expected int or string like '1mb'")
    # Match pattern
    m = REGEX_SIZE.match(size.strip())
    # Check for match
    if m is None:
        raise BlobsyValidationError(
            f"Invalid size format: '{size}'",
            suggestions=["Use a number with a unit, e.g. '100kb' or '1mb'"])
    # Unpack
    num = float(m.group(1))
    unit = m.group(2).lower()
    # Output
    return int(num * SIZE_UNITS[unit])


def matches_glob_list(fname: str, patterns) -> bool:
    r"""Check if a path matches any glob, by base name or full path

    Globs are matched one path segment at a time: ``*`` and ``?`` never
    match ``/``, ``**`` matches any number of folders (including none),
    and names starting with ``.`` only match a pattern segment that also
    starts with ``.``.

    :Call:
        >>> q = matches_glob_list(fname, patterns)
    :Inputs:
        *fname*: :class:`str`
            Repo-relative path with POSIX separators
        *patterns*: :class:`list`\ [:class:`str`]
            Glob patterns
    :Outputs:
        *q*: ``True`` | ``False``
            Whether any pattern matches
    """
    # No patterns -> no match
    if not patterns:
        return False
    # Get base name
    fbase = posixpath.basename(fname)
    # Loop through patterns
    for pat in patterns:
        regex = compile_glob(pat)
        if regex.fullmatch(fbase) or regex.fullmatch(fname):
            return True
    # No match
    return False


@functools.lru_cache(maxsize=256)
def compile_glob(pat: str):
    r"""Convert a glob pattern to a compiled regular expression

    :Call:
        >>> regex = compile_glob(pat)
    :Inputs:
        *pat*: :class:`str`
            Glob using ``*``, ``?``, ``**``, ``[...]``, and ``{a,b}``
    :Outputs:
        *regex*: :class:`re.Pattern`
            Expression for use with :meth:`re.Pattern.fullmatch`
    """
    # Split into segments
    parts = pat.split("/")
    nparts = len(parts)
    # Translate one segment at a time
    txt = ""
    for i, part in enumerate(parts):
        # Check for final segment
        last = (i + 1 == nparts)
        if part == "**":
            if nparts == 1:
                # Whole path, any depth
                txt += REGEX_ANY_PATH
            elif last:
                # "dir/**" also matches "dir" itself
                txt = txt[:-1] + "(?:/" + REGEX_ANY_PATH + ")?"
            else:
                # Zero or more folders
                txt += "(?:" + REGEX_ANY_NAME + "/)*"
            continue
        # Hidden names need a pattern starting with "."
        if not part.startswith("."):
            txt += r"(?!\.)"
        txt += _translate_name(part)
        # Separator
        if not last:
            txt += "/"
    # Output
    return re.compile(txt)


def _translate_name(part: str) -> str:
    # Translate the wildcards of one path segment
    txt = ""
    i = 0
    n = len(part)
    while i < n:
        c = part[i]
        i += 1
        if c == "*":
            # A run like "a**b" is the same as "a*b"
            while i < n and part[i] == "*":
                i += 1
            txt += "[^/]*"
        elif c == "?":
            txt += "[^/]"
        elif c == "\\" and i < n:
            # Escaped literal
            txt += re.escape(part[i])
            i += 1
        elif c == "[" and "]" in part[i + 1:]:
            # Character class; "]" right after "[" is literal
            j = part.index("]", i + 1)
            body = part[i:j]
            i = j + 1
            # Negated class never matches "/"
            if body[0] in "!^":
                body = "^/" + body[1:]
            txt += "[" + body.replace("\\", "\\\\") + "]"
        elif c == "{" and "}" in part[i:]:
            # Alternatives
            j = part.index("}", i)
            alts = part[i:j].split(",")
            i = j + 1
            txt += "(?:" + "|".join(_translate_name(a) for a in alts) + ")"
        else:
            txt += re.escape(c)
    # Output
    return txt


def should_decide(fname: str, size: int, policy: dict) -> bool:
    # Rule 1: never
    if matches_glob_list(fname, policy.get("never", [])):
        return False
    # Rule 2: always
    if matches_glob_list(fname, policy.get("always", [])):
        return True
    # Rule 3: size threshold (inclusive)
    return size >= parse_size(policy.get("min_size", 0))


def should_externalize(fname: str, size: int, policy: dict) -> bool:
    r"""Decide whether a file in a tracked folder gets a pointer record

    Only applies when tracking a directory; explicitly named files are
    always externalized.

    :Call:
        >>> q = should_externalize(fname, size, policy)
    :Inputs:
        *fname*: :class:`str`
            Repo-relative path
        *size*: :class:`int`
            File size in bytes
        *policy*: :class:`dict`
            Externalize policy with *min_size*, *always*, *never*
    :Outputs:
        *q*: ``True`` | ``False``
            Whether to externalize
    """
    return should_decide(fname, size, policy)


def should_compress(fname: str, size: int, policy: dict) -> bool:
    r"""Decide whether a blob should be compressed before upload

    :Call:
        >>> q = should_compress(fname, size, policy)
    :Inputs:
        *fname*: :class:`str`
            Repo-relative path
        *size*: :class:`int`
            File size in bytes
        *policy*: :class:`dict`
            Compress policy with *algorithm*, *min_size*, *always*,
            and *never*
    :Outputs:
        *q*: ``True`` | ``False``
            Whether to compress
    """
    # Compression disabled
    if policy.get("algorithm", "none") == "none":
        return False
    # Shared rule
    return should_decide(fname, size, policy)


def filter_files_for_externalization(files, policy: dict, ignore) -> list:
    r"""Mark which files in a directory scan to externalize

    :Call:
        >>> marked = filter_files_for_externalization(files, policy, ignore)
    :Inputs:
        *files*: :class:`list`\ [:class:`tuple`]
            List of ``(path, size)`` pairs
        *policy*: :class:`dict`
            Externalize policy
        *ignore*: :class:`list`\ [:class:`str`]
            Glob patterns for files to skip entirely
    :Outputs:
        *marked*: :class:`list`\ [:class:`tuple`]
            List of ``(path, size, externalize)`` for non-ignored files
    """
    # Initialize output
    marked = []
    # Loop through files
    for fname, size in files:
        # Skip ignored files
        if matches_glob_list(fname, ignore):
            continue
        # Save decision
        marked.append((fname, size, should_externalize(fname, size, policy)))
    # Output
    return marked
