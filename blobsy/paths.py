r"""
``paths``: File names, tree walks, and atomic writes
======================================================

Helpers shared by the other :mod:`blobsy` modules for converting
between working-directory, absolute, and repo-relative paths, naming
``.bref`` pointer files, walking folders for tracked or trackable files,
and replacing files atomically.
"""

# Standard library
import os
import secrets
import shutil
import tempfile

# Local imports
from .rules import matches_glob_list


# Extension for pointer records
BREF_EXT = ".bref"
# Folder for machine-local state
BLOBSY_DIR = ".blobsy"


# Get pointer file name
def bref_path(fname: str) -> str:
    r"""Get name of ``.bref`` pointer file for a large file

    :Call:
        >>> fbref = bref_path(fname)
    :Inputs:
        *fname*: :class:`str`
            Name of large file (or of the ``.bref`` file itself)
    :Outputs:
        *fbref*: :class:`str`
            Name of pointer file, *fname* with ``.bref`` appended
    """
    return strip_bref_ext(fname) + BREF_EXT


def strip_bref_ext(fname: str) -> str:
    # Remove .bref if present
    if fname.endswith(BREF_EXT):
        return fname[:-len(BREF_EXT)]
    return fname


def normalize_path(fname: str) -> str:
    # Normalize and always use POSIX separators
    return os.path.normpath(fname).replace(os.sep, "/")


def to_repo_relative(fname: str, repo_root: str) -> str:
    r"""Convert a path to repo-relative form with POSIX separators

    :Call:
        >>> frel = to_repo_relative(fname, repo_root)
    :Inputs:
        *fname*: :class:`str`
            Absolute path or path relative to current directory
        *repo_root*: :class:`str`
            Absolute path to top level of working repo
    :Outputs:
        *frel*: :class:`str`
            Path relative to *repo_root*
    """
    # Absolutize relative to current folder
    fabs = os.path.abspath(fname)
    # Resolve symlinks on both sides (e.g. /tmp on macOS)
    frel = os.path.relpath(
        os.path.realpath(fabs), os.path.realpath(repo_root))
    # Output
    return normalize_path(frel)


def is_within(fname: str, fdir: str) -> bool:
    # Check if *fname* is *fdir* or inside it
    fname = os.path.realpath(fname)
    fdir = os.path.realpath(fdir)
    return fname == fdir or fname.startswith(fdir.rstrip(os.sep) + os.sep)


def ensure_dir(fdir: str):
    # Create folder and parents
    if fdir:
        os.makedirs(fdir, exist_ok=True)


# Write a file atomically
def atomic_write(fname: str, content, mode: int = None):
    r"""Write text or bytes to a file using temp file + rename

    Readers never see a partially written file; on any error the temp
    file is removed and *fname* is unchanged.

    :Call:
        >>> atomic_write(fname, content)
    :Inputs:
        *fname*: :class:`str`
            Name of file to write
        *content*: :class:`str` | :class:`bytes`
            Contents; text is encoded as UTF-8
    """
    # Encode text
    if isinstance(content, str):
        content = content.encode("utf-8")
    # Folder containing file
    fdir = os.path.dirname(os.path.abspath(fname))
    ensure_dir(fdir)
    # Create temp file in the same folder so rename is atomic
    fd, ftmp = tempfile.mkstemp(
        dir=fdir, prefix=f".{os.path.basename(fname)}.", suffix=".tmp")
    try:
        # Write contents
        with os.fdopen(fd, "wb") as fp:
            fp.write(content)
        # Set permissions if requested
        if mode is not None:
            os.chmod(ftmp, mode)
        # Move into place
        os.replace(ftmp, fname)
    except BaseException:
        # Clean up temp file
        if os.path.exists(ftmp):
            os.remove(ftmp)
        raise


def remove_if_exists(fname: str):
    # Delete a file, ignoring only "not found"
    try:
        os.remove(fname)
    except FileNotFoundError:
        pass


# Find pointer files
def find_bref_files(fdir: str, repo_root: str) -> list:
    r"""Find all tracked files (by their ``.bref`` files) in a folder

    :Call:
        >>> frels = find_bref_files(fdir, repo_root)
    :Inputs:
        *fdir*: :class:`str`
            Folder to search recursively
        *repo_root*: :class:`str`
            Top level of working repo
    :Outputs:
        *frels*: :class:`list`\ [:class:`str`]
            Sorted repo-relative names of tracked files (w/o ``.bref``)
    """
    # Initialize
    frels = []
    # Walk the tree
    for fname in _walk(fdir, None):
        # Check for pointer files
        if fname.endswith(BREF_EXT):
            frels.append(to_repo_relative(strip_bref_ext(fname), repo_root))
    # Output
    return sorted(frels)


def find_trackable_files(fdir: str, ignore=None) -> list:
    r"""Find files in a folder that could be tracked

    Hidden files and folders, existing ``.bref`` files, and anything
    matching *ignore* are skipped.

    :Call:
        >>> fnames = find_trackable_files(fdir, ignore=None)
    :Inputs:
        *fdir*: :class:`str`
            Folder to search recursively
        *ignore*: {``None``} | :class:`list`\ [:class:`str`]
            Glob patterns to skip, tested relative to *fdir*
    :Outputs:
        *fnames*: :class:`list`\ [:class:`str`]
            Sorted full paths of candidate files
    """
    # Initialize
    fnames = []
    # Walk the tree
    for fname in _walk(fdir, ignore):
        # Skip pointer files
        if fname.endswith(BREF_EXT):
            continue
        fnames.append(fname)
    # Output
    return sorted(fnames)


def _walk(fdir: str, ignore):
    # Walk a tree, skipping hidden entries and ignored names
    for root, dirs, files in os.walk(fdir):
        # Prune hidden and ignored folders in place
        dirs[:] = sorted(
            d for d in dirs
            if not d.startswith(".") and
            not _is_ignored(os.path.join(root, d), fdir, ignore, True))
        # Loop through files
        for fj in sorted(files):
            # Skip hidden files
            if fj.startswith("."):
                continue
            # Full path
            fname = os.path.join(root, fj)
            # Check ignore patterns
            if _is_ignored(fname, fdir, ignore, False):
                continue
            yield fname


def _is_ignored(fname: str, fdir: str, ignore, isdir: bool) -> bool:
    # Nothing to check
    if not ignore:
        return False
    # Path relative to walk root
    frel = normalize_path(os.path.relpath(fname, fdir))
    # Folders also match patterns like "build/"
    if isdir and matches_glob_list(frel + "/", ignore):
        return True
    return matches_glob_list(frel, ignore)


def trunc8_fname(fname: str, n: int) -> str:
    r"""Truncate a long file name for status lines

    :Call:
        >>> fshort = trunc8_fname(fname, n)
    :Inputs:
        *fname*: :class:`str`
            File name
        *n*: :class:`int`
            Number of characters reserved for the rest of the line
    :Outputs:
        *fshort*: :class:`str`
            *fname* or ``"..."`` plus its tail, fitting the terminal
    """
    # Width of terminal
    twidth = shutil.get_terminal_size().columns
    # Available width
    maxlen = max(twidth - n, 10)
    # Check length
    if len(fname) <= maxlen:
        return fname
    # Truncate
    return "..." + fname[-(maxlen - 3):]


def genr8_temp_path(fname: str, tag: str, suffix: str = "") -> str:
    r"""Create a unique temporary name next to *fname*

    :Call:
        >>> ftmp = genr8_temp_path(fname, tag, suffix="")
    :Inputs:
        *fname*: :class:`str`
            Final file name
        *tag*: :class:`str`
            Label, e.g. ``"pull"``
        *suffix*: {``""``} | :class:`str`
            Extra suffix, e.g. ``".zst"``
    :Outputs:
        *ftmp*: :class:`str`
            ``<fname>.blobsy-<tag>-<16 hex><suffix>`` in same folder
    """
    return f"{fname}.blobsy-{tag}-{secrets.token_hex(8)}{suffix}"
