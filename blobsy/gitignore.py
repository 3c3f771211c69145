r"""
``gitignore``: Managed block in ``.gitignore`` files
======================================================

Tracked large files must be ignored by git (only their ``.bref`` files
are committed). Rather than appending lines to ``.gitignore`` forever,
:mod:`blobsy` keeps its entries in a single marked block:

.. code-block:: none

    # user content stays untouched
    *.log
    # >>> blobsy-managed (do not edit) >>>
    model.bin
    weights.pt
    # <<< blobsy-managed <<<

Entries within the block are sorted and de-duplicated on every write,
so adding or removing the same entry twice has no further effect.
"""

# Standard library
import os

# Local imports
from .paths import atomic_write


# Block markers
BLOCK_START = "# >>> blobsy-managed (do not edit) >>>"
BLOCK_END = "# <<< blobsy-managed <<<"
# File name
GITIGNORE = ".gitignore"


def add_gitignore_entry(fdir: str, name: str):
    r"""Add *name* to the managed block of ``.gitignore`` in *fdir*

    :Call:
        >>> add_gitignore_entry(fdir, name)
    :Inputs:
        *fdir*: :class:`str`
            Folder containing (or to contain) ``.gitignore``
        *name*: :class:`str`
            Entry relative to *fdir*, usually a file's base name
    """
    # File name
    fname = os.path.join(fdir, GITIGNORE)
    # Current entries
    entries = read_managed_block(fname)
    # Add
    if name not in entries:
        entries.append(name)
    # Write
    write_managed_block(fname, entries)


def remove_gitignore_entry(fdir: str, name: str):
    r"""Remove *name* from the managed block of ``.gitignore`` in *fdir*

    :Call:
        >>> remove_gitignore_entry(fdir, name)
    """
    # File name
    fname = os.path.join(fdir, GITIGNORE)
    # Nothing to do if no file
    if not os.path.isfile(fname):
        return
    # Current entries
    entries = read_managed_block(fname)
    # Write filtered list
    write_managed_block(fname, [e for e in entries if e != name])


def read_managed_block(fname: str) -> list:
    r"""Read entries from the managed block of a ``.gitignore`` file

    :Call:
        >>> entries = read_managed_block(fname)
    :Inputs:
        *fname*: :class:`str`
            Name of ``.gitignore`` file
    :Outputs:
        *entries*: :class:`list`\ [:class:`str`]
            Non-comment lines between the markers
    """
    # No file -> no entries
    if not os.path.isfile(fname):
        return []
    # Initialize
    entries = []
    inblock = False
    # Read lines
    with open(fname, "r", encoding="utf-8") as fp:
        for line in fp:
            # Strip whitespace
            txt = line.strip()
            # Check markers
            if txt == BLOCK_START:
                inblock = True
            elif txt == BLOCK_END:
                inblock = False
            elif inblock and txt and not txt.startswith("#"):
                entries.append(txt)
    # Output
    return entries


def write_managed_block(fname: str, entries):
    r"""Replace (or append) the managed block in a ``.gitignore`` file

    Content outside the block is preserved exactly.

    :Call:
        >>> write_managed_block(fname, entries)
    :Inputs:
        *fname*: :class:`str`
            Name of ``.gitignore`` file
        *entries*: :class:`list`\ [:class:`str`]
            Entries for block; sorted and de-duplicated before writing
    """
    # Sort and de-duplicate
    entries = sorted(set(entries))
    # Read existing content
    if os.path.isfile(fname):
        with open(fname, "r", encoding="utf-8") as fp:
            content = fp.read()
    else:
        content = ""
    # New block
    block = "\n".join([BLOCK_START] + entries + [BLOCK_END])
    # Check for existing block
    i0 = content.find(BLOCK_START)
    if i0 >= 0:
        # Replace it
        i1 = content.find(BLOCK_END, i0)
        after = content[i1 + len(BLOCK_END):] if i1 >= 0 else "\n"
        content = content[:i0] + block + after
    else:
        # Append it
        sep = "\n" if content and not content.endswith("\n") else ""
        content = content + sep + block + "\n"
    # Write
    atomic_write(fname, content)
