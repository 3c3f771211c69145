r"""
``statcache``: Machine-local cache of file hashes
===================================================

Hashing a multi-gigabyte file on every ``blobsy status`` would be slow,
so the hash of each tracked file is cached together with the file's
size and modification time (in nanoseconds). A cached hash is only
trusted when both still match exactly.

Entries are small JSON files sharded by the hash of the repo-relative
path::

    .blobsy/stat-cache/<ab>/<abcdef0123456789ab>.json

The cache is disposable. A missing, unreadable, or corrupt entry simply
means the file gets hashed again.
"""

# Standard library
import json
import logging
import os
import time

# Local imports
from .hashutils import compute_hash, hash_string
from .paths import BLOBSY_DIR, atomic_write, remove_if_exists


# Folder name within .blobsy/
STAT_CACHE_DIR = "stat-cache"
# Number of hex chars of path hash used for the file name
STAT_CACHE_HASH_LENGTH = 18
# Number of hex chars used for the shard folder
STAT_CACHE_SHARD_LENGTH = 2

# Logger
LOG = logging.getLogger(__name__)


def get_stat_cache_dir(repo_root: str) -> str:
    return os.path.join(repo_root, BLOBSY_DIR, STAT_CACHE_DIR)


def get_cache_entry_path(cache_dir: str, frel: str) -> str:
    r"""Get name of cache entry file for a repo-relative path

    :Call:
        >>> fentry = get_cache_entry_path(cache_dir, frel)
    :Inputs:
        *cache_dir*: :class:`str`
            Stat cache folder
        *frel*: :class:`str`
            Repo-relative path of tracked file
    :Outputs:
        *fentry*: :class:`str`
            Full path to JSON entry
    """
    # Hash the path
    phash = hash_string(frel)[:STAT_CACHE_HASH_LENGTH]
    # Shard folder
    shard = phash[:STAT_CACHE_SHARD_LENGTH]
    # Output
    return os.path.join(cache_dir, shard, f"{phash}.json")


def read_cache_entry(cache_dir: str, frel: str):
    r"""Read a cache entry, or ``None`` if missing or corrupt

    :Call:
        >>> entry = read_cache_entry(cache_dir, frel)
    :Inputs:
        *cache_dir*: :class:`str`
            Stat cache folder
        *frel*: :class:`str`
            Repo-relative path of tracked file
    :Outputs:
        *entry*: ``None`` | :class:`dict`
            Cache entry
    """
    # Get file name
    fentry = get_cache_entry_path(cache_dir, frel)
    # Check for file
    if not os.path.isfile(fentry):
        return None
    # Read it, treating any problem as a miss
    try:
        with open(fentry, "r", encoding="utf-8") as fp:
            entry = json.load(fp)
    except (OSError, ValueError) as err:
        LOG.debug("Ignoring unreadable stat cache entry %s: %s", fentry, err)
        return None
    # Must be a mapping
    if not isinstance(entry, dict):
        return None
    # Output
    return entry


def write_cache_entry(cache_dir: str, entry: dict):
    # Get file name
    fentry = get_cache_entry_path(cache_dir, entry["path"])
    # Write atomically
    atomic_write(fentry, json.dumps(entry, indent=2) + "\n")


def delete_cache_entry(cache_dir: str, frel: str):
    # Missing entry is fine
    remove_if_exists(get_cache_entry_path(cache_dir, frel))


def get_cached_hash(cache_dir: str, frel: str, fname: str):
    r"""Get cached hash if size and mtime of *fname* still match

    :Call:
        >>> fhash = get_cached_hash(cache_dir, frel, fname)
    :Inputs:
        *cache_dir*: :class:`str`
            Stat cache folder
        *frel*: :class:`str`
            Repo-relative path of tracked file
        *fname*: :class:`str`
            Actual path to file
    :Outputs:
        *fhash*: ``None`` | :class:`str`
            Cached hash, or ``None`` if stale or missing
    """
    # Read entry
    entry = read_cache_entry(cache_dir, frel)
    # Check for miss
    if entry is None:
        return None
    # Current stats
    try:
        st = os.stat(fname)
    except OSError:
        return None
    # Compare exactly
    if entry.get("size") == st.st_size and \
            entry.get("mtimeNs") == str(st.st_mtime_ns):
        return entry.get("hash")
    # Stale
    return None


def create_cache_entry(fname: str, frel: str, fhash: str) -> dict:
    # Stats of current file
    st = os.stat(fname)
    # Build entry
    return {
        "path": frel,
        "hash": fhash,
        "size": st.st_size,
        "mtimeNs": str(st.st_mtime_ns),
        "mtimeMs": st.st_mtime_ns / 1e6,
        "cachedAt": int(time.time() * 1000),
    }


def update_cache(cache_dir: str, frel: str, fname: str, fhash: str):
    # Create and save entry for current state of file
    write_cache_entry(cache_dir, create_cache_entry(fname, frel, fhash))


def hash_with_cache(cache_dir: str, frel: str, fname: str) -> str:
    r"""Get hash of a file, using the stat cache when it is fresh

    :Call:
        >>> fhash = hash_with_cache(cache_dir, frel, fname)
    :Inputs:
        *cache_dir*: :class:`str`
            Stat cache folder
        *frel*: :class:`str`
            Repo-relative path of tracked file
        *fname*: :class:`str`
            Actual path to file
    :Outputs:
        *fhash*: :class:`str`
            Prefixed content hash
    """
    # Try cache
    fhash = get_cached_hash(cache_dir, frel, fname)
    # Check for hit
    if fhash is not None:
        return fhash
    # Calculate
    fhash = compute_hash(fname)
    # Save
    update_cache(cache_dir, frel, fname, fhash)
    # Output
    return fhash
