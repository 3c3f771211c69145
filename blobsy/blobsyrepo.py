r"""
``blobsyrepo``: Interface to git repos with large files stored elsewhere
==========================================================================

This module provides the :class:`BlobsyRepo`, which adds the
``blobsy`` commands to a :class:`GitRepo`. Each tracked file
``data/model.bin`` has a pointer record ``data/model.bin.bref`` that is
committed to git, while the file itself is listed in a managed block of
``data/.gitignore`` and uploaded to the configured backend.

Batch commands (:meth:`BlobsyRepo.blobsy_push`,
:meth:`BlobsyRepo.blobsy_pull`, :meth:`BlobsyRepo.blobsy_sync`, ...)
keep going after a failed file and return an exit status:

    ====  ===========================================================
    Code  Meaning
    ====  ===========================================================
    0     Every file succeeded
    1     At least one file failed
    2     At least one failure was a conflict needing a user decision
    ====  ===========================================================
"""

# Standard library
import json
import os
import shlex
import sys
import time

# Third-party
import yaml

# Local imports
from .backendurl import (
    parse_backend_url,
    resolve_local_path,
    validate_backend_url)
from .blobsyerror import (
    IERR_CONFLICT,
    IERR_FAIL,
    IERR_OK,
    BlobsyError,
    BlobsyFileNotFoundError,
    BlobsyValidationError)
from .bref import (
    clear_remote_fields,
    merge_ref_updates,
    new_bref,
    read_bref,
    write_bref)
from .config import (
    config_get,
    config_set_file,
    get_config_path,
    get_externalize_config,
    get_global_config_path,
    get_ignore_patterns,
    resolve_config,
    write_config_file)
from .gitignore import GITIGNORE, add_gitignore_entry, remove_gitignore_entry
from .gitrepo import GitRepo
from .hashutils import compute_hash
from .paths import (
    BLOBSY_DIR,
    BREF_EXT,
    bref_path,
    ensure_dir,
    find_bref_files,
    find_trackable_files,
    is_within,
    remove_if_exists,
    strip_bref_ext,
    to_repo_relative,
    trunc8_fname)
from .rules import filter_files_for_externalization, parse_size
from .shellutils import which
from .statcache import (
    delete_cache_entry,
    get_cached_hash,
    get_stat_cache_dir,
    hash_with_cache,
    update_cache)
from .transfer import (
    SyncOutcome,
    TransferResult,
    get_backend,
    pull_file,
    push_file,
    run_health_check,
    sync_file)
from .trust import TrustStore


# Version of JSON output
SCHEMA_VERSION = "0.1"
# Folder within .blobsy/ for records removed by untrack/rm
TRASH_DIR = "trash"
# Hooks managed by blobsy
HOOK_NAMES = ("pre-commit", "pre-push")
# Marker line identifying hooks written by blobsy
HOOK_MARKER = "# Installed by: blobsy hooks install"
# Environment variable to skip hooks
NO_HOOKS_VAR = "BLOBSY_NO_HOOKS"
# Config files of other hook managers
HOOK_MANAGER_FILES = (
    "lefthook.yml",
    ".lefthook.yml",
    ".husky",
    ".pre-commit-config.yaml",
)
# Symbols for each file state
STATE_SYMBOLS = {
    "new": "○",
    "synced": "✓",
    "modified": "~",
    "missing_file": "?",
    "missing_ref": "?",
}
# Details shown for each state
STATE_DETAILS = {
    "new": "not pushed",
    "synced": "synced",
    "modified": "modified since tracking",
    "missing_file": "file missing; run: blobsy pull",
    "missing_ref": "no .bref file",
}


# Create new class
class BlobsyRepo(GitRepo):
    r"""Large-file interface to individual repositories

    :Call:
        >>> repo = BlobsyRepo(where=None, home=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Location of repo (``None`` -> ``os.getcwd()``)
        *home*: {``None``} | :class:`str`
            Folder holding user-global config and trust store
            (default ``~``)
    """
   # --- Class attributes ---
    __slots__ = (
        "home",
        "trust_store",
    )

   # --- __dunder__ ---
    def __init__(self, where=None, home=None):
        # Parent initialization
        GitRepo.__init__(self, where)
        # User folder
        self.home = home
        self.trust_store = TrustStore(home)

   # --- Config ---
    def get_config(self, target=None) -> dict:
        r"""Get merged settings for a file or folder in this repo

        :Call:
            >>> config = repo.get_config(target=None)
        :Inputs:
            *target*: {``None``} | :class:`str`
                File or folder; default is repo root
        """
        # Default target
        if target is None:
            target = self.gitdir
        return resolve_config(target, self.gitdir, self.home)

    def get_backend(self, config=None):
        # Backend from repo-level settings unless given
        if config is None:
            config = self.get_config()
        return get_backend(config, self.gitdir, self.trust_store)

    def get_cache_dir(self) -> str:
        return get_stat_cache_dir(self.gitdir)

   # --- Init ---
    def blobsy_init(self, url: str, **kw):
        r"""Set up a repo to store large files at *url*

        Writes ``.blobsy.yml`` (unless it already exists), creates the
        backend folder of a ``local:`` backend, and installs git hooks.

        :Call:
            >>> repo.blobsy_init(url, **kw)
        :Inputs:
            *url*: :class:`str`
                Backend URL, e.g. ``s3://bucket/prefix/`` or
                ``local:../blobs``
            *region*: {``None``} | :class:`str`
                Region for cloud backends
            *endpoint*: {``None``} | :class:`str`
                Endpoint URL for S3-compatible stores
            *hooks*: {``True``} | ``False``
                Whether to install git hooks
        """
        # Only activate in working repo
        self.assert_working("init")
        # Options
        region = kw.get("region")
        endpoint = kw.get("endpoint")
        hooks = kw.get("hooks", True)
        quiet = kw.get("quiet", kw.get("q", False))
        # Parse and check URL
        parsed = parse_backend_url(url)
        validate_backend_url(parsed, self.gitdir)
        # Create folder for local backends
        if parsed["type"] == "local":
            ensure_dir(resolve_local_path(parsed["path"], self.gitdir))
        # Config file
        fcfg = get_config_path(self.gitdir)
        # Write config
        if os.path.isfile(fcfg):
            if not quiet:
                print(f"{os.path.basename(fcfg)} already exists; not changed")
        else:
            # Backend settings
            backend = {"url": url}
            if region:
                backend["region"] = region
            if endpoint:
                backend["endpoint"] = endpoint
            # Save
            write_config_file(fcfg, {"backends": {"default": backend}})
            if not quiet:
                print(f"Created {os.path.basename(fcfg)}")
        # Machine-local state folder, never committed
        fdir = os.path.join(self.gitdir, BLOBSY_DIR)
        fgitignore = os.path.join(fdir, GITIGNORE)
        ensure_dir(fdir)
        if not os.path.isfile(fgitignore):
            with open(fgitignore, "w") as fp:
                fp.write("*\n")
        # Stage config
        self._add(fcfg)
        # Hooks
        if hooks and not os.environ.get(NO_HOOKS_VAR):
            self.blobsy_install_hooks(quiet=quiet)
        return IERR_OK

   # --- Track ---
    def blobsy_track(self, *fnames, **kw) -> list:
        r"""Start (or refresh) tracking of files and folders

        Named files are always tracked. Folders are searched for files
        that pass the externalize rules (ignore patterns, *never*,
        *always*, *min_size*).

        :Call:
            >>> fstage = repo.blobsy_track(*fnames, **kw)
        :Inputs:
            *fnames*: :class:`tuple`\ [:class:`str`]
                Files or folders
            *min_size*: {``None``} | :class:`str` | :class:`int`
                Override size threshold for folders
        :Outputs:
            *fstage*: :class:`list`\ [:class:`str`]
                ``.bref`` and ``.gitignore`` files that changed
        """
        fstage, _ = self._track(*fnames, **kw)
        return fstage

    def blobsy_add(self, *fnames, **kw):
        r"""Track files and stage the results with ``git add``

        Files in tracked folders that stay in git (below the size
        threshold) are staged directly.

        :Call:
            >>> repo.blobsy_add(*fnames, **kw)
        """
        # Only activate in working repo
        self.assert_working("add")
        # Track
        fstage, fkeep = self._track(*fnames, **kw)
        # Stage everything in one command
        self._add(*list(dict.fromkeys(fstage + fkeep)))
        return IERR_OK

    def _track(self, *fnames, **kw):
        # Options
        quiet = kw.get("quiet", kw.get("q", False))
        min_size = kw.get("min_size")
        # Files to stage
        fstage = []
        fkeep = []
        # Loop through targets
        for fname in fnames:
            # Allow "file.bin.bref" for "file.bin"
            fabs = os.path.abspath(strip_bref_ext(fname))
            # Check location
            self._assert_in_repo(fabs, fname)
            # Folder or file
            if os.path.isdir(fabs):
                fs, fk = self._track_dir(fabs, min_size, quiet)
                fstage.extend(fs)
                fkeep.extend(fk)
            elif os.path.isfile(fabs):
                fstage.extend(self._track_file(fabs, quiet))
            else:
                raise BlobsyFileNotFoundError(
                    f"File not found: {fname}")
        # Output
        return fstage, fkeep

    def _track_dir(self, fdir: str, min_size=None, quiet=False):
        # Settings for this folder
        config = self.get_config(fdir)
        policy = get_externalize_config(config)
        ignore = get_ignore_patterns(config)
        # Override threshold
        if min_size is not None:
            policy["min_size"] = parse_size(min_size)
        # Candidates with sizes
        files = [
            (to_repo_relative(fj, self.gitdir), os.path.getsize(fj))
            for fj in find_trackable_files(fdir, ignore)
        ]
        # Apply rules
        fstage = []
        fkeep = []
        for frel, _, externalize in filter_files_for_externalization(
                files, policy, ignore):
            # Full path
            fabs = os.path.join(self.gitdir, frel)
            # Check decision
            if externalize:
                fstage.extend(self._track_file(fabs, quiet))
            else:
                fkeep.append(fabs)
                if not quiet:
                    print(f"Keeping {frel} in git (below threshold)")
        # Output
        return fstage, fkeep

    def _track_file(self, fabs: str, quiet=False) -> list:
        # Names
        frel = to_repo_relative(fabs, self.gitdir)
        fbref = bref_path(fabs)
        fdir, fbase = os.path.split(fabs)
        # Status
        if not quiet:
            print(f"Tracking {frel}")
        # Hash current contents
        fhash = compute_hash(fabs)
        size = os.path.getsize(fabs)
        # Check for existing record
        if os.path.isfile(fbref):
            # Read it
            ref = read_bref(fbref)
            # Unchanged
            if ref["hash"] == fhash:
                update_cache(self.get_cache_dir(), frel, fabs, fhash)
                if not quiet:
                    print(f"{frel} already tracked (unchanged)")
                return []
            # New content invalidates the old remote copy
            ref = clear_remote_fields(ref)
            ref["hash"] = fhash
            ref["size"] = size
            write_bref(fbref, ref)
            if not quiet:
                print(f"Updated {frel}{BREF_EXT} (hash changed)")
        else:
            # New record
            write_bref(fbref, new_bref(fhash, size))
            if not quiet:
                print(f"Created {frel}{BREF_EXT}")
        # Keep actual file out of git
        add_gitignore_entry(fdir, fbase)
        if not quiet:
            print(f"Added {frel} to {GITIGNORE}")
        # Remember hash
        update_cache(self.get_cache_dir(), frel, fabs, fhash)
        # Files to stage
        return [fbref, os.path.join(fdir, GITIGNORE)]

   # --- Untrack ---
    def blobsy_untrack(self, *fnames, **kw):
        r"""Stop tracking files, keeping the working files

        The ``.bref`` file is moved to ``.blobsy/trash/`` and removed
        from the git index.

        :Call:
            >>> repo.blobsy_untrack(*fnames, recursive=False)
        :Inputs:
            *recursive*: ``True`` | {``False``}
                Required to untrack everything in a folder
        """
        # Options
        quiet = kw.get("quiet", kw.get("q", False))
        recursive = kw.get("recursive", kw.get("r", False))
        # Loop through targets
        for frel in self._expand_targets(fnames, recursive, "untrack"):
            # Names
            fabs = os.path.join(self.gitdir, frel)
            fbref = bref_path(fabs)
            # Check
            self._assert_tracked(fbref, frel)
            # Remove record from git and working tree
            self.rm_cached(fbref)
            ftrash = self._trash_bref(fbref)
            # Let git see the file again
            fdir, fbase = os.path.split(fabs)
            remove_gitignore_entry(fdir, fbase)
            # Forget hash
            delete_cache_entry(self.get_cache_dir(), frel)
            # Status
            if not quiet:
                print(
                    f"Untracked {frel} (moved .bref to "
                    f"{to_repo_relative(ftrash, self.gitdir)})")
        return IERR_OK

   # --- Remove ---
    def blobsy_rm(self, *fnames, **kw):
        r"""Remove tracked files

        :Call:
            >>> repo.blobsy_rm(*fnames, **kw)
        :Inputs:
            *local*: ``True`` | {``False``}
                Only delete working files; keep tracking
            *remote*: ``True`` | {``False``}
                Also delete blobs from the backend
            *force*: ``True`` | {``False``}
                Don't ask before deleting remote blobs
            *recursive*: ``True`` | {``False``}
                Required to remove everything in a folder
        """
        # Options
        quiet = kw.get("quiet", kw.get("q", False))
        local = kw.get("local", False)
        remote = kw.get("remote", False)
        force = kw.get("force", kw.get("f", False))
        recursive = kw.get("recursive", kw.get("r", False))
        # Check options
        if local and remote:
            raise BlobsyValidationError(
                "Options --local and --remote cannot be combined",
                suggestions=[
                    "Use --local to delete only the working file",
                    "Use --remote to also delete the remote blob"])
        # Backend, created on first use
        backend = None
        # Loop through targets
        for frel in self._expand_targets(fnames, recursive, "rm"):
            # Names
            fabs = os.path.join(self.gitdir, frel)
            fbref = bref_path(fabs)
            # Check
            self._assert_tracked(fbref, frel)
            # Working file only
            if local:
                remove_if_exists(fabs)
                delete_cache_entry(self.get_cache_dir(), frel)
                if not quiet:
                    print(f"Deleted local file {frel} (still tracked)")
                continue
            # Remote blob
            ref = read_bref(fbref)
            remote_key = ref.get("remote_key")
            if remote and remote_key:
                # Confirm
                if force or _confirm(f"Delete remote blob {remote_key}?"):
                    if backend is None:
                        backend = self.get_backend()
                    self._delete_remote(backend, remote_key, quiet)
                elif not quiet:
                    print(f"Kept remote blob {remote_key}")
            # Remove record and file
            self.rm_cached(fbref)
            self._trash_bref(fbref)
            remove_if_exists(fabs)
            # Clean up ignore entry and hash
            fdir, fbase = os.path.split(fabs)
            remove_gitignore_entry(fdir, fbase)
            delete_cache_entry(self.get_cache_dir(), frel)
            # Status
            if not quiet:
                print(f"Removed {frel}")
        return IERR_OK

    def _delete_remote(self, backend, remote_key: str, quiet=False):
        # Failure to delete is reported but doesn't stop local removal
        try:
            backend.delete(remote_key)
        except BlobsyError as err:
            print(
                f"Warning: could not delete remote blob {remote_key}: {err}",
                file=sys.stderr)
            return
        if not quiet:
            print(f"Deleted remote blob {remote_key}")

   # --- Move ---
    def blobsy_mv(self, src: str, dest: str, **kw):
        r"""Move or rename a tracked file or a folder of tracked files

        :Call:
            >>> repo.blobsy_mv(src, dest)
        :Inputs:
            *src*: :class:`str`
                Tracked file (or its ``.bref``) or folder
            *dest*: :class:`str`
                New name, or existing folder to move into
        """
        # Options
        quiet = kw.get("quiet", kw.get("q", False))
        # Absolute names
        fsrc = os.path.abspath(strip_bref_ext(src))
        fdst = os.path.abspath(strip_bref_ext(dest))
        # Check locations
        self._assert_in_repo(fsrc, src)
        self._assert_in_repo(fdst, dest)
        # Folders
        if os.path.isdir(fsrc):
            # Tracked files inside
            frels = find_bref_files(fsrc, self.gitdir)
            if not frels:
                raise BlobsyValidationError(
                    f"No tracked files in folder: {src}")
            # Move each one
            for frel in frels:
                fold = os.path.join(self.gitdir, frel)
                fnew = os.path.join(fdst, os.path.relpath(fold, fsrc))
                self._mv(fold, fnew, quiet)
            return IERR_OK
        # Move into existing folder
        if os.path.isdir(fdst):
            fdst = os.path.join(fdst, os.path.basename(fsrc))
        self._mv(fsrc, fdst, quiet)
        return IERR_OK

    def _mv(self, fold: str, fnew: str, quiet=False):
        # Names
        frold = to_repo_relative(fold, self.gitdir)
        fbold = bref_path(fold)
        fbnew = bref_path(fnew)
        # Check source
        self._assert_tracked(fbold, frold)
        # Check target
        if os.path.exists(fnew) or os.path.exists(fbnew):
            raise BlobsyValidationError(
                f"Destination already exists: "
                f"{to_repo_relative(fnew, self.gitdir)}")
        # Create target folder
        ensure_dir(os.path.dirname(fnew))
        # Hash of old location, if still fresh
        cache_dir = self.get_cache_dir()
        fhash = get_cached_hash(cache_dir, frold, fold)
        # Move working file (ignored by git)
        if os.path.isfile(fold):
            os.replace(fold, fnew)
        # Move record, through git if tracked there
        self.mv(fbold, fbnew)
        # Update ignore entries
        dold, bold = os.path.split(fold)
        dnew, bnew = os.path.split(fnew)
        remove_gitignore_entry(dold, bold)
        add_gitignore_entry(dnew, bnew)
        # Move cache entry
        frnew = to_repo_relative(fnew, self.gitdir)
        delete_cache_entry(cache_dir, frold)
        if fhash and os.path.isfile(fnew):
            update_cache(cache_dir, frnew, fnew, fhash)
        # Stage changed files
        self._add(fbnew, os.path.join(dnew, GITIGNORE))
        if os.path.isfile(os.path.join(dold, GITIGNORE)):
            self._add(os.path.join(dold, GITIGNORE))
        # Status
        if not quiet:
            print(f"Moved {frold} -> {frnew}")

   # --- Push ---
    def blobsy_push(self, *fnames, **kw):
        r"""Upload tracked files that haven't been pushed

        :Call:
            >>> ierr = repo.blobsy_push(*fnames, **kw)
        :Inputs:
            *fnames*: :class:`tuple`\ [:class:`str`]
                Files or folders; default is whole repo
            *force*: ``True`` | {``False``}
                Re-hash and re-upload even if already pushed
            *dry_run*: ``True`` | {``False``}
                Only show what would be pushed
        :Outputs:
            *ierr*: :class:`int`
                Exit status
        """
        # Options
        force = kw.get("force", kw.get("f", False))
        dry_run = kw.get("dry_run", False)
        jsonout = kw.get("json", False)
        quiet = kw.get("quiet", kw.get("q", False)) or jsonout
        # Files
        frels = self.resolve_tracked_files(*fnames)
        cache_dir = self.get_cache_dir()
        # Backend, created on first use
        backend = None
        # Results
        results = []
        # Loop through files
        for frel in frels:
            # Names
            fabs = os.path.join(self.gitdir, frel)
            fbref = bref_path(fabs)
            # Read record
            try:
                ref = read_bref(fbref)
            except BlobsyError as err:
                results.append(TransferResult.from_error(frel, "push", err))
                continue
            # Skip files already pushed
            if ref.get("remote_key") and not force:
                if not quiet:
                    print(f"{frel}: already pushed")
                continue
            # Check working file
            if not os.path.isfile(fabs):
                results.append(TransferResult(
                    frel, "push", success=False,
                    error=f"Local file not found: {frel}",
                    error_category="not_found"))
                continue
            # Current hash (full re-hash if forced)
            try:
                if force:
                    fhash = compute_hash(fabs)
                else:
                    fhash = hash_with_cache(cache_dir, frel, fabs)
            except (BlobsyError, OSError) as err:
                results.append(TransferResult.from_error(frel, "push", err))
                continue
            # Check for changes since tracking
            if fhash != ref["hash"]:
                if not force:
                    results.append(TransferResult(
                        frel, "push", success=False,
                        error=(
                            f"{frel} was modified after tracking; "
                            f"run: blobsy track {frel}"),
                        error_category="conflict"))
                    continue
                # Record new contents
                ref = clear_remote_fields(ref)
                ref["hash"] = fhash
                ref["size"] = os.path.getsize(fabs)
            # Dry run
            if dry_run:
                if not quiet:
                    print(f"Would push {frel} ({format_size(ref['size'])})")
                continue
            # Backend
            if backend is None:
                backend = self.get_backend()
            # Upload
            result = push_file(
                fabs, frel, ref, self.get_config(fabs), self.gitdir,
                backend)
            # Save record and hash
            if result.success:
                try:
                    write_bref(
                        fbref, merge_ref_updates(ref, result.ref_updates))
                    update_cache(cache_dir, frel, fabs, ref["hash"])
                except (BlobsyError, OSError) as err:
                    result = TransferResult.from_error(frel, "push", err)
            results.append(result)
            # Status
            if not quiet:
                _print_result(result, "Pushed")
        # Summary
        return self._report(results, "pushed", dry_run, quiet, jsonout)

   # --- Pull ---
    def blobsy_pull(self, *fnames, **kw):
        r"""Download tracked files that are missing or out of date

        A working file whose contents differ from its ``.bref`` is not
        replaced unless *force* is set; it's reported as a conflict.

        :Call:
            >>> ierr = repo.blobsy_pull(*fnames, **kw)
        :Inputs:
            *force*: ``True`` | {``False``}
                Overwrite locally modified files
            *dry_run*: ``True`` | {``False``}
                Only show what would be pulled
        """
        # Options
        force = kw.get("force", kw.get("f", False))
        dry_run = kw.get("dry_run", False)
        jsonout = kw.get("json", False)
        quiet = kw.get("quiet", kw.get("q", False)) or jsonout
        # Files
        frels = self.resolve_tracked_files(*fnames)
        cache_dir = self.get_cache_dir()
        # Backend, created on first use
        backend = None
        # Results
        results = []
        # Loop through files
        for frel in frels:
            # Names
            fabs = os.path.join(self.gitdir, frel)
            fbref = bref_path(fabs)
            # Read record
            try:
                ref = read_bref(fbref)
            except BlobsyError as err:
                results.append(TransferResult.from_error(frel, "pull", err))
                continue
            # Check existing working file
            if os.path.isfile(fabs):
                # Current hash
                try:
                    fhash = hash_with_cache(cache_dir, frel, fabs)
                except (BlobsyError, OSError) as err:
                    results.append(
                        TransferResult.from_error(frel, "pull", err))
                    continue
                # Already current
                if fhash == ref["hash"]:
                    if not quiet:
                        print(f"{frel}: up to date")
                    continue
                # Local changes
                if not force:
                    results.append(TransferResult(
                        frel, "pull", success=False,
                        error=(
                            f"{frel} has local changes; "
                            "use --force to overwrite"),
                        error_category="conflict"))
                    continue
            # Dry run
            if dry_run:
                if not quiet:
                    print(f"Would pull {frel} ({format_size(ref['size'])})")
                continue
            # Backend
            if backend is None and ref.get("remote_key"):
                backend = self.get_backend()
            # Download
            result = pull_file(
                ref, fabs, self.get_config(fabs), self.gitdir, backend)
            # Remember hash
            if result.success:
                try:
                    update_cache(cache_dir, frel, fabs, ref["hash"])
                except (BlobsyError, OSError) as err:
                    result = TransferResult.from_error(frel, "pull", err)
            results.append(result)
            # Status
            if not quiet:
                _print_result(result, "Pulled")
        # Summary
        return self._report(results, "pulled", dry_run, quiet, jsonout)

   # --- Sync ---
    def blobsy_sync(self, *fnames, **kw):
        r"""Push new or changed files and pull missing ones

        The backend is checked first (unless *skip_health_check*) so a
        bad configuration fails once instead of once per file.

        :Call:
            >>> ierr = repo.blobsy_sync(*fnames, **kw)
        :Inputs:
            *force*: ``True`` | {``False``}
                Also re-push files whose remote blob has disappeared
            *skip_health_check*: ``True`` | {``False``}
                Don't probe the backend first
            *dry_run*: ``True`` | {``False``}
                Only show what would be done
        """
        # Options
        force = kw.get("force", kw.get("f", False))
        skip_health_check = kw.get("skip_health_check", False)
        dry_run = kw.get("dry_run", False)
        jsonout = kw.get("json", False)
        quiet = kw.get("quiet", kw.get("q", False)) or jsonout
        # Files
        frels = self.resolve_tracked_files(*fnames)
        cache_dir = self.get_cache_dir()
        # Backend
        backend = self.get_backend()
        # Check it before doing anything
        if not (skip_health_check or dry_run):
            backend.health_check()
        # Results and counts
        results = []
        counts = {"pushed": 0, "pulled": 0, "up_to_date": 0, "errors": 0}
        # Loop through files
        for frel in frels:
            # Names
            fabs = os.path.join(self.gitdir, frel)
            fbref = bref_path(fabs)
            # Read record
            try:
                ref = read_bref(fbref)
            except BlobsyError as err:
                results.append(TransferResult.from_error(frel, "sync", err))
                counts["errors"] += 1
                continue
            # Current hash
            fhash = None
            try:
                if os.path.isfile(fabs):
                    fhash = hash_with_cache(cache_dir, frel, fabs)
            except (BlobsyError, OSError) as err:
                results.append(TransferResult.from_error(frel, "sync", err))
                counts["errors"] += 1
                continue
            # Dry run
            if dry_run:
                if not quiet:
                    print(f"Would {_plan_sync(ref, fhash)} {frel}")
                continue
            # Decide, transfer, and save
            try:
                outcome = self._sync_one(
                    frel, ref, fhash, backend, cache_dir, force)
            except (BlobsyError, OSError) as err:
                outcome = SyncOutcome(
                    "sync", TransferResult.from_error(frel, "sync", err))
            # Count
            if not outcome.success:
                counts["errors"] += 1
            elif outcome.action == "push":
                counts["pushed"] += 1
            elif outcome.action == "pull":
                counts["pulled"] += 1
            else:
                counts["up_to_date"] += 1
            # Save result
            if outcome.result is not None:
                results.append(outcome.result)
                if not quiet:
                    _print_result(
                        outcome.result,
                        "Pushed" if outcome.action == "push" else "Pulled")
        # Output
        if jsonout:
            print_json({
                "synced": [r.to_dict() for r in results],
                "summary": dict(counts, total=len(frels)),
            })
        elif not quiet and not dry_run:
            print(
                f"Sync complete: {counts['pushed']} pushed, "
                f"{counts['pulled']} pulled, {counts['errors']} errors.")
        # Exit status
        return _batch_ierr(results)

    def _sync_one(self, frel, ref, fhash, backend, cache_dir, force):
        # Names
        fabs = os.path.join(self.gitdir, frel)
        fbref = bref_path(fabs)
        # Decide and transfer
        outcome = sync_file(
            fabs, frel, ref, self.get_config(fabs), self.gitdir,
            backend, fhash)
        # Re-push blobs missing from remote
        if outcome.action == "up_to_date" and force and \
                not backend.exists(ref["remote_key"]):
            result = push_file(
                fabs, frel, clear_remote_fields(ref),
                self.get_config(fabs), self.gitdir, backend)
            outcome.action = "push"
            outcome.result = result
            if result.success:
                outcome.ref = merge_ref_updates(ref, result.ref_updates)
        # Save record and hash
        if outcome.ref is not None:
            write_bref(fbref, outcome.ref)
            update_cache(cache_dir, frel, fabs, outcome.ref["hash"])
        elif outcome.action == "pull" and outcome.success:
            update_cache(cache_dir, frel, fabs, ref["hash"])
        # Output
        return outcome

   # --- Status ---
    def blobsy_status(self, *fnames, **kw):
        r"""Show the state of each tracked file

        :Call:
            >>> repo.blobsy_status(*fnames, **kw)
        """
        # Options
        jsonout = kw.get("json", False)
        # Files
        frels = self.resolve_tracked_files(*fnames)
        # States
        files = []
        for frel in frels:
            # Get state
            state = self.get_file_state(frel)
            files.append({
                "path": frel,
                "state": state,
                "details": STATE_DETAILS[state],
            })
        # Output
        if jsonout:
            # Count by state
            summary = {"total": len(files)}
            for info in files:
                summary[info["state"]] = summary.get(info["state"], 0) + 1
            print_json({"files": files, "summary": summary})
            return IERR_OK
        # Show each file
        for info in files:
            # Truncate to fit terminal
            fshort = trunc8_fname(info["path"], len(info["details"]) + 8)
            print(
                f"  {STATE_SYMBOLS[info['state']]} {fshort}  "
                f"({info['details']})")
        # Summary
        if not files:
            print("No tracked files")
        else:
            print(f"\n{len(files)} tracked file(s)")
        return IERR_OK

    def get_file_state(self, frel: str) -> str:
        r"""Get state of one tracked file

        :Call:
            >>> state = repo.get_file_state(frel)
        :Inputs:
            *frel*: :class:`str`
                Repo-relative path of working file
        :Outputs:
            *state*: ``"new"`` | ``"synced"`` | ``"modified"`` |
            ``"missing_file"`` | ``"missing_ref"``
                Current state
        """
        # Names
        fabs = os.path.join(self.gitdir, frel)
        fbref = bref_path(fabs)
        # Check for record
        if not os.path.isfile(fbref):
            return "missing_ref"
        # Read it
        ref = read_bref(fbref)
        # Check for file
        if not os.path.isfile(fabs):
            return "missing_file"
        # Compare hash
        fhash = hash_with_cache(self.get_cache_dir(), frel, fabs)
        if fhash != ref["hash"]:
            return "modified"
        # Pushed or not
        return "synced" if ref.get("remote_key") else "new"

   # --- Verify ---
    def blobsy_verify(self, *fnames, **kw):
        r"""Re-hash tracked files and compare to their ``.bref`` files

        The stat cache is not used.

        :Call:
            >>> ierr = repo.blobsy_verify(*fnames, **kw)
        :Outputs:
            *ierr*: ``0`` | ``1``
                ``1`` if any file is missing or doesn't match
        """
        # Options
        jsonout = kw.get("json", False)
        quiet = kw.get("quiet", kw.get("q", False)) or jsonout
        # Files
        frels = self.resolve_tracked_files(*fnames)
        # Check each file
        files = []
        for frel in frels:
            # Names
            fabs = os.path.join(self.gitdir, frel)
            ref = read_bref(bref_path(fabs))
            # Compute actual hash
            actual = compute_hash(fabs) if os.path.isfile(fabs) else None
            ok = actual == ref["hash"]
            # Save
            files.append({
                "path": frel,
                "ok": ok,
                "expected": ref["hash"],
                "actual": actual,
            })
            # Status
            if quiet:
                continue
            if ok:
                print(f"  ✓ {frel}")
            elif actual is None:
                print(f"  ✗ {frel}  (file missing)")
            else:
                print(f"  ✗ {frel}  (hash mismatch)")
        # Count
        nfail = sum(1 for info in files if not info["ok"])
        # Output
        if jsonout:
            print_json({
                "files": files,
                "summary": {
                    "total": len(files),
                    "verified": len(files) - nfail,
                    "failed": nfail,
                },
            })
        elif not quiet:
            print("Verification failed." if nfail else "All files verified.")
        return IERR_FAIL if nfail else IERR_OK

   # --- Health ---
    def blobsy_health(self, **kw):
        r"""Check that the configured backend is reachable and writable

        :Call:
            >>> repo.blobsy_health(**kw)
        """
        # Options
        jsonout = kw.get("json", False)
        # Check (raises on failure)
        backend = run_health_check(
            self.get_config(), self.gitdir, self.trust_store)
        # Output
        if jsonout:
            print_json({"backend": backend.type, "status": "ok"})
        elif not kw.get("quiet", kw.get("q", False)):
            print(f"Backend OK ({backend.type})")
        return IERR_OK

   # --- Checks ---
    def blobsy_check_unpushed(self, **kw):
        r"""List tracked files that have never been pushed

        :Call:
            >>> ierr = repo.blobsy_check_unpushed(**kw)
        :Outputs:
            *ierr*: ``0`` | ``1``
                ``1`` if any file is unpushed
        """
        # Options
        jsonout = kw.get("json", False)
        quiet = kw.get("quiet", kw.get("q", False)) or jsonout
        # Find records w/o remote key
        unpushed = self._find_unpushed()
        # Output
        if jsonout:
            print_json({"unpushed": unpushed, "count": len(unpushed)})
        elif not quiet:
            self._print_unpushed(unpushed)
        return IERR_FAIL if unpushed else IERR_OK

    def blobsy_pre_push_check(self, **kw):
        r"""Check that every tracked file has a blob on the remote

        :Call:
            >>> ierr = repo.blobsy_pre_push_check(**kw)
        """
        # Options
        jsonout = kw.get("json", False)
        quiet = kw.get("quiet", kw.get("q", False)) or jsonout
        # Never pushed
        unpushed = self._find_unpushed()
        # Pushed but missing on remote
        missing = []
        backend = None
        for frel in self.resolve_tracked_files():
            # Read record
            ref = read_bref(bref_path(os.path.join(self.gitdir, frel)))
            # Skip unpushed
            if not ref.get("remote_key"):
                continue
            # Backend
            if backend is None:
                backend = self.get_backend()
            # Check remote
            if not backend.exists(ref["remote_key"]):
                missing.append(frel)
        # Output
        if jsonout:
            print_json({"unpushed": unpushed, "missing": missing})
        elif not quiet:
            self._print_unpushed(unpushed)
            for frel in missing:
                print(f"  {frel}: blob missing from remote")
            if missing:
                print("Run: blobsy push --force <file>")
        return IERR_FAIL if unpushed or missing else IERR_OK

    def _find_unpushed(self) -> list:
        # Loop through all records
        unpushed = []
        for frel in self.resolve_tracked_files():
            # Read record
            ref = read_bref(bref_path(os.path.join(self.gitdir, frel)))
            if not ref.get("remote_key"):
                unpushed.append(frel)
        return unpushed

    def _print_unpushed(self, unpushed: list):
        # Nothing to report
        if not unpushed:
            print("All tracked files have been pushed.")
            return
        # List files
        print(f"{len(unpushed)} tracked file(s) not pushed:")
        for frel in unpushed:
            print(f"  {frel}")
        print("Run: blobsy push")

   # --- Hooks ---
    def blobsy_install_hooks(self, **kw):
        r"""Install ``pre-commit`` and ``pre-push`` hooks

        Existing hooks not written by ``blobsy`` are left alone.

        :Call:
            >>> repo.blobsy_install_hooks()
        """
        # This should only be run on working repo
        self.assert_working("hooks install")
        # Options
        quiet = kw.get("quiet", kw.get("q", False))
        # Other hook managers own the hooks folder
        for fmgr in HOOK_MANAGER_FILES:
            if os.path.exists(os.path.join(self.gitdir, fmgr)):
                if not quiet:
                    print(
                        f"Found {fmgr}; add 'blobsy hook pre-commit' and "
                        "'blobsy hook pre-push' to it instead")
                return IERR_OK
        # Location of hooks
        hooksdir = self.get_hooksdir()
        ensure_dir(hooksdir)
        # Program to call
        exe = shlex.quote(which("blobsy") or "blobsy")
        # Loop through hooks
        for name in HOOK_NAMES:
            # Hook file
            fhook = os.path.join(hooksdir, name)
            # Check for existing file
            if os.path.isfile(fhook) and not _is_blobsy_hook(fhook):
                print(f"hooks/{name} hook already exists; skipping")
                continue
            # Write file
            with open(fhook, "w") as fp:
                fp.write(genr8_hook_script(name, exe))
            # Make it executable
            fmod = os.stat(fhook).st_mode
            fmod = fmod | 0o111
            os.chmod(fhook, fmod)
            # Status
            if not quiet:
                print(f"Installed {name} hook")
        return IERR_OK

    def blobsy_uninstall_hooks(self, **kw):
        r"""Remove hooks written by ``blobsy``

        :Call:
            >>> repo.blobsy_uninstall_hooks()
        """
        # Options
        quiet = kw.get("quiet", kw.get("q", False))
        # Location of hooks
        hooksdir = self.get_hooksdir()
        # Loop through hooks
        for name in HOOK_NAMES:
            # Hook file
            fhook = os.path.join(hooksdir, name)
            # Only remove our own hooks
            if os.path.isfile(fhook) and _is_blobsy_hook(fhook):
                os.remove(fhook)
                if not quiet:
                    print(f"Removed {name} hook")
        return IERR_OK

    def blobsy_hook(self, name: str, **kw):
        r"""Run the check for one git hook

        :Call:
            >>> ierr = repo.blobsy_hook(name)
        :Inputs:
            *name*: ``"pre-commit"`` | ``"pre-push"``
                Hook to run
        """
        # Bypass
        if os.environ.get(NO_HOOKS_VAR):
            return IERR_OK
        # Dispatch
        if name == "pre-commit":
            return self._hook_pre_commit()
        elif name == "pre-push":
            return self.blobsy_push(quiet=kw.get("quiet", False))
        raise BlobsyValidationError(
            f"Unknown hook: {name}",
            suggestions=[f"Use one of: {', '.join(HOOK_NAMES)}"])

    def _hook_pre_commit(self) -> int:
        # Staged pointer records
        fbrefs = [f for f in self.ls_staged() if f.endswith(BREF_EXT)]
        # Check each one
        cache_dir = self.get_cache_dir()
        modified = []
        for fb in fbrefs:
            # Names
            fbref = os.path.join(self.gitdir, fb)
            frel = strip_bref_ext(fb)
            fabs = os.path.join(self.gitdir, frel)
            # Skip if either is missing
            if not (os.path.isfile(fbref) and os.path.isfile(fabs)):
                continue
            # Compare
            ref = read_bref(fbref)
            if hash_with_cache(cache_dir, frel, fabs) != ref["hash"]:
                modified.append(frel)
        # Report
        if modified:
            print(
                "blobsy: tracked files changed after their .bref was made:",
                file=sys.stderr)
            for frel in modified:
                print(f"  {frel}", file=sys.stderr)
            print(
                "Run: blobsy track <file> and stage the .bref again",
                file=sys.stderr)
            return IERR_FAIL
        return IERR_OK

   # --- Trust ---
    def blobsy_trust(self, **kw):
        r"""Allow this repo's command backend to run programs

        :Call:
            >>> repo.blobsy_trust()
        """
        # Save
        self.trust_store.trust(self.gitdir)
        # Status
        if not kw.get("quiet", kw.get("q", False)):
            print(f"Trusted {self.gitdir}")
            print("Backend commands in .blobsy.yml will now run")
        return IERR_OK

    def blobsy_untrust(self, **kw):
        # Remove
        q = self.trust_store.revoke(self.gitdir)
        # Status
        if not kw.get("quiet", kw.get("q", False)):
            if q:
                print(f"Removed trust for {self.gitdir}")
            else:
                print(f"Repository was not trusted: {self.gitdir}")
        return IERR_OK

   # --- Config ---
    def blobsy_config(self, key=None, val=None, **kw):
        r"""Show merged settings, one setting, or set one setting

        :Call:
            >>> repo.blobsy_config(key=None, val=None, **kw)
        :Inputs:
            *key*: {``None``} | :class:`str`
                Dotted option name, e.g. ``compress.algorithm``
            *val*: {``None``} | :class:`str`
                New value, parsed as YAML
            *global*: ``True`` | {``False``}
                Set value in ``~/.blobsy.yml`` instead of repo file
        """
        # Set
        if val is not None:
            # Check for name
            if key is None:
                raise BlobsyValidationError("No option name given")
            # File to modify
            if kw.get("global"):
                fcfg = get_global_config_path(self.home)
            else:
                fcfg = get_config_path(self.gitdir)
            # Save
            config_set_file(fcfg, key, val)
            return IERR_OK
        # Merged settings
        config = self.get_config()
        # Get one option
        data = config if key is None else config_get(config, key)
        # Output
        if kw.get("json", False):
            print_json({"key": key, "value": data})
        elif isinstance(data, (dict, list)):
            print(yaml.safe_dump(
                data, default_flow_style=False, sort_keys=False).rstrip())
        else:
            print(data)
        return IERR_OK

   # --- File lists ---
    def resolve_tracked_files(self, *fnames) -> list:
        r"""Get repo-relative names of tracked files to operate on

        Folders are searched recursively for ``.bref`` files. Named
        files are included whether or not they have a ``.bref``.

        :Call:
            >>> frels = repo.resolve_tracked_files(*fnames)
        :Inputs:
            *fnames*: :class:`tuple`\ [:class:`str`]
                Files or folders; default is whole repo
        :Outputs:
            *frels*: :class:`list`\ [:class:`str`]
                Repo-relative names, w/o ``.bref``
        """
        # Default: everything
        if not fnames:
            return find_bref_files(self.gitdir, self.gitdir)
        # Loop through targets
        frels = []
        for fname in fnames:
            # Absolute name of working file
            fabs = os.path.abspath(strip_bref_ext(fname))
            # Check location
            self._assert_in_repo(fabs, fname)
            # Expand folders
            if os.path.isdir(fabs):
                frels.extend(find_bref_files(fabs, self.gitdir))
            else:
                frels.append(to_repo_relative(fabs, self.gitdir))
        # Remove duplicates, keeping order
        return list(dict.fromkeys(frels))

    def _expand_targets(self, fnames, recursive: bool, cmd: str) -> list:
        # Loop through targets
        frels = []
        for fname in fnames:
            # Absolute name
            fabs = os.path.abspath(strip_bref_ext(fname))
            self._assert_in_repo(fabs, fname)
            # Folders need -r
            if os.path.isdir(fabs):
                if not recursive:
                    raise BlobsyValidationError(
                        f"{fname} is a directory",
                        suggestions=[f"Use: blobsy {cmd} -r {fname}"])
                frels.extend(find_bref_files(fabs, self.gitdir))
            else:
                frels.append(to_repo_relative(fabs, self.gitdir))
        # Remove duplicates
        return list(dict.fromkeys(frels))

    def _assert_in_repo(self, fabs: str, fname: str):
        # Check location
        if not is_within(fabs, self.gitdir):
            raise BlobsyValidationError(
                f"Path is outside the repository: {fname}")

    def _assert_tracked(self, fbref: str, frel: str):
        # Check for record
        if not os.path.isfile(fbref):
            raise BlobsyFileNotFoundError(
                f"File not tracked: {frel}",
                suggestions=[f"Run: blobsy track {frel}"])

    def _trash_bref(self, fbref: str) -> str:
        # Folder
        ftrash = os.path.join(self.gitdir, BLOBSY_DIR, TRASH_DIR)
        ensure_dir(ftrash)
        # Unique name with time stamp in ms
        fname = os.path.join(
            ftrash,
            f"{os.path.basename(fbref)}.{int(time.time() * 1000)}")
        # Move
        os.replace(fbref, fname)
        return fname

   # --- Output ---
    def _report(self, results, verb, dry_run, quiet, jsonout) -> int:
        # Counts
        nok = sum(1 for r in results if r.success)
        nfail = len(results) - nok
        # Output
        if jsonout:
            print_json({
                verb: [r.to_dict() for r in results],
                "summary": {
                    "total": len(results),
                    "succeeded": nok,
                    "failed": nfail,
                },
            })
        else:
            # Failures are shown even in quiet mode
            for result in results:
                if not result.success and quiet:
                    print(
                        f"Error: {result.path}: {result.error}",
                        file=sys.stderr)
            if not quiet and not dry_run:
                print(f"Done: {nok} {verb}, {nfail} failed.")
        # Exit status
        return _batch_ierr(results)


# Hook script text
def genr8_hook_script(name: str, exe="blobsy") -> str:
    r"""Create contents of a git hook that calls ``blobsy hook``

    :Call:
        >>> txt = genr8_hook_script(name, exe="blobsy")
    :Inputs:
        *name*: ``"pre-commit"`` | ``"pre-push"``
            Hook name
        *exe*: {``"blobsy"``} | :class:`str`
            Command to run (already shell-quoted)
    """
    # Git command for bypass note
    gitcmd = "commit" if name == "pre-commit" else "push"
    return (
        "#!/bin/sh\n"
        f"{HOOK_MARKER}\n"
        f"# To bypass: git {gitcmd} --no-verify\n"
        f"exec {exe} hook {name}\n")


def _is_blobsy_hook(fhook: str) -> bool:
    # Look for marker
    with open(fhook, "r", errors="replace") as fp:
        return HOOK_MARKER in fp.read()


def _plan_sync(ref: dict, fhash) -> str:
    # Same decision order as transfer.sync_file()
    if not ref.get("remote_key"):
        return "push"
    elif fhash is None:
        return "pull"
    elif fhash != ref["hash"]:
        return "push"
    return "skip (up to date)"


def _print_result(result: TransferResult, verb: str):
    # Success line
    if result.success:
        nbyte = result.bytes_transferred
        size = "" if nbyte is None else f" ({format_size(nbyte)})"
        print(f"  ✓ {verb} {result.path}{size}")
        return
    # Failure line
    print(f"  ✗ {result.path}: {result.error}")


def _batch_ierr(results) -> int:
    # Failures
    failed = [r for r in results if not r.success]
    # Check for conflicts
    if any(r.error_category == "conflict" for r in failed):
        return IERR_CONFLICT
    return IERR_FAIL if failed else IERR_OK


def _confirm(prompt: str) -> bool:
    # Ask on terminal
    ans = input(f"{prompt} [y/N] ")
    return ans.strip().lower() in ("y", "yes")


# Human-readable size
def format_size(nbyte: int) -> str:
    r"""Format a byte count for status lines

    :Call:
        >>> txt = format_size(nbyte)
    :Outputs:
        *txt*: :class:`str`
            E.g. ``"512 B"``, ``"1.5 KB"``, ``"2.0 GB"``
    """
    # Small sizes exactly
    if nbyte < 1024:
        return f"{nbyte} B"
    # Scale
    size = float(nbyte)
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}"


def print_json(data: dict):
    r"""Print JSON output with the schema version first

    :Call:
        >>> print_json(data)
    """
    print(json.dumps(
        dict({"schema_version": SCHEMA_VERSION}, **data), indent=2))
