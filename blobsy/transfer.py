r"""
``transfer``: Move blobs between working files and a backend
==============================================================

This module selects a backend from the resolved settings and performs
single-file transfers:

*   :func:`push_file`: compress (if the rules say so), compute the
    remote key, and upload
*   :func:`pull_file`: download, decompress, verify, and move into place
*   :func:`sync_file`: pick push, pull, or nothing for one file

None of these functions write ``.bref`` files. A successful push returns
the new remote fields in :attr:`TransferResult.ref_updates`, and the
caller saves them. A failed transfer returns a result with
:attr:`TransferResult.success` set to ``False`` instead of raising, so
one bad file does not stop a batch. Configuration problems (no backend,
unknown type, untrusted command backend) still raise.

:func:`sync_file` compares the working file only to its ``.bref``. It
never looks at remote metadata, so a blob replaced on the remote by some
other tool is not noticed.
"""

# Standard library
import logging
import os
import secrets

# Local imports
from .backend_awscli import AwsCliBackend, is_aws_cli_available
from .backend_command import CommandBackend
from .backend_local import LocalBackend
from .backend_rclone import RcloneBackend
from .backend_s3 import BuiltinS3Backend
from .backendurl import parse_backend_url, resolve_local_path
from .blobsyerror import (
    BlobsyError,
    BlobsyPermissionError,
    BlobsyValidationError,
    wrap_os_error)
from .bref import clear_remote_fields, merge_ref_updates
from .compress import compress_file, decompress_file
from .config import (
    get_compress_config,
    get_key_template,
    get_sync_tools)
from .hashutils import compute_hash
from .keytemplate import evaluate_template, get_compress_suffix
from .paths import ensure_dir, remove_if_exists, to_repo_relative
from .rules import should_compress


# Environment variable overriding configured backend
BACKEND_URL_VAR = "BLOBSY_BACKEND_URL"
# Backend types
BACKEND_TYPES = ("local", "command", "s3", "gcs", "azure")
# Name of backend used if not set
DEFAULT_BACKEND_NAME = "default"

# Logger
LOG = logging.getLogger(__name__)


# Result of one transfer
class TransferResult(object):
    r"""Outcome of pushing or pulling one file

    :Call:
        >>> result = TransferResult(path, action, success=True, **kw)
    :Inputs:
        *path*: :class:`str`
            Repo-relative path of working file
        *action*: ``"push"`` | ``"pull"``
            Kind of transfer
        *success*: {``True``} | ``False``
            Whether the transfer completed
        *bytes_transferred*: {``None``} | :class:`int`
            Bytes sent or received (compressed size if compressed)
        *error*: {``None``} | :class:`str`
            Error message for failed transfers
        *error_category*: {``None``} | :class:`str`
            Category of *error*
        *ref_updates*: {``None``} | :class:`dict`
            New *remote_key*, *compressed*, and *compressed_size*
    """
   # --- Class attributes ---
    __slots__ = (
        "path",
        "action",
        "success",
        "bytes_transferred",
        "error",
        "error_category",
        "ref_updates",
    )

   # --- __dunder__ ---
    def __init__(
            self, path: str, action: str, success=True,
            bytes_transferred=None, error=None, error_category=None,
            ref_updates=None):
        self.path = path
        self.action = action
        self.success = success
        self.bytes_transferred = bytes_transferred
        self.error = error
        self.error_category = error_category
        self.ref_updates = ref_updates

    def __repr__(self) -> str:
        status = "ok" if self.success else "failed"
        return f"<{self.__class__.__name__} {self.action} {self.path} {status}>"

   # --- Conversion ---
    @classmethod
    def from_error(cls, path: str, action: str, err: Exception):
        # Put low-level OS errors into the taxonomy
        if isinstance(err, OSError):
            err = wrap_os_error(err, f"Cannot {action} '{path}'")
        # Failure result with message and category
        return cls(
            path, action, success=False,
            error=str(err),
            error_category=getattr(err, "category", "unknown"))

    def to_dict(self) -> dict:
        r"""Convert to a :class:`dict` for JSON output

        :Call:
            >>> data = result.to_dict()
        """
        # Always-present fields
        data = {
            "path": self.path,
            "success": self.success,
            "action": self.action,
        }
        # Optional fields
        if self.bytes_transferred is not None:
            data["bytesTransferred"] = self.bytes_transferred
        if self.error is not None:
            data["error"] = self.error
            data["category"] = self.error_category
        if self.ref_updates is not None:
            data["refUpdates"] = {
                k: v for k, v in self.ref_updates.items() if v is not None}
        # Output
        return data


# Result of one sync decision
class SyncOutcome(object):
    r"""What :func:`sync_file` did for one file

    :Call:
        >>> outcome = SyncOutcome(action, result=None, ref=None)
    :Inputs:
        *action*: ``"push"`` | ``"pull"`` | ``"up_to_date"``
            Decision made
        *result*: {``None``} | :class:`TransferResult`
            Transfer result, if a transfer was attempted
        *ref*: {``None``} | :class:`dict`
            Pointer record to save, if it changed
    """
   # --- Class attributes ---
    __slots__ = (
        "action",
        "result",
        "ref",
    )

   # --- __dunder__ ---
    def __init__(self, action: str, result=None, ref=None):
        self.action = action
        self.result = result
        self.ref = ref

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.action}>"

   # --- Properties ---
    @property
    def success(self) -> bool:
        # Nothing to do counts as success
        return self.result is None or self.result.success


# Find backend settings
def resolve_backend(config: dict) -> dict:
    r"""Get settings of the active backend with a definite *type*

    The environment variable ``BLOBSY_BACKEND_URL``, if set, replaces
    the configured backend entirely.

    :Call:
        >>> resolved = resolve_backend(config)
    :Inputs:
        *config*: :class:`dict`
            Resolved settings
    :Outputs:
        *resolved*: :class:`dict`
            Backend settings including *type* from :data:`BACKEND_TYPES`
    :Raises:
        :class:`BlobsyValidationError` if no usable backend is set
    """
    # Check for override
    url = os.environ.get(BACKEND_URL_VAR)
    if url:
        LOG.debug("Using backend from %s: %s", BACKEND_URL_VAR, url)
        return _resolve_backend_type({"url": url})
    # Configured backends
    backends = config.get("backends")
    if not backends:
        raise BlobsyValidationError(
            "No backends configured",
            suggestions=["Run: blobsy init <url>"])
    # Name of active backend
    name = config.get("backend") or DEFAULT_BACKEND_NAME
    # Check it
    if name not in backends:
        raise BlobsyValidationError(
            f"Backend '{name}' not found in config",
            suggestions=[f"Available backends: {', '.join(backends)}"])
    # Settings
    backend = backends[name]
    if not isinstance(backend, dict):
        raise BlobsyValidationError(
            f"Backend '{name}' must be a mapping in .blobsy.yml")
    # Fill in type
    return _resolve_backend_type(backend)


def _resolve_backend_type(backend: dict) -> dict:
    # Copy
    resolved = dict(backend)
    # URL
    url = resolved.get("url")
    # Parse URL for bucket/prefix or path
    parsed = parse_backend_url(url) if url else {}
    # Explicit type wins
    btype = resolved.get("type") or parsed.get("type")
    # Command backends have no URL
    if btype is None and resolved.get("push_command"):
        btype = "command"
    # Check result
    if btype is None:
        raise BlobsyValidationError(
            "Cannot determine backend type from config",
            suggestions=[
                "Set a url (e.g. s3://bucket/prefix/ or local:../path) "
                "or an explicit type in .blobsy.yml"])
    elif btype not in BACKEND_TYPES:
        raise BlobsyValidationError(
            f"Unknown backend type: {btype}",
            suggestions=[f"Use one of: {', '.join(BACKEND_TYPES)}"])
    # Fill in parts from URL without overriding explicit settings
    for key, val in parsed.items():
        resolved.setdefault(key, val)
    resolved["type"] = btype
    # Output
    return resolved


# Instantiate a backend
def create_backend(resolved: dict, repo_root: str, tools=None, trust=None):
    r"""Create the backend object for resolved settings

    :Call:
        >>> backend = create_backend(resolved, repo_root, **kw)
    :Inputs:
        *resolved*: :class:`dict`
            Output of :func:`resolve_backend`
        *repo_root*: :class:`str`
            Top level of working repo
        *tools*: {``None``} | :class:`list`\ [:class:`str`]
            Preferred transfer tools, from *sync.tools*
        *trust*: {``None``} | :class:`TrustStore`
            If given, command backends require a trusted repo
    :Outputs:
        *backend*: :class:`LocalBackend` | :class:`CommandBackend` |
        :class:`AwsCliBackend` | :class:`BuiltinS3Backend` |
        :class:`RcloneBackend`
    """
    # Type
    btype = resolved.get("type")
    # Default tools
    if tools is None:
        tools = ["aws-cli", "rclone"]
    # Dispatch
    if btype == "local":
        # Folder relative to repo
        fdir = resolve_local_path(resolved.get("path") or "", repo_root)
        return LocalBackend(fdir)
    elif btype == "command":
        # Command templates from a clone need explicit approval
        if trust is not None and not trust.is_trusted(repo_root):
            raise BlobsyPermissionError(
                "Repository is not trusted to run backend commands: "
                f"{repo_root}",
                suggestions=[
                    "Review the commands in .blobsy.yml, then run: "
                    "blobsy trust"])
        return CommandBackend(
            resolved.get("push_command"),
            resolved.get("pull_command"),
            resolved.get("exists_command"),
            bucket=resolved.get("bucket", ""),
            repo_root=repo_root)
    elif btype == "s3":
        # Common options
        bucket = resolved.get("bucket", "")
        prefix = resolved.get("prefix", "")
        region = resolved.get("region")
        endpoint = resolved.get("endpoint")
        # Use the aws CLI if requested and installed
        if "aws-cli" in tools and is_aws_cli_available():
            LOG.debug("Using aws CLI for s3://%s", bucket)
            return AwsCliBackend(bucket, prefix, region, endpoint)
        LOG.debug("Using built-in S3 client for s3://%s", bucket)
        return BuiltinS3Backend(bucket, prefix, region, endpoint)
    elif btype in ("gcs", "azure"):
        return RcloneBackend(
            resolved.get("rclone_remote"),
            resolved.get("bucket", ""),
            resolved.get("prefix", ""),
            btype)
    # Unknown
    raise BlobsyValidationError(f"Unknown backend type: {btype}")


def get_backend(config: dict, repo_root: str, trust=None):
    # Resolve and create in one step
    return create_backend(
        resolve_backend(config), repo_root, get_sync_tools(config), trust)


# Upload one file
def push_file(
        fname: str,
        repo_path: str,
        ref: dict,
        config: dict,
        repo_root: str,
        backend=None,
        timestamp=None) -> TransferResult:
    r"""Upload one working file, compressing it if configured

    :Call:
        >>> result = push_file(fname, repo_path, ref, config, repo_root)
    :Inputs:
        *fname*: :class:`str`
            Working file to upload
        *repo_path*: :class:`str`
            *fname* relative to repo root
        *ref*: :class:`dict`
            Current pointer record; *hash* and *size* must be current
        *config*: :class:`dict`
            Resolved settings
        *repo_root*: :class:`str`
            Top level of working repo
        *backend*: {``None``} | backend
            Backend to use; default from *config*
        *timestamp*: {``None``} | :class:`datetime.datetime`
            Time for ``{iso_date_secs}`` in key template
    :Outputs:
        *result*: :class:`TransferResult`
            Outcome; *ref_updates* holds new remote fields on success
    """
    # Backend
    if backend is None:
        backend = get_backend(config, repo_root)
    # Compression decision
    policy = get_compress_config(config)
    algorithm = None
    if should_compress(repo_path, ref["size"], policy):
        algorithm = policy["algorithm"]
    suffix = get_compress_suffix(algorithm)
    # Remote key, from hash of uncompressed content
    remote_key = evaluate_template(
        get_key_template(config), ref["hash"], repo_path, suffix, timestamp)
    # Temp file for compressed content
    ftmp = None
    try:
        # File to upload
        fupload = fname
        nbyte = ref["size"]
        # Compress
        if algorithm:
            ftmp = f"{fname}.blobsy-compress-{secrets.token_hex(4)}{suffix}"
            nbyte = compress_file(fname, ftmp, algorithm)
            fupload = ftmp
        # Upload
        backend.push(fupload, remote_key)
    except (BlobsyError, OSError) as err:
        LOG.debug("Push failed for %s: %s", repo_path, err)
        return TransferResult.from_error(repo_path, "push", err)
    finally:
        # Always remove compressed copy
        if ftmp is not None:
            _cleanup(ftmp)
    # Successful result
    return TransferResult(
        repo_path, "push",
        bytes_transferred=nbyte,
        ref_updates={
            "remote_key": remote_key,
            "compressed": algorithm,
            "compressed_size": nbyte if algorithm else None,
        })


# Download one file
def pull_file(
        ref: dict,
        fname: str,
        config: dict,
        repo_root: str,
        backend=None) -> TransferResult:
    r"""Download one blob to its working file

    Compressed blobs are downloaded to a temp file, decompressed to a
    second temp file, and checked against *ref["hash"]* before the
    result replaces *fname*. An existing *fname* is only replaced after
    the check passes.

    :Call:
        >>> result = pull_file(ref, fname, config, repo_root)
    :Inputs:
        *ref*: :class:`dict`
            Pointer record
        *fname*: :class:`str`
            Working file to write
        *config*: :class:`dict`
            Resolved settings
        *repo_root*: :class:`str`
            Top level of working repo
        *backend*: {``None``} | backend
            Backend to use; default from *config*
    :Outputs:
        *result*: :class:`TransferResult`
            Outcome
    """
    # Repo-relative name for result
    repo_path = to_repo_relative(fname, repo_root)
    # Nothing to pull if never pushed
    remote_key = ref.get("remote_key")
    if not remote_key:
        return TransferResult(
            repo_path, "pull", success=False,
            error="No remote_key in .bref; file has not been pushed",
            error_category="not_found")
    # Backend
    if backend is None:
        backend = get_backend(config, repo_root)
    # Compression
    algorithm = ref.get("compressed")
    try:
        if algorithm and algorithm != "none":
            _pull_compressed(backend, ref, fname, algorithm)
        else:
            # Backend verifies hash before renaming
            backend.pull(remote_key, fname, ref["hash"])
    except (BlobsyError, OSError) as err:
        LOG.debug("Pull failed for %s: %s", repo_path, err)
        return TransferResult.from_error(repo_path, "pull", err)
    # Success
    return TransferResult(
        repo_path, "pull",
        bytes_transferred=ref.get("compressed_size", ref["size"]))


def _pull_compressed(backend, ref: dict, fname: str, algorithm: str):
    # Temp names sharing one random tag
    tag = secrets.token_hex(8)
    ftmp = f"{fname}.blobsy-pull-{tag}"
    ftmpz = ftmp + get_compress_suffix(algorithm)
    try:
        # Download compressed blob
        ensure_dir(os.path.dirname(os.path.abspath(fname)))
        backend.pull(ref["remote_key"], ftmpz)
        # Decompress
        decompress_file(ftmpz, ftmp, algorithm)
        # Verify original content
        actual = compute_hash(ftmp)
        if actual != ref["hash"]:
            raise BlobsyValidationError(
                "Hash mismatch after decompression: "
                f"expected {ref['hash']}, got {actual}",
                suggestions=[
                    "The remote blob does not match the .bref; "
                    "re-push it from a machine with a good copy"])
        # Move into place
        os.replace(ftmp, fname)
    finally:
        # Remove both temp files
        _cleanup(ftmpz)
        _cleanup(ftmp)


# Decide and transfer one file
def sync_file(
        fname: str,
        repo_path: str,
        ref: dict,
        config: dict,
        repo_root: str,
        backend=None,
        fhash=None,
        timestamp=None) -> SyncOutcome:
    r"""Push, pull, or skip one tracked file

    ==============================  ======================================
    State                           Action
    ==============================  ======================================
    no *remote_key*                 push
    working file missing            pull
    working file hash changed       clear remote fields, push new content
    hash matches                    nothing (no backend call)
    ==============================  ======================================

    :Call:
        >>> outcome = sync_file(fname, repo_path, ref, config, repo_root)
    :Inputs:
        *fname*: :class:`str`
            Working file
        *repo_path*: :class:`str`
            *fname* relative to repo root
        *ref*: :class:`dict`
            Current pointer record
        *config*: :class:`dict`
            Resolved settings
        *repo_root*: :class:`str`
            Top level of working repo
        *backend*: {``None``} | backend
            Backend to use; created from *config* only if needed
        *fhash*: {``None``} | :class:`str`
            Known hash of *fname*, e.g. from the stat cache
        *timestamp*: {``None``} | :class:`datetime.datetime`
            Time for ``{iso_date_secs}`` in key template
    :Outputs:
        *outcome*: :class:`SyncOutcome`
            Decision, transfer result, and record to save (if any)
    """
    # Never pushed
    if not ref.get("remote_key"):
        return _sync_push(
            fname, repo_path, ref, config, repo_root, backend, timestamp)
    # Working file missing
    if not os.path.isfile(fname):
        result = pull_file(ref, fname, config, repo_root, backend)
        return SyncOutcome("pull", result)
    # Current hash
    if fhash is None:
        fhash = compute_hash(fname)
    # Local modification
    if fhash != ref["hash"]:
        # Old key points to old content
        newref = clear_remote_fields(ref)
        newref["hash"] = fhash
        newref["size"] = os.path.getsize(fname)
        return _sync_push(
            fname, repo_path, newref, config, repo_root, backend, timestamp)
    # Up to date
    return SyncOutcome("up_to_date")


def _sync_push(fname, repo_path, ref, config, repo_root, backend, timestamp):
    # Upload
    result = push_file(
        fname, repo_path, ref, config, repo_root, backend, timestamp)
    # Record to save only on success
    if result.success:
        return SyncOutcome(
            "push", result, merge_ref_updates(ref, result.ref_updates))
    return SyncOutcome("push", result)


def run_health_check(config: dict, repo_root: str, trust=None):
    r"""Check that the configured backend is reachable

    :Call:
        >>> backend = run_health_check(config, repo_root)
    :Outputs:
        *backend*: backend
            Backend that passed the check
    :Raises:
        :class:`BlobsyError` describing the failure
    """
    # Create backend
    backend = get_backend(config, repo_root, trust)
    # Probe
    backend.health_check()
    # Output
    return backend


def _cleanup(fname: str):
    # Remove a temp file; failure here should not hide the real result
    try:
        remove_if_exists(fname)
    except OSError as err:
        LOG.warning("Could not remove temp file %s: %s", fname, err)
