r"""
``backendurl``: Parse and validate backend URLs
=================================================

Backends are configured by URL, e.g. in ``blobsy init URL``:

    ==============================  ===================================
    URL                             Backend
    ==============================  ===================================
    ``s3://my-bucket/prefix/``      Amazon S3 or compatible
    ``gs://my-bucket/prefix/``      Google Cloud Storage (via rclone)
    ``azure://container/prefix/``   Azure Blob Storage (via rclone)
    ``local:../blobsy-remote``      Folder on local filesystem
    ==============================  ===================================

Cloud URLs require a non-empty prefix, which is normalized to end in
``/``. Local paths are resolved relative to the repo root.
"""

# Standard library
import os
import re

# Local imports
from .blobsyerror import BlobsyValidationError
from .paths import is_within


# Limits for bucket names
MIN_BUCKET_NAME_LENGTH = 3
MAX_BUCKET_NAME_LENGTH = 63
# Valid bucket names
REGEX_BUCKET = re.compile(r"[a-z0-9][a-z0-9.-]*[a-z0-9]")
# Control characters
REGEX_CONTROL = re.compile(r"[\x00-\x1f]")
# Cloud schemes and their backend types
CLOUD_SCHEMES = {
    "s3": "s3",
    "gs": "gcs",
    "azure": "azure",
}
# Examples for error messages
SCHEME_EXAMPLES = [
    "  s3://my-bucket/prefix/",
    "  gs://my-bucket/prefix/",
    "  azure://my-container/prefix/",
    "  local:../blobsy-remote",
]


def parse_backend_url(url: str) -> dict:
    r"""Parse a backend URL into its parts

    :Call:
        >>> parsed = parse_backend_url(url)
    :Inputs:
        *url*: :class:`str`
            Backend URL
    :Outputs:
        *parsed*: :class:`dict`
            Keys *type*, *url*, and either *bucket* and *prefix* (cloud
            backends) or *path* (local backend)
    :Raises:
        :class:`BlobsyValidationError` if *url* is invalid
    """
    # Check for empty
    if not url or not url.strip():
        raise BlobsyValidationError(
            "Backend URL is required",
            suggestions=[
                "Provide a URL like: blobsy init s3://my-bucket/prefix/"
            ] + SCHEME_EXAMPLES)
    # No queries or fragments
    if "?" in url or "#" in url:
        raise BlobsyValidationError(
            f"Backend URL must not contain query strings or fragments: {url}")
    # Check for cloud schemes
    lower = url.lower()
    for scheme, btype in CLOUD_SCHEMES.items():
        if lower.startswith(scheme + ":"):
            return _parse_cloud_url(url, scheme, btype)
    # Local scheme
    if lower.startswith("local:"):
        return _parse_local_url(url)
    # Bare path
    if url.startswith(("/", ".", "~")):
        raise BlobsyValidationError(
            f"Bare paths are not supported. Did you mean 'local:{url}'?",
            suggestions=[
                f"Use 'local:' prefix for local backends: local:{url}"
            ] + SCHEME_EXAMPLES)
    # Unknown scheme
    i = url.find(":")
    scheme = url[:i + 1] if i > 0 else url
    raise BlobsyValidationError(
        f"Unrecognized backend URL scheme: {scheme}",
        suggestions=["Supported schemes:"] + SCHEME_EXAMPLES)


def _parse_cloud_url(url: str, scheme: str, btype: str) -> dict:
    # Need "://"
    if not url[len(scheme) + 1:].startswith("//"):
        raise BlobsyValidationError(
            f"Invalid {scheme}: URL format: {url}",
            suggestions=[f"Expected format: {scheme}://bucket/prefix/"])
    # Part after scheme
    path = url[len(scheme) + 3:]
    # Split bucket from prefix
    bucket, sep, prefix = path.partition("/")
    # Prefix is required
    if not prefix:
        # Different message w/ and w/o slash
        if sep:
            msg = f"{scheme}: URL requires a non-empty prefix: {url}"
        else:
            msg = f"{scheme}: URL requires a prefix after the bucket: {url}"
        raise BlobsyValidationError(
            msg, suggestions=[f"Example: {scheme}://{bucket}/my-prefix/"])
    # Validate
    _valid8_bucket(bucket, url)
    _valid8_prefix(prefix, url)
    # Normalize trailing slash
    if not prefix.endswith("/"):
        prefix += "/"
    # Output
    return {
        "type": btype,
        "bucket": bucket,
        "prefix": prefix,
        "url": url,
    }


def _parse_local_url(url: str) -> dict:
    # Strip scheme
    path = url[len("local:"):]
    # Path required
    if not path.strip():
        raise BlobsyValidationError(
            "local: URL requires a path",
            suggestions=[
                "Example: local:../blobsy-remote",
                "Example: local:~/blobsy-storage",
            ])
    # Output
    return {
        "type": "local",
        "path": path,
        "url": url,
    }


def _valid8_bucket(bucket: str, url: str):
    # Check length
    if not MIN_BUCKET_NAME_LENGTH <= len(bucket) <= MAX_BUCKET_NAME_LENGTH:
        raise BlobsyValidationError(
            f"Bucket name must be {MIN_BUCKET_NAME_LENGTH}-"
            f"{MAX_BUCKET_NAME_LENGTH} characters: '{bucket}' in {url}")
    # Check characters
    if REGEX_BUCKET.fullmatch(bucket) is None:
        raise BlobsyValidationError(
            f"Invalid bucket name: '{bucket}'; must be lowercase "
            "alphanumeric with hyphens/periods, no leading/trailing hyphen")


def _valid8_prefix(prefix: str, url: str):
    # Check for bad patterns
    if prefix.startswith("/"):
        raise BlobsyValidationError(f"Prefix must not start with '/': {url}")
    if "//" in prefix:
        raise BlobsyValidationError(f"Prefix must not contain '//': {url}")
    if "\\" in prefix:
        raise BlobsyValidationError(
            f"Prefix must not contain backslashes: {url}")
    if REGEX_CONTROL.search(prefix):
        raise BlobsyValidationError(
            f"Prefix must not contain control characters: {url}")


def resolve_local_path(path: str, repo_root: str) -> str:
    r"""Get absolute path for a ``local:`` backend

    Leading ``~`` expands to the user's home folder; other relative
    paths are relative to *repo_root*.

    :Call:
        >>> fdir = resolve_local_path(path, repo_root)
    """
    # Expand home folder
    if path == "~" or path.startswith("~/"):
        return os.path.abspath(os.path.expanduser(path))
    # Relative to repo root
    return os.path.abspath(os.path.join(repo_root, path))


def validate_backend_url(parsed: dict, repo_root: str):
    r"""Check that a parsed URL is usable from a given repo

    A local backend folder inside the working repo would get committed
    or ignored along with regular files, so it is refused.

    :Call:
        >>> validate_backend_url(parsed, repo_root)
    """
    # Only local backends have extra checks
    if parsed.get("type") != "local":
        return
    # Absolute path
    fdir = resolve_local_path(parsed["path"], repo_root)
    # Check location
    if is_within(fdir, repo_root):
        raise BlobsyValidationError(
            "Local backend path must be outside the git repository: "
            f"{parsed['path']}",
            suggestions=[
                f"The path '{fdir}' is inside the repo root '{repo_root}'"])
