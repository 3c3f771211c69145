r"""
``backend_s3``: S3 storage through the :mod:`boto3` SDK
=========================================================

Used when the ``aws`` CLI is not installed (or not listed in
``sync.tools``). Credentials come from the standard boto3 chain
(environment, shared config files, instance roles). Transfers use the
managed :meth:`upload_file`/:meth:`download_file` calls, which stream
and split large objects into parts automatically.
"""

# Standard library
import os
import secrets

# Third-party
import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

# Local imports
from .blobsyerror import BlobsyFileNotFoundError, BlobsyTransferError
from .hashutils import verify_hash
from .paths import ensure_dir, genr8_temp_path, remove_if_exists


# Error codes/messages for each category, checked in order
S3_ERROR_CATEGORIES = (
    (("accessdenied", "invalidaccesskeyid", "signaturedo", "403",
      "forbidden", "credentials"), "authentication"),
    (("nosuchbucket", "nosuchkey", "notfound", "404"), "not_found"),
    (("timeout", "econnrefused", "enotfound", "connect", "network"),
     "network"),
    (("quotaexceeded", "slowdown"), "quota"),
)
# Suggestions for each category
S3_SUGGESTIONS = {
    "authentication": [
        "Check your AWS credentials "
        "(AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY)",
        "Verify the bucket policy allows your IAM user/role",
    ],
    "not_found": [
        "Check the bucket name and region in .blobsy.yml",
        "Verify the bucket exists and you have access",
    ],
    "network": [
        "Check your network connection",
        "If using a custom endpoint, verify it is reachable",
    ],
}
# Codes returned by head_object for a missing key
S3_MISSING_CODES = ("404", "NotFound", "NoSuchKey")


class BuiltinS3Backend(object):
    r"""S3 backend using :mod:`boto3`

    :Call:
        >>> backend = BuiltinS3Backend(bucket, prefix="", **kw)
    :Inputs:
        *bucket*: :class:`str`
            Name of S3 bucket
        *prefix*: {``""``} | :class:`str`
            Key prefix, ending in ``/``
        *region*: {``None``} | :class:`str`
            AWS region
        *endpoint*: {``None``} | :class:`str`
            Endpoint URL for S3-compatible stores (uses path-style)
        *client*: {``None``} | :class:`botocore.client.S3`
            Pre-built client; default is created from the above
    """
   # --- Class attributes ---
    __slots__ = (
        "bucket",
        "prefix",
        "client",
    )

    # Backend type
    type = "s3"

   # --- __dunder__ ---
    def __init__(
            self, bucket: str, prefix="",
            region=None, endpoint=None, client=None):
        self.bucket = bucket
        self.prefix = prefix or ""
        # Create client
        if client is None:
            client = _make_client(region, endpoint)
        self.client = client

   # --- Transfers ---
    def push(self, fname: str, remote_key: str):
        # Check source before contacting S3
        if not os.path.isfile(fname):
            raise BlobsyFileNotFoundError(f"Local file not found: {fname}")
        # Full key
        key = self._full_key(remote_key)
        # Upload
        try:
            self.client.upload_file(fname, self.bucket, key)
        except (BotoCoreError, ClientError) as err:
            raise self._wrap_error(err, f"push to s3://{self.bucket}/{key}")

    def pull(self, remote_key: str, fname: str, expected_hash=None):
        r"""Download an object to a verified temp file, then rename

        :Call:
            >>> backend.pull(remote_key, fname, expected_hash=None)
        """
        # Full key
        key = self._full_key(remote_key)
        # Make sure target folder exists
        ensure_dir(os.path.dirname(os.path.abspath(fname)))
        # Temp file next to target
        ftmp = genr8_temp_path(fname, "s3")
        try:
            # Download
            try:
                self.client.download_file(self.bucket, key, ftmp)
            except (BotoCoreError, ClientError) as err:
                raise self._wrap_error(
                    err, f"pull from s3://{self.bucket}/{key}")
            # Verify
            if expected_hash:
                verify_hash(ftmp, expected_hash)
            # Move into place
            os.replace(ftmp, fname)
        except BaseException:
            remove_if_exists(ftmp)
            raise

    def exists(self, remote_key: str) -> bool:
        # Full key
        key = self._full_key(remote_key)
        # Check metadata only
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as err:
            # Missing key
            if _error_code(err) in S3_MISSING_CODES:
                return False
            raise self._wrap_error(
                err, f"check existence of s3://{self.bucket}/{key}")
        except BotoCoreError as err:
            raise self._wrap_error(
                err, f"check existence of s3://{self.bucket}/{key}")
        return True

    def delete(self, remote_key: str):
        # Full key
        key = self._full_key(remote_key)
        # Delete
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as err:
            raise self._wrap_error(err, f"delete s3://{self.bucket}/{key}")

    def health_check(self):
        r"""Write and delete a small probe object

        :Call:
            >>> backend.health_check()
        """
        # Probe key
        key = self._full_key(f".blobsy-health-check-{secrets.token_hex(4)}")
        # Round trip
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=b"health-check")
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as err:
            raise self._wrap_error(err, f"health check on s3://{self.bucket}")

   # --- Utilities ---
    def _full_key(self, remote_key: str) -> str:
        return self.prefix + remote_key

    def _wrap_error(self, err, operation: str) -> BlobsyTransferError:
        # Classify
        category = categorize_s3_error(err)
        # Convert
        return BlobsyTransferError(
            f"S3 {operation}: {err}",
            category, S3_SUGGESTIONS.get(category))


def categorize_s3_error(err: Exception) -> str:
    r"""Get error category from a :mod:`botocore` exception

    :Call:
        >>> category = categorize_s3_error(err)
    :Inputs:
        *err*: :class:`Exception`
            Error raised by a boto3 call
    :Outputs:
        *category*: :class:`str`
            One of the :mod:`blobsy` error categories
    """
    # Combine class name, error code, and message
    txt = " ".join(
        (type(err).__name__, _error_code(err), str(err))).lower()
    # Check each category
    for patterns, category in S3_ERROR_CATEGORIES:
        if any(pat in txt for pat in patterns):
            return category
    # Fallback
    return "unknown"


def _error_code(err: Exception) -> str:
    # Only ClientError has a response
    if not isinstance(err, ClientError):
        return ""
    return str(err.response.get("Error", {}).get("Code", ""))


def _make_client(region=None, endpoint=None):
    # Bounded timeouts and retries
    config = BotoConfig(
        connect_timeout=10,
        read_timeout=60,
        retries={"max_attempts": 3, "mode": "standard"},
        s3={"addressing_style": "path"} if endpoint else None)
    # Client options
    kw = {"config": config}
    if region:
        kw["region_name"] = region
    if endpoint:
        kw["endpoint_url"] = endpoint
    # Create
    return boto3.client("s3", **kw)
