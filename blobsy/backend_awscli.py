r"""
``backend_awscli``: S3 storage through the ``aws`` command-line tool
======================================================================

Uses ``aws s3 cp`` for transfers and ``aws s3api`` for metadata so
blobsy picks up whatever credentials, profiles, and SSO sessions the
user already has configured for the AWS CLI.
"""

# Standard library
import os

# Local imports
from .blobsyerror import (
    BlobsyError,
    BlobsyFileNotFoundError,
    BlobsyTransferError,
    categorize_error_text)
from .hashutils import verify_hash
from .paths import ensure_dir, genr8_temp_path, remove_if_exists
from .shellutils import TIMEOUT_EXISTS, TIMEOUT_TRANSFER, call_oe, which


# Program name
AWS_PROG = "aws"
# Return code of "head-object" for missing key
IERR_AWS_NOT_FOUND = 254


class AwsCliBackend(object):
    r"""S3 backend that wraps the ``aws`` CLI

    :Call:
        >>> backend = AwsCliBackend(bucket, prefix="", **kw)
    :Inputs:
        *bucket*: :class:`str`
            Name of S3 bucket
        *prefix*: {``""``} | :class:`str`
            Key prefix, ending in ``/``
        *region*: {``None``} | :class:`str`
            AWS region
        *endpoint*: {``None``} | :class:`str`
            Endpoint URL for S3-compatible stores
    """
   # --- Class attributes ---
    __slots__ = (
        "bucket",
        "prefix",
        "extra_args",
    )

    # Backend type
    type = "s3"

   # --- __dunder__ ---
    def __init__(self, bucket: str, prefix="", region=None, endpoint=None):
        self.bucket = bucket
        self.prefix = prefix or ""
        # Options added to every command
        self.extra_args = []
        if endpoint:
            self.extra_args.extend(["--endpoint-url", endpoint])
        if region:
            self.extra_args.extend(["--region", region])

   # --- Transfers ---
    def push(self, fname: str, remote_key: str):
        # Check source before running anything
        if not os.path.isfile(fname):
            raise BlobsyFileNotFoundError(f"Local file not found: {fname}")
        # Copy
        self._exec(
            ["s3", "cp", os.path.abspath(fname), self._s3_uri(remote_key)],
            "push")

    def pull(self, remote_key: str, fname: str, expected_hash=None):
        r"""Download a blob via ``aws s3 cp`` to a verified temp file

        :Call:
            >>> backend.pull(remote_key, fname, expected_hash=None)
        """
        # Make sure target folder exists
        ensure_dir(os.path.dirname(os.path.abspath(fname)))
        # Temp file next to target
        ftmp = genr8_temp_path(fname, "aws")
        try:
            # Download
            self._exec(
                ["s3", "cp", self._s3_uri(remote_key), os.path.abspath(ftmp)],
                "pull")
            # Verify
            if expected_hash:
                verify_hash(ftmp, expected_hash)
            # Move into place
            os.replace(ftmp, fname)
        except BaseException:
            remove_if_exists(ftmp)
            raise

    def exists(self, remote_key: str) -> bool:
        r"""Check for a blob with ``aws s3api head-object``

        :Call:
            >>> q = backend.exists(remote_key)
        :Outputs:
            *q*: ``True`` | ``False``
                Whether blob exists; other failures raise
        """
        try:
            self._exec(
                [
                    "s3api", "head-object",
                    "--bucket", self.bucket,
                    "--key", self._full_key(remote_key),
                ],
                "exists", timeout=TIMEOUT_EXISTS)
        except BlobsyError as err:
            # Missing key is an answer, not an error
            if err.category == "not_found" and \
                    not isinstance(err, BlobsyFileNotFoundError):
                return False
            raise
        return True

    def delete(self, remote_key: str):
        self._exec(["s3", "rm", self._s3_uri(remote_key)], "delete")

    def health_check(self):
        self._exec(
            ["s3api", "head-bucket", "--bucket", self.bucket],
            "health check", timeout=TIMEOUT_EXISTS)

   # --- Utilities ---
    def _full_key(self, remote_key: str) -> str:
        return self.prefix + remote_key

    def _s3_uri(self, remote_key: str) -> str:
        return f"s3://{self.bucket}/{self._full_key(remote_key)}"

    def _exec(self, args: list, operation: str, timeout=TIMEOUT_TRANSFER):
        # Full command
        cmd = [AWS_PROG] + args + self.extra_args
        # Run it
        try:
            stdout, stderr, ierr = call_oe(cmd, timeout=timeout)
        except BlobsyFileNotFoundError:
            raise BlobsyFileNotFoundError(
                "aws CLI not found",
                suggestions=[
                    "Install the AWS CLI, or",
                    "set 'sync.tools: [aws-sdk]' in .blobsy.yml to use the "
                    "built-in S3 client"])
        # Success
        if ierr == 0:
            return stdout
        # Details for message
        details = "\n".join(txt for txt in (stdout.strip(), stderr.strip())
                            if txt)
        # Missing object on existence check
        if operation == "exists" and (
                ierr == IERR_AWS_NOT_FOUND or "Not Found" in stderr):
            raise BlobsyTransferError(
                f"Not found: s3://{self.bucket}/{args[-1]}", "not_found")
        # General failure
        raise BlobsyTransferError(
            f"aws {operation} failed (exit {ierr}): {' '.join(cmd)}\n"
            f"{details}",
            categorize_error_text(stderr))


def is_aws_cli_available() -> bool:
    return which(AWS_PROG) is not None
