r"""
``backend_rclone``: Cloud storage through ``rclone``
======================================================

Google Cloud Storage and Azure Blob Storage (and anything else rclone
supports) are reached through a named rclone remote, configured in
``.blobsy.yml`` as

.. code-block:: yaml

    backends:
      default:
        url: gs://my-bucket/datasets/
        rclone_remote: mygcs
"""

# Standard library
import os

# Local imports
from .blobsyerror import (
    BlobsyError,
    BlobsyFileNotFoundError,
    BlobsyTransferError,
    BlobsyValidationError,
    categorize_error_text)
from .hashutils import verify_hash
from .paths import ensure_dir, genr8_temp_path, remove_if_exists
from .shellutils import TIMEOUT_EXISTS, TIMEOUT_TRANSFER, call_oe, which


# Program name
RCLONE_PROG = "rclone"
# Return code of "lsf" for missing path
IERR_RCLONE_NOT_FOUND = 3


class RcloneBackend(object):
    r"""Backend that wraps the ``rclone`` CLI

    :Call:
        >>> backend = RcloneBackend(remote, bucket, prefix="", btype="gcs")
    :Inputs:
        *remote*: :class:`str`
            Name of configured rclone remote
        *bucket*: :class:`str`
            Bucket or container name
        *prefix*: {``""``} | :class:`str`
            Key prefix, ending in ``/``
        *btype*: {``"gcs"``} | ``"azure"`` | :class:`str`
            Backend type reported by :attr:`type`
    """
   # --- Class attributes ---
    __slots__ = (
        "remote",
        "bucket",
        "prefix",
        "type",
    )

   # --- __dunder__ ---
    def __init__(self, remote: str, bucket: str, prefix="", btype="gcs"):
        # Remote name is required
        if not remote:
            raise BlobsyValidationError(
                f"{btype} backend requires rclone_remote to be set "
                "in .blobsy.yml",
                suggestions=[
                    "Install rclone: https://rclone.org/install/",
                    "Configure a remote: rclone config",
                    "Then add 'rclone_remote: <remote-name>' to your "
                    "backend in .blobsy.yml",
                ])
        self.remote = remote
        self.bucket = bucket
        self.prefix = prefix or ""
        self.type = btype

   # --- Transfers ---
    def push(self, fname: str, remote_key: str):
        # Check source before running anything
        if not os.path.isfile(fname):
            raise BlobsyFileNotFoundError(f"Local file not found: {fname}")
        # Copy
        self._exec(
            ["copyto", os.path.abspath(fname), self._remote_path(remote_key)],
            "push")

    def pull(self, remote_key: str, fname: str, expected_hash=None):
        # Make sure target folder exists
        ensure_dir(os.path.dirname(os.path.abspath(fname)))
        # Temp file next to target
        ftmp = genr8_temp_path(fname, "rclone")
        try:
            # Download
            self._exec(
                ["copyto", self._remote_path(remote_key),
                 os.path.abspath(ftmp)],
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
        r"""Check for a blob with ``rclone lsf``

        :Call:
            >>> q = backend.exists(remote_key)
        """
        try:
            stdout = self._exec(
                ["lsf", self._remote_path(remote_key)],
                "exists", timeout=TIMEOUT_EXISTS)
        except BlobsyError as err:
            # Missing path is an answer, not an error
            if err.category == "not_found" and \
                    not isinstance(err, BlobsyFileNotFoundError):
                return False
            raise
        # Listing is empty if object is missing
        return stdout.strip() != ""

    def delete(self, remote_key: str):
        self._exec(["deletefile", self._remote_path(remote_key)], "delete")

    def health_check(self):
        # List top level of prefix only
        target = f"{self.remote}:{self.bucket}/{self.prefix}"
        self._exec(
            ["lsf", target, "--max-depth", "1"],
            "health check", timeout=TIMEOUT_EXISTS)

   # --- Utilities ---
    def _remote_path(self, remote_key: str) -> str:
        return f"{self.remote}:{self.bucket}/{self.prefix}{remote_key}"

    def _exec(self, args: list, operation: str, timeout=TIMEOUT_TRANSFER):
        # Full command
        cmd = [RCLONE_PROG] + args
        # Run it
        try:
            stdout, stderr, ierr = call_oe(cmd, timeout=timeout)
        except BlobsyFileNotFoundError:
            raise BlobsyFileNotFoundError(
                "rclone not found",
                suggestions=["Install it from https://rclone.org/install/"])
        # Success
        if ierr == 0:
            return stdout
        # Details for message
        details = "\n".join(txt for txt in (stdout.strip(), stderr.strip())
                            if txt)
        # Missing path on existence check
        if operation == "exists" and (
                ierr == IERR_RCLONE_NOT_FOUND or
                "directory not found" in stderr):
            raise BlobsyTransferError(
                f"Not found: {' '.join(cmd)}", "not_found")
        # Unknown remote is a configuration problem
        if "couldn't find remote" in stderr:
            raise BlobsyValidationError(
                f"rclone remote '{self.remote}' not found",
                suggestions=[
                    "Check configured remotes: rclone listremotes",
                    "Create a new remote: "
                    f"rclone config create {self.remote} <type>",
                ])
        # General failure
        raise BlobsyTransferError(
            f"rclone {operation} failed (exit {ierr}): {' '.join(cmd)}\n"
            f"{details}",
            categorize_error_text(stderr))


def is_rclone_available() -> bool:
    return which(RCLONE_PROG) is not None
