r"""
``backend_local``: Blob storage in a local folder
===================================================

The simplest backend: blobs are copied into a folder on a local or
network-mounted filesystem, one file per remote key.
"""

# Standard library
import os
import shutil

# Local imports
from .blobsyerror import (
    BlobsyFileNotFoundError,
    BlobsyPermissionError,
    wrap_os_error)
from .hashutils import verify_hash
from .paths import ensure_dir, genr8_temp_path, remove_if_exists


class LocalBackend(object):
    r"""Backend storing blobs in a local folder

    :Call:
        >>> backend = LocalBackend(remote_dir)
    :Inputs:
        *remote_dir*: :class:`str`
            Absolute path to folder holding blobs
    """
   # --- Class attributes ---
    __slots__ = (
        "remote_dir",
    )

    # Backend type
    type = "local"

   # --- __dunder__ ---
    def __init__(self, remote_dir: str):
        self.remote_dir = remote_dir

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.remote_dir!r})"

   # --- Transfers ---
    def push(self, fname: str, remote_key: str):
        r"""Copy a local file into the remote folder

        :Call:
            >>> backend.push(fname, remote_key)
        :Inputs:
            *backend*: :class:`LocalBackend`
                Local-folder backend
            *fname*: :class:`str`
                Name of local file to upload
            *remote_key*: :class:`str`
                Key (relative path) within remote folder
        """
        # Check source
        if not os.path.isfile(fname):
            raise BlobsyFileNotFoundError(f"Local file not found: {fname}")
        # Target file
        ftarg = self._remote_path(remote_key)
        # Copy it
        try:
            ensure_dir(os.path.dirname(ftarg))
            shutil.copyfile(fname, ftarg)
        except OSError as err:
            raise wrap_os_error(err, f"Failed to copy to '{ftarg}'")

    def pull(self, remote_key: str, fname: str, expected_hash=None):
        r"""Copy a blob from the remote folder to a local file

        The blob is copied to a temporary file next to *fname*, checked
        against *expected_hash*, and only then renamed to *fname*.

        :Call:
            >>> backend.pull(remote_key, fname, expected_hash=None)
        :Inputs:
            *backend*: :class:`LocalBackend`
                Local-folder backend
            *remote_key*: :class:`str`
                Key (relative path) within remote folder
            *fname*: :class:`str`
                Name of local file to write
            *expected_hash*: {``None``} | :class:`str`
                Prefixed hash to verify before renaming
        """
        # Source file
        fsrc = self._remote_path(remote_key)
        # Check it
        if not os.path.isfile(fsrc):
            raise BlobsyFileNotFoundError(
                f"Remote blob not found: {remote_key}",
                suggestions=["Check that the file has been pushed"])
        # Make sure target folder exists
        ensure_dir(os.path.dirname(os.path.abspath(fname)))
        # Temp file in same folder
        ftmp = genr8_temp_path(fname, "tmp")
        try:
            # Copy
            shutil.copyfile(fsrc, ftmp)
            # Verify
            if expected_hash:
                verify_hash(ftmp, expected_hash)
            # Move into place
            os.replace(ftmp, fname)
        except OSError as err:
            remove_if_exists(ftmp)
            raise wrap_os_error(err, f"Failed to copy '{remote_key}'")
        except BaseException:
            remove_if_exists(ftmp)
            raise

    def exists(self, remote_key: str) -> bool:
        return os.path.isfile(self._remote_path(remote_key))

    def delete(self, remote_key: str):
        # Missing blob is not an error
        remove_if_exists(self._remote_path(remote_key))

    def health_check(self):
        r"""Check that remote folder exists and is writable

        :Call:
            >>> backend.health_check()
        :Raises:
            * :class:`BlobsyFileNotFoundError` if folder is missing
            * :class:`BlobsyPermissionError` if folder isn't writable
        """
        # Check folder
        if not os.path.isdir(self.remote_dir):
            raise BlobsyFileNotFoundError(
                f"Local backend directory not found: {self.remote_dir}",
                suggestions=[
                    "Create the directory or check the path in .blobsy.yml"])
        # Probe file
        fprobe = genr8_temp_path(
            os.path.join(self.remote_dir, ""), "health-check")
        # Write and delete it
        try:
            with open(fprobe, "w") as fp:
                fp.write("health-check")
            os.remove(fprobe)
        except OSError:
            remove_if_exists(fprobe)
            raise BlobsyPermissionError(
                f"Local backend directory is not writable: {self.remote_dir}",
                suggestions=[
                    "Check filesystem permissions on the backend directory"])

   # --- Files ---
    def _remote_path(self, remote_key: str) -> str:
        return os.path.join(self.remote_dir, *remote_key.split("/"))
