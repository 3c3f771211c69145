r"""
``shellutils``: Run external programs without a shell
=======================================================

All external tools (``git``, ``aws``, ``rclone``, and user-configured
transfer commands) are run through :func:`call_oe`, which always takes
an argument list, never a string, and never starts a shell. Every call
has a timeout; a command that runs past it is reported as a
``network`` failure rather than hanging.
"""

# Standard library
import logging
import os
import shutil
import subprocess

# Local imports
from .blobsyerror import BlobsyFileNotFoundError, BlobsyTransferError


# Default timeouts, seconds
TIMEOUT_EXISTS = 30
TIMEOUT_TRANSFER = 300
TIMEOUT_GIT = 60

# Logger
LOG = logging.getLogger(__name__)


def call_oe(cmd, cwd=None, env=None, timeout=TIMEOUT_TRANSFER):
    r"""Run a command and capture STDOUT, STDERR, and return code

    :Call:
        >>> stdout, stderr, ierr = call_oe(cmd, cwd=None, env=None)
    :Inputs:
        *cmd*: :class:`list`\ [:class:`str`]
            Program and arguments
        *cwd*: {``None``} | :class:`str`
            Folder in which to run command
        *env*: {``None``} | :class:`dict`
            Extra environment variables (added to current environment)
        *timeout*: {``300``} | :class:`float`
            Seconds before command is killed
    :Outputs:
        *stdout*: :class:`str`
            Captured STDOUT
        *stderr*: :class:`str`
            Captured STDERR
        *ierr*: :class:`int`
            Return code
    :Raises:
        * :class:`BlobsyFileNotFoundError` if program is not installed
        * :class:`BlobsyTransferError` if command times out
    """
    # Check type; strings would need a shell to split
    if not isinstance(cmd, (list, tuple)):
        raise TypeError(
            "Command must be a list of arguments, got '%s'"
            % type(cmd).__name__)
    # Full environment
    fullenv = None
    if env:
        fullenv = dict(os.environ)
        fullenv.update(env)
    # Log
    LOG.debug("Running: %s", " ".join(cmd))
    # Run it
    try:
        proc = subprocess.run(
            list(cmd),
            cwd=cwd,
            env=fullenv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout)
    except FileNotFoundError:
        raise BlobsyFileNotFoundError(
            f"Command not found: {cmd[0]}",
            suggestions=[f"Install '{cmd[0]}' or check your PATH"])
    except subprocess.TimeoutExpired:
        raise BlobsyTransferError(
            f"Command timed out after {timeout}s: {' '.join(cmd)}",
            "network")
    # Output
    return proc.stdout, proc.stderr, proc.returncode


def which(prog: str):
    # Full path to program, or None
    return shutil.which(prog)
