r"""
``backend_command``: Blob storage through user-defined commands
=================================================================

A backend configured with command templates, for example

.. code-block:: yaml

    backends:
      default:
        push_command: rsync -a {local} backup:/blobs/{remote}
        pull_command: rsync -a backup:/blobs/{remote} {local}
        exists_command: ssh backup test -f /blobs/{remote}

Each template is split on whitespace into an argument list. Every token
is expanded twice: first the template variables

    ====================  ==============================================
    Variable              Value
    ====================  ==============================================
    ``{local}``           Absolute path of local file (temp file on pull)
    ``{remote}``          Remote key
    ``{relative_path}``   Local file relative to repo root
    ``{bucket}``          Value of *bucket* in backend config
    ====================  ==============================================

and then environment references ``$NAME`` and ``${NAME}`` (undefined
names expand to nothing, and tokens that end up empty are dropped).
Each expanded token must consist only of letters, digits, spaces, and
the characters ``/._-:@=+,%``; anything else is rejected before the
command runs. Commands never run through a shell.

Templates may come from a cloned repo, so this backend is only created
for repos marked with ``blobsy trust``.
"""

# Standard library
import os
import re

# Local imports
from .blobsyerror import (
    BlobsyError,
    BlobsyFileNotFoundError,
    BlobsyTransferError,
    BlobsyValidationError,
    categorize_error_text)
from .hashutils import verify_hash
from .paths import (
    ensure_dir,
    genr8_temp_path,
    normalize_path,
    remove_if_exists,
    to_repo_relative)
from .shellutils import TIMEOUT_EXISTS, TIMEOUT_TRANSFER, call_oe, which


# Template variables
TEMPLATE_VARS = ("local", "remote", "relative_path", "bucket")
# Environment references
REGEX_ENV_VAR = re.compile(
    r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")
# Characters allowed in an expanded argument
REGEX_SAFE_TOKEN = re.compile(r"[A-Za-z0-9 /._\-:@=+,%]*")
REGEX_UNSAFE_CHAR = re.compile(r"[^A-Za-z0-9 /._\-:@=+,%]")
# Environment variable with temp file name during pull
TEMP_OUT_VAR = "BLOBSY_TEMP_OUT"


class CommandBackend(object):
    r"""Backend running user-supplied command templates

    :Call:
        >>> backend = CommandBackend(push_cmd, pull_cmd, exists_cmd, **kw)
    :Inputs:
        *push_command*: :class:`str`
            Template for upload command
        *pull_command*: :class:`str`
            Template for download command
        *exists_command*: {``None``} | :class:`str`
            Template for existence check; exit code 0 means present
        *bucket*: {``""``} | :class:`str`
            Value for ``{bucket}``
        *repo_root*: {``None``} | :class:`str`
            Repo root used for ``{relative_path}``
    """
   # --- Class attributes ---
    __slots__ = (
        "push_command",
        "pull_command",
        "exists_command",
        "bucket",
        "repo_root",
    )

    # Backend type
    type = "command"

   # --- __dunder__ ---
    def __init__(
            self, push_command, pull_command, exists_command=None,
            bucket="", repo_root=None):
        # Push and pull are required
        for name, cmd in (("push", push_command), ("pull", pull_command)):
            if not cmd or not cmd.strip():
                raise BlobsyValidationError(
                    f"Command backend requires a non-empty {name}_command",
                    suggestions=[
                        f"Set '{name}_command' for the backend in .blobsy.yml"
                    ])
        self.push_command = push_command
        self.pull_command = pull_command
        self.exists_command = exists_command
        self.bucket = bucket or ""
        self.repo_root = repo_root

   # --- Transfers ---
    def push(self, fname: str, remote_key: str):
        # Check source before running anything
        if not os.path.isfile(fname):
            raise BlobsyFileNotFoundError(f"Local file not found: {fname}")
        # Expand command
        cmd = expand_command_template(
            self.push_command, self._genr8_vars(fname, remote_key))
        # Run it
        self._exec(cmd, "push")

    def pull(self, remote_key: str, fname: str, expected_hash=None):
        r"""Run pull command into a temp file, verify, then rename

        The temp file is both ``{local}`` in the template and
        ``$BLOBSY_TEMP_OUT`` in the command's environment.

        :Call:
            >>> backend.pull(remote_key, fname, expected_hash=None)
        """
        # Make sure target folder exists
        ensure_dir(os.path.dirname(os.path.abspath(fname)))
        # Temp file next to target
        ftmp = os.path.abspath(genr8_temp_path(fname, "cmd"))
        # Extra environment
        env = {TEMP_OUT_VAR: ftmp}
        # Expand command
        vals = self._genr8_vars(fname, remote_key)
        vals["local"] = ftmp
        cmd = expand_command_template(self.pull_command, vals, env)
        try:
            # Download
            self._exec(cmd, "pull", env=env)
            # Check that command created the file
            if not os.path.isfile(ftmp):
                raise BlobsyTransferError(
                    f"Pull command did not create output file: {ftmp}",
                    "unknown",
                    [f"Write the blob to {{local}} or ${TEMP_OUT_VAR}"])
            # Verify
            if expected_hash:
                verify_hash(ftmp, expected_hash)
            # Move into place
            os.replace(ftmp, fname)
        except BaseException:
            remove_if_exists(ftmp)
            raise

    def exists(self, remote_key: str) -> bool:
        r"""Run the existence check; exit code 0 means present

        :Call:
            >>> q = backend.exists(remote_key)
        :Outputs:
            *q*: ``True`` | ``False``
                ``False`` for nonzero exit or no ``exists_command``
        """
        # No command configured
        if not self.exists_command:
            return False
        # Expand command
        cmd = expand_command_template(
            self.exists_command, self._genr8_vars("", remote_key))
        # Run it
        _, _, ierr = call_oe(cmd, cwd=self.repo_root, timeout=TIMEOUT_EXISTS)
        # Exit status is the answer
        return ierr == 0

    def delete(self, remote_key: str):
        raise BlobsyError(
            "Command backends do not support deleting remote blobs",
            "validation",
            ["Delete the blob manually with your storage tool"])

    def health_check(self):
        r"""Check that each configured program can be found

        :Call:
            >>> backend.health_check()
        """
        # Loop through configured commands
        for template in (
                self.push_command, self.pull_command, self.exists_command):
            # Skip missing
            if not template:
                continue
            # Program is first token
            prog = template.split()[0]
            # Expand environment references in program name
            prog = _expand_env(prog, os.environ)
            # Check PATH
            if not (os.path.isfile(prog) or which(prog)):
                raise BlobsyFileNotFoundError(
                    f"Command not found: {prog}",
                    suggestions=[f"Install '{prog}' or check your PATH"])

   # --- Utilities ---
    def _genr8_vars(self, fname: str, remote_key: str) -> dict:
        # Repo-relative name of local file
        if not fname:
            frel = ""
        elif self.repo_root:
            frel = to_repo_relative(fname, self.repo_root)
        else:
            frel = normalize_path(fname)
        # Template values
        return {
            "local": os.path.abspath(fname) if fname else "",
            "remote": remote_key,
            "relative_path": frel,
            "bucket": self.bucket,
        }

    def _exec(self, cmd: list, operation: str, env=None):
        # Run it
        stdout, stderr, ierr = call_oe(
            cmd, cwd=self.repo_root, env=env, timeout=TIMEOUT_TRANSFER)
        # Success
        if ierr == 0:
            return stdout
        # Details for message
        details = "\n".join(txt for txt in (stdout.strip(), stderr.strip())
                            if txt)
        # Failure
        raise BlobsyTransferError(
            f"Command {operation} failed (exit {ierr}): {' '.join(cmd)}\n"
            f"{details}",
            categorize_error_text(stderr))


# Expand a command template into an argument list
def expand_command_template(template: str, values: dict, env=None) -> list:
    r"""Expand a command template into a validated argument list

    :Call:
        >>> cmd = expand_command_template(template, values, env=None)
    :Inputs:
        *template*: :class:`str`
            Command template, split on whitespace
        *values*: :class:`dict`\ [:class:`str`]
            Values for ``{local}``, ``{remote}``, ``{relative_path}``,
            and ``{bucket}``
        *env*: {``None``} | :class:`dict`
            Extra environment variables, added to :data:`os.environ`
    :Outputs:
        *cmd*: :class:`list`\ [:class:`str`]
            Program and arguments
    :Raises:
        :class:`BlobsyValidationError` if template is empty or any
        expanded token has an unsafe character
    """
    # Split template
    tokens = (template or "").split()
    # Check for empty
    if not tokens:
        raise BlobsyValidationError(
            "Command template is empty",
            suggestions=["Check the backend commands in .blobsy.yml"])
    # Full environment for "$NAME" references
    fullenv = dict(os.environ)
    if env:
        fullenv.update(env)
    # Expand each token
    cmd = []
    for token in tokens:
        # First pass: template variables
        arg = token
        for name in TEMPLATE_VARS:
            arg = arg.replace("{%s}" % name, str(values.get(name, "")))
        # Second pass: environment
        arg = _expand_env(arg, fullenv)
        # Drop empty arguments
        if arg == "":
            continue
        # Check characters
        if REGEX_SAFE_TOKEN.fullmatch(arg) is None:
            # Unique bad characters, in order of appearance
            bad = "".join(dict.fromkeys(REGEX_UNSAFE_CHAR.findall(arg)))
            raise BlobsyValidationError(
                f"Unsafe characters {bad!r} in command argument {arg!r} "
                f"(from template token {token!r})",
                suggestions=[
                    "Command arguments may only contain letters, digits, "
                    "spaces, and /._-:@=+,%",
                    "Rename the file or adjust the command template"])
        # Save
        cmd.append(arg)
    # Check again in case every token expanded to nothing
    if not cmd:
        raise BlobsyValidationError(
            f"Command template expanded to nothing: {template!r}")
    # Output
    return cmd


def _expand_env(txt: str, env: dict) -> str:
    # Replace $NAME and ${NAME}
    return REGEX_ENV_VAR.sub(
        lambda m: env.get(m.group(1) or m.group(2), ""), txt)
