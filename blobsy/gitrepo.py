r"""
``gitrepo``: Interact with git repos using system interface
=============================================================

This module provides the :class:`GitRepo` class, a thin interface to
the ``git`` executable for the few things :mod:`blobsy` needs from git:
finding the top of the working repo, staging files, moving files git
already tracks, listing staged files, and locating the hooks folder.
"""

# Standard library
import functools
import os

# Local imports
from .blobsyerror import BlobsyGitError, BlobsyValidationError
from .shellutils import TIMEOUT_GIT, call_oe


# Decorator for moving directories
def run_gitdir(func):
    r"""Decorator to run a method within the top level of the repo

    :Call:
        >>> func = run_gitdir(func)
    :Wrapper Signature:
        >>> v = repo.func(*a, **kw)
    :Inputs:
        *func*: :class:`func`
            Method whose paths are relative to *repo.gitdir*
    """
    # Declare wrapper function to change directory
    @functools.wraps(func)
    def wrapper_func(self, *args, **kwargs):
        # Recall current directory
        fpwd = os.getcwd()
        # Go to specified directory
        os.chdir(self.gitdir)
        # Run the function, returning to original folder in any case
        try:
            return func(self, *args, **kwargs)
        finally:
            os.chdir(fpwd)
    # Apply the wrapper
    return wrapper_func


# Class to interface one repo
class GitRepo(object):
    r"""Git repository interface class

    :Call:
        >>> repo = GitRepo(where=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Path from which to look for git repo (default is CWD)
    :Outputs:
        *repo*: :class:`GitRepo`
            Interface to git repository
    """
   # --- Class attributes ---
    __slots__ = (
        "bare",
        "gitdir",
    )

   # --- __dunder__ ---
    def __init__(self, where=None):
        # Check for a bare repo
        self.bare = is_bare(where)
        # Record root directory
        if self.bare:
            self.gitdir = get_bare_gitdir(where)
        else:
            self.gitdir = find_repo_root(where)

   # --- Status Operations ---
    def check_ignore(self, fname: str) -> bool:
        r"""Check if *fname* is (or would be) ignored by git

        :Call:
            >>> q = repo.check_ignore(fname)
        :Outputs:
            *q*: ``True`` | ``False``
                Whether file is ignored (even if file doesn't exist)
        """
        # If ignored, return code is 0
        _, _, ierr = call_oe(
            ["git", "check-ignore", "-q", fname],
            cwd=self.gitdir, timeout=TIMEOUT_GIT)
        return ierr == 0

    def check_track(self, fname: str) -> bool:
        r"""Check if a file is tracked by git

        :Call:
            >>> q = repo.check_track(fname)
        """
        # If tracked, it will be listed in stdout
        stdout = self.check_o(["git", "ls-files", "--", fname])
        return stdout.strip() != ""

    def assert_working(self, cmd=None):
        r"""Assert that current repo is working (non-bare)

        :Call:
            >>> repo.assert_working(cmd=None)
        :Inputs:
            *cmd*: {``None``} | :class:`str`
                Command name for error message
        """
        # Check if a bare repo
        if self.bare:
            # Form message
            msg = "Cannot run command in bare repo"
            # Check for a command
            if cmd:
                msg += f": blobsy {cmd}"
            raise BlobsyValidationError(msg)

    @run_gitdir
    def ls_staged(self) -> list:
        r"""List files staged for the next commit (added/modified)

        :Call:
            >>> fnames = repo.ls_staged()
        :Outputs:
            *fnames*: :class:`list`\ [:class:`str`]
                Repo-relative names
        """
        # Names only, skip deletions
        stdout = self.check_o(
            ["git", "diff", "--cached", "--name-only", "--diff-filter=ACMR"])
        # Split into lines
        return [line for line in stdout.splitlines() if line.strip()]

   # --- Add ---
    def add(self, *fnames):
        # Only perform on working repo
        self.assert_working("add")
        # Perform 'git add' command
        self._add(*fnames)

    def _add(self, *fnames):
        # Nothing to do
        if not fnames:
            return
        self.check_call(["git", "add", "--"] + list(fnames))

   # --- Move ---
    def mv(self, fold: str, fnew: str):
        r"""Move a file, informing git if it tracks the file

        :Call:
            >>> repo.mv(fold, fnew)
        :Inputs:
            *fold*: :class:`str`
                Name of existing file
            *fnew*: :class:`str`
                Name of file after move
        """
        # Only perform on working repo
        self.assert_working("mv")
        # Use git only for files it knows about
        if self.check_track(fold):
            self.check_call(["git", "mv", fold, fnew])
        else:
            os.replace(fold, fnew)

   # --- Remove ---
    def rm_cached(self, *fnames):
        r"""Stop tracking files in git without touching the worktree

        Files that git doesn't track are skipped. Staged changes are
        discarded, since callers keep a copy of each file.

        :Call:
            >>> repo.rm_cached(*fnames)
        """
        # Only files git tracks
        fnames = [fname for fname in fnames if self.check_track(fname)]
        # Nothing to do
        if not fnames:
            return
        self.check_call(
            ["git", "rm", "--cached", "--quiet", "-f", "--"] + fnames)

   # --- Hooks ---
    def get_hooksdir(self) -> str:
        r"""Get absolute path to folder holding git hooks

        :Call:
            >>> fdir = repo.get_hooksdir()
        """
        # Respects core.hooksPath and worktrees
        stdout = self.check_o(["git", "rev-parse", "--git-path", "hooks"])
        # Relative to top level
        return os.path.join(self.gitdir, stdout.strip())

   # --- Shell utilities ---
    def check_o(self, cmd, codes=None, cwd=None):
        r"""Run a command, capturing STDOUT and checking return code

        :Call:
            >>> stdout = repo.check_o(cmd, codes=None, cwd=None)
        :Inputs:
            *cmd*: :class:`list`\ [:class:`str`]
                Command to run in list form
            *codes*: {``None``} | :class:`list`\ [:class:`int`]
                Collection of allowed return codes (default only ``0``)
            *cwd*: {``None``} | :class:`str`
                Location in which to run subprocess; default is top level
        :Outputs:
            *stdout*: :class:`str`
                Captured STDOUT from command, if any
        """
        # Default location
        if cwd is None:
            cwd = self.gitdir
        # Run the command as requested, capturing STDOUT and STDERR
        stdout, stderr, ierr = call_oe(cmd, cwd=cwd, timeout=TIMEOUT_GIT)
        # Check for allowed nonzero codes
        if codes and ierr in codes:
            return stdout
        # Check for errors, perhaps mal-formed command
        if ierr:
            raise BlobsyGitError(
                ("Unexpected exit code %i from command\n" % ierr) +
                ("> %s\n\n" % " ".join(cmd)) +
                ("Original error message:\n%s" % stderr))
        # Output
        return stdout

    def check_call(self, cmd, codes=None, cwd=None) -> int:
        r"""Run a command and check return code

        :Call:
            >>> ierr = repo.check_call(cmd, codes=None, cwd=None)
        """
        # Default location
        if cwd is None:
            cwd = self.gitdir
        # Run the command
        _, stderr, ierr = call_oe(cmd, cwd=cwd, timeout=TIMEOUT_GIT)
        # Check for allowed nonzero codes
        if codes and ierr in codes:
            return ierr
        # Check for errors
        if ierr:
            raise BlobsyGitError(
                ("Unexpected exit code %i from command\n" % ierr) +
                ("> %s\n\n" % " ".join(cmd)) +
                ("Original error message:\n%s" % stderr))
        # Output
        return ierr


def find_repo_root(where=None) -> str:
    r"""Get absolute path to top level of working repo

    :Call:
        >>> gitdir = find_repo_root(where=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Starting folder; default is current folder
    :Outputs:
        *gitdir*: :class:`str`
            Full path to top-level of working repo
    :Raises:
        :class:`BlobsyValidationError` if not in a git work tree
    """
    # Run git
    stdout, _, ierr = call_oe(
        ["git", "rev-parse", "--show-toplevel"],
        cwd=where, timeout=TIMEOUT_GIT)
    # Check for issues
    if ierr or not stdout.strip():
        raise BlobsyValidationError(
            f"Not inside a git repository: {where or os.getcwd()}",
            suggestions=["Run: git init"])
    # Output
    return stdout.strip()


def is_bare(where=None) -> bool:
    r"""Check if a location is in a bare git repo

    :Call:
        >>> q = is_bare(where=None)
    """
    # Ask git
    stdout, _, ierr = call_oe(
        ["git", "rev-parse", "--is-bare-repository"],
        cwd=where, timeout=TIMEOUT_GIT)
    # Check for issues
    if ierr:
        raise BlobsyValidationError(
            f"Path is not a git repo: {where or os.getcwd()}",
            suggestions=["Run: git init"])
    # Otherwise output
    return stdout.strip() == "true"


def get_bare_gitdir(where=None) -> str:
    # Absolute git-dir of a bare repo
    stdout, _, ierr = call_oe(
        ["git", "rev-parse", "--absolute-git-dir"],
        cwd=where, timeout=TIMEOUT_GIT)
    # Check for issues
    if ierr:
        raise BlobsyValidationError(
            f"Path is not a git repo: {where or os.getcwd()}")
    return stdout.strip()
