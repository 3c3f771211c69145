r"""
``cli``: Command-line interface to ``blobsy``
===============================================

This module provides several functions that are the main user interface
to ``blobsy``. There is a function :func:`main` that reads ``sys.argv``
(the command-line strings of the current command). Then :func:`main`
dispatches one of several other functions, for example

    * :func:`blobsy_init`
    * :func:`blobsy_track`
    * :func:`blobsy_push`
    * :func:`blobsy_pull`
    * :func:`blobsy_sync`

These secondary commands read Python arguments and keyword arguments
rather than parsing ``sys.argv``, so they are usable to Python API
programmers as well.
"""

# Standard library
import argparse
import json
import logging
import sys

# Local imports
from .blobsyerror import (
    IERR_OK,
    BlobsyError,
    error_to_dict,
    format_error)
from .blobsyrepo import BlobsyRepo, print_json
from .trust import TrustStore


# Help message
HELP_BLOBSY = r"""Large files next to git (blobsy)

Store large files in a backend (S3, GCS, Azure, a local folder, or
custom commands) and commit small ``.bref`` pointer files instead.

:Usage:
    .. code-block:: console

        $ blobsy [OPTIONS] CMD [ARGS]

:Inputs:
    * *CMD*: name of command to run

    Available commands are:

    ====================  ===========================================
    Command               Description
    ====================  ===========================================
    ``init``              Set up blobsy with a backend URL
    ``track``             Create or update ``.bref`` files
    ``add``               Track files and stage them with git
    ``untrack``           Stop tracking, keep working files
    ``rm``                Remove tracked files
    ``mv``                Move or rename tracked files
    ``push``              Upload tracked files
    ``pull``              Download tracked files
    ``sync``              Push new files and pull missing ones
    ``status``            Show state of tracked files
    ``verify``            Re-hash files and compare to ``.bref``
    ``health``            Check that the backend is reachable
    ``check-unpushed``    List files never pushed
    ``pre-push-check``    Check that all blobs exist remotely
    ``hooks``             Install or uninstall git hooks
    ``hook``              Run a git hook check (used by hooks)
    ``trust``             Allow command backends in this repo
    ``untrust``           Revoke ``trust``
    ``config``            View or set settings
    ====================  ===========================================

:Options:
    --json
        Machine-readable output
    -q, --quiet
        Suppress status messages
    -v, --verbose
        Show debugging messages
    --dry-run
        Show what would be transferred
"""

HELP_INIT = r"""
``blobsy-init``: Set up blobsy in a git repo
==============================================

Writes ``.blobsy.yml`` with a ``default`` backend (unless it already
exists), creates the backend folder for ``local:`` URLs, and installs
git hooks.

:Usage:
    .. code-block:: console

        $ blobsy init URL [OPTIONS]

:Inputs:
    * *URL*: ``s3://bucket/prefix/``, ``gs://bucket/prefix/``,
      ``azure://container/prefix/``, or ``local:PATH``

:Options:
    --region REGION
        Region for cloud backends

    --endpoint URL
        Endpoint for S3-compatible stores

    --no-hooks
        Don't install git hooks
"""

HELP_TRACK = r"""
``blobsy-track``: Create or update ``.bref`` files
====================================================

Named files are always tracked. Folders are searched for files that
pass the ``externalize`` rules. Each tracked file gets a ``.bref`` file
next to it and an entry in the managed block of ``.gitignore``.

:Usage:
    .. code-block:: console

        $ blobsy track PATH [PATH ...] [OPTIONS]

:Options:
    --min-size SIZE
        Size threshold for files in folders, e.g. ``1mb``
"""

HELP_ADD = r"""
``blobsy-add``: Track files and stage them
============================================

Same as ``blobsy track`` followed by ``git add`` of the ``.bref`` and
``.gitignore`` files. Small files in folders are staged directly.

:Usage:
    .. code-block:: console

        $ blobsy add PATH [PATH ...] [OPTIONS]
"""

HELP_UNTRACK = r"""
``blobsy-untrack``: Stop tracking files
=========================================

Moves each ``.bref`` file to ``.blobsy/trash/`` and removes the
``.gitignore`` entry. Working files and remote blobs are kept.

:Usage:
    .. code-block:: console

        $ blobsy untrack PATH [PATH ...] [-r]
"""

HELP_RM = r"""
``blobsy-rm``: Remove tracked files
=====================================

:Usage:
    .. code-block:: console

        $ blobsy rm PATH [PATH ...] [OPTIONS]

:Options:
    --local
        Only delete working files; keep ``.bref`` files

    --remote
        Also delete blobs from the backend

    -f, --force
        Don't ask before deleting remote blobs

    -r, --recursive
        Remove all tracked files in folders
"""

HELP_MV = r"""
``blobsy-mv``: Move or rename tracked files
=============================================

:Usage:
    .. code-block:: console

        $ blobsy mv SRC DEST
"""

HELP_PUSH = r"""
``blobsy-push``: Upload tracked files
=======================================

Uploads each tracked file that has no ``remote_key`` yet and records
the key in its ``.bref`` file.

:Usage:
    .. code-block:: console

        $ blobsy push [PATH ...] [OPTIONS]

:Options:
    -f, --force
        Re-hash and re-upload files that were already pushed
"""

HELP_PULL = r"""
``blobsy-pull``: Download tracked files
=========================================

:Usage:
    .. code-block:: console

        $ blobsy pull [PATH ...] [OPTIONS]

:Options:
    -f, --force
        Overwrite working files with local changes
"""

HELP_SYNC = r"""
``blobsy-sync``: Push new and changed files, pull missing ones
================================================================

:Usage:
    .. code-block:: console

        $ blobsy sync [PATH ...] [OPTIONS]

:Options:
    -f, --force
        Also re-push files whose remote blob is missing

    --skip-health-check
        Don't check the backend first
"""

HELP_STATUS = r"""
``blobsy-status``: Show state of tracked files
================================================

:Usage:
    .. code-block:: console

        $ blobsy status [PATH ...] [--json]
"""

HELP_VERIFY = r"""
``blobsy-verify``: Compare working files to ``.bref`` hashes
==============================================================

:Usage:
    .. code-block:: console

        $ blobsy verify [PATH ...] [--json]
"""

HELP_HEALTH = r"""
``blobsy-health``: Check the backend
======================================

:Usage:
    .. code-block:: console

        $ blobsy health
"""

HELP_CHECK_UNPUSHED = r"""
``blobsy-check-unpushed``: List tracked files never pushed
============================================================

:Usage:
    .. code-block:: console

        $ blobsy check-unpushed
"""

HELP_PRE_PUSH_CHECK = r"""
``blobsy-pre-push-check``: Check that all blobs exist remotely
================================================================

:Usage:
    .. code-block:: console

        $ blobsy pre-push-check
"""

HELP_HOOKS = r"""
``blobsy-hooks``: Install or remove git hooks
===============================================

Creates (or removes) ``pre-commit`` and ``pre-push`` hooks that call
``blobsy hook``. Existing hooks not written by blobsy are left alone.

:Usage:
    .. code-block:: console

        $ blobsy hooks install
        $ blobsy hooks uninstall
"""

HELP_HOOK = r"""
``blobsy-hook``: Run a git hook check
=======================================

:Usage:
    .. code-block:: console

        $ blobsy hook pre-commit
        $ blobsy hook pre-push

Set ``BLOBSY_NO_HOOKS=1`` to skip.
"""

HELP_TRUST = r"""
``blobsy-trust``: Allow command backends in this repo
=======================================================

:Usage:
    .. code-block:: console

        $ blobsy trust
        $ blobsy trust --list
"""

HELP_UNTRUST = r"""
``blobsy-untrust``: Revoke trust of this repo
===============================================

:Usage:
    .. code-block:: console

        $ blobsy untrust
"""

HELP_CONFIG = r"""
``blobsy-config``: View or set settings
=========================================

:Usage:
    .. code-block:: console

        $ blobsy config
        $ blobsy config KEY
        $ blobsy config KEY VALUE [--global]

:Examples:
    This will compress files of 1 MB or more with gzip:

    .. code-block:: console

        $ blobsy config compress.algorithm gzip
        $ blobsy config compress.min_size 1mb
"""

HELP_DICT = {
    "init": HELP_INIT,
    "track": HELP_TRACK,
    "add": HELP_ADD,
    "untrack": HELP_UNTRACK,
    "rm": HELP_RM,
    "mv": HELP_MV,
    "push": HELP_PUSH,
    "pull": HELP_PULL,
    "sync": HELP_SYNC,
    "status": HELP_STATUS,
    "verify": HELP_VERIFY,
    "health": HELP_HEALTH,
    "check-unpushed": HELP_CHECK_UNPUSHED,
    "pre-push-check": HELP_PRE_PUSH_CHECK,
    "hooks": HELP_HOOKS,
    "hook": HELP_HOOK,
    "trust": HELP_TRUST,
    "untrust": HELP_UNTRUST,
    "config": HELP_CONFIG,
}

# Error codes
IERR_CMD = 16
IERR_ARGS = 32

# Options common to all commands
GLOBAL_OPTIONS = ("json", "quiet", "verbose", "dry_run")


def blobsy_init(*a, **kw):
    r"""Set up blobsy in the current repo

    :Call:
        >>> blobsy_init(url, region=None, endpoint=None, hooks=True)
    """
    # Read the repo
    repo = BlobsyRepo()
    # Initialize it
    return repo.blobsy_init(*a, **kw)


def blobsy_track(*a, **kw):
    r"""Create or update ``.bref`` files for files and folders

    :Call:
        >>> blobsy_track(*fnames, min_size=None)
    """
    # Read the repo
    repo = BlobsyRepo()
    # Track (files to stage are only needed by API users)
    repo.blobsy_track(*a, **kw)
    return IERR_OK


def blobsy_add(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    # Track and stage
    return repo.blobsy_add(*a, **kw)


def blobsy_untrack(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_untrack(*a, **kw)


def blobsy_rm(*a, **kw):
    r"""Remove tracked files

    :Call:
        >>> blobsy_rm(*fnames, local=False, remote=False, force=False)
    """
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_rm(*a, **kw)


def blobsy_mv(*a, **kw):
    # Check for exactly two names
    if len(a) != 2:
        print("blobsy-mv got %i arguments; expected %i" % (len(a), 2))
        return IERR_ARGS
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_mv(*a, **kw)


def blobsy_push(*a, **kw):
    r"""Upload tracked files

    :Call:
        >>> ierr = blobsy_push(*fnames, force=False, dry_run=False)
    """
    # Read the repo
    repo = BlobsyRepo()
    # Push
    return repo.blobsy_push(*a, **kw)


def blobsy_pull(*a, **kw):
    r"""Download tracked files

    :Call:
        >>> ierr = blobsy_pull(*fnames, force=False, dry_run=False)
    """
    # Read the repo
    repo = BlobsyRepo()
    # Pull
    return repo.blobsy_pull(*a, **kw)


def blobsy_sync(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_sync(*a, **kw)


def blobsy_status(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_status(*a, **kw)


def blobsy_verify(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_verify(*a, **kw)


def blobsy_health(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_health(**kw)


def blobsy_check_unpushed(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_check_unpushed(**kw)


def blobsy_pre_push_check(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_pre_push_check(**kw)


def blobsy_hooks(*a, **kw):
    r"""Install or uninstall git hooks

    :Call:
        >>> blobsy_hooks("install")
        >>> blobsy_hooks("uninstall")
    """
    # Check command
    if len(a) != 1:
        print("blobsy-hooks got %i arguments; expected %i" % (len(a), 1))
        return IERR_ARGS
    # Get function
    func = CMD_HOOKS_DICT.get(a[0])
    # Check it
    if func is None:
        print("Unexpected 'blobsy-hooks' command '%s'" % a[0])
        print("Options are: " + " | ".join(list(CMD_HOOKS_DICT.keys())))
        return IERR_CMD
    # Read the repo
    repo = BlobsyRepo()
    return func(repo, **kw)


def blobsy_hook(*a, **kw):
    # Check for hook name
    if len(a) != 1:
        print("blobsy-hook got %i arguments; expected %i" % (len(a), 1))
        return IERR_ARGS
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_hook(a[0], **kw)


def blobsy_trust(*a, **kw):
    r"""Trust current repo, or list trusted repos

    :Call:
        >>> blobsy_trust()
        >>> blobsy_trust(list=True)
    """
    # List doesn't need a repo
    if kw.get("list"):
        # Read store
        entries = TrustStore().list()
        # Output
        if kw.get("json"):
            print_json({
                "trusted": [
                    {"path": path, "trustedAt": t} for path, t in entries
                ],
            })
        elif not entries:
            print("No trusted repositories")
        else:
            for path, t in entries:
                print(f"  {path}  (trusted {t})")
        return IERR_OK
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_trust(**kw)


def blobsy_untrust(*a, **kw):
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_untrust(**kw)


def blobsy_config(*a, **kw):
    r"""Print merged settings, print one setting, or set one

    :Call:
        >>> blobsy_config()
        >>> blobsy_config(fullopt)
        >>> blobsy_config(fullopt, val)
    """
    # Check number of args
    if len(a) > 2:
        print("blobsy-config got %i arguments; at most 2 allowed" % len(a))
        return IERR_ARGS
    # Read the repo
    repo = BlobsyRepo()
    return repo.blobsy_config(*a, **kw)


# Hook subcommands
CMD_HOOKS_DICT = {
    "install": BlobsyRepo.blobsy_install_hooks,
    "uninstall": BlobsyRepo.blobsy_uninstall_hooks,
}

# Command dictionary
CMD_DICT = {
    "init": blobsy_init,
    "track": blobsy_track,
    "add": blobsy_add,
    "untrack": blobsy_untrack,
    "rm": blobsy_rm,
    "mv": blobsy_mv,
    "push": blobsy_push,
    "pull": blobsy_pull,
    "sync": blobsy_sync,
    "status": blobsy_status,
    "verify": blobsy_verify,
    "health": blobsy_health,
    "check-unpushed": blobsy_check_unpushed,
    "pre-push-check": blobsy_pre_push_check,
    "hooks": blobsy_hooks,
    "hook": blobsy_hook,
    "trust": blobsy_trust,
    "untrust": blobsy_untrust,
    "config": blobsy_config,
}


# Argument parser
def genr8_parser() -> argparse.ArgumentParser:
    r"""Create parser for ``blobsy`` command line

    Global options are accepted either before or after the command name.

    :Call:
        >>> parser = genr8_parser()
    """
    # Global options; subcommands don't override values set before them
    common = argparse.ArgumentParser(add_help=False)
    _add_global_options(common, argparse.SUPPRESS)
    # Main parser
    parser = argparse.ArgumentParser(
        prog="blobsy",
        description=HELP_BLOBSY,
        formatter_class=argparse.RawDescriptionHelpFormatter)
    _add_global_options(parser, False)
    # Commands
    sub = parser.add_subparsers(dest="cmd", metavar="CMD")
    # Create each subparser
    cmds = {}
    for cmdname, msg in HELP_DICT.items():
        cmds[cmdname] = sub.add_parser(
            cmdname,
            parents=[common],
            description=msg,
            formatter_class=argparse.RawDescriptionHelpFormatter)
    # Positional args
    cmds["init"].add_argument("args", nargs=1, metavar="URL")
    cmds["mv"].add_argument("args", nargs=2, metavar="PATH")
    cmds["hooks"].add_argument(
        "args", nargs=1, choices=list(CMD_HOOKS_DICT), metavar="ACTION")
    cmds["hook"].add_argument(
        "args", nargs=1, choices=["pre-commit", "pre-push"], metavar="NAME")
    cmds["config"].add_argument("args", nargs="*", metavar="KEY [VALUE]")
    for cmdname in ("track", "add", "untrack", "rm"):
        cmds[cmdname].add_argument("args", nargs="+", metavar="PATH")
    for cmdname in ("push", "pull", "sync", "status", "verify"):
        cmds[cmdname].add_argument("args", nargs="*", metavar="PATH")
    # Command options
    cmds["init"].add_argument("--region")
    cmds["init"].add_argument("--endpoint")
    cmds["init"].add_argument(
        "--no-hooks", dest="hooks", action="store_false")
    for cmdname in ("track", "add"):
        cmds[cmdname].add_argument("--min-size", dest="min_size")
    for cmdname in ("untrack", "rm"):
        cmds[cmdname].add_argument(
            "-r", "--recursive", action="store_true")
    cmds["rm"].add_argument("--local", action="store_true")
    cmds["rm"].add_argument("--remote", action="store_true")
    for cmdname in ("rm", "push", "pull", "sync"):
        cmds[cmdname].add_argument("-f", "--force", action="store_true")
    cmds["sync"].add_argument(
        "--skip-health-check", dest="skip_health_check", action="store_true")
    cmds["trust"].add_argument("--list", action="store_true")
    cmds["config"].add_argument(
        "--global", dest="global", action="store_true")
    # Output
    return parser


def _add_global_options(parser, default):
    parser.add_argument("--json", action="store_true", default=default)
    parser.add_argument(
        "-q", "--quiet", action="store_true", default=default)
    parser.add_argument(
        "-v", "--verbose", action="store_true", default=default)
    parser.add_argument(
        "--dry-run", dest="dry_run", action="store_true", default=default)


def parse_args(argv=None):
    r"""Parse command line into command name, args, and options

    :Call:
        >>> cmdname, a, kw = parse_args(argv=None)
    :Inputs:
        *argv*: {``None``} | :class:`list`\ [:class:`str`]
            Arguments after program name; default ``sys.argv[1:]``
    :Outputs:
        *cmdname*: ``None`` | :class:`str`
            Command name
        *a*: :class:`list`\ [:class:`str`]
            Positional arguments
        *kw*: :class:`dict`
            Options
    """
    # Parse
    ns = genr8_parser().parse_args(argv)
    kw = vars(ns)
    # Separate command and positional args
    cmdname = kw.pop("cmd", None)
    a = kw.pop("args", None) or []
    # Output
    return cmdname, list(a), kw


# Main function
def main(argv=None) -> int:
    r"""Main command-line interface to ``blobsy``

    The function works by reading the command name from ``sys.argv``
    and dispatching a dedicated function for that purpose.

    :Call:
        >>> ierr = main(argv=None)
    :Inputs:
        *argv*: {``None``} | :class:`list`\ [:class:`str`]
            Arguments after program name; default ``sys.argv[1:]``
    :Outputs:
        *ierr*: :class:`int`
            Return code
    """
    # Parse args
    cmdname, a, kw = parse_args(argv)
    # Check for no commands
    if cmdname is None:
        print(HELP_BLOBSY)
        return IERR_OK
    # Diagnostic messages
    _setup_logging(kw.pop("verbose", False))
    # Get function
    func = CMD_DICT.get(cmdname)
    # Check it
    if func is None:
        # Unrecognized function
        print("Unexpected command '%s'" % cmdname)
        print("Options are: " + " | ".join(list(CMD_DICT.keys())))
        return IERR_CMD
    # Run function
    try:
        ierr = func(*a, **kw)
    except BlobsyError as err:
        # Report
        if kw.get("json"):
            print(json.dumps(error_to_dict(err), indent=2))
        else:
            print(format_error(err), file=sys.stderr)
        return err.exit_code
    # Convert None -> 0
    ierr = IERR_OK if ierr is None else ierr
    # Normal exit
    return ierr


def _setup_logging(verbose=False):
    # Messages to STDERR
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr)
