r"""
``trust``: Per-user list of repos allowed to run commands
===========================================================

A ``command`` backend runs programs named in the repo's
``.blobsy.yml``. Cloning an untrusted repo must not be enough to make
``blobsy pull`` execute arbitrary programs, so each user keeps a list
of trusted repos in ``~/.blobsy/trusted-repos.json``:

.. code-block:: json

    {
      "trusted": {
        "/home/me/projects/data": {"trustedAt": "2026-02-21T15:30:45Z"}
      }
    }
"""

# Standard library
import json
import logging
import os
from datetime import datetime, timezone

# Local imports
from .paths import atomic_write


# Location within home folder
TRUST_DIR = ".blobsy"
TRUST_FILENAME = "trusted-repos.json"

# Logger
LOG = logging.getLogger(__name__)


class TrustStore(object):
    r"""Interface to the trusted-repo list of one user

    :Call:
        >>> store = TrustStore(home=None)
    :Inputs:
        *home*: {``None``} | :class:`str`
            Folder holding ``.blobsy/trusted-repos.json``; default
            is the user's home folder
    """
   # --- Class attributes ---
    __slots__ = (
        "home",
    )

   # --- __dunder__ ---
    def __init__(self, home=None):
        # Default home folder
        if home is None:
            home = os.path.expanduser("~")
        self.home = home

   # --- Files ---
    def get_store_path(self) -> str:
        return os.path.join(self.home, TRUST_DIR, TRUST_FILENAME)

    def read(self) -> dict:
        # File name
        fname = self.get_store_path()
        # Empty store if no file
        if not os.path.isfile(fname):
            return {"trusted": {}}
        # Read; an unreadable store trusts nothing
        try:
            with open(fname, "r", encoding="utf-8") as fp:
                data = json.load(fp)
        except (OSError, ValueError) as err:
            LOG.warning("Ignoring unreadable trust store %s: %s", fname, err)
            return {"trusted": {}}
        # Check structure
        if not isinstance(data, dict) or \
                not isinstance(data.get("trusted"), dict):
            return {"trusted": {}}
        # Output
        return data

    def write(self, data: dict):
        atomic_write(self.get_store_path(), json.dumps(data, indent=2) + "\n")

   # --- Operations ---
    def trust(self, repo_root: str):
        r"""Mark a repo as trusted

        :Call:
            >>> store.trust(repo_root)
        :Inputs:
            *store*: :class:`TrustStore`
                Trust store interface
            *repo_root*: :class:`str`
                Top level of working repo
        """
        # Read store
        data = self.read()
        # Time stamp
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        # Add entry
        data["trusted"][_normalize(repo_root)] = {"trustedAt": now}
        # Save
        self.write(data)

    def revoke(self, repo_root: str) -> bool:
        r"""Remove a repo from the trusted list

        :Call:
            >>> q = store.revoke(repo_root)
        :Outputs:
            *q*: ``True`` | ``False``
                Whether *repo_root* was trusted before the call
        """
        # Read store
        data = self.read()
        # Key
        key = _normalize(repo_root)
        # Check
        if key not in data["trusted"]:
            return False
        # Remove and save
        data["trusted"].pop(key)
        self.write(data)
        return True

    def is_trusted(self, repo_root: str) -> bool:
        return _normalize(repo_root) in self.read()["trusted"]

    def list(self) -> list:
        # List of (path, time) pairs
        return [
            (path, info.get("trustedAt", ""))
            for path, info in sorted(self.read()["trusted"].items())
        ]


def _normalize(repo_root: str) -> str:
    return os.path.realpath(repo_root)
