r"""
``blobsy`` is a Python package to keep large files next to git
repositories. It provides both an API (see :class:`BlobsyRepo`) and a
command-line interface (see :mod:`blobsy.cli`).

Each large file is replaced in git by a small ``.bref`` pointer file
holding the SHA-256 hash of its contents. The files themselves are
uploaded to a backend: an S3, GCS, or Azure bucket, a folder outside
the repo, or a pair of user-defined commands.

"""

# Local imports
from .blobsyrepo import BlobsyRepo


# Version
__version__ = "0.1.0"
