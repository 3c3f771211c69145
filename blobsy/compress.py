r"""
``compress``: Streaming compression of blobs
==============================================

Compress or decompress whole files with one of the supported
algorithms. All three codecs work on streams so memory use is bounded
regardless of blob size.

    ==========  ==================  ==========
    Algorithm   Library             Suffix
    ==========  ==================  ==========
    ``zstd``    :mod:`zstandard`    ``.zst``
    ``gzip``    :mod:`gzip`         ``.gz``
    ``brotli``  :mod:`brotli`       ``.br``
    ==========  ==================  ==========
"""

# Standard library
import gzip
import os
import shutil
import zlib

# Third-party
import brotli
import zstandard

# Local imports
from .blobsyerror import BlobsyValidationError


# Supported algorithms
COMPRESS_ALGORITHMS = ("zstd", "gzip", "brotli")
# Chunk size for brotli streaming
CHUNK_SIZE = 64 * 1024
# Errors raised by the codecs for bad or truncated data
CODEC_ERRORS = (
    zstandard.ZstdError,
    brotli.error,
    gzip.BadGzipFile,
    zlib.error,
    EOFError,
)


# Compress a file
def compress_file(fsrc: str, fdst: str, algorithm: str) -> int:
    r"""Compress *fsrc* into *fdst*

    :Call:
        >>> nbytes = compress_file(fsrc, fdst, algorithm)
    :Inputs:
        *fsrc*: :class:`str`
            Name of original file
        *fdst*: :class:`str`
            Name of compressed file to write
        *algorithm*: ``"zstd"`` | ``"gzip"`` | ``"brotli"``
            Compression algorithm
    :Outputs:
        *nbytes*: :class:`int`
            Size of compressed file
    :Raises:
        :class:`BlobsyValidationError` if the codec fails
    """
    # Check algorithm before opening anything
    _valid8_algorithm(algorithm)
    # Open both files
    with open(fsrc, "rb") as fi, open(fdst, "wb") as fo:
        try:
            _compress_stream(fi, fo, algorithm)
        except CODEC_ERRORS as err:
            raise BlobsyValidationError(
                f"Cannot compress '{fsrc}' with {algorithm}: {err}",
                suggestions=[
                    "Set compress.algorithm to 'none' for this file"]
            ) from err
    # Output size of compressed file
    return os.path.getsize(fdst)


def decompress_file(fsrc: str, fdst: str, algorithm: str):
    r"""Decompress *fsrc* into *fdst*

    :Call:
        >>> decompress_file(fsrc, fdst, algorithm)
    :Inputs:
        *fsrc*: :class:`str`
            Name of compressed file
        *fdst*: :class:`str`
            Name of decompressed file to write
        *algorithm*: ``"zstd"`` | ``"gzip"`` | ``"brotli"``
            Compression algorithm used to create *fsrc*
    :Raises:
        :class:`BlobsyValidationError` if *fsrc* is damaged or was not
        made by *algorithm*
    """
    # Check algorithm before opening anything
    _valid8_algorithm(algorithm)
    # Open both files
    with open(fsrc, "rb") as fi, open(fdst, "wb") as fo:
        try:
            _decompress_stream(fi, fo, algorithm)
        except CODEC_ERRORS as err:
            raise BlobsyValidationError(
                f"Cannot decompress '{fsrc}' with {algorithm}: {err}",
                suggestions=[
                    "The remote blob does not match the .bref; "
                    "re-push it from a machine with a good copy"]
            ) from err


def _compress_stream(fi, fo, algorithm: str):
    # Dispatch
    if algorithm == "zstd":
        zstandard.ZstdCompressor().copy_stream(fi, fo)
    elif algorithm == "gzip":
        with gzip.GzipFile(fileobj=fo, mode="wb") as gz:
            shutil.copyfileobj(fi, gz, CHUNK_SIZE)
    else:
        # Brotli has no file wrapper; feed chunks
        compressor = brotli.Compressor()
        for chunk in iter(lambda: fi.read(CHUNK_SIZE), b""):
            fo.write(compressor.process(chunk))
        fo.write(compressor.finish())


def _decompress_stream(fi, fo, algorithm: str):
    # Dispatch
    if algorithm == "zstd":
        zstandard.ZstdDecompressor().copy_stream(fi, fo)
    elif algorithm == "gzip":
        with gzip.GzipFile(fileobj=fi, mode="rb") as gz:
            shutil.copyfileobj(gz, fo, CHUNK_SIZE)
    else:
        decompressor = brotli.Decompressor()
        for chunk in iter(lambda: fi.read(CHUNK_SIZE), b""):
            fo.write(decompressor.process(chunk))
        # Truncated input never finishes the stream
        if not decompressor.is_finished():
            raise BlobsyValidationError(
                "Truncated brotli stream",
                suggestions=[
                    "The remote blob does not match the .bref; "
                    "re-push it from a machine with a good copy"])


def _valid8_algorithm(algorithm: str):
    # Check against supported list
    if algorithm not in COMPRESS_ALGORITHMS:
        raise BlobsyValidationError(
            f"Unsupported compression algorithm: '{algorithm}'",
            suggestions=[
                "Use one of: " + ", ".join(COMPRESS_ALGORITHMS)])
