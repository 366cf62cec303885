import io
import os
import platform
import shutil
import tempfile
from collections.abc import Iterable
from typing import Optional, get_type_hints


class ArchiveError(Exception):
    """Base exception for the archivefs module."""


class UnsupportedFormatError(ArchiveError):
    """Exception for inputs whose archive format could not be detected."""


class CompressionError(ArchiveError):
    """Exception for trying to open files with unsupported compression or unavailable decompression module."""


class CodecError(ArchiveError):
    """Exception for malformed compressed data. Raised lazily when decompression reaches the bad bytes."""

    def __init__(self, message: str, codec: Optional[str] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.codec = codec
        self.offset = offset


class ContainerFormatError(ArchiveError):
    """Exception for a malformed container structure. Fatal for the whole archive."""


class PathError(ArchiveError, ValueError):
    """Exception for paths escaping the archive root, e.g., via '..'."""


class IncompleteIndexError(ArchiveError):
    """Exception for queries on an index whose building failed midway. The index content is incomplete."""


class ArchiveClosedError(ArchiveError, ValueError):
    """Exception for operations executed on a closed archive."""


class StreamError(ArchiveError, OSError):
    """Exception for failures of the underlying byte stream, as opposed to malformed data in it."""


def overrides(parentClass):
    """Simple decorator that checks that a method with the same name exists in the parent class"""

    def overrider(method):
        if platform.python_implementation() == 'PyPy':
            return method

        assert method.__name__ in dir(parentClass)
        parentMethod = getattr(parentClass, method.__name__)
        assert callable(parentMethod)

        if os.getenv('ARCHIVEFS_CHECK_OVERRIDES', '').lower() not in ('1', 'yes', 'on', 'enable', 'enabled'):
            return method

        parentTypes = get_type_hints(parentMethod)
        # If the parent is not typed, e.g., io.RawIOBase, then do not show errors for the typed derived class.
        for argument, argumentType in get_type_hints(method).items():
            if argument in parentTypes:
                parentType = parentTypes[argument]
                assert argumentType == parentType, f"{method.__name__}: {argument}: {argumentType} != {parentType}"

        return method

    return overrider


class FixedRawIOBase(io.RawIOBase):
    @overrides(io.RawIOBase)
    def readall(self) -> bytes:
        # It is necessary to implement this, or else the io.RawIOBase.readall implementation would use
        # io.DEFAULT_BUFFER_SIZE (8 KiB) sized reads, which is slow for decompressing readers.
        # https://github.com/python/cpython/issues/85624
        chunks = []
        while result := self.read():
            chunks.append(result)
        return b"".join(chunks)


def remove_duplicates_stable(iterable: Iterable):
    seen = set()
    deduplicated = []
    for x in iterable:
        if x not in seen:
            deduplicated.append(x)
            seen.add(x)
    return deduplicated


def is_seekable(fileobj) -> bool:
    expectedMethods = ['seekable', 'seek', 'tell']
    if any(not hasattr(fileobj, method) for method in expectedMethods):
        return False
    try:
        return bool(fileobj.seekable())
    except (OSError, ValueError):
        return False


DEFAULT_SPOOL_MAX_SIZE = 16 * 1024 * 1024


def spool(fileobj, spoolMaxSize: int = DEFAULT_SPOOL_MAX_SIZE):
    """
    Copies the remainder of a non-seekable file object into a seekable temporary file, which is kept in memory
    up to spoolMaxSize bytes and rolled over to disk after that. The returned file is positioned at 0.
    """
    spooled = tempfile.SpooledTemporaryFile(max_size=spoolMaxSize)
    try:
        shutil.copyfileobj(fileobj, spooled, 1024 * 1024)
        spooled.seek(0)
    except BaseException:
        spooled.close()
        raise
    return spooled
