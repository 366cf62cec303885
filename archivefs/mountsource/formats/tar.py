import io
import logging
import tarfile
import threading
from collections.abc import Iterator
from timeit import default_timer as timer
from typing import IO, Callable, Optional

from archivefs.entries import Entry, EntryType, SinglePass
from archivefs.paths import canonicalize
from archivefs.SectionFile import SectionFile
from archivefs.utils import (
    ArchiveClosedError,
    ContainerFormatError,
    PathError,
    is_seekable,
)

logger = logging.getLogger(__name__)

SKIP_CHUNK_SIZE = 1024 * 1024


class _RecordingTarInfo(tarfile.TarInfo):
    """
    Unlike for the first header, tarfile silently stops iterating at any unreadable header after it.
    This remembers the reason on the TarFile so that corrupted headers can be told apart from the
    end-of-archive marker.
    """

    @classmethod
    def fromtarfile(cls, tarFile):
        try:
            return super().fromtarfile(tarFile)
        except tarfile.HeaderError as exception:
            tarFile.stopReason = exception
            raise


class TarEntrySource:
    """
    Sequential entry source for (decompressed) TAR streams. The stream is parsed exactly once, in order,
    with tarfile in streaming mode. Only the data offsets are remembered so that member contents can be
    read later without keeping the TarInfo objects alive.
    """

    indexed = False

    # fmt: off
    def __init__(
        self,
        fileObject     : IO[bytes],
        reopen         : Optional[Callable[[], IO[bytes]]] = None,
        fileObjectLock : Optional[threading.Lock]         = None,
        isValid        : Optional[Callable[[], bool]]     = None,
        encoding       : str                              = tarfile.ENCODING,
        bufferSize     : int                              = io.DEFAULT_BUFFER_SIZE,
        **_
    ) -> None:
        """
        fileObject: The decompressed TAR stream positioned at the first header.
        reopen: Returns a new decompressed stream positioned at the start. Used for reading contents
                when fileObject is not seekable.
        """
        # fmt: on
        self.fileObject = fileObject
        self.encoding = encoding
        self.bufferSize = bufferSize
        self._reopen = reopen
        self._fileObjectLock = fileObjectLock or threading.Lock()
        self._isValid = isValid or (lambda: True)
        # Canonical path -> (data offset, size). Used for resolving hard links to earlier members.
        self._dataOffsets: dict[str, tuple[int, int]] = {}
        self._scan: Optional[SinglePass[Entry]] = None

    def scan_all(self) -> SinglePass[Entry]:
        if self._scan is None:
            self._scan = SinglePass(self._iterate_entries())
        return self._scan

    def close(self) -> None:
        self._dataOffsets.clear()

    def _iterate_entries(self) -> Iterator[Entry]:
        t0 = timer()
        count = 0
        try:
            # Streaming mode only reads forward and never seeks, which also works for decompressed streams.
            # fmt: off
            with tarfile.open(
                fileobj  = self.fileObject,
                mode     = 'r|',
                encoding = self.encoding,
                tarinfo  = _RecordingTarInfo,
            ) as tarFile:
                # fmt: on
                for tarInfo in tarFile:
                    # Clear this in order to limit memory usage by tarfile. Hard links are resolved by ourselves.
                    tarFile.members = []
                    entry = self._convert_to_entry(tarInfo)
                    if entry is not None:
                        count += 1
                        yield entry

                stopReason = getattr(tarFile, 'stopReason', None)
                if isinstance(stopReason, tarfile.EmptyHeaderError):
                    raise ContainerFormatError(
                        f"TAR stream ended without end-of-archive marker after {count} entries!"
                    )
                if not isinstance(stopReason, tarfile.EOFHeaderError):
                    raise ContainerFormatError(
                        f"Invalid TAR header at offset {tarFile.offset} after {count} entries: {stopReason}"
                    )
        except tarfile.TarError as exception:
            raise ContainerFormatError(
                f"Malformed TAR structure after {count} entries: {exception}"
            ) from exception

        # Decompression layers only verify their checksums at the end of the stream.
        with self._fileObjectLock:
            while self.fileObject.read(SKIP_CHUNK_SIZE):
                pass

        logger.info("Scanned %d TAR entries in %.3fs.", count, timer() - t0)

    def _convert_to_entry(self, tarInfo: tarfile.TarInfo) -> Optional[Entry]:
        try:
            path = canonicalize(tarInfo.name, '/')
        except PathError as exception:
            logger.warning("Skipping TAR member: %s", exception)
            return None

        # fmt: off
        common = dict(
            path  = path,
            mode  = tarInfo.mode & 0o7777,
            mtime = tarInfo.mtime,
        )
        # fmt: on

        if tarInfo.isdir():
            return Entry(size=0, type=EntryType.DIRECTORY, **common)

        if tarInfo.issym():
            linkname = tarInfo.linkname
            return Entry(
                size=len(linkname.encode(self.encoding, 'surrogateescape')),
                type=EntryType.SYMLINK,
                linkname=linkname,
                **common,
            )

        if tarInfo.islnk():
            try:
                target = canonicalize(tarInfo.linkname, '/')
            except PathError as exception:
                logger.warning("Skipping hard link '%s': %s", path, exception)
                return None
            if target not in self._dataOffsets:
                logger.warning("Skipping hard link '%s' to unknown member '%s'.", path, tarInfo.linkname)
                return None
            offset, size = self._dataOffsets[target]
            self._dataOffsets[path] = (offset, size)
            return Entry(size=size, type=EntryType.FILE, opener=self._make_opener(offset, size), **common)

        if tarInfo.issparse():
            return Entry(size=tarInfo.size, type=EntryType.FILE, opener=self._make_sparse_opener(path), **common)

        if tarInfo.isreg():
            self._dataOffsets[path] = (tarInfo.offset_data, tarInfo.size)
            return Entry(
                size=tarInfo.size,
                type=EntryType.FILE,
                opener=self._make_opener(tarInfo.offset_data, tarInfo.size),
                **common,
            )

        logger.debug("Skipping TAR member '%s' of unsupported type %s.", tarInfo.name, tarInfo.type)
        return None

    def _make_opener(self, offset: int, size: int) -> Callable[[], IO[bytes]]:
        return lambda: self._open_section(offset, size)

    @staticmethod
    def _make_sparse_opener(path: str) -> Callable[[], IO[bytes]]:
        def open_sparse():
            raise ContainerFormatError(f"Reading sparse TAR member '{path}' is not supported!")

        return open_sparse

    def _open_section(self, offset: int, size: int) -> IO[bytes]:
        if not self._isValid():
            raise ArchiveClosedError("The archive containing this file has been closed!")

        if is_seekable(self.fileObject):
            return SectionFile(
                self.fileObject, offset, size, self._fileObjectLock, self._isValid, bufferSize=self.bufferSize
            )

        if self._reopen is None:
            raise io.UnsupportedOperation("Cannot read members of a non-seekable TAR stream after scanning it!")

        # Forward-only decoders cannot seek back. Decode again from the start and skip to the member data.
        logger.debug("Reopen decompression stream and skip %d bytes to read TAR member.", offset)
        fileObject = self._reopen()
        try:
            remaining = offset
            while remaining > 0:
                skipped = len(fileObject.read(min(remaining, SKIP_CHUNK_SIZE)))
                if skipped == 0:
                    raise ContainerFormatError(f"TAR stream ended before the member data at offset {offset}!")
                remaining -= skipped
        except BaseException:
            fileObject.close()
            raise

        return SectionFile(fileObject, offset, size, isValid=self._isValid, bufferSize=self.bufferSize)
