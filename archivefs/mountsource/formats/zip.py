import bisect
import builtins
import datetime
import io
import logging
import lzma
import stat
import zipfile
import zlib
from typing import IO, Callable, Optional

from archivefs.entries import Entry, EntryType
from archivefs.paths import ROOT, canonicalize, join
from archivefs.utils import (
    DEFAULT_SPOOL_MAX_SIZE,
    ArchiveClosedError,
    CodecError,
    ContainerFormatError,
    FixedRawIOBase,
    PathError,
    is_seekable,
    overrides,
    spool,
)

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIRECTORY_MODE = 0o755


class ZipEntrySource:
    """
    Indexed entry source for ZIP archives. All queries are answered from the central directory,
    which zipfile reads on construction, plus a sorted table of canonical member paths for prefix queries.
    """

    indexed = True

    # fmt: off
    def __init__(
        self,
        fileObject   : IO[bytes],
        isValid      : Optional[Callable[[], bool]] = None,
        spoolMaxSize : int                          = DEFAULT_SPOOL_MAX_SIZE,
        **_
    ) -> None:
        # fmt: on
        self._spooled: Optional[IO[bytes]] = None
        if not is_seekable(fileObject):
            logger.info("Spool non-seekable ZIP input because the central directory is at the end.")
            fileObject = self._spooled = spool(fileObject, spoolMaxSize)

        try:
            self.fileObject = zipfile.ZipFile(fileObject, 'r')
        # Section views raise ValueError instead of OSError when zipfile seeks before the start, e.g., for files
        # smaller than the 22 B end of central directory record.
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as exception:
            self._close_spooled()
            raise ContainerFormatError(f"Malformed ZIP central directory: {exception}") from exception
        except BaseException:
            self._close_spooled()
            raise

        self._isValid = isValid or (lambda: True)
        self._closed = False

        # Canonical path -> ZipInfo. The last record wins for duplicate names.
        self._infos: dict[str, zipfile.ZipInfo] = {}
        for info in self.fileObject.infolist():
            try:
                path = canonicalize(info.filename, '/')
            except PathError as exception:
                logger.warning("Skipping ZIP member: %s", exception)
                continue
            if path == ROOT:
                continue
            if path in self._infos:
                logger.warning("Found duplicate ZIP member '%s'. The last one wins.", path)
            self._infos[path] = info
        self._sortedPaths = sorted(self._infos)

    def _close_spooled(self) -> None:
        if self._spooled is not None:
            self._spooled.close()
            self._spooled = None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.fileObject.close()
        self._close_spooled()

    def _check_open(self) -> None:
        if self._closed or not self._isValid():
            raise ArchiveClosedError("The archive containing this file has been closed!")

    @staticmethod
    def _mode(info: zipfile.ZipInfo) -> int:
        # The upper 16 bits of the external attributes hold the Unix mode if the archive was created on Unix.
        return info.external_attr >> 16

    def _convert_to_entry(self, path: str, info: zipfile.ZipInfo) -> Entry:
        mtime = datetime.datetime(*info.date_time, tzinfo=datetime.timezone.utc).timestamp() if info.date_time else 0
        unixMode = self._mode(info)
        permissions = unixMode & 0o7777

        if info.is_dir():
            return Entry(
                path=path, size=0, mode=permissions or DEFAULT_DIRECTORY_MODE, type=EntryType.DIRECTORY, mtime=mtime
            )

        # The zipfile module has no API for links: https://bugs.python.org/issue45286
        # The link target is stored as the member data.
        if stat.S_ISLNK(unixMode):
            self._check_open()
            linkname = self.fileObject.read(info).decode('utf-8', 'surrogateescape')
            return Entry(
                path=path,
                size=info.file_size,
                mode=permissions,
                type=EntryType.SYMLINK,
                linkname=linkname,
                mtime=mtime,
            )

        return Entry(
            path=path,
            size=info.file_size,
            mode=permissions or DEFAULT_FILE_MODE,
            type=EntryType.FILE,
            mtime=mtime,
            opener=lambda: self._open_info(info),
        )

    @staticmethod
    def _synthesized_directory(path: str) -> Entry:
        return Entry(path=path, size=0, mode=DEFAULT_DIRECTORY_MODE, type=EntryType.DIRECTORY, synthesized=True)

    def _has_descendants(self, path: str) -> bool:
        if path == ROOT:
            return bool(self._sortedPaths)
        prefix = path + '/'
        i = bisect.bisect_left(self._sortedPaths, prefix)
        return i < len(self._sortedPaths) and self._sortedPaths[i].startswith(prefix)

    def lookup(self, path: str) -> Optional[Entry]:
        info = self._infos.get(path)
        if self._has_descendants(path):
            if info is not None and info.is_dir():
                return self._convert_to_entry(path, info)
            if info is not None:
                logger.warning("ZIP member '%s' is also the parent of other members. Showing it as directory.", path)
            return self._synthesized_directory(path)
        return None if info is None else self._convert_to_entry(path, info)

    def list(self, path: str) -> Optional[list[Entry]]:
        """
        Returns the entries directly below the directory. Subdirectories that are only implied by deeper
        members are returned as synthesized directory entries. Returns None if the path is not a directory.
        """
        directory = self.lookup(path) if path != ROOT else self._synthesized_directory(ROOT)
        if directory is None or not directory.is_dir():
            return None

        prefix = '' if path == ROOT else path + '/'
        result: dict[str, Entry] = {}
        for i in range(bisect.bisect_left(self._sortedPaths, prefix), len(self._sortedPaths)):
            memberPath = self._sortedPaths[i]
            if not memberPath.startswith(prefix):
                break
            name = memberPath[len(prefix) :].split('/', 1)[0]
            if name not in result:
                result[name] = self.lookup(join(path, name))  # type: ignore
        return list(result.values())

    def open_by_path(self, path: str) -> IO[bytes]:
        info = self._infos.get(path)
        if info is None or info.is_dir():
            raise FileNotFoundError(f"No ZIP member file at '{path}'.")
        return self._open_info(info)

    def scan_all(self) -> builtins.list[Entry]:
        return [self._convert_to_entry(path, info) for path, info in self._infos.items()]

    def _open_info(self, info: zipfile.ZipInfo) -> IO[bytes]:
        self._check_open()
        try:
            # CPython's zipfile module handles multiple file objects being opened and reading from the
            # same underlying file object concurrently by using a _SharedFile class that includes a lock.
            member = self.fileObject.open(info, 'r')
        except (zipfile.BadZipFile, NotImplementedError, RuntimeError) as exception:
            raise ContainerFormatError(f"Cannot open ZIP member '{info.filename}': {exception}") from exception
        return io.BufferedReader(_ZipMemberFile(member, self._check_open))



class _ZipMemberFile(FixedRawIOBase):
    """Reports decompression and CRC errors as CodecError and fails after the archive has been closed."""

    def __init__(self, member: IO[bytes], checkOpen: Callable[[], None]) -> None:
        super().__init__()
        self.member = member
        self._checkOpen = checkOpen

    def _codec_error(self, exception: Exception) -> CodecError:
        offset = self.member.tell()
        return CodecError(
            f"Failed to decompress ZIP member '{self.member.name}' at offset {offset}: {exception}",
            codec='zip',
            offset=offset,
        )

    @overrides(io.RawIOBase)
    def readable(self) -> bool:
        return True

    @overrides(io.RawIOBase)
    def seekable(self) -> bool:
        return self.member.seekable()

    @overrides(io.RawIOBase)
    def read(self, size: int = -1) -> bytes:
        self._checkOpen()
        try:
            return self.member.read(size)
        except (zipfile.BadZipFile, zlib.error, EOFError, lzma.LZMAError) as exception:
            raise self._codec_error(exception) from exception

    @overrides(io.RawIOBase)
    def readinto(self, buffer):
        with memoryview(buffer) as view, view.cast("B") as byteView:  # type: ignore
            readBytes = self.read(len(byteView))
            byteView[: len(readBytes)] = readBytes
        return len(readBytes)

    @overrides(io.RawIOBase)
    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._checkOpen()
        try:
            return self.member.seek(offset, whence)
        except (zipfile.BadZipFile, zlib.error, EOFError, lzma.LZMAError) as exception:
            raise self._codec_error(exception) from exception

    @overrides(io.RawIOBase)
    def tell(self) -> int:
        return self.member.tell()

    @overrides(io.RawIOBase)
    def close(self) -> None:
        if not self.closed:
            self.member.close()
        super().close()
