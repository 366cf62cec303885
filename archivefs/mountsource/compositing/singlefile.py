import contextlib
import io
import threading
import time
from typing import IO, Callable, Optional, Union, cast, final

from archivefs.entries import Entry, EntryType
from archivefs.mountsource import MountSource
from archivefs.paths import ROOT, canonicalize
from archivefs.SectionFile import RawSectionFile, SectionFile
from archivefs.utils import ArchiveClosedError, is_seekable, overrides


def _get_mode(fileobj: IO[bytes]) -> int:
    return 0o111 | (0o222 if fileobj.writable() else 0) | (0o444 if fileobj.readable() else 0)


def _measure_size(fileobj: IO[bytes]) -> int:
    if fileobj.seekable():
        return fileobj.seek(0, io.SEEK_END)
    size = 0
    while chunk := fileobj.read(1024 * 1024):
        size += len(chunk)
    return size


@final
class SingleFileMountSource(MountSource):
    """MountSource exposing a single file, e.g., a decompressed non-archive file, in the root directory."""

    def __init__(
        self,
        path: str,
        fileobj: Union[IO[bytes], Callable[[], IO[bytes]]],
        exitStack: Optional[contextlib.ExitStack] = None,
    ):
        """
        fileobj: The file object to expose or a callable returning a new file object positioned at the start
                 for each call. The latter is necessary for non-seekable file objects.
        exitStack: Resources that are released when this mount source is closed.
        """
        self.path = canonicalize(path, '/')
        if self.path == ROOT or '/' in self.path:
            raise ValueError("File object must belong to a non-folder path!")

        self.mtime = time.time()
        self._exitStack = exitStack or contextlib.ExitStack()
        self._closed = False
        self._fileLock = threading.Lock()
        self._fileObject: Optional[IO[bytes]] = None

        if callable(fileobj):
            self._open_new = fileobj
            with fileobj() as file:
                size, mode = _measure_size(file), _get_mode(file)
        else:
            # Use SectionFile so that the returned file objects can be independently seeked!
            self._fileObject = fileobj
            size, mode = fileobj.seek(0, io.SEEK_END), _get_mode(fileobj)

        # fmt: off
        self._entry = Entry(
            path   = self.path,
            size   = size,
            mode   = mode,
            type   = EntryType.FILE,
            mtime  = self.mtime,
            opener = lambda: self._open_file(-1),
        )
        # fmt: on

    def _is_open(self) -> bool:
        return not self._closed

    def _open_file(self, buffering: int) -> IO[bytes]:
        if self._closed:
            raise ArchiveClosedError("The mount source has already been closed!")

        if self._fileObject is None:
            fileobj = self._open_new()
            if is_seekable(fileobj):
                return fileobj
            # Forward-only decompressors still have to support seeking forward, e.g., for MountSource.read.
            return cast(IO[bytes], RawSectionFile(fileobj, 0, self._entry.size, isValid=self._is_open))

        if buffering == 0:
            return cast(
                IO[bytes],
                RawSectionFile(self._fileObject, 0, self._entry.size, self._fileLock, self._is_open),
            )
        return cast(
            IO[bytes],
            SectionFile(
                self._fileObject,
                0,
                self._entry.size,
                self._fileLock,
                self._is_open,
                bufferSize=io.DEFAULT_BUFFER_SIZE if buffering <= 0 else buffering,
            ),
        )

    def _root_entry(self) -> Entry:
        return Entry(path=ROOT, size=0, mode=self._entry.mode, type=EntryType.DIRECTORY, mtime=self.mtime)

    @overrides(MountSource)
    def list(self, path: str) -> Optional[dict[str, Entry]]:
        return {self.path: self._entry} if self.normalize(path) == ROOT else None

    @overrides(MountSource)
    def lookup(self, path: str) -> Optional[Entry]:
        path = self.normalize(path)
        if path == ROOT:
            return self._root_entry()
        if path == self.path:
            return self._entry
        return None

    @overrides(MountSource)
    def open(self, entry: Entry, buffering=-1) -> IO[bytes]:
        if entry.path != self.path or not entry.is_file():
            raise ValueError("Only files may be opened!")
        return self._open_file(buffering)

    @overrides(MountSource)
    def is_immutable(self) -> bool:
        return True

    @overrides(MountSource)
    def __exit__(self, exception_type, exception_value, exception_traceback):
        if self._closed:
            return
        self._closed = True
        if self._fileObject is not None:
            self._fileObject.close()
        self._exitStack.close()
