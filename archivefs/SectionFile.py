import contextlib
import io
from typing import IO, Callable, Optional

from .utils import ArchiveClosedError, FixedRawIOBase, overrides


class RawSectionFile(FixedRawIOBase):
    """
    A file abstraction layer giving a view to a contiguous section [offset, offset + size) of an underlying file.

    If the underlying file is seekable, it may be shared between multiple section files and threads. Every read
    then seeks to the required position under the given lock. Non-seekable underlying files are read sequentially
    and must already be positioned at 'offset'. They are owned and closed by this section file.
    """

    def __init__(
        self,
        fileobj: IO[bytes],
        offset: int,
        size: int,
        fileObjectLock=None,
        isValid: Optional[Callable[[], bool]] = None,
    ) -> None:
        """
        isValid: Callable returning false when the owner of the underlying file object has been closed.
                 Reads on an invalidated section raise ArchiveClosedError.
        """
        super().__init__()

        if offset < 0 or size < 0:
            raise ValueError(f"Section offset ({offset}) and size ({size}) must be non-negative!")
        if not fileobj.readable():
            raise ValueError("The file object to create a section of must be readable!")

        self.fileobj = fileobj
        self.start = offset
        self.size = size
        self.offset = 0
        self.fileObjectLock = fileObjectLock
        self._isValid = isValid
        self._shared = fileobj.seekable()

    def _check_valid(self) -> None:
        if self._isValid is not None and not self._isValid():
            raise ArchiveClosedError("The archive containing this file has been closed!")

    @overrides(io.RawIOBase)
    def seekable(self) -> bool:
        return self._shared

    @overrides(io.RawIOBase)
    def readable(self) -> bool:
        return True

    @overrides(io.RawIOBase)
    def readinto(self, buffer):
        """Generic implementation which uses read."""
        with memoryview(buffer) as view, view.cast("B") as byteView:  # type: ignore
            readBytes = self.read(len(byteView))
            byteView[: len(readBytes)] = readBytes
        return len(readBytes)

    @overrides(io.RawIOBase)
    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        self._check_valid()

        remaining = max(0, self.size - self.offset)
        size = remaining if size is None or size < 0 else min(size, remaining)
        if size == 0:
            return b''

        chunks = []
        with self.fileObjectLock or contextlib.nullcontext():
            if self._shared:
                self.fileobj.seek(self.start + self.offset, io.SEEK_SET)
            while size > 0:
                data = self.fileobj.read(size)
                if not data:
                    break
                chunks.append(data)
                size -= len(data)
                self.offset += len(data)

        return b''.join(chunks)

    @overrides(io.RawIOBase)
    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_CUR:
            newOffset = self.offset + offset
        elif whence == io.SEEK_END:
            newOffset = self.size + offset
        elif whence == io.SEEK_SET:
            newOffset = offset
        else:
            raise ValueError(f"Invalid whence ({whence}, should be 0, 1 or 2)")

        if newOffset < 0:
            raise ValueError("Trying to seek before the start of the file!")

        if not self._shared and newOffset != self.offset:
            if newOffset < self.offset:
                raise io.UnsupportedOperation("Cannot seek backwards inside a forward-only stream!")
            self.read(newOffset - self.offset)
        self.offset = newOffset
        return self.offset

    @overrides(io.RawIOBase)
    def tell(self) -> int:
        return self.offset

    @overrides(io.RawIOBase)
    def close(self) -> None:
        if not self._shared and not self.closed:
            self.fileobj.close()
        super().close()


class SectionFile(io.BufferedReader):
    def __init__(
        self,
        fileobj: IO[bytes],
        offset: int,
        size: int,
        fileObjectLock=None,
        isValid: Optional[Callable[[], bool]] = None,
        bufferSize: int = io.DEFAULT_BUFFER_SIZE,
    ) -> None:
        """
        bufferSize: Gets forwarded to io.BufferedReader.__init__ buffer_size argument and has the same semantic,
                    i.e., must be > 0. If it should be unbuffered, use RawSectionFile directly instead.
        """
        super().__init__(RawSectionFile(fileobj, offset, size, fileObjectLock, isValid), buffer_size=bufferSize)
