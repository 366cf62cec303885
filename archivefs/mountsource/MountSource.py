import builtins
import errno
import io
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import IO, Optional, Union

from archivefs.entries import Entry
from archivefs.paths import ROOT, canonicalize, join

logger = logging.getLogger(__name__)


class MountSource(ABC):
    """
    Generic class representing a read-only file hierarchy, e.g., the contents of one archive.

    Paths may be given with or without a leading '/'. Both refer to the same canonical archive path.
    lookup and list return None for paths that do not exist instead of raising.
    """

    @staticmethod
    def normalize(path: Union[str, os.PathLike]) -> str:
        return canonicalize(os.fspath(path), '/')

    @abstractmethod
    def list(self, path: str) -> Optional[Union[Iterable[str], dict[str, Entry]]]:
        pass

    def list_mode(self, path: str) -> Optional[Union[Iterable[str], dict[str, int]]]:
        """
        This function can and should be overwritten with something that is faster than list
        because only a simple name -> mode mapping needs to be returned.
        """
        result = self.list(path)
        if isinstance(result, dict):
            return {name: entry.full_mode for name, entry in result.items()}
        return result

    @abstractmethod
    def lookup(self, path: str) -> Optional[Entry]:
        pass

    @abstractmethod
    def open(self, entry: Entry, buffering=-1) -> IO[bytes]:
        """
        buffering : Behaves similarly to Python's built-in open call. A value of 0 should disable buffering.
                    Any value larger than 1 should be the buffer size. The default of -1 may result in
                    a default buffer size equal to Python's io.DEFAULT_BUFFER_SIZE.
        """

    def read(self, entry: Entry, size: int, offset: int) -> bytes:
        # Because we only do a single seek before closing the file again, buffering makes no sense.
        with self.open(entry, buffering=0) as file:
            if offset:
                file.seek(offset)
            return file.read(size)

    @abstractmethod
    def is_immutable(self) -> bool:
        """
        Should return True if the mount source is known to not change over time in order to allow for optimizations.
        Meaning, all interface methods should return the same results given the same arguments at any time.
        """

    def exists(self, path: str) -> bool:
        return self.lookup(path) is not None

    def is_dir(self, path: str) -> bool:
        entry = self.lookup(path)
        return entry is not None and entry.is_dir()

    def stat(self, path: Union[str, os.PathLike]) -> Entry:
        entry = self.lookup(self.normalize(path))
        if entry is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), os.fspath(path))
        return entry

    def read_dir(self, path: Union[str, os.PathLike] = ROOT) -> builtins.list[str]:
        if not self.stat(path).is_dir():
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), os.fspath(path))
        return sorted(self.list(self.normalize(path)) or [])

    def read_file(self, path: Union[str, os.PathLike], stream: bool = False) -> Union[bytes, IO[bytes]]:
        """
        Returns the whole contents of the regular file at path, or a reader if stream is true.
        The reader stays valid only as long as this mount source is open.
        """
        entry = self.stat(path)
        if entry.is_dir():
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), os.fspath(path))
        reader = self.open(entry)
        if stream:
            return reader
        with reader:
            return reader.read()

    def open_file(self, path: Union[str, os.PathLike]) -> 'ArchiveFile':
        """Returns a handle for a file or directory, which can be used for reads or for listing respectively."""
        return ArchiveFile(self, self.stat(path))

    def paths(self) -> builtins.list[str]:
        """Returns all canonical paths below the root, parents before their children."""
        result = []
        directories = [ROOT]
        while directories:
            directory = directories.pop()
            entries = self.list(directory)
            if not isinstance(entries, dict):
                entries = {name: self.lookup(join(directory, name)) for name in entries or []}
            for name, entry in sorted(entries.items()):
                path = join(directory, name)
                result.append(path)
                if entry is not None and entry.is_dir():
                    directories.append(path)
        return result

    def close(self) -> None:
        self.__exit__(None, None, None)

    def __enter__(self):
        return self

    # If the derived MountSource opens some file object or similar in its constructor
    # then it should override this and close the file object.
    @abstractmethod
    def __exit__(self, exception_type, exception_value, exception_traceback):
        pass


class ArchiveFile:
    """
    Handle for one path inside an archive. Regular files can be read, directories can be listed.
    The content reader is only opened on the first read.
    """

    def __init__(self, archive: MountSource, entry: Entry) -> None:
        self.archive = archive
        self.entry = entry
        self._reader: Optional[IO[bytes]] = None
        self.closed = False

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def path(self) -> str:
        return self.entry.path

    def stat(self) -> Entry:
        return self.entry

    def is_dir(self) -> bool:
        return self.entry.is_dir()

    def _get_reader(self) -> IO[bytes]:
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        if self._reader is None:
            self._reader = self.archive.open(self.entry)
        return self._reader

    def read(self, size: int = -1) -> bytes:
        return self._get_reader().read(size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._get_reader().seek(offset, whence)

    def tell(self) -> int:
        return 0 if self._reader is None else self._reader.tell()

    def read_dir(self) -> list[str]:
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        return self.archive.read_dir(self.entry.path)

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exception_type, exception_value, exception_traceback):
        self.close()
