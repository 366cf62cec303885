import builtins
import contextlib
import dataclasses
import errno
import io
import logging
import os
import tarfile
import threading
from collections.abc import Iterator
from typing import IO, Optional, Union

from archivefs.compressions import open_codec_chain
from archivefs.entries import Entry
from archivefs.FileSystemIndex import DirectoryNode, FileSystemIndex, IndexState, Node
from archivefs.formats import FormatDescriptor
from archivefs.paths import ROOT, canonicalize, join
from archivefs.SectionFile import RawSectionFile
from archivefs.utils import DEFAULT_SPOOL_MAX_SIZE, ArchiveClosedError, is_seekable, overrides, spool

from .archives import open_entry_source
from .MountSource import MountSource

logger = logging.getLogger(__name__)


def _error(errorNumber: int, path: str) -> OSError:
    exceptionType = {
        errno.ENOENT: FileNotFoundError,
        errno.ENOTDIR: NotADirectoryError,
        errno.EISDIR: IsADirectoryError,
    }.get(errorNumber, OSError)
    return exceptionType(errorNumber, os.strerror(errorNumber), path)


class ArchiveMountSource(MountSource):
    """
    The archive handle. It owns the base stream (if requested), the codec layers, the entry source,
    and the virtual filesystem index. Closing it releases all of them in reverse order of acquisition
    and invalidates all content readers handed out before.

    Sequential containers (TAR) are scanned completely on the first query. Indexed containers (ZIP)
    are queried lazily per path and per directory.
    """

    # fmt: off
    def __init__(
        self,
        fileObject     : IO[bytes],
        descriptor     : FormatDescriptor,
        name           : Optional[str] = None,
        ownsFileObject : bool          = False,
        prefix         : str           = '',
        encoding       : str           = tarfile.ENCODING,
        spoolMaxSize   : int           = DEFAULT_SPOOL_MAX_SIZE,
        bufferSize     : int           = io.DEFAULT_BUFFER_SIZE,
        **options
    ) -> None:
        # fmt: on
        self.descriptor = descriptor
        self.name = name or getattr(fileObject, 'name', None)
        self.options = dict(options, spoolMaxSize=spoolMaxSize)
        self.index = FileSystemIndex()
        self.prefix = ROOT

        self._closed = False
        self._lock = threading.RLock()
        # Guards positioned reads on the base stream and on the effective stream respectively.
        self._baseLock = threading.Lock()
        self._streamLock = threading.Lock()
        self._exitStack = contextlib.ExitStack()

        try:
            if ownsFileObject:
                self._exitStack.callback(fileObject.close)

            base = fileObject
            if not is_seekable(base):
                logger.info("Spool non-seekable input stream to make it seekable.")
                base = spool(base, spoolMaxSize)
                self._exitStack.callback(base.close)
            self._base = base
            self._baseOffset = base.tell()
            self._baseSize = base.seek(0, io.SEEK_END) - self._baseOffset
            base.seek(self._baseOffset)

            effectiveStream = self._open_effective_stream()
            self._exitStack.callback(effectiveStream.close)

            self.source = open_entry_source(
                descriptor.container,
                effectiveStream,
                reopen=self._open_effective_stream,
                fileObjectLock=self._streamLock,
                isValid=self._is_open,
                encoding=encoding,
                bufferSize=bufferSize,
                spoolMaxSize=spoolMaxSize,
            )
            self._exitStack.callback(self.source.close)
        except BaseException:
            self._exitStack.close()
            raise

        logger.info("Opened %s archive: %s", descriptor.name, self.name or fileObject)

        if prefix:
            try:
                self._set_prefix(canonicalize(prefix, '/'))
            except BaseException:
                self.close()
                raise

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, format={self.descriptor.name!r})"

    def _set_prefix(self, prefix: str) -> None:
        node = self._node(prefix)
        if node is None:
            raise _error(errno.ENOENT, prefix)
        if not isinstance(node, DirectoryNode):
            raise _error(errno.ENOTDIR, prefix)
        self.prefix = prefix

    def _open_effective_stream(self) -> IO[bytes]:
        """Returns a new codec chain over an independently positioned view of the base stream."""
        baseView = RawSectionFile(self._base, self._baseOffset, self._baseSize, self._baseLock, self._is_open)
        return open_codec_chain(baseView, self.descriptor.codecs, **self.options)

    def _is_open(self) -> bool:
        return not self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ArchiveClosedError("The archive has already been closed!")

    def _to_archive_path(self, path: Union[str, os.PathLike]) -> str:
        path = self.normalize(path)
        if self.prefix == ROOT:
            return path
        return self.prefix if path == ROOT else self.prefix + '/' + path

    def _to_handle_path(self, archivePath: str) -> str:
        if self.prefix == ROOT:
            return archivePath
        return ROOT if archivePath == self.prefix else archivePath[len(self.prefix) + 1 :]

    def _to_handle_entry(self, entry: Entry) -> Entry:
        path = self._to_handle_path(entry.path)
        return entry if path == entry.path else dataclasses.replace(entry, path=path)

    def _ensure_index(self) -> None:
        """Builds the complete index. Sequential sources can only be scanned exactly once."""
        if self.index.state == IndexState.READY:
            return
        self.index.check_queryable()
        logger.debug("Building the complete index for %s.", self.name)
        self.index.build(self.source.scan_all())

    def _node(self, archivePath: str) -> Optional[Node]:
        with self._lock:
            self._check_open()
            if not self.source.indexed:
                self._ensure_index()
                return self.index.get(archivePath)

            node = self.index.get(archivePath)
            # Directories synthesized from deeper lookups may still have an explicit record with other attributes.
            isSynthesized = isinstance(node, DirectoryNode) and not node.explicit
            if (node is None or isSynthesized) and not self.index.is_complete:
                entry = self.source.lookup(archivePath)
                if entry is not None:
                    self.index.insert(entry)
                node = self.index.get(archivePath)
            return node

    def _list_names(self, archivePath: str) -> builtins.list[str]:
        with self._lock:
            node = self._node(archivePath)
            if node is None:
                raise _error(errno.ENOENT, archivePath)
            if not isinstance(node, DirectoryNode):
                raise _error(errno.ENOTDIR, archivePath)

            if self.source.indexed and not self.index.is_listed(archivePath):
                for entry in self.source.list(archivePath) or []:
                    self.index.insert(entry)
                self.index.mark_listed(archivePath)
            return self.index.read_dir(archivePath)

    @overrides(MountSource)
    def stat(self, path: Union[str, os.PathLike]) -> Entry:
        """Returns the entry for the path. Directories only implied by their contents are synthesized."""
        archivePath = self._to_archive_path(path)
        node = self._node(archivePath)
        if node is None:
            raise _error(errno.ENOENT, os.fspath(path))
        entry = node.to_entry() if isinstance(node, DirectoryNode) else node
        return self._to_handle_entry(entry)

    @overrides(MountSource)
    def read_dir(self, path: Union[str, os.PathLike] = ROOT) -> builtins.list[str]:
        """Returns the sorted names of all direct children of the directory."""
        try:
            return self._list_names(self._to_archive_path(path))
        except (FileNotFoundError, NotADirectoryError) as exception:
            raise type(exception)(exception.errno, exception.strerror, os.fspath(path)) from None

    def walk(self, path: Union[str, os.PathLike] = ROOT) -> Iterator[tuple[str, builtins.list[str], builtins.list[str]]]:
        """Yields (dirpath, dirnames, filenames) for the directory and all subdirectories like os.walk."""
        with self._lock:
            self._check_open()
            self._ensure_index()

        dirpath = self.normalize(path)
        dirnames: builtins.list[str] = []
        filenames: builtins.list[str] = []
        for name in self.read_dir(dirpath):
            (dirnames if self.stat(join(dirpath, name)).is_dir() else filenames).append(name)
        yield dirpath, dirnames, filenames
        for name in dirnames:
            yield from self.walk(join(dirpath, name))

    @overrides(MountSource)
    def list(self, path: str) -> Optional[dict[str, Entry]]:
        try:
            names = self.read_dir(path)
        except (FileNotFoundError, NotADirectoryError):
            return None
        directory = self.normalize(path)
        return {name: self.stat(join(directory, name)) for name in names}

    @overrides(MountSource)
    def lookup(self, path: str) -> Optional[Entry]:
        try:
            return self.stat(path)
        except FileNotFoundError:
            return None

    @overrides(MountSource)
    def open(self, entry: Entry, buffering=-1) -> IO[bytes]:
        self._check_open()
        if entry.is_dir():
            raise _error(errno.EISDIR, entry.path)
        if not entry.is_file():
            # Symbolic links are not followed. Their target is available as Entry.linkname.
            raise FileNotFoundError(errno.ENOENT, "Not a regular file", entry.path)
        with self._lock:
            return entry.open()

    @overrides(MountSource)
    def is_immutable(self) -> bool:
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    @overrides(MountSource)
    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._exitStack.close()

    @overrides(MountSource)
    def __exit__(self, exception_type, exception_value, exception_traceback):
        self.close()

