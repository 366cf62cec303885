"""
The format-agnostic entry abstraction.

Every container reader normalizes its native records into Entry objects. Indexed readers (ZIP) can answer
per-directory and per-path queries, sequential readers (TAR) can only produce all entries in a single forward pass.
"""

import dataclasses
import enum
import stat
import threading
from collections.abc import Iterable, Iterator
from typing import IO, Callable, Generic, Optional, Protocol, TypeVar, runtime_checkable

from .paths import split_parent
from .utils import ArchiveError


class EntryType(enum.Enum):
    FILE = stat.S_IFREG
    DIRECTORY = stat.S_IFDIR
    SYMLINK = stat.S_IFLNK


@dataclasses.dataclass(frozen=True)
class Entry:
    # fmt: off
    path        : str
    size        : int
    mode        : int
    type        : EntryType
    linkname    : str                                  = ''
    mtime       : float                                = 0
    # Returns a new file object positioned at the start of the entry data.
    # Only valid as long as the archive handle producing this entry is open.
    opener      : Optional[Callable[[], IO[bytes]]]    = dataclasses.field(default=None, compare=False, repr=False)
    # True for directories that the container does not record itself but that are implied by deeper members.
    synthesized : bool                                 = dataclasses.field(default=False, compare=False)
    # fmt: on

    @property
    def name(self) -> str:
        return split_parent(self.path)[1]

    @property
    def parent(self) -> str:
        return split_parent(self.path)[0]

    @property
    def full_mode(self) -> int:
        """Permission bits combined with the S_IFMT file type bits."""
        return (self.mode & 0o7777) | self.type.value

    def is_dir(self) -> bool:
        return self.type == EntryType.DIRECTORY

    def is_file(self) -> bool:
        return self.type == EntryType.FILE

    def is_symlink(self) -> bool:
        return self.type == EntryType.SYMLINK

    def open(self) -> IO[bytes]:
        if self.opener is None:
            raise ArchiveError(f"Entry '{self.path}' has no content to open.")
        return self.opener()


class ScanConsumedError(ArchiveError):
    """Exception for trying to iterate a single-pass entry sequence more than once."""


ValueType = TypeVar('ValueType')


class SinglePass(Generic[ValueType]):
    """
    An iterable that can be iterated exactly once. Forward-only streams cannot be rewound without reopening
    the underlying file, so accidental re-iteration is an error instead of silently yielding nothing.
    """

    def __init__(self, iterable: Iterable[ValueType]):
        self._iterable = iterable
        self._consumed = False
        self._lock = threading.Lock()

    def __iter__(self) -> Iterator[ValueType]:
        with self._lock:
            if self._consumed:
                raise ScanConsumedError("This entry sequence has already been consumed and cannot be rewound!")
            self._consumed = True
        return iter(self._iterable)

    @property
    def consumed(self) -> bool:
        return self._consumed


@runtime_checkable
class EntrySource(Protocol):
    """Capability shared by all container readers."""

    indexed: bool

    def scan_all(self) -> Iterable[Entry]: ...

    def close(self) -> None: ...


@runtime_checkable
class IndexedEntrySource(EntrySource, Protocol):
    """Capability of containers with a native index permitting random access without a full scan."""

    def lookup(self, path: str) -> Optional[Entry]: ...

    def list(self, path: str) -> Optional[list[Entry]]: ...

    def open_by_path(self, path: str) -> IO[bytes]: ...
