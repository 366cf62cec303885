"""
The virtual filesystem index folds archive entries into a directory tree.

Containers may omit records for intermediate directories, e.g., a ZIP containing only 'a/b/c.txt'. The index
synthesizes all missing ancestors so that every entry is reachable from the root by listing directories.
The final tree does not depend on the order in which entries are inserted.
"""

import dataclasses
import enum
import errno
import logging
import os
from collections.abc import Iterable
from typing import Optional, Union

from .entries import Entry, EntryType
from .paths import ROOT, canonicalize, join, split_parent
from .utils import IncompleteIndexError

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY_MODE = 0o755


class IndexState(enum.Enum):
    UNBUILT = 0
    BUILDING = 1
    READY = 2
    BUILD_FAILED = 3


@dataclasses.dataclass
class DirectoryNode:
    # fmt: off
    path     : str
    children : set[str] = dataclasses.field(default_factory=set)
    mode     : int      = DEFAULT_DIRECTORY_MODE
    mtime    : float    = 0
    # True if the container recorded this directory itself instead of it only being implied by descendants.
    explicit : bool     = dataclasses.field(default=False, compare=False)
    # fmt: on

    def to_entry(self) -> Entry:
        return Entry(path=self.path, size=0, mode=self.mode, type=EntryType.DIRECTORY, mtime=self.mtime)


Node = Union[DirectoryNode, Entry]


class FileSystemIndex:
    def __init__(self) -> None:
        self.state = IndexState.UNBUILT
        self.failure: Optional[BaseException] = None
        self._nodes: dict[str, Node] = {ROOT: DirectoryNode(ROOT)}
        # Directories whose children are all known. Only relevant for partially built indexes.
        self._listedDirectories: set[str] = set()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, path: str) -> bool:
        return path in self._nodes

    def __eq__(self, other) -> bool:
        if not isinstance(other, FileSystemIndex):
            return NotImplemented
        return self._nodes == other._nodes

    def __repr__(self) -> str:
        return f"FileSystemIndex(state={self.state.name}, nodes={len(self._nodes)})"

    def _directory(self, path: str) -> DirectoryNode:
        """Returns the directory node for the path, creating or converting it as necessary."""
        node = self._nodes.get(path)
        if isinstance(node, DirectoryNode):
            return node

        if node is not None:
            logger.warning(
                "'%s' is a %s but also the parent of other entries. It will be shown as a directory.",
                path,
                node.type.name.lower(),
            )
        directory = DirectoryNode(path)
        self._nodes[path] = directory
        return directory

    def insert(self, entry: Entry) -> None:
        """
        Adds one entry and synthesizes all of its missing ancestor directories.

        Conflicts are resolved order-independently: a path that is a file in one record and the ancestor
        of another record becomes a directory. Explicit directory attributes override the synthesized
        defaults. Duplicate records for the same path: the last one wins.
        """
        path = canonicalize(entry.path, '/')
        if path != entry.path:
            entry = dataclasses.replace(entry, path=path)

        if path == ROOT:
            if entry.is_dir():
                root = self._directory(ROOT)
                root.mode, root.mtime, root.explicit = entry.mode, entry.mtime, True
            else:
                logger.warning("Ignoring non-directory entry for the archive root.")
            return

        parent, name = split_parent(path)
        directory = self._directory(ROOT)
        if parent != ROOT:
            segments = parent.split('/')
            for i, segment in enumerate(segments):
                directory.children.add(segment)
                directory = self._directory('/'.join(segments[: i + 1]))
        directory.children.add(name)

        existing = self._nodes.get(path)
        if entry.is_dir() and entry.synthesized:
            # Keeps the attributes of an explicit record for the same directory, if any was inserted.
            self._directory(path)
            return
        if entry.is_dir():
            if (
                isinstance(existing, DirectoryNode)
                and existing.explicit
                and (existing.mode, existing.mtime) != (entry.mode, entry.mtime)
            ):
                logger.warning("Found duplicate directory entry for '%s'. The last one wins.", path)
            node = self._directory(path)
            node.mode, node.mtime, node.explicit = entry.mode, entry.mtime, True
            return

        if isinstance(existing, DirectoryNode):
            logger.warning(
                "Ignoring %s entry '%s' because a directory with the same path exists.",
                entry.type.name.lower(),
                path,
            )
            return
        if existing is not None and existing != entry:
            logger.warning("Found duplicate entry for '%s'. The last one wins.", path)
        self._nodes[path] = entry

    def build(self, entries: Iterable[Entry]) -> None:
        """
        Folds all entries into the index. On failure, the entries folded so far are kept, the index
        transitions to BUILD_FAILED and the original exception propagates.
        """
        self.check_queryable()
        self.state = IndexState.BUILDING
        try:
            for entry in entries:
                self.insert(entry)
        except BaseException as exception:
            self.state = IndexState.BUILD_FAILED
            self.failure = exception
            raise
        self.state = IndexState.READY
        self._listedDirectories.clear()

    def check_queryable(self) -> None:
        if self.state == IndexState.BUILD_FAILED:
            raise IncompleteIndexError(
                f"The archive index is incomplete because building it failed with: {self.failure}"
            ) from self.failure

    @property
    def is_complete(self) -> bool:
        return self.state == IndexState.READY

    def mark_listed(self, path: str) -> None:
        self._listedDirectories.add(path)

    def is_listed(self, path: str) -> bool:
        return self.is_complete or path in self._listedDirectories

    def get(self, path: str) -> Optional[Node]:
        self.check_queryable()
        return self._nodes.get(path)

    def lookup(self, path: str) -> Optional[Entry]:
        """Returns the entry for the path, a synthesized entry for directories, or None."""
        node = self.get(path)
        return node.to_entry() if isinstance(node, DirectoryNode) else node

    def stat(self, path: str) -> Entry:
        entry = self.lookup(path)
        if entry is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
        return entry

    def read_dir(self, path: str) -> list[str]:
        """Returns the sorted names of the direct children of the directory."""
        node = self.get(path)
        if node is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
        if not isinstance(node, DirectoryNode):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), path)
        return sorted(node.children)

    def paths(self) -> list[str]:
        self.check_queryable()
        return sorted(self._nodes)

    def entries(self, path: str) -> list[Entry]:
        """Returns the entries for the direct children of the directory, sorted by name."""
        return [self.stat(join(path, name)) for name in self.read_dir(path)]
