# pylint: disable=abstract-method,unused-argument

import fsspec

from .entries import Entry
from .mountsource import MountSource
from .mountsource.factory import open_mount_source
from .utils import overrides


class MountSourceFileSystem(fsspec.spec.AbstractFileSystem):
    """A thin adaptor from the MountSource interface to the fsspec AbstractFileSystem interface."""

    cachable = False

    def __init__(self, mountSource: MountSource, **kwargs):
        super().__init__(**kwargs)
        self.mountSource = mountSource

    @classmethod
    @overrides(fsspec.spec.AbstractFileSystem)
    def _strip_protocol(cls, path):
        if isinstance(path, list):
            return [cls._strip_protocol(p) for p in path]
        path = fsspec.utils.stringify_path(path)
        protocols = (cls.protocol,) if isinstance(cls.protocol, str) else cls.protocol
        for protocol in protocols:
            if path.startswith(protocol + '://'):
                path = path[len(protocol) + 3 :]
                break
        return path.rstrip('/') or '/'

    @staticmethod
    def _file_info_to_dict(name: str, entry: Entry):
        return {
            "type": "directory" if entry.is_dir() else "file",
            "name": name,
            "mode": f"{entry.full_mode:o}",
            "size": entry.size,
            "mtime": entry.mtime,
        }

    @overrides(fsspec.spec.AbstractFileSystem)
    def ls(self, path, detail=True, **kwargs):
        # The returned names have to be full paths without protocol.
        strippedPath = self._strip_protocol(path)

        def prefix_path(name):
            return f"{strippedPath.rstrip('/')}/{name}" if strippedPath else name

        result = self.mountSource.list(strippedPath)
        if result is None:
            raise FileNotFoundError(path)
        if not isinstance(result, dict):
            directory = self.mountSource.normalize(strippedPath)
            result = {name: self.mountSource.lookup(f"{directory}/{name}") for name in result}

        if detail:
            return [
                self._file_info_to_dict(prefix_path(name), entry)
                for name, entry in sorted(result.items())
                if entry is not None
            ]
        return [prefix_path(name) for name in sorted(result)]

    @overrides(fsspec.spec.AbstractFileSystem)
    def info(self, path, **kwargs):
        strippedPath = self._strip_protocol(path)
        entry = self.mountSource.lookup(strippedPath)
        if entry is None:
            raise FileNotFoundError(path)
        return self._file_info_to_dict(strippedPath, entry)

    @overrides(fsspec.spec.AbstractFileSystem)
    def _open(
        self,
        path,
        mode="rb",
        block_size=None,
        autocommit=True,
        cache_options=None,
        **kwargs,
    ):
        if mode != "rb":
            raise ValueError("Only binary reading is supported!")
        entry = self.mountSource.lookup(self._strip_protocol(path))
        if entry is None:
            raise FileNotFoundError(path)
        if entry.is_dir():
            raise IsADirectoryError(path)
        return self.mountSource.open(entry, buffering=block_size or -1)


class ArchiveFileSystem(MountSourceFileSystem):
    """
    Browse the files of a (compressed) TAR or ZIP archive, or of a single compressed file.

    Supports URL chaining, e.g., fsspec.open("archivefs://folder/file::file://archive.tar.gz").
    """

    protocol = "archivefs"

    def __init__(
        self,
        # It must be called "fo" for URL chaining to work!
        # https://filesystem-spec.readthedocs.io/en/latest/features.html#url-chaining
        fo=None,
        *,  # force all parameters after to be keyword-only
        target_options=None,
        target_protocol=None,
        **kwargs,
    ):
        """Refer to ArchiveMountSource and open_mount_source for all supported options."""

        options = kwargs.copy()

        self._open_file = None
        if isinstance(fo, str) and target_protocol and target_protocol != 'file':
            # Implement URL chaining such as when calling fsspec.open("archivefs://bar::s3://bucket/archive.zip").
            self._open_file = fsspec.open(fo, protocol=target_protocol, **(target_options or {}))
            if isinstance(self._open_file, fsspec.core.OpenFiles):
                self._open_file = self._open_file[0]
            options.setdefault('name', fo)
            fo = self._open_file.open()

        if fo is None:
            raise ValueError("An archive path or file object is required!")

        super().__init__(open_mount_source(fo, **options))

    def close(self) -> None:
        self.mountSource.close()
        if self._open_file is not None:
            self._open_file.close()
            self._open_file = None


# Only in case the entry point hooks in the setup.py are not working for some reason.
fsspec.register_implementation("archivefs", ArchiveFileSystem, clobber=True)
