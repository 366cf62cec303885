import dataclasses
import types
from collections.abc import Mapping
from typing import IO, Any, Callable, Optional

from archivefs.formats import FileFormatID

from .formats.tar import TarEntrySource
from .formats.zip import ZipEntrySource

FID = FileFormatID


@dataclasses.dataclass(frozen=True)
class ArchiveBackendInfo:
    # Creates an entry source from the decompressed container stream and additional options (kwargs).
    # Note that the entry source classes themselves (or rather their __init__) are fitting callables!
    open: Callable[..., Any]
    # Supported container formats.
    formats: frozenset[FileFormatID]
    # Tuple: (module name, package name)
    requiredModules: tuple[tuple[str, str], ...]


# Map of backends to their respective open-function. The order implies a priority.
ARCHIVE_BACKENDS: Mapping[str, ArchiveBackendInfo] = types.MappingProxyType(
    {
        "tarfile": ArchiveBackendInfo(TarEntrySource, frozenset({FID.TAR}), (('tarfile', ''),)),
        "zipfile": ArchiveBackendInfo(ZipEntrySource, frozenset({FID.ZIP}), (('zipfile', ''),)),
    }
)


def find_archive_backend(container: FileFormatID) -> Optional[ArchiveBackendInfo]:
    return next((info for info in ARCHIVE_BACKENDS.values() if container in info.formats), None)


def open_entry_source(container: FileFormatID, fileObject: IO[bytes], **options):
    backend = find_archive_backend(container)
    if backend is None:
        # Cannot happen for descriptors created by archivefs.formats.
        raise ValueError(f"No entry source for container format {container.name}!")
    return backend.open(fileObject, **options)
