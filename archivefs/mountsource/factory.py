import contextlib
import io
import logging
import os
import tarfile
import threading
from typing import IO, Optional, Union

from archivefs.compressions import (
    detect,
    detect_compression,
    find_available_backend,
    open_codec_chain,
)
from archivefs.formats import FormatDescriptor, split_compression_suffixes
from archivefs.SectionFile import RawSectionFile
from archivefs.utils import UnsupportedFormatError, is_seekable

from . import MountSource
from .ArchiveMountSource import ArchiveMountSource
from .compositing.singlefile import SingleFileMountSource

logger = logging.getLogger(__name__)


def _detect(name: Optional[str], fileobj: IO[bytes], **options) -> Optional[FormatDescriptor]:
    return detect(
        name,
        fileobj if is_seekable(fileobj) else None,
        encoding=options.get('encoding', tarfile.ENCODING),
        prioritizedBackends=options.get('prioritizedBackends'),
        enabledBackends=options.get('enabledBackends'),
    )


def open_stream(
    fileobj: IO[bytes], descriptor: Optional[FormatDescriptor] = None, name: Optional[str] = None, **options
) -> ArchiveMountSource:
    """
    Opens an archive from a binary file object. The file object is not closed together with the archive.
    If no descriptor is given, the format is detected from the name and the magic bytes.
    """
    if descriptor is None:
        descriptor = _detect(name or getattr(fileobj, 'name', None), fileobj, **options)
        if descriptor is None:
            raise UnsupportedFormatError(f"Could not detect the archive format of {name or fileobj}!")
    return ArchiveMountSource(fileobj, descriptor, name=name, **options)


def open_path(path: Union[str, os.PathLike], **options) -> ArchiveMountSource:
    """
    Opens the archive at the given path on disk. The format is detected by the file name first and by
    magic bytes second. Raises UnsupportedFormatError if neither yields a known archive format.
    """
    path = os.fspath(path)
    fileobj = open(path, 'rb')  # pylint: disable=consider-using-with
    try:
        descriptor = _detect(path, fileobj, **options)
        if descriptor is None:
            raise UnsupportedFormatError(f"Archive to open ({path}) has unrecognized format!")
        return ArchiveMountSource(fileobj, descriptor, name=path, ownsFileObject=True, **options)
    except BaseException:
        fileobj.close()
        raise


def _open_single_compressed_file(
    fileobj: IO[bytes], name: Optional[str], ownsFileObject: bool, **options
) -> Optional[SingleFileMountSource]:
    baseName = os.path.basename(name) if name else ''
    strippedName, codecs = split_compression_suffixes(baseName)
    if not codecs:
        compression = detect_compression(fileobj, **options) if is_seekable(fileobj) else None
        if compression is None:
            return None
        codecs = [compression]
    if not strippedName or strippedName == baseName:
        strippedName = '<file object>'
    if any(
        find_available_backend(codec, options.get('enabledBackends'), options.get('prioritizedBackends')) is None
        for codec in codecs
    ):
        return None

    logger.info("Open %s as a single %s compressed file.", name or fileobj, '.'.join(c.name for c in codecs))

    exitStack = contextlib.ExitStack()
    if ownsFileObject:
        exitStack.callback(fileobj.close)
    offset = fileobj.tell()
    size = fileobj.seek(0, io.SEEK_END) - offset
    fileobj.seek(offset)
    lock = threading.Lock()

    def open_decompressed() -> IO[bytes]:
        return open_codec_chain(RawSectionFile(fileobj, offset, size, lock), codecs, **options)

    try:
        return SingleFileMountSource(strippedName, open_decompressed, exitStack=exitStack)
    except BaseException:
        exitStack.close()
        raise


def open_mount_source(fileOrPath: Union[str, IO[bytes], os.PathLike], **options) -> MountSource:
    """
    Opens archives like open_path and open_stream. Additionally, files that are only compressed, e.g.,
    'foo.txt.gz', are opened as a mount source containing the single decompressed file 'foo.txt'.
    """
    ownsFileObject = isinstance(fileOrPath, (str, os.PathLike))
    name: Optional[str] = options.pop('name', None)
    if ownsFileObject:
        name = os.fspath(fileOrPath)  # type: ignore
        fileobj: IO[bytes] = open(name, 'rb')  # type: ignore  # pylint: disable=consider-using-with
    else:
        fileobj = fileOrPath  # type: ignore
        name = name or getattr(fileobj, 'name', None)
        if not isinstance(name, str):
            name = None

    try:
        descriptor = _detect(name, fileobj, **options)
        if descriptor is not None:
            return ArchiveMountSource(fileobj, descriptor, name=name, ownsFileObject=ownsFileObject, **options)

        if is_seekable(fileobj):
            result = _open_single_compressed_file(fileobj, name, ownsFileObject, **options)
            if result is not None:
                return result
    except BaseException:
        if ownsFileObject:
            fileobj.close()
        raise

    if ownsFileObject:
        fileobj.close()
    raise UnsupportedFormatError(f"Archive to open ({name or fileobj}) has unrecognized format!")
