"""
Contains quick format checks and the format descriptors. Should not try to import large dependencies.
Detection that needs to undo compressions lives in archivefs.compressions.

See:
 - https://en.wikipedia.org/wiki/List_of_file_signatures
 - https://en.wikipedia.org/wiki/List_of_archive_formats
"""

import dataclasses
import enum
import os
import struct
import tarfile
import types
from collections.abc import Mapping
from typing import IO, Callable, Optional, Union


class FileFormatID(enum.Enum):
    # fmt: off
    # Archive formats (bundles more than one file)
    ZIP              = 0x103
    TAR              = 0x201

    # Compression formats (compresses a single file / stream)
    BZIP2            = 0x1001
    GZIP             = 0x1002
    XZ               = 0x1003
    ZSTANDARD        = 0x1004
    LZ4              = 0x1006
    # fmt: on


FID = FileFormatID


def is_tar_header(block: bytes, encoding: str = tarfile.ENCODING) -> bool:
    """Checks that the first 512 B form a TAR header with a valid checksum."""
    if len(block) < tarfile.BLOCKSIZE:
        return False
    try:
        tarfile.TarInfo.frombuf(block[: tarfile.BLOCKSIZE], encoding, 'surrogateescape')
        return True
    except tarfile.HeaderError:
        pass
    return False


def is_tar(fileobj: IO[bytes], encoding: str = tarfile.ENCODING) -> bool:
    # An empty TAR consisting only of zero blocks cannot be recognized. This is fine because
    # it will still be recognized by its file extension.
    return is_tar_header(fileobj.read(tarfile.BLOCKSIZE), encoding)


def _is_zip(fileobj: IO[bytes]) -> bool:
    import zipfile  # pylint: disable=import-outside-toplevel

    # is_zipfile might yields some false positives, we want it to err on the positive side.
    # See: https://bugs.python.org/issue42096
    return zipfile.is_zipfile(fileobj)  # type: ignore


def _is_bzip2(fileobj: IO[bytes]) -> bool:
    return fileobj.read(4)[:3] == b'BZh' and fileobj.read(6) == (0x314159265359).to_bytes(6, 'big')


def _check_lz4_header(fileobj: IO[bytes]) -> bool:
    SKIPPABLE_FRAME_MAGIC = 0x184D2A50
    (magic,) = struct.unpack('<L', fileobj.read(4))

    # https://github.com/lz4/lz4/blob/dev/doc/lz4_Frame_format.md#skippable-frames
    while magic & 0xFFFF_FFF0 == SKIPPABLE_FRAME_MAGIC:
        (frame_size,) = struct.unpack('<L', fileobj.read(4))
        fileobj.seek(fileobj.tell() + frame_size)
        (magic,) = struct.unpack('<L', fileobj.read(4))

    # https://github.com/lz4/lz4/blob/dev/doc/lz4_Frame_format.md#general-structure-of-lz4-frame-format
    return magic == 0x184D2204


def _check_zstandard_header(fileobj: IO[bytes]) -> bool:
    SKIPPABLE_FRAME_MAGIC = 0x184D2A50
    (magic,) = struct.unpack('<L', fileobj.read(4))

    # https://github.com/facebook/zstd/blob/dev/doc/zstd_compression_format.md#skippable-frames
    while magic & 0xFFFF_FFF0 == SKIPPABLE_FRAME_MAGIC:
        (frame_size,) = struct.unpack('<L', fileobj.read(4))
        fileobj.seek(fileobj.tell() + frame_size)
        (magic,) = struct.unpack('<L', fileobj.read(4))

    return magic == 0xFD2FB528


@dataclasses.dataclass(frozen=True)
class FileFormatInfo:
    # Extensions without the initial '.'. The first one is used for naming format descriptors.
    extensions: tuple[str, ...]
    # If the first bytes of a format are constant, then they should be stated here.
    # ZIP only has a magic footer!
    magicBytes: Optional[bytes]
    # File format checkers should err on the side of false positives because else the file
    # will be rejected without actually trying to open it!
    # For simplicity, assume that all of these checkHeader will read from the current offset and be
    # at an arbitrary offset after the check.
    checkHeader: Optional[Callable[[IO[bytes]], bool]] = None


ARCHIVE_FORMATS: Mapping[FileFormatID, FileFormatInfo] = types.MappingProxyType(
    {
        FID.ZIP: FileFormatInfo(('zip',), None, _is_zip),
        FID.TAR: FileFormatInfo(('tar',), None, is_tar),
    }
)

COMPRESSION_FORMATS: Mapping[FileFormatID, FileFormatInfo] = types.MappingProxyType(
    {
        FID.BZIP2: FileFormatInfo(('bz2', 'bzip2'), b'BZh', _is_bzip2),
        FID.GZIP: FileFormatInfo(('gz', 'gzip'), b'\x1f\x8b'),
        FID.XZ: FileFormatInfo(('xz',), b"\xfd7zXZ\x00"),
        FID.ZSTANDARD: FileFormatInfo(('zst', 'zstd'), None, _check_zstandard_header),
        FID.LZ4: FileFormatInfo(('lz4',), None, _check_lz4_header),
    }
)

FILE_FORMATS: Mapping[FileFormatID, FileFormatInfo] = types.MappingProxyType(
    {**ARCHIVE_FORMATS, **COMPRESSION_FORMATS}
)

# Check that all defined format IDs have FileFormatInfo, so that we can assume FILE_FORMATS[FID] to not fail.
for _formatInfo in FileFormatID:
    assert _formatInfo in FILE_FORMATS, f"Missing file format information for: {_formatInfo}"

TAR_CONTRACTED_EXTENSIONS: Mapping[FileFormatID, tuple[str, ...]] = types.MappingProxyType(
    {
        FID.BZIP2: ('tb2', 'tbz', 'tbz2', 'tz2'),
        FID.GZIP: ('taz', 'tgz'),
        FID.XZ: ('txz',),
        FID.ZSTANDARD: ('tzst',),
        FID.LZ4: ('tlz4',),
    }
)


def might_be_format(fileobj: IO[bytes], fid: Union[FileFormatID, FileFormatInfo]) -> bool:
    formatInfo = fid if isinstance(fid, FileFormatInfo) else FILE_FORMATS[fid]
    oldOffset = fileobj.tell()
    try:
        if formatInfo.magicBytes and fileobj.read(len(formatInfo.magicBytes)) != formatInfo.magicBytes:
            return False
        if formatInfo.checkHeader:
            fileobj.seek(oldOffset)
            return formatInfo.checkHeader(fileobj)
    except (struct.error, EOFError):
        # Too few bytes for the header check.
        return False
    finally:
        fileobj.seek(oldOffset)

    return bool(formatInfo.magicBytes or formatInfo.checkHeader)


def detect_compression_formats(fileobj: IO[bytes]) -> list[FileFormatID]:
    """Returns all compression formats whose magic bytes and header checks match at the current offset."""
    return [fid for fid in COMPRESSION_FORMATS if might_be_format(fileobj, fid)]


@dataclasses.dataclass(frozen=True)
class FormatDescriptor:
    """
    Identifies an archive format: the container and the ordered codec chain that must be undone before
    the container can be parsed. The first codec is the outermost one, i.e., the first to be applied when reading.
    """

    # fmt: off
    name       : str
    container  : FileFormatID
    codecs     : tuple[FileFormatID, ...] = ()
    # Whether the container has an index allowing random access to entries without a full linear scan.
    indexed    : bool                     = False
    extensions : tuple[str, ...]          = dataclasses.field(default=(), compare=False)
    # fmt: on

    def __post_init__(self):
        if self.container not in ARCHIVE_FORMATS:
            raise ValueError(f"{self.container} is not a container format!")
        for codec in self.codecs:
            if codec not in COMPRESSION_FORMATS:
                raise ValueError(f"{codec} is not a compression format!")

    def with_codecs(self, *codecs: FileFormatID) -> 'FormatDescriptor':
        """Returns a descriptor for this format additionally wrapped in the given outer codecs."""
        return make_descriptor(self.container, (*codecs, *self.codecs))


def _descriptor_name(container: FileFormatID, codecs: tuple[FileFormatID, ...]) -> str:
    return '.'.join(
        [ARCHIVE_FORMATS[container].extensions[0]]
        + [COMPRESSION_FORMATS[codec].extensions[0] for codec in reversed(codecs)]
    )


def _create_descriptor(container: FileFormatID, codecs: tuple[FileFormatID, ...] = ()) -> FormatDescriptor:
    name = _descriptor_name(container, codecs)
    extensions = [name]
    if container == FID.TAR and len(codecs) == 1:
        extensions.extend(TAR_CONTRACTED_EXTENSIONS.get(codecs[0], ()))
    return FormatDescriptor(
        name=name, container=container, codecs=codecs, indexed=container == FID.ZIP, extensions=tuple(extensions)
    )


FORMAT_DESCRIPTORS: Mapping[str, FormatDescriptor] = types.MappingProxyType(
    {
        descriptor.name: descriptor
        for descriptor in [
            _create_descriptor(FID.TAR),
            _create_descriptor(FID.ZIP),
            *[_create_descriptor(FID.TAR, (codec,)) for codec in COMPRESSION_FORMATS],
        ]
    }
)


def make_descriptor(container: FileFormatID, codecs: tuple[FileFormatID, ...] = ()) -> FormatDescriptor:
    """Returns the registered descriptor for the given combination or creates an unregistered one."""
    codecs = tuple(codecs)
    return FORMAT_DESCRIPTORS.get(_descriptor_name(container, codecs)) or _create_descriptor(container, codecs)


def _split_extension(name: str, extensions: tuple[str, ...]) -> Optional[str]:
    for extension in extensions:
        if name.endswith('.' + extension.lower()):
            return name[: -(len(extension) + 1)]
    return None


def split_compression_suffixes(name: str) -> tuple[str, list[FileFormatID]]:
    """
    Peels compression suffixes off from the right, e.g., 'notes.txt.gz.xz' -> ('notes.txt', [XZ, GZIP]).
    The codecs are returned in read order, i.e., the outermost one first. The case of the stem is kept.
    """
    codecs: list[FileFormatID] = []
    while True:
        for codec, info in COMPRESSION_FORMATS.items():
            lowered = name.lower()
            strippedName = _split_extension(lowered, info.extensions)
            if strippedName is not None:
                codecs.append(codec)
                name = name[: len(name) - (len(lowered) - len(strippedName))]
                break
        else:
            return name, codecs


def detect_format_by_name(name: Union[str, os.PathLike]) -> Optional[FormatDescriptor]:
    """
    Detects the format from the (compound) file extension, e.g., 'a.tar.gz', 'a.tgz', 'a.zip', 'a.tar.gz.xz'.
    Compression suffixes are peeled off from the right. Returns None if no container suffix is found.
    """
    stem, codecs = split_compression_suffixes(os.path.basename(os.fspath(name)).lower())

    for container, info in ARCHIVE_FORMATS.items():
        if _split_extension(stem, info.extensions) is not None:
            return make_descriptor(container, tuple(codecs))

    for codec, extensions in TAR_CONTRACTED_EXTENSIONS.items():
        if _split_extension(stem, extensions) is not None:
            return make_descriptor(FID.TAR, (*codecs, codec))

    return None
