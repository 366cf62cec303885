import dataclasses
import io
import itertools
import logging
import os
import sys
import tarfile
import types
from collections.abc import Mapping, Sequence
from typing import IO, Callable, Optional, Union, cast

from .formats import (
    ARCHIVE_FORMATS,
    COMPRESSION_FORMATS,
    FID,
    TAR_CONTRACTED_EXTENSIONS,
    FileFormatID,
    FormatDescriptor,
    detect_compression_formats,
    detect_format_by_name,
    is_tar,
    make_descriptor,
    might_be_format,
)
from .utils import (
    DEFAULT_SPOOL_MAX_SIZE,
    ArchiveError,
    CodecError,
    CompressionError,
    FixedRawIOBase,
    StreamError,
    is_seekable,
    overrides,
    remove_duplicates_stable,
    spool,
)

logger = logging.getLogger(__name__)

try:
    import indexed_gzip
except ImportError:
    indexed_gzip = None  # type: ignore

try:
    import xz
except ImportError:
    if 'xz' not in sys.modules:
        # Should be something like Optional[Module] but there is no Module type.
        xz = None  # type: ignore

try:
    import rapidgzip
except ImportError:
    rapidgzip = None  # type: ignore

try:
    import zstandard
except ImportError:
    zstandard = None  # type: ignore

try:
    import lz4.frame
except ImportError:
    lz4 = None  # type: ignore


@dataclasses.dataclass(frozen=True)
class CompressionBackendInfo:
    # Opens a decompressed file object from a compressed file object.
    open: Callable[[IO[bytes]], IO[bytes]]
    # Supported file formats.
    formats: frozenset[FileFormatID]
    # If a format is suspected e.g. by extension or by a non-module dependent format check,
    # the modules listed here are checked and the module package name can be suggested to be installed.
    # Tuple: (module name, package name)
    requiredModules: tuple[tuple[str, str], ...]
    # Whether the decompressed file object supports seeking backwards.
    seekable: bool = True
    # Whether the compressed input must be seekable. Non-seekable inputs are spooled for these backends.
    requiresSeekableInput: bool = True


COMPRESSION_BACKENDS: Mapping[str, CompressionBackendInfo] = types.MappingProxyType(
    {
        'rapidgzip-bzip2': CompressionBackendInfo(
            (lambda x: rapidgzip.IndexedBzip2File(x, parallelization=1)),
            frozenset({FID.BZIP2}),
            (('rapidgzip', 'rapidgzip'),),
        ),
        # drop_handles keeps a file handle opening as is required to call tell() during decoding
        'indexed_gzip': CompressionBackendInfo(
            (lambda x: indexed_gzip.IndexedGzipFile(fileobj=x, drop_handles=False)),
            frozenset({FID.GZIP}),
            (('indexed_gzip', 'indexed_gzip'),),
        ),
        # Unless prioritized, only used without indexed_gzip. Truncated gzip input aborts the process.
        'rapidgzip': CompressionBackendInfo(
            (lambda x: rapidgzip.RapidgzipFile(x, parallelization=1)),
            frozenset({FID.GZIP}),
            (('rapidgzip', 'rapidgzip'),),
        ),
        'xz': CompressionBackendInfo(
            (lambda x: cast(IO[bytes], xz.open(x))), frozenset({FID.XZ}), (('xz', 'python-xz'),)
        ),
        'zstandard': CompressionBackendInfo(
            (
                lambda x: zstandard.ZstdDecompressor().stream_reader(x, read_across_frames=True, closefd=False)
            ),
            frozenset({FID.ZSTANDARD}),
            (('zstandard', 'zstandard'),),
            seekable=False,
            requiresSeekableInput=False,
        ),
        'lz4': CompressionBackendInfo(
            (lambda x: lz4.frame.LZ4FrameFile(x, mode='rb')),
            frozenset({FID.LZ4}),
            (('lz4.frame', 'lz4'),),
            seekable=False,
            requiresSeekableInput=False,
        ),
    }
)


def find_available_backend(
    compression: FileFormatID,
    enabledBackends: Optional[Sequence[str]] = None,
    prioritizedBackends: Optional[Sequence[str]] = None,
) -> Optional[CompressionBackendInfo]:
    if prioritizedBackends is None:
        prioritizedBackends = []

    matchingBackends = [
        backend
        for backend, info in COMPRESSION_BACKENDS.items()
        if (enabledBackends is None or backend in enabledBackends) and compression in info.formats
    ]

    for backendName in itertools.chain(
        (name for name in prioritizedBackends if name in matchingBackends),
        (name for name in matchingBackends if name not in prioritizedBackends),
    ):
        backend = COMPRESSION_BACKENDS[backendName]
        if all(module in sys.modules for module, _ in backend.requiredModules):
            logger.debug("Using backend '%s' for %s decompression.", backendName, compression.name)
            return backend

    return None


def _find_backend_or_raise(compression: FileFormatID, **options) -> CompressionBackendInfo:
    backend = find_available_backend(
        compression,
        enabledBackends=options.get('enabledBackends'),
        prioritizedBackends=options.get('prioritizedBackends'),
    )
    if backend:
        return backend

    packages = remove_duplicates_stable(
        package
        for info in COMPRESSION_BACKENDS.values()
        if compression in info.formats
        for _, package in info.requiredModules
    )
    raise CompressionError(
        f"Cannot decompress {compression.name} data without any of these packages: {', '.join(packages)}"
    )


class GuardedFile(FixedRawIOBase):
    """
    Wraps the caller's base stream. Failures of the base stream are reraised as StreamError so that
    they can be told apart from malformed data in the decompression layers above. Closing this wrapper
    does not close the base stream.
    """

    def __init__(self, fileobj: IO[bytes]) -> None:
        super().__init__()
        self.fileobj = fileobj
        self.name = getattr(fileobj, 'name', None)

    def _call(self, method, *args):
        try:
            return method(*args)
        except (ArchiveError, io.UnsupportedOperation):
            raise
        except OSError as exception:
            raise StreamError(f"Failed to access the underlying stream: {exception}") from exception

    @overrides(io.RawIOBase)
    def readable(self) -> bool:
        return True

    @overrides(io.RawIOBase)
    def seekable(self) -> bool:
        return is_seekable(self.fileobj)

    @overrides(io.RawIOBase)
    def read(self, size: int = -1) -> bytes:
        return self._call(self.fileobj.read, size)

    @overrides(io.RawIOBase)
    def readinto(self, buffer):
        with memoryview(buffer) as view, view.cast("B") as byteView:  # type: ignore
            readBytes = self.read(len(byteView))
            byteView[: len(readBytes)] = readBytes
        return len(readBytes)

    @overrides(io.RawIOBase)
    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._call(self.fileobj.seek, offset, whence)

    @overrides(io.RawIOBase)
    def tell(self) -> int:
        return self._call(self.fileobj.tell)


class DecompressedFile(FixedRawIOBase):
    """
    One lazily opened decompression layer. The backend is only opened on the first read or seek so that
    opening a codec chain never fails because of malformed data. Decoder failures are reraised as CodecError
    carrying the codec and the decompressed offset at which decoding failed.
    """

    def __init__(
        self,
        fileobj: IO[bytes],
        codec: FileFormatID,
        backend: CompressionBackendInfo,
        closeInput: bool = False,
        spoolMaxSize: int = DEFAULT_SPOOL_MAX_SIZE,
    ) -> None:
        super().__init__()
        self.fileobj = fileobj
        self.codec = codec
        self.backend = backend
        self.name = getattr(fileobj, 'name', None)
        self._closeInput = closeInput
        self._spoolMaxSize = spoolMaxSize
        self._decoder: Optional[IO[bytes]] = None
        self._spooled: Optional[IO[bytes]] = None
        self._offset = 0

    def _codec_error(self, exception: Exception) -> CodecError:
        return CodecError(
            f"Failed to decompress {self.codec.name} data at decompressed offset {self._offset}: {exception}",
            codec=self.codec.name,
            offset=self._offset,
        )

    def _open_decoder(self) -> IO[bytes]:
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        if self._decoder is not None:
            return self._decoder

        compressedFile = self.fileobj
        if self.backend.requiresSeekableInput and not is_seekable(compressedFile):
            logger.debug("Spool non-seekable input for %s decompression.", self.codec.name)
            self._spooled = spool(compressedFile, self._spoolMaxSize)
            compressedFile = self._spooled

        try:
            self._decoder = self.backend.open(compressedFile)
        except ArchiveError:
            raise
        except Exception as exception:
            raise self._codec_error(exception) from exception
        return cast(IO[bytes], self._decoder)

    @overrides(io.RawIOBase)
    def readable(self) -> bool:
        return True

    @overrides(io.RawIOBase)
    def seekable(self) -> bool:
        return self.backend.seekable

    @overrides(io.RawIOBase)
    def read(self, size: int = -1) -> bytes:
        decoder = self._open_decoder()
        try:
            data = decoder.read(-1 if size is None else size)
        except ArchiveError:
            raise
        except Exception as exception:
            raise self._codec_error(exception) from exception
        self._offset += len(data)
        return data

    @overrides(io.RawIOBase)
    def readinto(self, buffer):
        with memoryview(buffer) as view, view.cast("B") as byteView:  # type: ignore
            readBytes = self.read(len(byteView))
            byteView[: len(readBytes)] = readBytes
        return len(readBytes)

    @overrides(io.RawIOBase)
    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if not self.backend.seekable:
            raise io.UnsupportedOperation(f"The {self.codec.name} decompression backend does not support seeking!")
        decoder = self._open_decoder()
        try:
            decoder.seek(offset, whence)
            self._offset = decoder.tell()
        except ArchiveError:
            raise
        except Exception as exception:
            raise self._codec_error(exception) from exception
        return self._offset

    @overrides(io.RawIOBase)
    def tell(self) -> int:
        return self._offset

    @overrides(io.RawIOBase)
    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._decoder is not None:
                self._decoder.close()
            if self._spooled is not None:
                self._spooled.close()
            if self._closeInput:
                self.fileobj.close()
        finally:
            super().close()


def decompress(codec: FileFormatID, fileobj: IO[bytes], closeInput: bool = False, **options) -> DecompressedFile:
    """
    Returns a lazily decompressing view of the given compressed file object.
    Raises CompressionError if no backend module for the codec is installed.
    """
    backend = _find_backend_or_raise(codec, **options)
    return DecompressedFile(
        fileobj,
        codec,
        backend,
        closeInput=closeInput,
        spoolMaxSize=options.get('spoolMaxSize', DEFAULT_SPOOL_MAX_SIZE),
    )


def open_codec_chain(fileobj: IO[bytes], codecs: Sequence[FileFormatID], **options) -> IO[bytes]:
    """
    Stacks decompression layers in front of the base stream in the given order, i.e., the first codec is
    undone first. An empty chain returns the base stream itself. Closing the returned outermost layer closes
    all layers but never the base stream.
    """
    if not codecs:
        return fileobj

    result: IO[bytes] = GuardedFile(fileobj)
    for codec in codecs:
        result = decompress(codec, result, closeInput=True, **options)
    logger.debug("Opened codec chain: %s", ' -> '.join(codec.name for codec in codecs))
    return result


def strip_suffix_from_compressed_file(path: str) -> str:
    """Strips compression suffixes like .bz2, .gz, ..."""
    for formatInfo in COMPRESSION_FORMATS.values():
        for extension in formatInfo.extensions:
            if path.lower().endswith('.' + extension.lower()):
                return path[: -(len(extension) + 1)]
    return path


def strip_suffix_from_archive(path: str) -> str:
    """Strips extensions like .tar.gz or .gz or .tgz, .zip ..."""
    extensions = itertools.chain(
        (e for extensions in TAR_CONTRACTED_EXTENSIONS.values() for e in extensions),
        ('tar.' + e for formatInfo in COMPRESSION_FORMATS.values() for e in formatInfo.extensions),
        (e for formatInfo in COMPRESSION_FORMATS.values() for e in formatInfo.extensions),
        (e for formatInfo in ARCHIVE_FORMATS.values() for e in formatInfo.extensions),
    )
    for extension in extensions:
        if path.lower().endswith('.' + extension.lower()):
            return path[: -(len(extension) + 1)]
    return path


def detect_compression(fileobj: IO[bytes], **options) -> Optional[FileFormatID]:
    """
    Returns the compression whose magic bytes match at the current offset and whose backend can decode
    the first byte. The file position is restored.
    """
    if not is_seekable(fileobj):
        logger.info(
            "Cannot detect compression for given Python object %s because it is not seekable.",
            fileobj,
        )
        return None

    oldOffset = fileobj.tell()
    for compressionId in detect_compression_formats(fileobj):
        try:
            backend = _find_backend_or_raise(compressionId, **options)
        except CompressionError as exception:
            # If no appropriate module exists, then don't do any further checks.
            logger.warning("A given file with magic bytes for %s could not be opened: %s", compressionId.name, exception)
            return None

        try:
            with DecompressedFile(GuardedFile(fileobj), compressionId, backend) as decompressedFile:
                decompressedFile.read(1)
            return compressionId
        except ArchiveError as exception:
            logger.info(
                "A given file with magic bytes for %s could not be opened because: %s",
                compressionId.name,
                exception,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
        finally:
            fileobj.seek(oldOffset)

    return None


# Decompressed bytes to inspect per peeled layer. Large enough for a TAR header
# and for the magic bytes of the next layer behind a few skippable frames.
HEAD_SIZE = 64 * 1024


def _detect_container(fileobj: IO[bytes], encoding: str, allowZip: bool) -> Optional[FileFormatID]:
    if allowZip and might_be_format(fileobj, FID.ZIP):
        return FID.ZIP
    oldOffset = fileobj.tell()
    try:
        if is_tar(fileobj, encoding):
            return FID.TAR
    finally:
        fileobj.seek(oldOffset)
    return None


def detect_format(
    fileobj: IO[bytes], encoding: str = tarfile.ENCODING, maxDepth: int = 4, **options
) -> Optional[FormatDescriptor]:
    """
    Detects the format by magic bytes. Compression layers are peeled off one by one, up to maxDepth, by
    decompressing the start of each layer. Then, the container is identified: ZIP only directly on the
    given file because its central directory is at the end, TAR by its checksum-validated first header.
    Returns None instead of guessing. The file position is restored.
    """
    if not is_seekable(fileobj):
        logger.info("Cannot detect the format of %s because it is not seekable.", fileobj)
        return None

    oldOffset = fileobj.tell()
    codecs: list[FileFormatID] = []
    layer: IO[bytes] = fileobj
    try:
        for _ in range(maxDepth + 1):
            container = _detect_container(layer, encoding, allowZip=not codecs)
            if container is not None:
                descriptor = make_descriptor(container, tuple(codecs))
                logger.info("Detected format %s by magic bytes.", descriptor.name)
                return descriptor

            if len(codecs) >= maxDepth:
                break
            compression = detect_compression(layer, **options)
            if compression is None:
                break

            codecs.append(compression)
            with decompress(compression, GuardedFile(layer), **options) as decompressedFile:
                layer = io.BytesIO(decompressedFile.read(HEAD_SIZE))
    except ArchiveError as exception:
        logger.info(
            "Failed to peel compression layers %s: %s",
            [codec.name for codec in codecs],
            exception,
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
    finally:
        fileobj.seek(oldOffset)

    return None


def detect(
    name: Optional[Union[str, os.PathLike]] = None, fileobj: Optional[IO[bytes]] = None, **options
) -> Optional[FormatDescriptor]:
    """Detects the format by file name first and by magic bytes second."""
    if name:
        descriptor = detect_format_by_name(name)
        if descriptor is not None:
            logger.info("Detected format %s by the name of '%s'.", descriptor.name, name)
            return descriptor
    if fileobj is not None:
        return detect_format(fileobj, **options)
    return None
