import bz2
import gzip
import io
import lzma
import os
import stat
import sys
import tarfile
import time
import zipfile
from typing import Optional

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from archivefs.compressions import find_available_backend  # noqa: E402
from archivefs.formats import FID  # noqa: E402

try:
    import lz4.frame
except ImportError:
    lz4 = None  # type: ignore

try:
    import zstandard
except ImportError:
    zstandard = None  # type: ignore


# Files of a Go project without any explicit directory entries.
NODIR_FILES = {
    '.github/FUNDING.yml': b"github: [mholt]\n",
    '.github/ISSUE_TEMPLATE/bug_report.md': b"---\nname: Bug report\n---\n",
    '.github/workflows/ubuntu-latest.yml': b"name: Linux\non: [push]\n",
    'README.md': b"# archiver\n",
    'archiver.go': b"package archiver\n",
    'cmd/arc/main.go': b"package main\n\nfunc main() {}\n",
    'go.mod': b"module github.com/mholt/archiver/v4\n",
}

MTIME = 1_600_000_000


def add_tar_file(archive: tarfile.TarFile, name: str, contents: bytes, mode: int = 0o644):
    tarInfo = tarfile.TarInfo(name)
    tarInfo.size = len(contents)
    tarInfo.mode = mode
    tarInfo.mtime = MTIME
    archive.addfile(tarInfo, io.BytesIO(contents))


def add_tar_directory(archive: tarfile.TarFile, name: str, mode: int = 0o750):
    tarInfo = tarfile.TarInfo(name)
    tarInfo.type = tarfile.DIRTYPE
    tarInfo.mode = mode
    tarInfo.mtime = MTIME
    archive.addfile(tarInfo)


def add_tar_link(archive: tarfile.TarFile, name: str, target: str, linkType=tarfile.SYMTYPE):
    tarInfo = tarfile.TarInfo(name)
    tarInfo.type = linkType
    tarInfo.linkname = target
    tarInfo.mode = 0o777
    tarInfo.mtime = MTIME
    archive.addfile(tarInfo)


def create_tar(files: dict, directories=(), tarFormat=tarfile.PAX_FORMAT) -> bytes:
    result = io.BytesIO()
    with tarfile.open(fileobj=result, mode='w', format=tarFormat) as archive:
        for name in directories:
            add_tar_directory(archive, name)
        for name, contents in files.items():
            add_tar_file(archive, name, contents)
    return result.getvalue()


def create_zip(files: dict, directories=(), compression=zipfile.ZIP_DEFLATED) -> bytes:
    result = io.BytesIO()
    with zipfile.ZipFile(result, 'w', compression=compression) as archive:
        for name in directories:
            zipInfo = zipfile.ZipInfo(name.rstrip('/') + '/', date_time=time.gmtime(MTIME)[:6])
            zipInfo.external_attr = (stat.S_IFDIR | 0o750) << 16
            archive.writestr(zipInfo, b"")
        for name, contents in files.items():
            zipInfo = zipfile.ZipInfo(name, date_time=time.gmtime(MTIME)[:6])
            zipInfo.external_attr = (stat.S_IFREG | 0o644) << 16
            zipInfo.compress_type = compression
            archive.writestr(zipInfo, contents)
    return result.getvalue()


def add_zip_symlink(data: bytes, name: str, target: str) -> bytes:
    result = io.BytesIO(data)
    with zipfile.ZipFile(result, 'a') as archive:
        zipInfo = zipfile.ZipInfo(name, date_time=time.gmtime(MTIME)[:6])
        zipInfo.external_attr = (stat.S_IFLNK | 0o777) << 16
        archive.writestr(zipInfo, target.encode())
    return result.getvalue()


def compress(data: bytes, compression: FID) -> bytes:
    if compression == FID.GZIP:
        return gzip.compress(data)
    if compression == FID.BZIP2:
        return bz2.compress(data)
    if compression == FID.XZ:
        return lzma.compress(data, format=lzma.FORMAT_XZ)
    if compression == FID.ZSTANDARD:
        return zstandard.ZstdCompressor().compress(data)
    if compression == FID.LZ4:
        return lz4.frame.compress(data)
    raise ValueError(f"Unknown compression: {compression}")


def compress_chain(data: bytes, codecs) -> bytes:
    """Applies the codecs in reverse so that the first given codec is the outermost one."""
    for codec in reversed(list(codecs)):
        data = compress(data, codec)
    return data


def can_decompress(compression: FID) -> bool:
    """Returns true if a decompression backend is installed and the test can create such data."""
    if compression == FID.ZSTANDARD and zstandard is None:
        return False
    if compression == FID.LZ4 and lz4 is None:
        return False
    return find_available_backend(compression) is not None


def write_file(folder, name: str, data: bytes) -> str:
    path = os.path.join(folder, name)
    with open(path, 'wb') as file:
        file.write(data)
    return path


class NonSeekableReader(io.RawIOBase):
    """Forward-only reader as returned by pipes or sockets."""

    def __init__(self, data: bytes):
        super().__init__()
        self._file = io.BytesIO(data)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def readinto(self, buffer):
        data = self._file.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


class FailingReader(io.RawIOBase):
    """Seekable reader that raises OSError once reads go beyond failOffset."""

    def __init__(self, data: bytes, failOffset: Optional[int] = None):
        super().__init__()
        self._file = io.BytesIO(data)
        self.failOffset = len(data) if failOffset is None else failOffset

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def seek(self, offset, whence=io.SEEK_SET):
        return self._file.seek(offset, whence)

    def tell(self):
        return self._file.tell()

    def readinto(self, buffer):
        if self._file.tell() + len(buffer) > self.failOffset:
            raise OSError("Simulated I/O error")
        data = self._file.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)
