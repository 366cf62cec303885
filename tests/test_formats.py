# pylint: disable=wrong-import-position
# pylint: disable=protected-access

import dataclasses
import io
import os
import sys
import tarfile

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from helpers import NODIR_FILES, compress, create_tar, create_zip, lz4, zstandard  # noqa: E402

from archivefs.formats import (  # noqa: E402
    ARCHIVE_FORMATS,
    COMPRESSION_FORMATS,
    FID,
    FORMAT_DESCRIPTORS,
    FileFormatID,
    FormatDescriptor,
    detect_compression_formats,
    detect_format_by_name,
    is_tar,
    make_descriptor,
    might_be_format,
    split_compression_suffixes,
)


@pytest.mark.parametrize(
    'name,container,codecs',
    [
        ('a.tar', FID.TAR, ()),
        ('a.TAR', FID.TAR, ()),
        ('a.zip', FID.ZIP, ()),
        ('a.Zip', FID.ZIP, ()),
        ('a.tar.gz', FID.TAR, (FID.GZIP,)),
        ('a.tar.gzip', FID.TAR, (FID.GZIP,)),
        ('a.tgz', FID.TAR, (FID.GZIP,)),
        ('a.taz', FID.TAR, (FID.GZIP,)),
        ('a.tar.bz2', FID.TAR, (FID.BZIP2,)),
        ('a.TAR.BZIP2', FID.TAR, (FID.BZIP2,)),
        ('a.tbz2', FID.TAR, (FID.BZIP2,)),
        ('a.tb2', FID.TAR, (FID.BZIP2,)),
        ('a.tz2', FID.TAR, (FID.BZIP2,)),
        ('a.tbz', FID.TAR, (FID.BZIP2,)),
        ('a.tar.xz', FID.TAR, (FID.XZ,)),
        ('a.txz', FID.TAR, (FID.XZ,)),
        ('a.tar.zst', FID.TAR, (FID.ZSTANDARD,)),
        ('a.tar.zstd', FID.TAR, (FID.ZSTANDARD,)),
        ('a.tzst', FID.TAR, (FID.ZSTANDARD,)),
        ('a.tar.lz4', FID.TAR, (FID.LZ4,)),
        ('a.tlz4', FID.TAR, (FID.LZ4,)),
        # Stacked codecs are returned outermost first.
        ('a.tar.gz.xz', FID.TAR, (FID.XZ, FID.GZIP)),
        ('a.tgz.bz2', FID.TAR, (FID.BZIP2, FID.GZIP)),
        ('a.zip.gz', FID.ZIP, (FID.GZIP,)),
        ('folder.tar/a.tar.gz', FID.TAR, (FID.GZIP,)),
        ('/tmp/release-1.0.TGZ', FID.TAR, (FID.GZIP,)),
    ],
)
def test_detect_format_by_name(name, container, codecs):
    descriptor = detect_format_by_name(name)
    assert descriptor is not None
    assert descriptor.container == container
    assert descriptor.codecs == codecs
    assert descriptor.indexed == (container == FID.ZIP)


@pytest.mark.parametrize('name', ['a', 'a.txt', 'a.gz', 'a.txt.gz', 'a.tar.mp3', 'tar', '.gz', 'a.tar/b.txt', ''])
def test_detect_format_by_name_without_container(name):
    assert detect_format_by_name(name) is None


def test_split_compression_suffixes():
    assert split_compression_suffixes('notes.TXT.gz.xz') == ('notes.TXT', [FID.XZ, FID.GZIP])
    assert split_compression_suffixes('Notes.txt.GZIP') == ('Notes.txt', [FID.GZIP])
    assert split_compression_suffixes('a.tgz.bz2') == ('a.tgz', [FID.BZIP2])
    assert split_compression_suffixes('a.tar.zst') == ('a.tar', [FID.ZSTANDARD])
    assert split_compression_suffixes('plain') == ('plain', [])
    assert split_compression_suffixes('.gz') == ('', [FID.GZIP])


def test_registered_descriptors():
    assert set(FORMAT_DESCRIPTORS) == {'tar', 'zip', 'tar.bz2', 'tar.gz', 'tar.xz', 'tar.zst', 'tar.lz4'}
    for name, descriptor in FORMAT_DESCRIPTORS.items():
        assert descriptor.name == name
        assert name in descriptor.extensions

    assert 'tgz' in FORMAT_DESCRIPTORS['tar.gz'].extensions
    assert FORMAT_DESCRIPTORS['zip'].indexed
    assert not FORMAT_DESCRIPTORS['tar.gz'].indexed

    # The registries are read-only.
    with pytest.raises(TypeError):
        FORMAT_DESCRIPTORS['rar'] = FORMAT_DESCRIPTORS['zip']  # type: ignore
    with pytest.raises(TypeError):
        COMPRESSION_FORMATS[FID.GZIP] = COMPRESSION_FORMATS[FID.XZ]  # type: ignore


def test_descriptor_is_immutable_and_shareable():
    descriptor = FORMAT_DESCRIPTORS['tar.gz']
    with pytest.raises(dataclasses.FrozenInstanceError):
        descriptor.name = 'foo'  # type: ignore

    assert make_descriptor(FID.TAR, (FID.GZIP,)) is descriptor
    assert detect_format_by_name('a.tgz') is descriptor

    stacked = descriptor.with_codecs(FID.XZ)
    assert stacked.codecs == (FID.XZ, FID.GZIP)
    assert stacked.name == 'tar.gz.xz'
    assert stacked == make_descriptor(FID.TAR, (FID.XZ, FID.GZIP))
    assert descriptor.codecs == (FID.GZIP,)


def test_descriptor_validation():
    with pytest.raises(ValueError):
        FormatDescriptor(name='gz', container=FID.GZIP)
    with pytest.raises(ValueError):
        FormatDescriptor(name='tar.tar', container=FID.TAR, codecs=(FID.TAR,))


def test_all_formats_have_info():
    for fid in FileFormatID:
        assert fid in ARCHIVE_FORMATS or fid in COMPRESSION_FORMATS


def test_is_tar():
    data = create_tar({'foo': b"bar"})
    assert is_tar(io.BytesIO(data))
    assert might_be_format(io.BytesIO(data), FID.TAR)

    # Only zeros, e.g., an empty TAR, cannot be recognized.
    assert not is_tar(io.BytesIO(bytes(10 * tarfile.BLOCKSIZE)))
    assert not is_tar(io.BytesIO(b"foo"))

    corrupted = bytearray(data)
    corrupted[0] ^= 0xFF
    assert not is_tar(io.BytesIO(bytes(corrupted)))


def test_might_be_zip():
    data = create_zip(NODIR_FILES)
    assert might_be_format(io.BytesIO(data), FID.ZIP)
    assert not might_be_format(io.BytesIO(create_tar({'foo': b"bar"})), FID.ZIP)


@pytest.mark.parametrize('compression', [FID.GZIP, FID.BZIP2, FID.XZ, FID.ZSTANDARD, FID.LZ4])
def test_detect_compression_formats(compression):
    if compression == FID.ZSTANDARD and zstandard is None:
        return
    if compression == FID.LZ4 and lz4 is None:
        return

    file = io.BytesIO(compress(b"Hello World!\n" * 10, compression))
    file.seek(0)
    assert detect_compression_formats(file) == [compression]
    assert file.tell() == 0
    assert might_be_format(file, compression)


def test_skippable_frames():
    skippableFrame = (0x184D2A50).to_bytes(4, 'little') + (3).to_bytes(4, 'little') + b"abc"
    zstdMagic = (0xFD2FB528).to_bytes(4, 'little')
    lz4Magic = (0x184D2204).to_bytes(4, 'little')

    assert might_be_format(io.BytesIO(skippableFrame + zstdMagic + bytes(8)), FID.ZSTANDARD)
    assert might_be_format(io.BytesIO(skippableFrame + lz4Magic + bytes(8)), FID.LZ4)
    assert not might_be_format(io.BytesIO(skippableFrame + lz4Magic), FID.ZSTANDARD)
    # Too short for the header check.
    assert not might_be_format(io.BytesIO(skippableFrame), FID.ZSTANDARD)


def test_no_compression_for_plain_data():
    assert detect_compression_formats(io.BytesIO(b"Hello World!\n")) == []
    assert detect_compression_formats(io.BytesIO(b"")) == []
