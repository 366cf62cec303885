# pylint: disable=wrong-import-position
# pylint: disable=redefined-outer-name

import contextlib
import gzip
import io
import os
import stat
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from helpers import NonSeekableReader  # noqa: E402

from archivefs.mountsource.compositing.singlefile import SingleFileMountSource  # noqa: E402
from archivefs.utils import ArchiveClosedError  # noqa: E402


class TestSingleFileMountSource:
    @staticmethod
    @pytest.mark.parametrize('path', ["foo", "/foo", "./foo", "//foo/"])
    def test_single_file(path: str):
        contents = b"bar"
        ms = SingleFileMountSource(path, io.BytesIO(contents))

        fileInfo = ms.lookup('foo')
        assert fileInfo
        assert stat.S_ISREG(fileInfo.full_mode)
        assert not stat.S_ISDIR(fileInfo.full_mode)
        assert fileInfo.size == len(contents)

        with ms.open(fileInfo) as file:
            assert file.read() == contents
        assert ms.read(fileInfo, size=len(contents) + 1, offset=0) == contents
        assert ms.read(fileInfo, size=1, offset=1) == b"a"

        for queryPath in ('/', '', '.'):
            fileInfo = ms.lookup(queryPath)
            assert fileInfo
            assert stat.S_ISDIR(fileInfo.full_mode)
            assert not stat.S_ISREG(fileInfo.full_mode)

            files_mode = ms.list_mode(queryPath)
            assert files_mode
            assert list(files_mode) == ['foo']

            files = ms.list(queryPath)
            assert files
            assert list(files) == ['foo']

        assert ms.lookup('bar') is None
        assert ms.list('foo') is None
        assert ms.read_dir() == ['foo']
        assert ms.read_file('/foo') == contents

    @staticmethod
    @pytest.mark.parametrize('path', ["folder/foo", "/", ""])
    def test_invalid_path(path: str):
        with pytest.raises(ValueError):
            SingleFileMountSource(path, io.BytesIO(b"bar"))

    @staticmethod
    def test_independent_readers():
        ms = SingleFileMountSource('foo', io.BytesIO(b"0123456789"))
        entry = ms.lookup('foo')
        a = ms.open(entry)
        b = ms.open(entry, buffering=0)
        assert a.read(3) == b"012"
        assert b.read(5) == b"01234"
        assert a.read() == b"3456789"
        b.seek(8)
        assert b.read() == b"89"

    @staticmethod
    def test_open_root_fails():
        ms = SingleFileMountSource('foo', io.BytesIO(b"bar"))
        with pytest.raises(ValueError):
            ms.open(ms.lookup('/'))
        with pytest.raises(IsADirectoryError):
            ms.read_file('/')

    @staticmethod
    def test_callable():
        contents = b"foo" * 1000
        compressed = gzip.compress(contents)
        calls = []

        def open_new():
            calls.append(True)
            return gzip.GzipFile(fileobj=io.BytesIO(compressed))

        ms = SingleFileMountSource('foo', open_new)
        entry = ms.lookup('foo')
        assert entry.size == len(contents)

        assert ms.read_file('foo') == contents
        assert ms.read(entry, size=4, offset=2999 - 3) == b"ofoo"
        assert len(calls) == 3

    @staticmethod
    def test_callable_without_seek_support():
        contents = b"0123456789" * 100

        ms = SingleFileMountSource('foo', lambda: NonSeekableReader(contents))
        entry = ms.lookup('foo')
        assert entry.size == len(contents)
        assert ms.read(entry, size=5, offset=995) == b"56789"
        with ms.open(entry) as file:
            assert file.read(3) == b"012"
            file.seek(10, io.SEEK_CUR)
            assert file.read(2) == b"34"

    @staticmethod
    def test_close():
        closed = []
        exitStack = contextlib.ExitStack()
        exitStack.callback(lambda: closed.append(True))

        fileobj = io.BytesIO(b"bar")
        ms = SingleFileMountSource('foo', fileobj, exitStack=exitStack)
        entry = ms.lookup('foo')
        reader = ms.open(entry)

        with ms:
            pass
        assert closed == [True]
        assert fileobj.closed

        with pytest.raises(ArchiveClosedError):
            ms.open(entry)
        with pytest.raises((ArchiveClosedError, ValueError)):
            reader.read()

        # Closing twice is a no-op.
        ms.close()
        assert closed == [True]
