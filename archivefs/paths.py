"""
Path hygiene for archive member names and query paths.

All paths inside archivefs are canonical: slash-separated, relative to the archive root, without leading slash,
without empty, '.' or '..' segments. The root itself is represented by ROOT ('.').
"""

import os
from collections.abc import Iterator

from .utils import PathError

ROOT = '.'


def to_slash(path: str, separator: str = os.sep) -> str:
    """Converts the given platform separator to the canonical forward slash."""
    return path.replace(separator, '/') if separator and separator != '/' else path


def canonicalize(raw: str, separator: str = os.sep) -> str:
    """
    Returns the canonical form of the given path. Leading '/' and './' are stripped, repeated slashes and '.'
    segments are collapsed. '..' segments are rejected with PathError instead of being resolved because archive
    members must never be able to escape the archive root.
    """
    segments = []
    for segment in to_slash(raw, separator).split('/'):
        if segment in ('', '.'):
            continue
        if segment == '..':
            raise PathError(f"Path '{raw}' escapes the archive root via '..'!")
        segments.append(segment)
    return '/'.join(segments) if segments else ROOT


def without_top_directory(path: str) -> str:
    """
    Removes exactly the first slash-delimited segment and the following separator.
    Paths without separator are returned unchanged, e.g.: 'a/b/c' -> 'b/c', 'c' -> 'c', '' -> ''.
    """
    _, separator, remainder = path.partition('/')
    return remainder if separator else path


def join(parent: str, name: str) -> str:
    return name if parent == ROOT else parent + '/' + name


def split_parent(path: str) -> tuple[str, str]:
    """Returns (parent, name) for a canonical path. The parent of a top-level path is ROOT."""
    if path == ROOT:
        return ROOT, ''
    parent, _, name = path.rpartition('/')
    return parent or ROOT, name


def parent_directories(path: str) -> Iterator[str]:
    """Yields all strict prefixes of a canonical path from the root downwards, including ROOT."""
    yield ROOT
    if path == ROOT:
        return
    segments = path.split('/')
    for i in range(1, len(segments)):
        yield '/'.join(segments[:i])


def is_below(path: str, directory: str) -> bool:
    """Returns true if the canonical path is a strict descendant of the canonical directory."""
    if directory == ROOT:
        return path != ROOT
    return path.startswith(directory + '/')
