"""
Lookups that ignore a single wrapping directory, e.g., 'project-1.0/' in 'project-1.0.tar.gz'.
Each function tries the path as given first. If that does not exist and the archive has exactly one top-level
directory, the member whose path without that top directory equals the queried path is used instead.
"""

import builtins
import logging
import os
from typing import Optional, Union

from archivefs.entries import Entry
from archivefs.paths import ROOT, join, without_top_directory

from ..MountSource import ArchiveFile, MountSource

logger = logging.getLogger(__name__)


def top_directory(mountSource: MountSource) -> Optional[str]:
    """Returns the name of the only top-level entry if it is a directory, else None."""
    names = mountSource.read_dir(ROOT)
    if len(names) == 1 and mountSource.is_dir(names[0]):
        return names[0]
    return None


def _fallback_path(mountSource: MountSource, path: Union[str, os.PathLike]) -> Optional[str]:
    topDirectory = top_directory(mountSource)
    if topDirectory is None:
        return None

    normalized = mountSource.normalize(path)
    # Paths that already start with the wrapping directory, e.g., from another archive, get it replaced.
    stripped = without_top_directory(normalized) if '/' in normalized else normalized
    for candidate in dict.fromkeys((join(topDirectory, normalized), join(topDirectory, stripped))):
        if mountSource.exists(candidate):
            logger.debug("Resolved '%s' below the top directory as '%s'.", path, candidate)
            return candidate
    return None


def top_dir_stat(mountSource: MountSource, path: Union[str, os.PathLike]) -> Entry:
    try:
        return mountSource.stat(path)
    except FileNotFoundError:
        fallback = _fallback_path(mountSource, path)
        if fallback is None:
            raise
    return mountSource.stat(fallback)


def top_dir_read_dir(mountSource: MountSource, path: Union[str, os.PathLike] = ROOT) -> builtins.list[str]:
    try:
        return mountSource.read_dir(path)
    except FileNotFoundError:
        fallback = _fallback_path(mountSource, path)
        if fallback is None:
            raise
    return mountSource.read_dir(fallback)


def top_dir_open(mountSource: MountSource, path: Union[str, os.PathLike]) -> ArchiveFile:
    try:
        return mountSource.open_file(path)
    except FileNotFoundError:
        fallback = _fallback_path(mountSource, path)
        if fallback is None:
            raise
    return mountSource.open_file(fallback)
