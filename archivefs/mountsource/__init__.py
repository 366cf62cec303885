"""
This module offers a MountSource interface, which has methods for listing paths
and getting entry metadata and contents. Lookup returns an Entry object,
which identifies the file, similar to a filesystem inode, and can be
used to open the file.

The implementations are split into two submodules: "formats" and "compositing".

"formats" contains the raw entry sources, which parse one container format:

 - TarEntrySource: Reads (compressed) TARs in a single forward pass using tarfile.
 - ZipEntrySource: Answers queries from the ZIP central directory using zipfile.

ArchiveMountSource combines an entry source with the codec filter chain and
the virtual filesystem index. It is the archive handle returned by the factory.

The "compositing" submodule contains MountSource implementations or helpers that
offer higher-level abstractions on top of other mount sources.

 - SingleFileMountSource: Exposes a single (decompressed) file as a mount source.
 - topdir: Lookups falling back to paths without their top-level directory.

The factory functions 'open_path', 'open_stream', and 'open_mount_source' open
mount sources according to the file type.

Example:

    from archivefs.mountsource.factory import open_path

    with open_path("foo.tar.gz") as archive:
        print(archive.read_dir("."))
        print(archive.read_file("bar/baz.txt"))
"""

from .MountSource import MountSource
