"""archivefs

A read-only filesystem view onto archives. TAR archives, optionally compressed with gzip, bzip2, xz, zstd or lz4,
and ZIP archives are presented through one interface for directory listing, path lookup and content reads
without extracting them.

The most common usecase should be covered by the open_path and open_mount_source factory functions.
For more information, see the archivefs.mountsource submodule.

Example:

    from archivefs.mountsource.factory import open_path

    with open_path("foo.tar.gz") as archive:
        print(archive.read_dir("."))
        print("Contents of bar:")
        print(archive.read_file("bar"))
"""

from .version import __version__
