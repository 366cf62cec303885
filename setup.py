#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
from setuptools import setup

scriptPath = os.path.abspath( os.path.dirname( __file__ ) )
with open( os.path.join( scriptPath, 'README.md' ), encoding = 'utf-8' ) as file:
    readmeContents = file.read()

setup(
    name             = 'archivefs',
    version          = '0.1.0',

    description      = 'Read-only filesystem view onto TAR and ZIP archives',
    license          = 'MIT',
    classifiers      = [ 'License :: OSI Approved :: MIT License',
                         'Development Status :: 4 - Beta',
                         'Natural Language :: English',
                         'Operating System :: MacOS',
                         'Operating System :: Unix',
                         'Programming Language :: Python :: 3',
                         'Programming Language :: Python :: 3.9',
                         'Programming Language :: Python :: 3.10',
                         'Programming Language :: Python :: 3.11',
                         'Programming Language :: Python :: 3.12',
                         'Topic :: System :: Archiving' ],

    long_description = readmeContents,
    long_description_content_type = 'text/markdown',

    python_requires  = '>=3.9',
    # The formats and compositing subpackages have no __init__.py, so they have to be listed explicitly.
    packages         = [ 'archivefs',
                         'archivefs.mountsource',
                         'archivefs.mountsource.formats',
                         'archivefs.mountsource.compositing' ],
    install_requires = [
        'fsspec',
        'indexed_gzip>=1.6.3',
        'lz4',
        'python-xz>=0.1.2',
        'rapidgzip>=0.13.1',
        'zstandard',
    ],
    extras_require   = {
        'test'  : [ 'pytest' ],
    },
    entry_points = { 'fsspec.specs': [ 'archivefs=archivefs.MountSourceFsspec.ArchiveFileSystem' ] }
)
