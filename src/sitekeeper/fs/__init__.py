"""Filesystem building blocks for atomic operations.

This module provides the async filesystem service, backups taken before
overwrites, and the atomic write/copy/rename primitives.
"""

from sitekeeper.fs.atomic import (
    OperationResult,
    Validator,
    atomic_copy_directory,
    atomic_rename,
    atomic_write,
)
from sitekeeper.fs.backup import Backup
from sitekeeper.fs.filesystem import FileSystem, LocalFileSystem, StatResult
from sitekeeper.fs.paths import normalize_path

__all__ = [
    "Backup",
    "FileSystem",
    "LocalFileSystem",
    "OperationResult",
    "StatResult",
    "Validator",
    "atomic_copy_directory",
    "atomic_rename",
    "atomic_write",
    "normalize_path",
]
