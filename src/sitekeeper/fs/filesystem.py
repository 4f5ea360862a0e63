"""File system service used by the atomic primitives.

All operations are async: blocking calls run on a worker thread via anyio so
that every filesystem call is a suspension point for the event loop. Errors
propagate as ``OSError``; the primitives translate them into ``IO_ERROR``
results.
"""

import os
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

import anyio.to_thread


@dataclass(frozen=True)
class StatResult:
    """Subset of stat information the engine relies on.

    Symlinks are reported as neither file nor directory.
    """

    is_file: bool
    is_dir: bool
    is_symlink: bool
    size: int
    mtime: datetime
    atime: datetime


@runtime_checkable
class FileSystem(Protocol):
    """Async filesystem operations consumed by the primitives and workflows."""

    async def exists(self, path: Path) -> bool: ...

    async def read(self, path: Path) -> bytes: ...

    async def write(self, path: Path, data: bytes) -> None: ...

    async def mkdir(self, path: Path, recursive: bool = False) -> None: ...

    async def readdir(self, path: Path) -> list[str]: ...

    async def rename(self, old: Path, new: Path) -> None: ...

    async def remove_tree(self, path: Path, recursive: bool = True) -> None: ...

    async def copy_file(self, src: Path, dest: Path) -> None: ...

    async def stat(self, path: Path) -> StatResult: ...

    async def set_times(self, path: Path, atime: datetime, mtime: datetime) -> None: ...


def _write_durable(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())


def _remove(path: Path, recursive: bool) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif recursive:
        shutil.rmtree(path)
    else:
        path.rmdir()


def _stat(path: Path) -> StatResult:
    info = path.lstat()
    is_symlink = path.is_symlink()
    return StatResult(
        is_file=not is_symlink and path.is_file(),
        is_dir=not is_symlink and path.is_dir(),
        is_symlink=is_symlink,
        size=info.st_size,
        mtime=datetime.fromtimestamp(info.st_mtime, tz=UTC),
        atime=datetime.fromtimestamp(info.st_atime, tz=UTC),
    )


def _rename(old: Path, new: Path) -> None:
    # os.replace is atomic on POSIX and on Windows within one volume.
    os.replace(old, new)


class LocalFileSystem:
    """FileSystem implementation backed by the local disk."""

    async def exists(self, path: Path) -> bool:
        return await anyio.to_thread.run_sync(os.path.lexists, path)

    async def read(self, path: Path) -> bytes:
        return await anyio.to_thread.run_sync(path.read_bytes)

    async def write(self, path: Path, data: bytes) -> None:
        await anyio.to_thread.run_sync(_write_durable, path, data)

    async def mkdir(self, path: Path, recursive: bool = False) -> None:
        await anyio.to_thread.run_sync(
            lambda: path.mkdir(parents=recursive, exist_ok=recursive)
        )

    async def readdir(self, path: Path) -> list[str]:
        return sorted(await anyio.to_thread.run_sync(os.listdir, path))

    async def rename(self, old: Path, new: Path) -> None:
        await anyio.to_thread.run_sync(_rename, old, new)

    async def remove_tree(self, path: Path, recursive: bool = True) -> None:
        await anyio.to_thread.run_sync(_remove, path, recursive)

    async def copy_file(self, src: Path, dest: Path) -> None:
        await anyio.to_thread.run_sync(shutil.copyfile, src, dest)

    async def stat(self, path: Path) -> StatResult:
        return await anyio.to_thread.run_sync(_stat, path)

    async def set_times(self, path: Path, atime: datetime, mtime: datetime) -> None:
        await anyio.to_thread.run_sync(
            os.utime, path, (atime.timestamp(), mtime.timestamp())
        )
