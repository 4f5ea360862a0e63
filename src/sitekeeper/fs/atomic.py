"""Atomic filesystem primitives.

This module provides the single-operation building blocks used by
transactions: atomic file write, atomic directory copy and atomic rename.
Each stages its work next to the target, optionally validates it, and makes
it visible with one same-volume rename. Primitives report failures through
``OperationResult`` instead of raising.
"""

import fnmatch
import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

import anyio
import structlog

from sitekeeper.core.constants import (
    COPY_MAX_DEPTH,
    DEFAULT_EXCLUDES,
    WRITE_MAX_RETRIES,
    WRITE_RETRY_DELAY,
)
from sitekeeper.core.errors import AtomicOperationError, ErrorKind
from sitekeeper.fs.backup import Backup
from sitekeeper.fs.filesystem import FileSystem, LocalFileSystem
from sitekeeper.fs.paths import get_staging_path
from sitekeeper.utils.debug import debug

T = TypeVar("T")

#: Pure predicate over staged input; may return an awaitable.
Validator = Callable[[T], bool | Awaitable[bool]]

logger = structlog.get_logger(__name__)


@dataclass
class OperationResult:
    """Outcome of a primitive or a transaction.

    Attributes:
        success: Whether the operation committed
        error: Failure details when ``success`` is False
        rollback_performed: True if a compensating action ran (transactions only)
        temporary_paths: Staging paths created during the attempt
        backup: Backup taken before an overwrite, handed to the owning step
    """

    success: bool
    error: AtomicOperationError | None = None
    rollback_performed: bool = False
    temporary_paths: list[Path] = field(default_factory=list)
    backup: Backup | None = None

    @classmethod
    def failed(
        cls,
        error: AtomicOperationError,
        temporary_paths: Iterable[Path] = (),
        backup: Backup | None = None,
    ) -> "OperationResult":
        return cls(
            success=False,
            error=error,
            temporary_paths=list(temporary_paths),
            backup=backup,
        )


async def run_validator(validator: Validator[T], value: T) -> bool:
    """Invoke a sync or async validator and coerce the verdict to bool."""
    verdict = validator(value)
    if inspect.isawaitable(verdict):
        verdict = await verdict
    return bool(verdict)


async def _cleanup(fs: FileSystem, path: Path) -> None:
    try:
        if await fs.exists(path):
            await fs.remove_tree(path, recursive=True)
            debug(f"Removed staging path {path}")
    except OSError as exc:
        logger.warning("staging.cleanup.failed", path=str(path), error=str(exc))


async def _missing_parents(fs: FileSystem, path: Path) -> list[Path]:
    """Ancestors of *path* that do not exist yet, deepest first."""
    missing: list[Path] = []
    parent = path.parent
    while parent != parent.parent and not await fs.exists(parent):
        missing.append(parent)
        parent = parent.parent
    return missing


async def _abandon(fs: FileSystem, temp_path: Path, created_dirs: list[Path]) -> None:
    await _cleanup(fs, temp_path)
    for directory in created_dirs:
        try:
            if await fs.exists(directory):
                await fs.remove_tree(directory, recursive=False)
        except OSError as exc:
            # Something else now lives there; leave the rest in place.
            logger.warning(
                "staging.cleanup.failed", path=str(directory), error=str(exc)
            )
            return


async def _write_with_retries(
    fs: FileSystem,
    path: Path,
    payload: bytes,
    max_retries: int,
    retry_delay: float,
) -> None:
    for attempt in range(1, max_retries + 1):
        try:
            await fs.write(path, payload)
            return
        except OSError as exc:
            if attempt == max_retries:
                raise
            delay = retry_delay * (2 ** (attempt - 1))
            debug(f"Write to {path} failed ({exc}); retry {attempt} in {delay}s")
            await anyio.sleep(delay)


async def atomic_write(
    path: Path,
    content: str | bytes,
    *,
    validate: Validator[str] | Validator[bytes] | None = None,
    backup: bool = False,
    fs: FileSystem | None = None,
    encoding: str = "utf-8",
    max_retries: int = WRITE_MAX_RETRIES,
    retry_delay: float = WRITE_RETRY_DELAY,
) -> OperationResult:
    """Write *content* to *path* through a staged sibling file.

    Args:
        path: Target file path
        content: Text (encoded with *encoding*) or raw bytes
        validate: Predicate over the staged content, read back from disk.
            Receives ``str`` for text content and ``bytes`` otherwise.
        backup: Copy an existing *path* aside before the swap
        fs: Filesystem service (defaults to the local disk)
        encoding: Text encoding
        max_retries: Attempts for writing the staged file
        retry_delay: Initial backoff between attempts

    Returns:
        OperationResult. On failure *path* is untouched; the staged file is
        removed, as are any parent directories this call created. ``backup``
        is set when a backup was taken.
    """
    fs = fs or LocalFileSystem()
    temp_path = get_staging_path(path, "tmp")
    temporary_paths = [temp_path]
    is_text = isinstance(content, str)
    payload = content.encode(encoding) if isinstance(content, str) else content

    created_dirs: list[Path] = []
    try:
        created_dirs = await _missing_parents(fs, path)
        if created_dirs:
            await fs.mkdir(path.parent, recursive=True)
        await _write_with_retries(fs, temp_path, payload, max_retries, retry_delay)
        debug(f"Staged {len(payload)} bytes for {path} at {temp_path}")
    except OSError as exc:
        await _abandon(fs, temp_path, created_dirs)
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.IO_ERROR,
                "Failed to write staged file",
                operation="atomic_write",
                path=path,
                cause=exc,
            ),
            temporary_paths,
        )

    if validate is not None:
        cause: BaseException | None = None
        try:
            staged = await fs.read(temp_path)
            value = staged.decode(encoding) if is_text else staged
            valid = await run_validator(validate, value)  # type: ignore[arg-type]
        except Exception as exc:
            valid = False
            cause = exc
        if not valid:
            await _abandon(fs, temp_path, created_dirs)
            return OperationResult.failed(
                AtomicOperationError(
                    ErrorKind.VALIDATION_FAILED,
                    "Staged content rejected by validator",
                    operation="atomic_write",
                    path=path,
                    cause=cause,
                ),
                temporary_paths,
            )

    created_backup: Backup | None = None
    if backup and await fs.exists(path):
        try:
            created_backup = await Backup.create(fs, path)
        except OSError as exc:
            await _abandon(fs, temp_path, created_dirs)
            return OperationResult.failed(
                AtomicOperationError(
                    ErrorKind.IO_ERROR,
                    "Failed to back up existing file",
                    operation="atomic_write",
                    path=path,
                    cause=exc,
                ),
                temporary_paths,
            )

    try:
        await fs.rename(temp_path, path)
    except OSError as exc:
        await _abandon(fs, temp_path, created_dirs)
        # The backup stays on disk so the caller can inspect or restore it.
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.COMMIT_FAILED,
                "Final rename of staged file failed",
                operation="atomic_write",
                path=path,
                cause=exc,
            ),
            temporary_paths,
            backup=created_backup,
        )

    debug("Committed staged file", source=temp_path, target=path)
    return OperationResult(
        success=True,
        temporary_paths=temporary_paths,
        backup=created_backup,
    )


def _is_excluded(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


async def _copy_tree(
    fs: FileSystem,
    source: Path,
    target: Path,
    *,
    exclude: tuple[str, ...],
    preserve_timestamps: bool,
    max_depth: int,
    depth: int,
) -> None:
    if depth >= max_depth:
        raise AtomicOperationError(
            ErrorKind.IO_ERROR,
            f"Maximum directory depth ({max_depth}) exceeded",
            operation="atomic_copy_directory",
            path=source,
        )

    if not await fs.exists(target):
        await fs.mkdir(target)

    for name in await fs.readdir(source):
        if _is_excluded(name, exclude):
            debug(f"Skipping excluded entry {source / name}")
            continue

        source_path = source / name
        target_path = target / name
        info = await fs.stat(source_path)

        if info.is_dir:
            await _copy_tree(
                fs,
                source_path,
                target_path,
                exclude=exclude,
                preserve_timestamps=preserve_timestamps,
                max_depth=max_depth,
                depth=depth + 1,
            )
        elif info.is_file:
            await fs.copy_file(source_path, target_path)
            if preserve_timestamps:
                try:
                    await fs.set_times(target_path, info.atime, info.mtime)
                except OSError as exc:
                    debug(f"Could not preserve timestamps on {target_path}: {exc}")
        else:
            # Symlinks and special files are never followed or copied.
            debug(f"Skipping non-regular entry {source_path}")


async def atomic_copy_directory(
    src: Path,
    dest: Path,
    *,
    exclude: Iterable[str] = DEFAULT_EXCLUDES,
    validate: Validator[list[str]] | None = None,
    preserve_timestamps: bool = True,
    max_depth: int = COPY_MAX_DEPTH,
    fs: FileSystem | None = None,
) -> OperationResult:
    """Copy the *src* tree to *dest* through a staging directory.

    The staging directory is a hidden sibling of *dest*; the commit is a
    single rename. *dest* must not exist.

    Args:
        src: Source directory
        dest: Destination directory (must not exist)
        exclude: Name patterns (fnmatch) skipped at every level
        validate: Predicate over the staged top-level listing (sorted names)
        preserve_timestamps: Copy access/modification times
        max_depth: Deepest nesting followed before failing
        fs: Filesystem service (defaults to the local disk)

    Returns:
        OperationResult. On failure *dest* is absent and staging is removed.
    """
    fs = fs or LocalFileSystem()
    staging = get_staging_path(dest, "staging")
    temporary_paths = [staging]
    patterns = tuple(exclude)

    if await fs.exists(dest):
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.IO_ERROR,
                "Destination already exists",
                operation="atomic_copy_directory",
                path=dest,
                cause=FileExistsError(str(dest)),
            )
        )

    try:
        info = await fs.stat(src)
        if not info.is_dir:
            raise NotADirectoryError(f"Source is not a directory: {src}")
        await fs.mkdir(staging)
        await _copy_tree(
            fs,
            src,
            staging,
            exclude=patterns,
            preserve_timestamps=preserve_timestamps,
            max_depth=max_depth,
            depth=0,
        )
    except AtomicOperationError as exc:
        await _cleanup(fs, staging)
        return OperationResult.failed(exc, temporary_paths)
    except OSError as exc:
        await _cleanup(fs, staging)
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.IO_ERROR,
                "Failed to copy directory into staging",
                operation="atomic_copy_directory",
                path=dest,
                cause=exc,
            ),
            temporary_paths,
        )

    if validate is not None:
        cause: BaseException | None = None
        try:
            listing = await fs.readdir(staging)
            valid = await run_validator(validate, listing)
        except Exception as exc:
            valid = False
            cause = exc
        if not valid:
            await _cleanup(fs, staging)
            return OperationResult.failed(
                AtomicOperationError(
                    ErrorKind.VALIDATION_FAILED,
                    "Staged directory rejected by validator",
                    operation="atomic_copy_directory",
                    path=dest,
                    cause=cause,
                ),
                temporary_paths,
            )

    try:
        await fs.rename(staging, dest)
    except OSError as exc:
        await _cleanup(fs, staging)
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.COMMIT_FAILED,
                "Final rename of staging directory failed",
                operation="atomic_copy_directory",
                path=dest,
                cause=exc,
            ),
            temporary_paths,
        )

    debug("Committed directory copy", source=src, target=dest)
    return OperationResult(success=True, temporary_paths=temporary_paths)


async def _listing(fs: FileSystem, path: Path) -> list[str]:
    info = await fs.stat(path)
    if info.is_dir:
        return await fs.readdir(path)
    return [path.name]


async def atomic_rename(
    old_path: Path,
    new_path: Path,
    *,
    validate: Validator[list[str]] | None = None,
    fs: FileSystem | None = None,
) -> OperationResult:
    """Rename *old_path* to *new_path*, validating the result in place.

    If validation rejects the renamed entry, it is renamed back before
    returning. The validator receives the sorted listing of *new_path* (or a
    single-element list with its name when it is not a directory).

    Args:
        old_path: Existing path
        new_path: Target path (must not exist)
        validate: Predicate over the post-rename listing
        fs: Filesystem service (defaults to the local disk)

    Returns:
        OperationResult. ``COMMIT_FAILED`` means the rename-back also failed.
    """
    fs = fs or LocalFileSystem()

    if await fs.exists(new_path):
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.IO_ERROR,
                "Rename target already exists",
                operation="atomic_rename",
                path=new_path,
                cause=FileExistsError(str(new_path)),
            )
        )

    try:
        await fs.rename(old_path, new_path)
        debug("Renamed", source=old_path, target=new_path)
    except OSError as exc:
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.IO_ERROR,
                "Rename failed",
                operation="atomic_rename",
                path=new_path,
                cause=exc,
            )
        )

    if validate is None:
        return OperationResult(success=True)

    cause: BaseException | None = None
    try:
        valid = await run_validator(validate, await _listing(fs, new_path))
    except Exception as exc:
        valid = False
        cause = exc
    if valid:
        return OperationResult(success=True)

    try:
        await fs.rename(new_path, old_path)
        debug(f"Validation rejected {new_path}; renamed back to {old_path}")
    except OSError as exc:
        logger.error(
            "rename.revert.failed",
            old_path=str(old_path),
            new_path=str(new_path),
            error=str(exc),
        )
        return OperationResult.failed(
            AtomicOperationError(
                ErrorKind.COMMIT_FAILED,
                "Validation failed and renaming back also failed",
                operation="atomic_rename",
                path=new_path,
                cause=exc,
            )
        )

    return OperationResult.failed(
        AtomicOperationError(
            ErrorKind.VALIDATION_FAILED,
            "Renamed entry rejected by validator",
            operation="atomic_rename",
            path=new_path,
            cause=cause,
        )
    )
