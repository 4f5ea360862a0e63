"""Project workflows built on atomic primitives and transactions.

``ProjectManager`` turns user intents ("create project X", "rename X to Y")
into ordered transactions. It validates preconditions before touching the
disk, and after a failed create it force-removes any orphaned project
directory so creation either fully succeeds or leaves no trace.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog

from sitekeeper.core.constants import INDEX_RELATIVE_PATH, MANIFEST_FILENAME
from sitekeeper.core.errors import (
    AtomicOperationError,
    ErrorKind,
    InvalidProjectNameError,
    ProjectExistsError,
    ProjectNotFoundError,
    ProjectOperationError,
)
from sitekeeper.core.names import NameValidation, validate_name
from sitekeeper.core.process import ProcessRunner, SubprocessRunner
from sitekeeper.core.settings import WorkspaceSettings
from sitekeeper.core.template import (
    BUNDLED_TEMPLATE,
    customize_index_content,
    customize_manifest,
    find_template_source,
    has_required_entries,
    index_validator,
    manifest_validator,
    update_internal_references,
)
from sitekeeper.core.transaction import (
    DeletePath,
    KillProcessAndClean,
    RenameBack,
    RestoreBackup,
    StepContext,
    Transaction,
)
from sitekeeper.fs.atomic import (
    OperationResult,
    atomic_copy_directory,
    atomic_rename,
    atomic_write,
)
from sitekeeper.fs.filesystem import FileSystem, LocalFileSystem
from sitekeeper.fs.paths import normalize_path


class PathLocks:
    """In-process advisory locks keyed by absolute path.

    Workflows hold the locks of every project path they touch for the whole
    transaction. Paths are locked in sorted order so two workflows sharing
    paths cannot deadlock. Nothing outside this process is excluded.
    """

    def __init__(self) -> None:
        self._locks: dict[Path, asyncio.Lock] = {}
        self._users: dict[Path, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, path: Path) -> bool:
        lock = self._locks.get(normalize_path(path))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *paths: Path) -> AsyncIterator[None]:
        keys = sorted({normalize_path(path) for path in paths}, key=str)
        for key in keys:
            self._users[key] = self._users.get(key, 0) + 1
        acquired: list[asyncio.Lock] = []
        try:
            for key in keys:
                lock = self._locks.setdefault(key, asyncio.Lock())
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            # Entries live only while a workflow holds or waits for them.
            for key in keys:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    self._locks.pop(key, None)


class ProjectManager:
    """Creates, renames, deletes and lists projects under a workspace root."""

    def __init__(
        self,
        settings: WorkspaceSettings | None = None,
        *,
        fs: FileSystem | None = None,
        runner: ProcessRunner | None = None,
        logger: Any = None,
        locks: PathLocks | None = None,
    ) -> None:
        """Initialize project manager.

        Args:
            settings: Workspace configuration (environment defaults otherwise)
            fs: Filesystem service
            runner: Process runner for the setup command
            logger: Optional structlog logger instance
            locks: Shared advisory locks (one set per manager otherwise)
        """
        self.settings = settings or WorkspaceSettings.from_env()
        self._fs = fs or LocalFileSystem()
        self._runner = runner or SubprocessRunner()
        self._logger = logger or structlog.get_logger(__name__)
        self._locks = locks if locks is not None else PathLocks()

    @property
    def root(self) -> Path:
        return self.settings.root

    def get_project_path(self, name: str) -> Path:
        """Full path of the project directory for *name*."""
        return self.root / name

    def validate_name(self, name: str) -> NameValidation:
        """Check *name* against the naming rules (no filesystem access)."""
        return validate_name(name, self.root)

    async def validate_name_available(self, name: str) -> NameValidation:
        """Check the naming rules and that no project already uses *name*."""
        check = self.validate_name(name)
        if not check.valid:
            return check
        if await self._fs.exists(self.get_project_path(name)):
            return NameValidation(
                valid=False,
                error=f'Project "{name}" already exists. Please choose a different name.',
            )
        return check

    async def project_exists(self, name: str) -> bool:
        return await self._fs.exists(self.get_project_path(name))

    async def list_projects(self) -> list[str]:
        """Names of the project directories under the workspace root."""
        if not await self._fs.exists(self.root):
            return []

        projects: list[str] = []
        for entry in await self._fs.readdir(self.root):
            # Hidden entries include in-flight staging directories.
            if entry.startswith("."):
                continue
            try:
                info = await self._fs.stat(self.root / entry)
            except OSError as exc:
                self._logger.warning("project.list.stat_failed", entry=entry, error=str(exc))
                continue
            if info.is_dir:
                projects.append(entry)
        return sorted(projects)

    def _require_valid(self, name: str) -> None:
        check = self.validate_name(name)
        if not check.valid:
            raise InvalidProjectNameError(name, check.error or "invalid name")

    def _template_source(self) -> Path:
        if self.settings.template_path is not None:
            return find_template_source([self.settings.template_path])
        return find_template_source([BUNDLED_TEMPLATE])

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create_project(self, name: str) -> Path:
        """Create project *name* from the starter template.

        Returns:
            Absolute path of the new project directory

        Raises:
            InvalidProjectNameError: Name breaks the naming rules (no mutation)
            ProjectExistsError: Project already exists (no mutation)
            TemplateNotFoundError: No starter template (no mutation)
            ProjectOperationError: A step failed; nothing is left behind
        """
        log = self._logger.bind(operation="create_project", project=name)
        log.info("project.create.started")

        self._require_valid(name)
        dest = self.get_project_path(name)

        async with self._locks.hold(dest):
            if await self._fs.exists(dest):
                raise ProjectExistsError(name, dest)
            template = self._template_source()

            try:
                if not await self._fs.exists(self.root):
                    await self._fs.mkdir(self.root, recursive=True)
            except OSError as exc:
                error = AtomicOperationError(
                    ErrorKind.IO_ERROR,
                    "Could not create projects directory",
                    operation="create_project",
                    path=self.root,
                    cause=exc,
                )
                raise ProjectOperationError("create_project", dest, error) from error

            transaction = await self._build_create_transaction(name, template, dest, log)
            result = await transaction.execute()

            if not result.success:
                error = result.error or AtomicOperationError(
                    ErrorKind.IO_ERROR, "Project creation failed", path=dest
                )
                log.error(
                    "project.create.failed",
                    path=str(dest),
                    kind=error.kind.value,
                    error=str(error),
                    state=result.state.value,
                    failed_step=result.failed_step,
                )
                if "copy_template" in result.completed_steps:
                    await self._purge_orphan(dest, log)
                else:
                    log.debug("project.create.cleanup.skipped", path=str(dest))
                raise ProjectOperationError("create_project", dest, error) from error

        log.info("project.create.succeeded", path=str(dest))
        return dest

    async def _build_create_transaction(
        self, name: str, template: Path, dest: Path, log: Any
    ) -> Transaction:
        fs = self._fs
        settings = self.settings
        transaction = Transaction(fs=fs, logger=log)

        async def copy_template(ctx: StepContext) -> OperationResult:
            return await atomic_copy_directory(
                template,
                dest,
                exclude=settings.exclude,
                validate=has_required_entries,
                fs=fs,
            )

        transaction.add_operation(copy_template, DeletePath(dest), name="copy_template")

        index_path = dest.joinpath(*INDEX_RELATIVE_PATH)
        if await fs.exists(template.joinpath(*INDEX_RELATIVE_PATH)):

            async def customize_index(ctx: StepContext) -> OperationResult:
                content = (await fs.read(index_path)).decode("utf-8")
                return await atomic_write(
                    index_path,
                    customize_index_content(name, content),
                    validate=index_validator(name),
                    backup=True,
                    fs=fs,
                )

            transaction.add_operation(
                customize_index,
                RestoreBackup(index_path, delete_if_missing=True),
                name="customize_index",
            )

        manifest_path = dest / MANIFEST_FILENAME

        async def customize_package(ctx: StepContext) -> OperationResult:
            content = (await fs.read(manifest_path)).decode("utf-8")
            return await atomic_write(
                manifest_path,
                customize_manifest(name, content),
                validate=manifest_validator(name),
                backup=True,
                fs=fs,
            )

        transaction.add_operation(
            customize_package,
            RestoreBackup(manifest_path, delete_if_missing=True),
            name="customize_manifest",
        )

        if settings.setup_command:
            command, *args = settings.setup_command

            async def run_setup(ctx: StepContext) -> None:
                returncode = await self._runner.spawn_and_wait(
                    command,
                    args,
                    dest,
                    timeout=settings.setup_timeout,
                    on_spawn=ctx.track_process,
                )
                if returncode != 0:
                    raise AtomicOperationError(
                        ErrorKind.IO_ERROR,
                        f"{command} exited with code {returncode}",
                        operation="run_setup",
                        path=dest,
                    )

            artifacts = tuple(dest / artifact for artifact in settings.setup_artifacts)
            transaction.add_operation(
                run_setup, KillProcessAndClean(artifacts), name="run_setup"
            )

        return transaction

    async def _purge_orphan(self, dest: Path, log: Any) -> None:
        if not await self._fs.exists(dest):
            log.debug("project.create.cleanup.skipped", path=str(dest))
            return

        log.warning("project.create.cleanup", path=str(dest))
        try:
            await self._fs.remove_tree(dest, recursive=True)
        except OSError as exc:
            log.error("project.create.cleanup.failed", path=str(dest), error=str(exc))
            return
        log.info("project.create.cleanup.succeeded", path=str(dest))

    # ------------------------------------------------------------------
    # rename
    # ------------------------------------------------------------------

    async def rename_project(self, old_name: str, new_name: str) -> bool:
        """Rename project *old_name* to *new_name*.

        The directory is renamed, the manifest name and landing-page
        references are rewritten. On failure the per-step rollbacks restore
        the original name; no destructive cleanup runs.

        Raises:
            InvalidProjectNameError: Either name breaks the naming rules
            ProjectNotFoundError: *old_name* does not exist
            ProjectExistsError: *new_name* already exists
            ProjectOperationError: A step failed (original name intact)
        """
        log = self._logger.bind(
            operation="rename_project", old_name=old_name, new_name=new_name
        )
        log.info("project.rename.started")

        self._require_valid(old_name)
        self._require_valid(new_name)
        old_path = self.get_project_path(old_name)
        new_path = self.get_project_path(new_name)

        async with self._locks.hold(old_path, new_path):
            if not await self._fs.exists(old_path):
                raise ProjectNotFoundError(old_name, old_path)
            if await self._fs.exists(new_path):
                raise ProjectExistsError(new_name, new_path)

            transaction = self._build_rename_transaction(
                old_name, new_name, old_path, new_path, log
            )
            result = await transaction.execute()

            if not result.success:
                error = result.error or AtomicOperationError(
                    ErrorKind.IO_ERROR, "Project rename failed", path=old_path
                )
                log.error(
                    "project.rename.failed",
                    kind=error.kind.value,
                    error=str(error),
                    state=result.state.value,
                    failed_step=result.failed_step,
                )
                raise ProjectOperationError("rename_project", old_path, error) from error

        log.info("project.rename.succeeded", path=str(new_path))
        return True

    def _build_rename_transaction(
        self,
        old_name: str,
        new_name: str,
        old_path: Path,
        new_path: Path,
        log: Any,
    ) -> Transaction:
        fs = self._fs
        transaction = Transaction(fs=fs, logger=log)

        async def rename_directory(ctx: StepContext) -> OperationResult:
            return await atomic_rename(
                old_path, new_path, validate=has_required_entries, fs=fs
            )

        transaction.add_operation(
            rename_directory,
            RenameBack(current=new_path, original=old_path),
            name="rename_directory",
        )

        manifest_path = new_path / MANIFEST_FILENAME

        async def update_manifest(ctx: StepContext) -> OperationResult | None:
            if not await fs.exists(manifest_path):
                return None
            content = (await fs.read(manifest_path)).decode("utf-8")
            return await atomic_write(
                manifest_path,
                customize_manifest(new_name, content),
                validate=manifest_validator(new_name),
                backup=True,
                fs=fs,
            )

        transaction.add_operation(
            update_manifest, RestoreBackup(manifest_path), name="update_manifest"
        )

        index_path = new_path.joinpath(*INDEX_RELATIVE_PATH)

        async def update_references(ctx: StepContext) -> OperationResult | None:
            if not await fs.exists(index_path):
                return None
            content = (await fs.read(index_path)).decode("utf-8")
            updated = update_internal_references(content, old_name, new_name)
            if updated == content:
                return None
            return await atomic_write(index_path, updated, backup=True, fs=fs)

        transaction.add_operation(
            update_references, RestoreBackup(index_path), name="update_references"
        )

        return transaction

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    async def delete_project(self, name: str) -> bool:
        """Remove project *name* and everything under it.

        Raises:
            InvalidProjectNameError: Name breaks the naming rules
            ProjectNotFoundError: Project does not exist
            ProjectOperationError: The removal failed
        """
        log = self._logger.bind(operation="delete_project", project=name)
        self._require_valid(name)
        path = self.get_project_path(name)

        async with self._locks.hold(path):
            if not await self._fs.exists(path):
                raise ProjectNotFoundError(name, path)
            try:
                await self._fs.remove_tree(path, recursive=True)
            except OSError as exc:
                error = AtomicOperationError(
                    ErrorKind.IO_ERROR,
                    "Could not remove project directory",
                    operation="delete_project",
                    path=path,
                    cause=exc,
                )
                log.error("project.delete.failed", path=str(path), error=str(exc))
                raise ProjectOperationError("delete_project", path, error) from error

        log.info("project.delete.succeeded", path=str(path))
        return True


#: Locks shared by the module-level helpers, which build a manager per call
_SHARED_LOCKS = PathLocks()


async def create_project(name: str, settings: WorkspaceSettings | None = None) -> Path:
    """Create a project with a manager built from *settings* (or the environment)."""
    return await ProjectManager(settings, locks=_SHARED_LOCKS).create_project(name)


async def rename_project(
    old_name: str, new_name: str, settings: WorkspaceSettings | None = None
) -> bool:
    """Rename a project with a manager built from *settings* (or the environment)."""
    manager = ProjectManager(settings, locks=_SHARED_LOCKS)
    return await manager.rename_project(old_name, new_name)


async def delete_project(name: str, settings: WorkspaceSettings | None = None) -> bool:
    """Delete a project with a manager built from *settings* (or the environment)."""
    return await ProjectManager(settings, locks=_SHARED_LOCKS).delete_project(name)


async def list_projects(settings: WorkspaceSettings | None = None) -> list[str]:
    """List projects with a manager built from *settings* (or the environment)."""
    return await ProjectManager(settings).list_projects()
