"""Transaction coordinator for multi-step operations with compensation.

A transaction is an ordered list of steps, each a forward action paired with
a compensating action. ``execute()`` runs the forward actions in order; on
the first failure it runs the compensations of every completed step in
reverse order, attempting each one even if an earlier one failed.

The coordinator knows nothing about what a forward action does. Compensating
actions are tagged variants so rollbacks stay inspectable and testable;
``Compensate`` wraps an arbitrary awaitable for non-filesystem workflows.
``with_rollback`` guards a single operation without building a transaction.
"""

from __future__ import annotations

import inspect
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from sitekeeper.core.errors import AtomicOperationError, ErrorKind, TransactionStateError
from sitekeeper.core.process import terminate
from sitekeeper.fs.atomic import OperationResult
from sitekeeper.fs.backup import Backup
from sitekeeper.fs.filesystem import FileSystem, LocalFileSystem


class TransactionState(str, Enum):
    """Lifecycle of a transaction.

    NOT_STARTED -> RUNNING -> COMMITTED, or
    RUNNING -> ROLLING_BACK -> ROLLED_BACK | PARTIALLY_ROLLED_BACK.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    ROLLING_BACK = "rolling_back"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    PARTIALLY_ROLLED_BACK = "partially_rolled_back"


# ============================================================================
# Compensating actions
# ============================================================================


@dataclass(frozen=True)
class DeletePath:
    """Remove ``path`` (file or tree) if it exists."""

    path: Path


@dataclass(frozen=True)
class RestoreBackup:
    """Restore ``path`` from the backup its step registered.

    If the step registered no backup for ``path``, nothing was overwritten;
    with ``delete_if_missing`` the path is deleted instead because it has no
    pre-existing counterpart.
    """

    path: Path
    delete_if_missing: bool = False


@dataclass(frozen=True)
class RenameBack:
    """Move ``current`` back to ``original``."""

    current: Path
    original: Path


@dataclass(frozen=True)
class KillProcessAndClean:
    """Kill any process the step spawned that is still alive, then delete
    the artifacts it may have produced."""

    artifacts: tuple[Path, ...] = ()


@dataclass(frozen=True)
class Compensate:
    """Opaque compensation for steps outside the filesystem."""

    action: Callable[[], Awaitable[None] | None]
    description: str = "custom compensation"


CompensatingAction = DeletePath | RestoreBackup | RenameBack | KillProcessAndClean | Compensate


def describe(action: CompensatingAction) -> str:
    """Short human-readable description for logs."""
    if isinstance(action, DeletePath):
        return f"delete {action.path}"
    if isinstance(action, RestoreBackup):
        return f"restore {action.path}"
    if isinstance(action, RenameBack):
        return f"rename {action.current} -> {action.original}"
    if isinstance(action, KillProcessAndClean):
        targets = ", ".join(str(path) for path in action.artifacts) or "no artifacts"
        return f"kill process and clean ({targets})"
    return action.description


# ============================================================================
# Steps and results
# ============================================================================


class StepContext:
    """Per-step handle through which forward actions hand over resources.

    Backups registered here are restored by ``RestoreBackup`` and deleted on
    commit. Staging paths are removed once the transaction finishes.
    Processes are killed by ``KillProcessAndClean``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.backups: list[Backup] = []
        self.temporary_paths: list[Path] = []
        self.processes: list[Any] = []

    def add_backup(self, backup: Backup) -> None:
        self.backups.append(backup)

    def track_temporary_path(self, path: Path) -> None:
        self.temporary_paths.append(path)

    def track_process(self, process: Any) -> None:
        self.processes.append(process)

    def absorb(self, result: OperationResult) -> None:
        """Take ownership of the staging paths and backup of a primitive result."""
        self.temporary_paths.extend(result.temporary_paths)
        if result.backup is not None:
            self.add_backup(result.backup)


Forward = Callable[[StepContext], Awaitable[OperationResult | None]]


@dataclass
class Step:
    name: str
    forward: Forward
    rollback: CompensatingAction | None
    context: StepContext


@dataclass(frozen=True)
class RollbackFailure:
    """A compensation that raised during the rollback pass."""

    step_name: str
    error: BaseException


@dataclass
class TransactionResult(OperationResult):
    """OperationResult with transaction bookkeeping."""

    state: TransactionState = TransactionState.NOT_STARTED
    txn_id: str = ""
    failed_step: str | None = None
    completed_steps: list[str] = field(default_factory=list)
    rolled_back_steps: list[str] = field(default_factory=list)
    rollback_errors: list[RollbackFailure] = field(default_factory=list)


# ============================================================================
# Coordinator
# ============================================================================


class Transaction:
    """Ordered forward/compensation pairs executed exactly once.

    Usage:
        txn = Transaction()
        txn.add_operation(copy_step, DeletePath(dest), name="copy")
        result = await txn.execute()
    """

    def __init__(
        self,
        *,
        fs: FileSystem | None = None,
        logger: Any = None,
        txn_id: str | None = None,
    ) -> None:
        self.txn_id = txn_id or uuid.uuid4().hex
        self._fs = fs or LocalFileSystem()
        self._logger = (logger or structlog.get_logger(__name__)).bind(
            txn_id=self.txn_id
        )
        self._steps: list[Step] = []
        self._state = TransactionState.NOT_STARTED

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def add_operation(
        self,
        forward: Forward,
        rollback: CompensatingAction | None = None,
        *,
        name: str | None = None,
    ) -> Step:
        """Append a step; steps execute in the order they are added.

        Args:
            forward: Async callable receiving the step's StepContext. It fails
                by raising or by returning an unsuccessful OperationResult.
            rollback: Compensation undoing exactly this step's effect
            name: Label for logs and results (defaults to step-<n>)

        Raises:
            TransactionStateError: If the transaction already executed
        """
        if self._state is not TransactionState.NOT_STARTED:
            raise TransactionStateError(
                f"Cannot add operations to transaction {self.txn_id} "
                f"in state {self._state.value}"
            )
        step_name = name or f"step-{len(self._steps) + 1}"
        step = Step(step_name, forward, rollback, StepContext(step_name))
        self._steps.append(step)
        return step

    async def _run_forward(self, step: Step) -> AtomicOperationError | None:
        try:
            outcome = await step.forward(step.context)
        except AtomicOperationError as exc:
            return exc
        except Exception as exc:
            return AtomicOperationError(
                ErrorKind.IO_ERROR,
                f"Step '{step.name}' raised {type(exc).__name__}",
                operation=step.name,
                cause=exc,
            )

        if isinstance(outcome, OperationResult):
            step.context.absorb(outcome)
            if not outcome.success:
                return outcome.error or AtomicOperationError(
                    ErrorKind.IO_ERROR,
                    f"Step '{step.name}' reported failure",
                    operation=step.name,
                )
        return None

    async def execute(self) -> TransactionResult:
        """Run all steps; roll back completed steps on the first failure.

        Returns:
            TransactionResult whose ``error`` is the triggering error, never a
            rollback error.

        Raises:
            TransactionStateError: If called more than once
        """
        if self._state is not TransactionState.NOT_STARTED:
            raise TransactionStateError(
                f"Transaction {self.txn_id} was already executed "
                f"(state {self._state.value})"
            )

        self._state = TransactionState.RUNNING
        self._logger.debug("transaction.started", steps=len(self._steps))

        completed: list[Step] = []
        for step in self._steps:
            error = await self._run_forward(step)
            if error is not None:
                self._logger.error(
                    "transaction.step.failed",
                    step=step.name,
                    kind=error.kind.value,
                    error=str(error),
                )
                return await self._rollback(completed, step, error)
            completed.append(step)
            self._logger.debug("transaction.step.completed", step=step.name)

        return await self._commit(completed)

    async def _commit(self, completed: list[Step]) -> TransactionResult:
        self._state = TransactionState.COMMITTED
        for step in completed:
            for backup in step.context.backups:
                await backup.discard(self._fs)
            step.context.backups.clear()
        temporary_paths = await self._cleanup_temporary_paths()

        self._logger.info("transaction.committed", steps=len(completed))
        return TransactionResult(
            success=True,
            temporary_paths=temporary_paths,
            state=self._state,
            txn_id=self.txn_id,
            completed_steps=[step.name for step in completed],
        )

    async def _rollback(
        self,
        completed: list[Step],
        failed: Step,
        error: AtomicOperationError,
    ) -> TransactionResult:
        self._state = TransactionState.ROLLING_BACK
        rolled_back: list[str] = []
        failures: list[RollbackFailure] = []
        performed = False

        for backup in failed.context.backups:
            self._logger.warning(
                "transaction.backup.retained",
                step=failed.name,
                backup_path=str(backup.backup_path),
            )

        for step in reversed(completed):
            if step.rollback is None:
                continue
            performed = True
            action = describe(step.rollback)
            self._logger.info("transaction.rollback.step", step=step.name, action=action)
            try:
                await self._compensate(step)
            except Exception as exc:
                failures.append(RollbackFailure(step.name, exc))
                self._logger.error(
                    "transaction.rollback.failed",
                    step=step.name,
                    action=action,
                    error=str(exc),
                )
                for backup in step.context.backups:
                    self._logger.warning(
                        "transaction.backup.retained",
                        step=step.name,
                        backup_path=str(backup.backup_path),
                    )
                continue

            rolled_back.append(step.name)
            self._logger.info("transaction.rollback.succeeded", step=step.name)
            for backup in step.context.backups:
                await backup.discard(self._fs)
            step.context.backups.clear()

        self._state = (
            TransactionState.PARTIALLY_ROLLED_BACK
            if failures
            else TransactionState.ROLLED_BACK
        )
        temporary_paths = await self._cleanup_temporary_paths()

        self._logger.warning(
            "transaction.rolled_back",
            state=self._state.value,
            failed_step=failed.name,
            rolled_back=rolled_back,
            rollback_failures=len(failures),
        )
        return TransactionResult(
            success=False,
            error=error,
            rollback_performed=performed,
            temporary_paths=temporary_paths,
            state=self._state,
            txn_id=self.txn_id,
            failed_step=failed.name,
            completed_steps=[step.name for step in completed],
            rolled_back_steps=rolled_back,
            rollback_errors=failures,
        )

    async def _compensate(self, step: Step) -> None:
        action = step.rollback
        fs = self._fs

        if isinstance(action, DeletePath):
            if await fs.exists(action.path):
                await fs.remove_tree(action.path, recursive=True)

        elif isinstance(action, RestoreBackup):
            matching = [
                backup
                for backup in step.context.backups
                if backup.original_path == action.path
            ]
            if matching:
                # The earliest backup holds the state from before the step.
                await matching[0].restore(fs)
                step.context.backups.remove(matching[0])
            elif action.delete_if_missing and await fs.exists(action.path):
                await fs.remove_tree(action.path, recursive=False)

        elif isinstance(action, RenameBack):
            if not await fs.exists(action.current):
                if await fs.exists(action.original):
                    return
                raise FileNotFoundError(
                    f"Neither {action.current} nor {action.original} exists"
                )
            if await fs.exists(action.original):
                raise FileExistsError(
                    f"Cannot rename {action.current} back: {action.original} exists"
                )
            await fs.rename(action.current, action.original)

        elif isinstance(action, KillProcessAndClean):
            for process in step.context.processes:
                await terminate(process)
            for artifact in action.artifacts:
                if await fs.exists(artifact):
                    await fs.remove_tree(artifact, recursive=True)

        elif isinstance(action, Compensate):
            outcome = action.action()
            if inspect.isawaitable(outcome):
                await outcome

    async def _cleanup_temporary_paths(self) -> list[Path]:
        tracked: list[Path] = []
        for step in self._steps:
            tracked.extend(step.context.temporary_paths)

        for path in tracked:
            try:
                if await self._fs.exists(path):
                    await self._fs.remove_tree(path, recursive=True)
            except OSError as exc:
                self._logger.warning(
                    "transaction.cleanup.failed", path=str(path), error=str(exc)
                )
        return tracked


def create_transaction(**kwargs: Any) -> Transaction:
    """Create a new, empty transaction."""
    return Transaction(**kwargs)


# ============================================================================
# Single-step guard
# ============================================================================


@dataclass
class GuardedResult(OperationResult):
    """OperationResult carrying the guarded operation's return value."""

    value: Any = None


async def with_rollback(
    operation: Callable[[], Awaitable[Any]],
    rollback: Callable[[], Any],
    *,
    logger: Any = None,
) -> GuardedResult:
    """Run *operation*; if it raises, run *rollback* and report the failure.

    A one-step transaction without the bookkeeping. The rollback may be sync
    or async. If it raises too, the error is logged as ``rollback.failed``
    and the original failure is still the one reported.

    Args:
        operation: Async callable doing the work
        rollback: Callable undoing whatever *operation* managed to do
        logger: structlog logger (defaults to this module's)

    Returns:
        GuardedResult with ``value`` set on success, or ``error`` and
        ``rollback_performed`` set on failure
    """
    log = logger or structlog.get_logger(__name__)
    try:
        value = await operation()
    except Exception as exc:
        error = (
            exc
            if isinstance(exc, AtomicOperationError)
            else AtomicOperationError(
                ErrorKind.IO_ERROR,
                f"Operation raised {type(exc).__name__}",
                operation="with_rollback",
                cause=exc,
            )
        )
        try:
            outcome = rollback()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as rollback_exc:
            log.error("rollback.failed", error=str(rollback_exc), cause=str(exc))
        return GuardedResult(success=False, error=error, rollback_performed=True)
    return GuardedResult(success=True, value=value)
