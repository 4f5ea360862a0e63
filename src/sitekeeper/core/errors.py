"""Custom exceptions for Sitekeeper.

This module defines typed exceptions used throughout the application for
atomic filesystem operations, transaction misuse, and project workflows.
"""

from enum import Enum
from pathlib import Path
from typing import Any


class SitekeeperError(Exception):
    """Base exception for all Sitekeeper errors.

    All custom exceptions should inherit from this base class to allow
    for broad exception handling when needed.
    """

    pass


class ErrorKind(str, Enum):
    """Failure categories for atomic operations.

    Attributes:
        VALIDATION_FAILED: Staged content/structure was rejected; no visible change
        IO_ERROR: An underlying filesystem or process call failed
        COMMIT_FAILED: The final swap failed; the target needs manual inspection
        NOT_IMPLEMENTED: A capability stub that is not wired to a backend
    """

    VALIDATION_FAILED = "validation_failed"
    IO_ERROR = "io_error"
    COMMIT_FAILED = "commit_failed"
    NOT_IMPLEMENTED = "not_implemented"


class AtomicOperationError(SitekeeperError):
    """Raised (or returned inside a result) when an atomic operation fails.

    Attributes:
        kind: Failure category
        message: Human-readable description
        operation: Name of the primitive or step that failed
        path: Target path of the failed operation, if any
        cause: Underlying exception, also chained as ``__cause__``
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        operation: str | None = None,
        path: Path | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize AtomicOperationError.

        Args:
            kind: Failure category
            message: Human-readable description
            operation: Name of the failing operation (optional)
            path: Target path (optional)
            cause: Underlying exception (optional)
        """
        self.kind = kind
        self.message = message
        self.operation = operation
        self.path = path
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

        text = message
        if cause is not None:
            text += f": {cause}"
        super().__init__(text)

    @property
    def requires_attention(self) -> bool:
        """True when the target may be in an undefined state."""
        return self.kind is ErrorKind.COMMIT_FAILED

    def cause_chain(self) -> list[str]:
        """Return the messages of the chained causes, outermost first."""
        chain: list[str] = []
        current = self.__cause__
        while current is not None:
            chain.append(f"{type(current).__name__}: {current}")
            current = current.__cause__
        return chain

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logs and CLI output.

        Returns:
            Dictionary representation suitable for JSON output
        """
        result: dict[str, Any] = {
            "error": self.kind.value,
            "message": self.message,
        }

        if self.operation is not None:
            result["operation"] = self.operation

        if self.path is not None:
            result["path"] = str(self.path)

        chain = self.cause_chain()
        if chain:
            result["causes"] = chain

        return result

    def __repr__(self) -> str:
        """Return repr string for debugging."""
        return (
            f"AtomicOperationError(kind={self.kind.value!r}, "
            f"message={self.message!r}, "
            f"operation={self.operation!r}, "
            f"path={str(self.path) if self.path else None!r})"
        )


class TransactionStateError(SitekeeperError):
    """Raised when a transaction is reused or extended after execution."""

    pass


class InvalidProjectNameError(SitekeeperError):
    """Raised when a project name fails validation.

    Attributes:
        name: The rejected name
        reason: Why the name was rejected
    """

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid project name {name!r}: {reason}")


class ProjectExistsError(SitekeeperError):
    """Raised when the target project directory already exists."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path
        super().__init__(f'Project "{name}" already exists at {path}')


class ProjectNotFoundError(SitekeeperError):
    """Raised when an operation targets a project that does not exist."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path
        super().__init__(f'Project "{name}" does not exist at {path}')


class TemplateNotFoundError(SitekeeperError):
    """Raised when no starter template directory can be located."""

    def __init__(self, searched: list[Path]) -> None:
        self.searched = searched
        locations = ", ".join(str(path) for path in searched) or "(none)"
        super().__init__(f"Could not find a starter template (searched: {locations})")


class ProjectOperationError(SitekeeperError):
    """Raised when a project workflow fails after its transaction ran.

    Wraps the triggering error with the operation name and target path so
    callers can act on it. Rollback and cleanup failures are logged, never
    reported here.

    Attributes:
        operation: Workflow name (e.g., 'create_project')
        path: Target project path
        error: The triggering AtomicOperationError
    """

    def __init__(self, operation: str, path: Path, error: AtomicOperationError) -> None:
        self.operation = operation
        self.path = path
        self.error = error
        super().__init__(f"{operation} failed for {path}: {error}")

    @property
    def kind(self) -> ErrorKind:
        """Failure category of the triggering error."""
        return self.error.kind

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for CLI output."""
        result = self.error.to_dict()
        result["operation"] = self.operation
        result["path"] = str(self.path)
        return result

    def __repr__(self) -> str:
        return (
            f"ProjectOperationError(operation={self.operation!r}, "
            f"path={str(self.path)!r}, "
            f"kind={self.kind.value!r})"
        )
