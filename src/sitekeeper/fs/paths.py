"""Path utilities for filesystem operations.

This module provides path normalization, staging/backup path derivation and
containment checks used by the atomic primitives and project workflows.
"""

import os
import unicodedata
import uuid
from datetime import UTC, datetime
from pathlib import Path


def normalize_path(path: Path | str, root: Path | None = None) -> Path:
    """Normalize a path for consistent handling.

    Args:
        path: Path to normalize
        root: Optional root directory for relative paths

    Returns:
        Normalized absolute path
    """
    # Convert to Path if needed
    if not isinstance(path, Path):
        path = Path(path)

    # Make absolute using root if provided
    if not path.is_absolute():
        if root is None:
            path = path.resolve()
        else:
            path = (root / path).resolve()
    else:
        path = path.resolve()

    # Normalize Unicode (NFC on macOS, NFD handling)
    if os.name == "posix":
        path = Path(unicodedata.normalize("NFC", str(path)))

    return path


def _timestamp(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    return moment.strftime("%Y%m%dT%H%M%S%f")


def get_staging_path(target: Path, label: str = "tmp") -> Path:
    """Get a unique staging path next to *target*.

    Staging paths always live in the target's own directory so the final
    commit is a same-volume rename.

    Args:
        target: Final path the staged content will be renamed onto
        label: Short tag describing the staging kind ('tmp', 'staging')

    Returns:
        Hidden, unique sibling path of *target*
    """
    unique_id = uuid.uuid4().hex[:16]
    name = f".{target.name}.{_timestamp()}.{unique_id}.{label}"
    return target.with_name(name)


def get_backup_path(
    original_path: Path, now: datetime | None = None, attempt: int = 0
) -> Path:
    """Generate a backup path for an overwrite.

    The name is derived from the original path plus a UTC timestamp suffix.
    Callers that find the name taken retry with a higher *attempt*, which
    appends a counter. No filesystem access happens here.

    Args:
        original_path: Path that is about to be overwritten
        now: Timestamp to embed (defaults to the current time)
        attempt: Collision counter; 0 means no suffix

    Returns:
        Path for the backup file
    """
    base = f"{original_path.name}.backup.{_timestamp(now)}"
    if attempt:
        base = f"{base}.{attempt}"
    return original_path.with_name(base)


def is_within(path: Path, root: Path) -> bool:
    """Return True if *path* resolves to a location strictly inside *root*."""
    resolved_root = Path(os.path.abspath(root))
    resolved = Path(os.path.abspath(path))
    return resolved != resolved_root and resolved_root in resolved.parents
