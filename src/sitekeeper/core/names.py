"""Project name validation and sanitisation."""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel

from sitekeeper.core.constants import FORBIDDEN_NAME_CHARS, MAX_NAME_LENGTH, RESERVED_NAMES
from sitekeeper.fs.paths import is_within


class NameValidation(BaseModel):
    """Outcome of validating a project name."""

    valid: bool
    error: str | None = None

    model_config = {"frozen": True}


_VALID = NameValidation(valid=True)


def _invalid(reason: str) -> NameValidation:
    return NameValidation(valid=False, error=reason)


def validate_name(name: str, root: Path | None = None) -> NameValidation:
    """Check *name* against the project naming rules.

    Pure and synchronous; the only path work is a lexical containment check
    of ``root / name`` against *root* (no filesystem access).

    Args:
        name: Candidate project (directory) name
        root: Projects directory the name will live in (defaults to cwd)

    Returns:
        NameValidation with the first rule the name breaks, if any
    """
    if not name or not name.strip():
        return _invalid("Project name cannot be empty")

    if ".." in name:
        return _invalid("Project name cannot contain directory traversal patterns (..)")

    base = Path(os.path.abspath(root or Path.cwd()))
    candidate = Path(os.path.normpath(base / name))
    if candidate != base / name or not is_within(candidate, base):
        return _invalid("Project name would create a path outside the projects directory")

    if FORBIDDEN_NAME_CHARS.search(name):
        return _invalid('Project name cannot contain: < > : " | ? * \\ / or null characters')

    if name != name.strip():
        return _invalid("Project name cannot start or end with spaces")

    if name.startswith(".") or name.endswith("."):
        return _invalid("Project name cannot start or end with dots")

    if RESERVED_NAMES.match(name):
        return _invalid(
            "Project name cannot be a reserved system name "
            "(CON, PRN, AUX, NUL, COM1-9, LPT1-9)"
        )

    if len(name) > MAX_NAME_LENGTH:
        return _invalid(f"Project name must be {MAX_NAME_LENGTH} characters or less")

    return _VALID


def sanitize_package_name(name: str) -> str:
    """Derive a package-manager friendly manifest name from *name*.

    >>> sanitize_package_name("My Site!")
    'my-site'
    """
    sanitized = re.sub(r"[^a-z0-9-]", "-", name.lower())
    sanitized = re.sub(r"^-+|-+$", "", sanitized)
    return re.sub(r"-+", "-", sanitized)
