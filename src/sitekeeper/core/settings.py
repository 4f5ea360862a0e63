"""Workspace configuration.

Settings resolve in this order: explicit arguments, then environment
variables, then platform defaults.

Environment:
    SITEKEEPER_WORKSPACE: Directory that holds projects
    SITEKEEPER_TEMPLATE: Starter template directory
    SITEKEEPER_SETUP_COMMAND: Command run in new projects (shell syntax; empty disables)
    SITEKEEPER_SETUP_TIMEOUT: Seconds before the setup command is killed
"""

from __future__ import annotations

import os
import shlex
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from sitekeeper.core.constants import (
    DEFAULT_EXCLUDES,
    DEFAULT_SETUP_ARTIFACTS,
    DEFAULT_SETUP_COMMAND,
    DEFAULT_SETUP_TIMEOUT,
)

__all__ = ["WorkspaceSettings", "default_workspace_root"]


def default_workspace_root() -> Path:
    """Platform-specific directory that holds projects."""
    home = Path.home()
    if sys.platform == "darwin":
        base = home / "Library" / "Application Support" / "Sitekeeper"
    elif sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(home))) / "Sitekeeper"
    else:
        base = home / ".config" / "sitekeeper"
    return base / "projects"


class WorkspaceSettings(BaseModel):
    """Configuration for project workflows.

    Attributes:
        root: Directory that holds one sub-directory per project
        template_path: Starter template override (bundled template otherwise)
        setup_command: Command run inside a new project; empty skips the step
        setup_timeout: Seconds to wait for the setup command
        setup_artifacts: Paths (relative to the project) the setup command creates
        exclude: Name patterns skipped when copying the template
    """

    root: Path = Field(default_factory=default_workspace_root)
    template_path: Path | None = None
    setup_command: tuple[str, ...] = DEFAULT_SETUP_COMMAND
    setup_timeout: float = DEFAULT_SETUP_TIMEOUT
    setup_artifacts: tuple[str, ...] = DEFAULT_SETUP_ARTIFACTS
    exclude: tuple[str, ...] = DEFAULT_EXCLUDES

    model_config = {"frozen": True}

    @field_validator("root", "template_path")
    @classmethod
    def expand_path(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return Path(os.path.abspath(value.expanduser()))

    @field_validator("setup_timeout")
    @classmethod
    def positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("setup_timeout must be greater than zero")
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> WorkspaceSettings:
        """Build settings from the environment; non-None overrides win."""
        values: dict[str, Any] = {}

        if workspace := os.getenv("SITEKEEPER_WORKSPACE"):
            values["root"] = Path(workspace)
        if template := os.getenv("SITEKEEPER_TEMPLATE"):
            values["template_path"] = Path(template)
        command = os.getenv("SITEKEEPER_SETUP_COMMAND")
        if command is not None:
            values["setup_command"] = tuple(shlex.split(command))
        if timeout := os.getenv("SITEKEEPER_SETUP_TIMEOUT"):
            values["setup_timeout"] = float(timeout)

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
