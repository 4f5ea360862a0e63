"""Pytest configuration and fixtures for Sitekeeper tests."""

from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any

import pytest
import structlog

from sitekeeper.core.settings import WorkspaceSettings

_ENV_VARS = (
    "SITEKEEPER_WORKSPACE",
    "SITEKEEPER_TEMPLATE",
    "SITEKEEPER_SETUP_COMMAND",
    "SITEKEEPER_SETUP_TIMEOUT",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Clear Sitekeeper env vars and undo CLI logging configuration."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield
    structlog.reset_defaults()


class FakeRunner:
    """ProcessRunner double that records calls instead of spawning."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.returncode = 0
        self.creates: tuple[str, ...] = ()
        self.error: Exception | None = None

    async def spawn_and_wait(
        self,
        command: str,
        args: Sequence[str],
        cwd: Path,
        *,
        timeout: float | None = None,
        on_spawn: Callable[[Any], None] | None = None,
    ) -> int:
        self.calls.append(
            {"command": command, "args": list(args), "cwd": cwd, "timeout": timeout}
        )
        for artifact in self.creates:
            (cwd / artifact).mkdir(parents=True, exist_ok=True)
        if self.error is not None:
            raise self.error
        return self.returncode


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Projects directory (not created up front)."""
    return tmp_path / "projects"


@pytest.fixture
def settings(workspace: Path) -> WorkspaceSettings:
    """Settings with the bundled template and no setup command."""
    return WorkspaceSettings(root=workspace, setup_command=())


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """A minimal starter template on disk."""
    template = tmp_path / "template"
    (template / "src").mkdir(parents=True)
    (template / "package.json").write_text(
        '{\n  "name": "starter",\n  "version": "1.0.0"\n}\n', encoding="utf-8"
    )
    (template / "src" / "index.md").write_text(
        "---\n"
        "title: Hello World!\n"
        "---\n"
        "\n"
        "This is your new website! Edit this file to get started.\n"
        "\n"
        "## Getting Started\n"
        "\n"
        "- Edit this file\n"
        "\n"
        "Happy building! 🚀\n",
        encoding="utf-8",
    )
    (template / "node_modules" / "left-pad").mkdir(parents=True)
    (template / "node_modules" / "left-pad" / "index.js").write_text(
        "module.exports = 1;\n", encoding="utf-8"
    )
    return template
