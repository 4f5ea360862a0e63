"""Tests for the validated atomic rename."""

from pathlib import Path

import pytest
from structlog.testing import capture_logs

from sitekeeper.core.errors import ErrorKind
from sitekeeper.fs.atomic import atomic_rename
from sitekeeper.fs.filesystem import LocalFileSystem


class OneRenameFileSystem(LocalFileSystem):
    """Allows the first rename, refuses every later one."""

    def __init__(self) -> None:
        self.renames = 0

    async def rename(self, old: Path, new: Path) -> None:
        self.renames += 1
        if self.renames > 1:
            raise OSError("device busy")
        await super().rename(old, new)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "old"
    (path / "src").mkdir(parents=True)
    (path / "package.json").write_text("{}", encoding="utf-8")
    return path


class TestAtomicRename:
    """Renames with and without validation."""

    @pytest.mark.asyncio
    async def test_renames_directory(self, project: Path, tmp_path: Path) -> None:
        new = tmp_path / "new"

        result = await atomic_rename(project, new)

        assert result.success
        assert not project.exists()
        assert (new / "package.json").exists()

    @pytest.mark.asyncio
    async def test_renames_file(self, tmp_path: Path) -> None:
        old = tmp_path / "a.txt"
        old.write_text("data", encoding="utf-8")

        result = await atomic_rename(old, tmp_path / "b.txt")

        assert result.success
        assert (tmp_path / "b.txt").read_text(encoding="utf-8") == "data"

    @pytest.mark.asyncio
    async def test_validator_sees_directory_listing(
        self, project: Path, tmp_path: Path
    ) -> None:
        seen: list[list[str]] = []

        def validate(listing: list[str]) -> bool:
            seen.append(listing)
            return True

        await atomic_rename(project, tmp_path / "new", validate=validate)

        assert seen == [["package.json", "src"]]

    @pytest.mark.asyncio
    async def test_validator_sees_file_name(self, tmp_path: Path) -> None:
        old = tmp_path / "a.txt"
        old.write_text("data", encoding="utf-8")
        seen: list[list[str]] = []

        def validate(listing: list[str]) -> bool:
            seen.append(listing)
            return True

        await atomic_rename(old, tmp_path / "b.txt", validate=validate)

        assert seen == [["b.txt"]]


class TestAtomicRenameFailures:
    """Failed renames leave the original in place."""

    @pytest.mark.asyncio
    async def test_existing_target(self, project: Path, tmp_path: Path) -> None:
        taken = tmp_path / "taken"
        taken.mkdir()

        result = await atomic_rename(project, taken)

        assert not result.success
        assert result.error is not None
        assert result.error.kind is ErrorKind.IO_ERROR
        assert project.exists()
        assert list(taken.iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_source(self, tmp_path: Path) -> None:
        result = await atomic_rename(tmp_path / "ghost", tmp_path / "new")

        assert not result.success
        assert result.error is not None
        assert result.error.kind is ErrorKind.IO_ERROR
        assert isinstance(result.error.__cause__, FileNotFoundError)

    @pytest.mark.asyncio
    async def test_rejection_renames_back(self, project: Path, tmp_path: Path) -> None:
        new = tmp_path / "new"

        result = await atomic_rename(
            project, new, validate=lambda listing: "README.md" in listing
        )

        assert not result.success
        assert result.error is not None
        assert result.error.kind is ErrorKind.VALIDATION_FAILED
        assert (project / "package.json").exists()
        assert not new.exists()

    @pytest.mark.asyncio
    async def test_async_validator_rejection(
        self, project: Path, tmp_path: Path
    ) -> None:
        async def validate(listing: list[str]) -> bool:
            return False

        result = await atomic_rename(project, tmp_path / "new", validate=validate)

        assert not result.success
        assert project.exists()

    @pytest.mark.asyncio
    async def test_failed_rename_back_is_commit_failure(
        self, project: Path, tmp_path: Path
    ) -> None:
        new = tmp_path / "new"

        with capture_logs() as logs:
            result = await atomic_rename(
                project,
                new,
                validate=lambda listing: False,
                fs=OneRenameFileSystem(),
            )

        assert not result.success
        assert result.error is not None
        assert result.error.kind is ErrorKind.COMMIT_FAILED
        assert new.exists()
        assert any(entry["event"] == "rename.revert.failed" for entry in logs)
