"""Tests for path helpers."""

from datetime import UTC, datetime
from pathlib import Path

from sitekeeper.fs.paths import (
    get_backup_path,
    get_staging_path,
    is_within,
    normalize_path,
)


def test_staging_path_is_hidden_sibling(tmp_path: Path) -> None:
    target = tmp_path / "site" / "index.md"

    staged = get_staging_path(target, "tmp")

    assert staged.parent == target.parent
    assert staged.name.startswith(".index.md.")
    assert staged.name.endswith(".tmp")


def test_staging_paths_are_unique(tmp_path: Path) -> None:
    target = tmp_path / "index.md"

    paths = {get_staging_path(target) for _ in range(50)}

    assert len(paths) == 50


def test_backup_path_embeds_timestamp(tmp_path: Path) -> None:
    now = datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=UTC)

    backup = get_backup_path(tmp_path / "package.json", now)

    assert backup == tmp_path / "package.json.backup.20240501T123000123456"


def test_backup_path_adds_counter_for_retries(tmp_path: Path) -> None:
    now = datetime(2024, 5, 1, tzinfo=UTC)
    first = get_backup_path(tmp_path / "a.txt", now)
    first.write_text("taken", encoding="utf-8")

    assert get_backup_path(tmp_path / "a.txt", now) == first
    second = get_backup_path(tmp_path / "a.txt", now, attempt=1)

    assert second == first.with_name(f"{first.name}.1")


def test_is_within(tmp_path: Path) -> None:
    assert is_within(tmp_path / "child", tmp_path)
    assert is_within(tmp_path / "a" / "b", tmp_path)
    assert not is_within(tmp_path, tmp_path)
    assert not is_within(tmp_path / ".." / "sibling", tmp_path)
    assert not is_within(tmp_path.parent, tmp_path)


def test_normalize_path_relative_to_root(tmp_path: Path) -> None:
    result = normalize_path("sub/../file.txt", root=tmp_path)

    assert result == normalize_path(tmp_path / "file.txt")
    assert result.is_absolute()
