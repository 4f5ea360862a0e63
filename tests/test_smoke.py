"""Smoke tests to verify package structure and imports."""


def test_imports_core() -> None:
    """Test that core modules can be imported."""
    import sitekeeper.core.project_manager  # noqa: F401
    import sitekeeper.core.transaction  # noqa: F401


def test_imports_fs() -> None:
    """Test that fs package can be imported."""
    import sitekeeper.fs  # noqa: F401


def test_imports_cli() -> None:
    """Test that cli package can be imported."""
    import sitekeeper.cli  # noqa: F401


def test_fs_exports() -> None:
    """Test that the fs package re-exports the primitives."""
    from sitekeeper import fs

    assert callable(fs.atomic_write)
    assert callable(fs.atomic_copy_directory)
    assert callable(fs.atomic_rename)
    assert isinstance(fs.LocalFileSystem(), fs.FileSystem)
