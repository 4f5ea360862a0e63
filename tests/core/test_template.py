"""Tests for starter template lookup and customisation."""

import json
from pathlib import Path

import pytest

from sitekeeper.core.errors import TemplateNotFoundError
from sitekeeper.core.template import (
    BUNDLED_TEMPLATE,
    customize_index_content,
    customize_manifest,
    find_template_source,
    has_required_entries,
    index_validator,
    manifest_name_for,
    manifest_validator,
    update_internal_references,
)


def test_bundled_template_is_complete() -> None:
    assert (BUNDLED_TEMPLATE / "package.json").is_file()
    assert (BUNDLED_TEMPLATE / "src" / "index.md").is_file()
    assert has_required_entries(sorted(p.name for p in BUNDLED_TEMPLATE.iterdir()))


def test_find_template_source_first_existing(tmp_path: Path) -> None:
    (tmp_path / "second").mkdir()

    found = find_template_source([None, tmp_path / "first", tmp_path / "second"])

    assert found == tmp_path / "second"


def test_find_template_source_reports_searched(tmp_path: Path) -> None:
    with pytest.raises(TemplateNotFoundError) as excinfo:
        find_template_source([tmp_path / "missing"])

    assert excinfo.value.searched == [tmp_path / "missing"]
    assert "missing" in str(excinfo.value)


def test_has_required_entries() -> None:
    assert has_required_entries(["eleventy.config.js", "package.json", "src"])
    assert not has_required_entries(["package.json"])
    assert not has_required_entries([])


class TestIndexCustomisation:
    def test_bundled_index_passes_its_validator(self) -> None:
        content = (BUNDLED_TEMPLATE / "src" / "index.md").read_text(encoding="utf-8")

        customized = customize_index_content("Garden Log", content)

        assert "title: Welcome to Garden Log!" in customized
        assert "## About Garden Log" in customized
        assert "Garden Log is powered by Sitekeeper" in customized
        assert customized.rstrip().endswith("Happy building! 🚀")
        assert index_validator("Garden Log")(customized)

    def test_untouched_content_fails_validator(self) -> None:
        assert not index_validator("Garden Log")("# Hello World!\n")

    def test_content_without_markers_is_unchanged(self) -> None:
        content = "# Custom page\n"

        assert customize_index_content("Garden Log", content) == content


class TestManifestCustomisation:
    def test_sets_sanitized_name(self) -> None:
        content = json.dumps({"name": "starter", "version": "1.0.0"})

        updated = customize_manifest("My Site!", content)

        manifest = json.loads(updated)
        assert manifest == {"name": "my-site", "version": "1.0.0"}
        assert updated.endswith("\n")
        assert manifest_validator("My Site!")(updated)

    def test_unsanitizable_name_falls_back(self) -> None:
        assert manifest_name_for("!!!") == "site"

    def test_rejects_non_object(self) -> None:
        with pytest.raises(ValueError):
            customize_manifest("site", "[1, 2]")

    def test_validator_rejects_bad_json(self) -> None:
        validate = manifest_validator("blog")

        assert not validate("{not json")
        assert not validate('{"name": "other"}')
        assert validate('{"name": "blog"}')


def test_update_internal_references() -> None:
    content = (
        "title: Welcome to Old Site!\n"
        "## About Old Site\n"
        "Old Site is powered by Sitekeeper.\n"
        "Unrelated Old Site mention\n"
    )

    updated = update_internal_references(content, "Old Site", "New Site")

    assert "Welcome to New Site!" in updated
    assert "## About New Site" in updated
    assert "New Site is powered by Sitekeeper." in updated
    assert "Unrelated Old Site mention" in updated
