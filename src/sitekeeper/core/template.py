"""Starter template lookup and content customisation.

The functions here are pure text transforms plus the validators that check
they landed. Workflows stage their output through the atomic primitives.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from pathlib import Path

from sitekeeper.core.constants import REQUIRED_PROJECT_ENTRIES
from sitekeeper.core.errors import TemplateNotFoundError
from sitekeeper.core.names import sanitize_package_name

#: Template shipped inside the package
BUNDLED_TEMPLATE = Path(__file__).resolve().parent.parent / "starter"

_GETTING_STARTED = re.compile(r"## Getting Started[\s\S]*Happy building! 🚀")


def find_template_source(candidates: Iterable[Path | None]) -> Path:
    """Return the first candidate that is a directory.

    Raises:
        TemplateNotFoundError: If none of the candidates exists
    """
    searched: list[Path] = []
    for candidate in candidates:
        if candidate is None:
            continue
        searched.append(candidate)
        if candidate.is_dir():
            return candidate
    raise TemplateNotFoundError(searched)


def has_required_entries(listing: list[str]) -> bool:
    """Validator: a project tree contains every required top-level entry."""
    return all(entry in listing for entry in REQUIRED_PROJECT_ENTRIES)


def manifest_name_for(project_name: str) -> str:
    """Manifest ``name`` value written for *project_name*."""
    return sanitize_package_name(project_name) or "site"


def customize_index_content(project_name: str, content: str) -> str:
    """Personalise the starter landing page for *project_name*."""
    content = content.replace("title: Hello World!", f"title: Welcome to {project_name}!")
    content = content.replace(
        "This is your new website! Edit this file to get started.",
        f"Welcome to {project_name}! This is your new Sitekeeper site.",
    )

    welcome_section = (
        f"## About {project_name}\n"
        "\n"
        f"Your new site is ready to go! {project_name} is powered by Sitekeeper "
        "and uses Eleventy for static site generation.\n"
        "\n"
        "## Getting Started\n"
        "\n"
        "- Edit this markdown file to change the content\n"
        "- Add more pages by creating new .md files\n"
        "- Customize the layout in the _includes directory\n"
        "- Add styles to style.css\n"
        "\n"
        "Happy building! 🚀"
    )
    return _GETTING_STARTED.sub(lambda _match: welcome_section, content)


def index_validator(project_name: str) -> Callable[[str], bool]:
    """Build a validator confirming the landing page names *project_name*."""

    def validate(content: str) -> bool:
        return (
            f"Welcome to {project_name}!" in content
            and f"About {project_name}" in content
        )

    return validate


def customize_manifest(project_name: str, content: str) -> str:
    """Set the manifest ``name`` field for *project_name*.

    Raises:
        ValueError: If *content* is not a JSON object
    """
    manifest = json.loads(content)
    if not isinstance(manifest, dict):
        raise ValueError("manifest must be a JSON object")
    manifest["name"] = manifest_name_for(project_name)
    return json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"


def manifest_validator(project_name: str) -> Callable[[str], bool]:
    """Build a validator confirming the manifest ``name`` was substituted."""
    expected = manifest_name_for(project_name)

    def validate(content: str) -> bool:
        try:
            manifest = json.loads(content)
        except json.JSONDecodeError:
            return False
        return isinstance(manifest, dict) and manifest.get("name") == expected

    return validate


def update_internal_references(content: str, old_name: str, new_name: str) -> str:
    """Rewrite landing-page references to *old_name* so they name *new_name*."""
    for template in ("Welcome to {}!", "About {}", "{} is powered by"):
        content = content.replace(template.format(old_name), template.format(new_name))
    return content
