"""CLI entrypoints for Sitekeeper."""

from sitekeeper.cli.project import app as project_app
from sitekeeper.cli.project import run_cli

__all__ = ["project_app", "run_cli"]
