"""Core constants for Sitekeeper.

This module defines constants used throughout the application:
- Project name validation rules
- Template layout and copy exclusions
- Retry and timeout values for atomic operations
"""

import re

# ============================================================================
# Project Names
# ============================================================================

#: Longest accepted project name
MAX_NAME_LENGTH: int = 100

#: Characters that are invalid in folder names on at least one platform
FORBIDDEN_NAME_CHARS: re.Pattern[str] = re.compile(r'[<>:"|?*\\/\x00]')

#: Windows device names that cannot be used as folder names
RESERVED_NAMES: re.Pattern[str] = re.compile(
    r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$", re.IGNORECASE
)

# ============================================================================
# Templates
# ============================================================================

#: Entries skipped when copying a template (dependency caches, build output, VCS)
DEFAULT_EXCLUDES: tuple[str, ...] = (
    "node_modules",
    "_site",
    ".git",
    "dist",
)

#: Top-level entries a project directory must contain
REQUIRED_PROJECT_ENTRIES: tuple[str, ...] = ("src", "package.json")

#: Project manifest holding the `name` field
MANIFEST_FILENAME: str = "package.json"

#: Generated landing page, relative to the project root
INDEX_RELATIVE_PATH: tuple[str, ...] = ("src", "index.md")

# ============================================================================
# Setup Command
# ============================================================================

#: Command run in a freshly created project
DEFAULT_SETUP_COMMAND: tuple[str, ...] = ("npm", "install")

#: Artifacts produced by the setup command (removed on rollback)
DEFAULT_SETUP_ARTIFACTS: tuple[str, ...] = ("node_modules",)

#: Seconds to wait for the setup command before killing it
DEFAULT_SETUP_TIMEOUT: float = 300.0

# ============================================================================
# Atomic Operations
# ============================================================================

#: Attempts for writing a staged file before giving up
WRITE_MAX_RETRIES: int = 3

#: Initial backoff between write attempts (doubles each retry)
WRITE_RETRY_DELAY: float = 0.1

#: Deepest directory tree a copy will follow
COPY_MAX_DEPTH: int = 50
