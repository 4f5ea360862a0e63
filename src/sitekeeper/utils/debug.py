"""Opt-in tracing for the filesystem primitives.

``debug()`` writes one ``[DEBUG]`` line to stderr per call while tracing is
enabled. Staging, commit and cleanup steps use it; workflow events go
through structlog instead.

Environment:
    SITEKEEPER_DEBUG: '1', 'true' or 'yes' (case-insensitive) enables tracing
                      at import time. ``sitekeeper --verbose`` enables it too.

Example:
    $ SITEKEEPER_DEBUG=1 sitekeeper create demo
"""

import os
import sys
from typing import Any

_TRUTHY = frozenset({"1", "true", "yes"})


def _from_env() -> bool:
    return os.environ.get("SITEKEEPER_DEBUG", "").strip().lower() in _TRUTHY


_enabled = _from_env()


def is_enabled() -> bool:
    return _enabled


def set_enabled(enabled: bool | None = None) -> None:
    """Force tracing on or off; ``None`` re-reads SITEKEEPER_DEBUG."""
    global _enabled
    _enabled = _from_env() if enabled is None else enabled


def debug(msg: Any, **fields: Any) -> None:
    """Write *msg* and any ``key=value`` *fields* to stderr when enabled.

    Args:
        msg: Message to print. Will be converted to string.
        **fields: Extra context appended in sorted key order
    """
    if not _enabled:
        return
    line = str(msg)
    if fields:
        line += " " + " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
    print(f"[DEBUG] {line}", file=sys.stderr)
