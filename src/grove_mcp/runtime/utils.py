"""Utility helpers for runtime and git subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = {key: value for key, value in os.environ.items() if key not in _SANITIZED_VARS}
    if additional:
        env.update(additional)
    return env


def preview(text: str, limit: int = 80) -> str:
    """Shorten ``text`` for log lines."""

    return text[:limit] + ("..." if len(text) > limit else "")
