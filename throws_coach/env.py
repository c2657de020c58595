from __future__ import annotations

import os

PRIMARY_PREFIX = "THROWS_COACH_"


def get_env(name: str, default: str | None = None) -> str | None:
    """Resolve a ``THROWS_COACH_``-prefixed environment variable."""
    value = os.getenv(f"{PRIMARY_PREFIX}{name}")
    if value is not None:
        return value
    return default
