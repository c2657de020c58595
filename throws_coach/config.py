from __future__ import annotations

import tomllib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .env import get_env

WEEK_START_DAYS = {"monday": 0, "sunday": 6}
DEFAULT_WEEK_START = "monday"
DEFAULT_WINDOW_DAYS = 30
DEFAULT_ALLOWED_WINDOWS: tuple[int, ...] = (7, 30, 90, 365)


@dataclass(frozen=True)
class AppConfig:
    week_start: str = DEFAULT_WEEK_START
    default_window_days: int = DEFAULT_WINDOW_DAYS
    allowed_windows: tuple[int, ...] = DEFAULT_ALLOWED_WINDOWS
    timezone: str | None = None

    @property
    def week_start_weekday(self) -> int:
        return WEEK_START_DAYS[self.week_start]


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/throws_coach.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _coerce_week_start(raw: Any) -> str:
    if not isinstance(raw, str):
        return DEFAULT_WEEK_START
    value = raw.strip().lower()
    return value if value in WEEK_START_DAYS else DEFAULT_WEEK_START


def _coerce_positive_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _coerce_windows(raw: Any) -> tuple[int, ...]:
    if not raw:
        return DEFAULT_ALLOWED_WINDOWS
    if isinstance(raw, str):
        entries = [entry.strip() for entry in raw.split(",")]
    elif isinstance(raw, (list, tuple, set)):
        entries = list(raw)
    else:
        return DEFAULT_ALLOWED_WINDOWS
    windows: list[int] = []
    for entry in entries:
        value = _coerce_positive_int(entry, 0)
        if value:
            windows.append(value)
    return tuple(sorted(set(windows))) or DEFAULT_ALLOWED_WINDOWS


def _coerce_timezone(raw: Any) -> str | None:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    reports = raw.get("reports")
    section: Mapping[str, Any] = reports if isinstance(reports, Mapping) else raw
    return AppConfig(
        week_start=_coerce_week_start(section.get("week_start")),
        default_window_days=_coerce_positive_int(section.get("default_window_days"), DEFAULT_WINDOW_DAYS),
        allowed_windows=_coerce_windows(section.get("allowed_windows")),
        timezone=_coerce_timezone(section.get("timezone")),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    data = _load_toml(path)
    return _build_config(data)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "week_start": config.week_start,
        "default_window_days": config.default_window_days,
        "allowed_windows": list(config.allowed_windows),
        "timezone": config.timezone or "local",
        "source": str(_config_path() or "defaults"),
    }
