from __future__ import annotations

from datetime import date

from throws_coach import config as config_module
from throws_coach.aggregation import compute_weekly_volume
from throws_coach.config import DEFAULT_ALLOWED_WINDOWS, get_config


def _write_config(tmp_path, monkeypatch, text: str):
    path = tmp_path / "throws_coach.toml"
    path.write_text(text, encoding="utf-8")
    monkeypatch.setenv("THROWS_COACH_CONFIG", str(path))
    get_config.cache_clear()
    return path


def test_defaults_without_file() -> None:
    config = get_config()
    assert config.week_start == "monday"
    assert config.week_start_weekday == 0
    assert config.default_window_days == 30
    assert config.allowed_windows == DEFAULT_ALLOWED_WINDOWS
    assert config.timezone is None


def test_reports_section_is_read(tmp_path, monkeypatch) -> None:
    path = _write_config(
        tmp_path,
        monkeypatch,
        '[reports]\nweek_start = "Sunday"\ndefault_window_days = 90\nallowed_windows = [90, 7, 7]\ntimezone = "Europe/Prague"\n',
    )
    config = get_config()
    assert config.week_start == "sunday"
    assert config.week_start_weekday == 6
    assert config.default_window_days == 90
    assert config.allowed_windows == (7, 90)
    assert config.timezone == "Europe/Prague"
    assert config_module.as_dict()["source"] == str(path)


def test_invalid_values_fall_back(tmp_path, monkeypatch) -> None:
    _write_config(tmp_path, monkeypatch, 'week_start = "friday"\ndefault_window_days = -3\nallowed_windows = "x, 0"\n')
    config = get_config()
    assert config.week_start == "monday"
    assert config.default_window_days == 30
    assert config.allowed_windows == DEFAULT_ALLOWED_WINDOWS


def test_week_start_setting_drives_weekly_volume(tmp_path, monkeypatch) -> None:
    _write_config(tmp_path, monkeypatch, '[reports]\nweek_start = "sunday"\n')
    records = [{"throwNumber": 1, "createdAt": "2024-05-06T09:00:00", "distance": 40.0, "isFoul": False}]
    # 2024-05-06 is a Monday.
    assert compute_weekly_volume(records) == {date(2024, 5, 5): 1}
