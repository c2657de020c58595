from __future__ import annotations

from datetime import date, datetime

import matplotlib
import pytest

from throws_coach.config import get_config
from throws_coach.models import Drill, DrillType, Role, TrainingSession
from throws_coach.storage import ThrowsStore

matplotlib.use("Agg")


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    monkeypatch.setenv("THROWS_COACH_CONFIG", str(tmp_path / "missing.toml"))
    monkeypatch.setenv("THROWS_COACH_DATA_DIR", str(tmp_path / "data"))
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def store(tmp_path) -> ThrowsStore:
    return ThrowsStore(tmp_path / "throws.db")


@pytest.fixture
def people(store) -> dict[str, str]:
    coach_id = store.add_user("coach@example.com", Role.COACH, name="Coach Carter", user_id="coach-1")
    athlete_id = store.add_user("ath@example.com", Role.ATHLETE, name="Ana Thrower", user_id="athlete-1")
    other_coach = store.add_user("other@example.com", Role.COACH, name="Other Coach", user_id="coach-2")
    store.link_athlete(athlete_id, coach_id)
    return {"coach": coach_id, "athlete": athlete_id, "other_coach": other_coach}


def make_session(*targets: int, session_id: str = "sess-1") -> TrainingSession:
    drills = [
        Drill(
            id=f"drill-{index}",
            drill_type=DrillType.STAND_THROW,
            implement_weight="800g",
            target_reps=target,
            order=index,
        )
        for index, target in enumerate(targets, start=1)
    ]
    return TrainingSession(
        id=session_id,
        date=date(2024, 5, 1),
        focus="Block timing",
        coach_id="coach-1",
        athlete_id="athlete-1",
        drills=drills,
    )


def at(text: str) -> datetime:
    return datetime.fromisoformat(text)
