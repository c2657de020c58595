from __future__ import annotations

from datetime import date, datetime

import pytest

from throws_coach.models import Difficulty, Exercise, Role, SessionStatus, ValidationError
from throws_coach.policy import PermissionDeniedError
from throws_coach.services import (
    assign_workout,
    build_throw_report,
    create_training_session,
    create_workout,
    list_athletes,
    list_training_sessions,
    list_workouts,
    load_actor,
    log_training_session,
    seed_demo_data,
    session_status_counts,
)
from throws_coach.storage import NotFoundError
from throws_coach.tracker import RPEOutOfRangeError, SessionIncompleteError

LOGGED_AT = datetime(2024, 5, 1, 10, 0)
REPORT_NOW = datetime(2024, 5, 2, 12, 0)


def _plan(athlete_id: str) -> dict[str, object]:
    return {
        "date": "2024-05-01",
        "focus": "Block timing",
        "athleteId": athlete_id,
        "drills": [
            {"drillType": "full_throw", "implementWeight": "800g", "targetReps": 2, "order": 5},
            {"drillType": "STAND_THROW", "implementWeight": "700g", "targetReps": 1, "order": 1},
        ],
    }


def _throws(session) -> list[dict[str, object]]:
    stand, full = session.drills
    return [
        {"drillId": stand.id, "throwNumber": 1, "distance": 44.0, "isFoul": False},
        {"drillId": full.id, "throwNumber": 1, "distance": 52.5, "isFoul": False},
        {"drillId": full.id, "throwNumber": 2, "isFoul": True, "foulReason": "LATE_BLOCK"},
    ]


@pytest.fixture
def coach(store, people):
    return load_actor(store, people["coach"], Role.COACH)


def test_load_actor_resolves_linked_athletes(store, people) -> None:
    actor = load_actor(store, people["coach"], "coach")
    assert actor.athlete_ids == frozenset({people["athlete"]})
    assert load_actor(store, people["athlete"], Role.ATHLETE).athlete_ids == frozenset()


def test_create_session_orders_drills_densely(store, coach, people) -> None:
    session = create_training_session(store, coach, _plan(people["athlete"]))

    assert [drill.order for drill in session.drills] == [1, 2]
    assert [drill.implement_weight for drill in session.drills] == ["700g", "800g"]
    assert session.status == SessionStatus.PLANNED
    assert store.get_session(session.id).coach_id == people["coach"]


def test_create_session_keeps_submission_order_for_ties(store, coach, people) -> None:
    plan = _plan(people["athlete"])
    for drill in plan["drills"]:
        drill["order"] = 1
    session = create_training_session(store, coach, plan)
    assert [drill.implement_weight for drill in session.drills] == ["800g", "700g"]


@pytest.mark.parametrize("missing", ["date", "focus", "athleteId", "drills"])
def test_create_session_requires_core_fields(store, coach, people, missing) -> None:
    plan = _plan(people["athlete"])
    plan.pop(missing)
    with pytest.raises(ValidationError):
        create_training_session(store, coach, plan)


def test_create_session_rejects_bad_drill(store, coach, people) -> None:
    plan = _plan(people["athlete"])
    plan["drills"][0]["targetReps"] = 0
    with pytest.raises(ValidationError):
        create_training_session(store, coach, plan)


def test_create_session_permissions(store, people) -> None:
    other = load_actor(store, people["other_coach"], Role.COACH)
    athlete = load_actor(store, people["athlete"], Role.ATHLETE)
    with pytest.raises(PermissionDeniedError):
        create_training_session(store, other, _plan(people["athlete"]))
    with pytest.raises(PermissionDeniedError):
        create_training_session(store, athlete, _plan(people["athlete"]))


def test_athlete_logs_session_and_coach_sees_report(store, coach, people) -> None:
    session = create_training_session(store, coach, _plan(people["athlete"]))
    athlete = load_actor(store, people["athlete"], Role.ATHLETE)

    outcome = log_training_session(
        store,
        athlete,
        {"sessionId": session.id, "sessionRPE": "7", "notes": "windy", "throws": _throws(session)},
        now=LOGGED_AT,
    )
    assert outcome.throw_logs_written == 3
    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.session.session_rpe == 7
    assert outcome.session.notes == "windy"
    assert "3 throws" in outcome.confirmation

    snapshot = build_throw_report(store, coach, window_days=7, now=REPORT_NOW)
    assert snapshot.summary.total_throws == 3
    assert snapshot.summary.best_distance == pytest.approx(52.5)
    assert snapshot.distance_progression.labels == ["2024-05-01"]
    assert snapshot.foul_breakdown.labels == ["Late Block"]
    assert [item.status for item in snapshot.recent_logs] == ["Late Block", "Valid", "Valid"]
    assert {item.athlete_label for item in snapshot.recent_logs} == {"Ana Thrower"}
    assert snapshot.recent_logs[0].drill_label == "Full Throw (800g)"
    assert {item.drill_label for item in snapshot.recent_logs} == {"Full Throw (800g)", "Stand Throw (700g)"}

    own = build_throw_report(store, athlete, window_days="30", now=REPORT_NOW)
    assert own.athlete_id == people["athlete"]
    assert own.summary.total_throws == 3


def test_log_rejects_incomplete_and_bad_rpe_without_writing(store, coach, people) -> None:
    session = create_training_session(store, coach, _plan(people["athlete"]))
    partial = _throws(session)[:2]

    with pytest.raises(SessionIncompleteError):
        log_training_session(store, coach, {"sessionId": session.id, "sessionRPE": 7, "throws": partial})
    with pytest.raises(RPEOutOfRangeError):
        log_training_session(store, coach, {"sessionId": session.id, "sessionRPE": 12, "throws": _throws(session)})

    stored = store.get_session(session.id)
    assert stored.status == SessionStatus.PLANNED
    assert store.list_throw_logs() == []


def test_other_coach_cannot_log_or_report(store, coach, people) -> None:
    session = create_training_session(store, coach, _plan(people["athlete"]))
    other = load_actor(store, people["other_coach"], Role.COACH)

    with pytest.raises(PermissionDeniedError):
        log_training_session(store, other, {"sessionId": session.id, "sessionRPE": 5, "throws": _throws(session)})
    with pytest.raises(PermissionDeniedError):
        build_throw_report(store, other, athlete_id=people["athlete"], window_days=30)


def test_report_rejects_window_outside_presets(store, coach) -> None:
    with pytest.raises(ValidationError):
        build_throw_report(store, coach, window_days=14)
    with pytest.raises(ValidationError):
        build_throw_report(store, coach, window_days=0)


def test_seed_demo_data_builds_completed_session(store) -> None:
    ids = seed_demo_data(store, today=date.today())
    session = store.get_session(ids["session_id"])

    assert session.status == SessionStatus.COMPLETED
    assert session.session_rpe == 6
    assert sum(len(drill.throw_logs) for drill in session.drills) == 5
    assert store.is_linked(ids["athlete_id"], ids["coach_id"])
    assert session_status_counts([session])["COMPLETED"] == 1
    assert ids["workout_id"]
    assignments = store.list_assignments(athlete_id=ids["athlete_id"])
    assert [item.workout_id for item in assignments] == [ids["workout_id"]]
    assert [item.exercise_id for item in store.get_workout(ids["workout_id"]).exercises] == [
        "push-ups",
        "squats",
        "planks",
        "burpees",
    ]


def test_create_session_ignores_client_drill_ids(store, coach, people) -> None:
    first = _plan(people["athlete"])
    first["drills"][0]["id"] = None
    first["drills"][1]["id"] = "1"
    second = _plan(people["athlete"])
    second["drills"][0]["id"] = "1"
    second["drills"][1]["id"] = None

    one = create_training_session(store, coach, first)
    two = create_training_session(store, coach, second)

    drill_ids = [drill.id for drill in one.drills + two.drills]
    assert len(set(drill_ids)) == 4
    assert "1" not in drill_ids and "None" not in drill_ids
    assert [drill.implement_weight for drill in store.get_session(two.id).drills] == ["700g", "800g"]


def test_coach_logging_for_athlete_is_recorded(store, coach, people, caplog) -> None:
    session = create_training_session(store, coach, _plan(people["athlete"]))
    with caplog.at_level("INFO", logger="throws_coach.tracker"):
        outcome = log_training_session(
            store,
            coach,
            {"sessionId": session.id, "sessionRPE": 5, "throws": _throws(session)},
            now=LOGGED_AT,
        )
    assert outcome.payload.logged_by_coach is True
    assert "on behalf of the athlete" in outcome.confirmation
    assert f"logged by coach on behalf of athlete {people['athlete']}" in caplog.text


def test_list_athletes_and_sessions(store, coach, people) -> None:
    session = create_training_session(store, coach, _plan(people["athlete"]))
    athlete = load_actor(store, people["athlete"], Role.ATHLETE)
    other = load_actor(store, people["other_coach"], Role.COACH)

    assert [row["id"] for row in list_athletes(store, coach)] == [people["athlete"]]
    with pytest.raises(PermissionDeniedError):
        list_athletes(store, athlete)

    assert [item.id for item in list_training_sessions(store, coach)] == [session.id]
    assert [item.id for item in list_training_sessions(store, coach, athlete_id=people["athlete"])] == [session.id]
    assert [item.id for item in list_training_sessions(store, athlete)] == [session.id]
    assert list_training_sessions(store, other) == []
    with pytest.raises(PermissionDeniedError):
        list_training_sessions(store, other, athlete_id=people["athlete"])
    with pytest.raises(PermissionDeniedError):
        list_training_sessions(store, athlete, athlete_id="athlete-2")


def _exercises(store) -> None:
    store.upsert_exercise(Exercise(id="squats", name="Squats", equipment=["Bodyweight"]))
    store.upsert_exercise(Exercise(id="burpees", name="Burpees", difficulty=Difficulty.INTERMEDIATE))


def test_create_and_assign_workout(store, coach, people) -> None:
    _exercises(store)
    workout = create_workout(
        store,
        coach,
        {
            "name": "Circuit",
            "duration": "30",
            "exercises": [
                {"exerciseId": "burpees", "sets": 2, "reps": 8, "restTime": 90},
                {"exerciseId": "squats", "sets": 3, "reps": "15"},
            ],
        },
    )
    stored = store.get_workout(workout.id)
    assert stored.duration == 30
    assert [(item.exercise_id, item.order, item.reps) for item in stored.exercises] == [
        ("burpees", 1, 8),
        ("squats", 2, 15),
    ]

    assignments = assign_workout(
        store,
        coach,
        {"workoutId": workout.id, "athleteIds": [people["athlete"], people["athlete"]], "dueDate": "2024-05-08"},
        now=LOGGED_AT,
    )
    assert len(assignments) == 1
    assert assignments[0].due_date == date(2024, 5, 8)
    assert assignments[0].assigned_by == people["coach"]

    athlete = load_actor(store, people["athlete"], Role.ATHLETE)
    assert [item.id for item in list_workouts(store, athlete)] == [workout.id]
    assert [item.id for item in list_workouts(store, coach)] == [workout.id]


def test_create_workout_validation(store, coach, people) -> None:
    _exercises(store)
    athlete = load_actor(store, people["athlete"], Role.ATHLETE)
    with pytest.raises(PermissionDeniedError):
        create_workout(store, athlete, {"name": "Mine"})
    with pytest.raises(ValidationError):
        create_workout(store, coach, {"name": "  "})
    with pytest.raises(ValidationError):
        create_workout(store, coach, {"name": "Circuit", "exercises": [{"exerciseId": "lunges"}]})
    with pytest.raises(ValidationError):
        create_workout(store, coach, {"name": "Circuit", "exercises": [{"sets": 3}]})


def test_assign_workout_checks_ownership_and_links(store, coach, people) -> None:
    _exercises(store)
    workout = create_workout(store, coach, {"name": "Circuit", "exercises": [{"exerciseId": "squats"}]})
    other = load_actor(store, people["other_coach"], Role.COACH)
    athlete = load_actor(store, people["athlete"], Role.ATHLETE)
    store.add_user("new@example.com", Role.ATHLETE, user_id="athlete-2")

    with pytest.raises(PermissionDeniedError):
        assign_workout(store, athlete, {"workoutId": workout.id, "athleteIds": [people["athlete"]]})
    with pytest.raises(NotFoundError):
        assign_workout(store, other, {"workoutId": workout.id, "athleteIds": [people["athlete"]]})
    with pytest.raises(NotFoundError):
        assign_workout(store, coach, {"workoutId": "missing", "athleteIds": [people["athlete"]]})
    with pytest.raises(PermissionDeniedError):
        assign_workout(store, coach, {"workoutId": workout.id, "athleteIds": [people["athlete"], "athlete-2"]})
    with pytest.raises(ValidationError):
        assign_workout(store, coach, {"workoutId": workout.id, "athleteIds": []})
    assert store.list_assignments(workout_id=workout.id) == []
