from __future__ import annotations

import pytest

from throws_coach.models import Exercise, SessionStatus
from throws_coach.storage import PersistenceError
from throws_coach.webapp import create_app

PLAN = {
    "date": "2024-05-01",
    "focus": "Release",
    "drills": [{"drillType": "STAND_THROW", "implementWeight": "800g", "targetReps": 2}],
}


@pytest.fixture
def client(store):
    app = create_app(store)
    app.config.update(TESTING=True)
    with app.test_client() as client:
        yield client


def _as(user_id: str, role: str) -> dict[str, str]:
    return {"X-User-Id": user_id, "X-User-Role": role}


def _create(client, people) -> dict:
    response = client.post(
        "/api/training-sessions",
        json={**PLAN, "athleteId": people["athlete"]},
        headers=_as(people["coach"], "COACH"),
    )
    assert response.status_code == 200
    return response.get_json()["session"]


def _log_body(session: dict, rpe: object = 7, throws: list | None = None) -> dict:
    drill_id = session["drills"][0]["id"]
    return {
        "sessionId": session["id"],
        "sessionRPE": rpe,
        "notes": "good rhythm",
        "throws": throws
        if throws is not None
        else [
            {"drillId": drill_id, "throwNumber": 1, "distance": 55.2, "isFoul": False},
            {"drillId": drill_id, "throwNumber": 2, "isFoul": True, "foulReason": "SECTOR_LEFT"},
        ],
    }


def test_requests_without_identity_are_rejected(client) -> None:
    assert client.get("/api/training-sessions/anything").status_code == 401
    assert client.get("/api/reports/throws", headers=_as("someone", "REFEREE")).status_code == 401


def test_coach_creates_and_athlete_views_session(client, people) -> None:
    session = _create(client, people)
    assert session["status"] == "PLANNED"
    assert session["drills"][0]["order"] == 1

    response = client.get(f"/api/training-sessions/{session['id']}", headers=_as(people["athlete"], "ATHLETE"))
    assert response.status_code == 200
    assert response.get_json()["session"]["focus"] == "Release"


def test_unknown_session_is_404(client, people) -> None:
    response = client.get("/api/training-sessions/missing", headers=_as(people["coach"], "COACH"))
    assert response.status_code == 404


def test_create_requires_fields_and_link(client, people) -> None:
    response = client.post("/api/training-sessions", json={"focus": "x"}, headers=_as(people["coach"], "COACH"))
    assert response.status_code == 400
    assert response.get_json()["code"] == "invalid"

    response = client.post(
        "/api/training-sessions",
        json={**PLAN, "athleteId": people["athlete"]},
        headers=_as(people["other_coach"], "COACH"),
    )
    assert response.status_code == 403


def test_log_session_flow(client, people) -> None:
    session = _create(client, people)
    response = client.post("/api/training-sessions/log", json=_log_body(session), headers=_as(people["athlete"], "ATHLETE"))

    assert response.status_code == 200
    body = response.get_json()
    assert body["throwLogsCreated"] == 2
    assert body["session"]["status"] == SessionStatus.COMPLETED.value
    assert body["session"]["sessionRPE"] == 7
    logs = body["session"]["drills"][0]["throwLogs"]
    assert [(log["throwNumber"], log["distance"], log["foulReason"]) for log in logs] == [
        (1, 55.2, None),
        (2, None, "SECTOR_LEFT"),
    ]


@pytest.mark.parametrize(
    ("rpe", "throws_count", "code"),
    [(7, 1, "session_incomplete"), (0, 2, "rpe_out_of_range"), (11, 2, "rpe_out_of_range")],
)
def test_log_session_error_codes(client, people, rpe, throws_count, code) -> None:
    session = _create(client, people)
    body = _log_body(session, rpe=rpe)
    body["throws"] = body["throws"][:throws_count]

    response = client.post("/api/training-sessions/log", json=body, headers=_as(people["coach"], "COACH"))
    assert response.status_code == 400
    assert response.get_json()["code"] == code


def test_foul_without_reason_is_incomplete_throw(client, people) -> None:
    session = _create(client, people)
    drill_id = session["drills"][0]["id"]
    throws = [
        {"drillId": drill_id, "throwNumber": 1, "distance": 50, "isFoul": False},
        {"drillId": drill_id, "throwNumber": 2, "isFoul": True},
    ]
    response = client.post(
        "/api/training-sessions/log",
        json=_log_body(session, throws=throws),
        headers=_as(people["coach"], "COACH"),
    )
    assert response.status_code == 400
    assert response.get_json()["code"] == "incomplete_throw"


def test_other_coach_cannot_log(client, people) -> None:
    session = _create(client, people)
    response = client.post(
        "/api/training-sessions/log",
        json=_log_body(session),
        headers=_as(people["other_coach"], "COACH"),
    )
    assert response.status_code == 403


def test_persistence_failure_maps_to_500(client, people, store, monkeypatch) -> None:
    session = _create(client, people)

    def boom(*_args, **_kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "apply_completion", boom)
    response = client.post("/api/training-sessions/log", json=_log_body(session), headers=_as(people["coach"], "COACH"))
    assert response.status_code == 500
    assert response.get_json()["code"] == "persistence_failed"


def test_report_endpoint(client, people) -> None:
    session = _create(client, people)
    client.post("/api/training-sessions/log", json=_log_body(session), headers=_as(people["coach"], "COACH"))

    response = client.get("/api/reports/throws?days=7", headers=_as(people["coach"], "COACH"))
    assert response.status_code == 200
    body = response.get_json()
    assert body["windowDays"] == 7
    assert body["summary"]["totalThrows"] == 2
    assert body["summary"]["foulRatePct"] == 50.0
    assert body["foulBreakdown"]["labels"] == ["Sector Left"]
    assert [(row["athlete"], row["drill"], row["status"]) for row in body["recentLogs"]] == [
        ("Ana Thrower", "Stand Throw (800g)", "Sector Left"),
        ("Ana Thrower", "Stand Throw (800g)", "Valid"),
    ]

    response = client.get(f"/api/reports/throws?athlete={people['athlete']}", headers=_as(people["other_coach"], "COACH"))
    assert response.status_code == 403
    response = client.get("/api/reports/throws?days=abc", headers=_as(people["coach"], "COACH"))
    assert response.status_code == 400


def test_client_drill_ids_do_not_collide(client, people) -> None:
    for client_id in (None, "1"):
        plan = {**PLAN, "athleteId": people["athlete"]}
        plan["drills"] = [
            {"id": None, "drillType": "STAND_THROW", "implementWeight": "800g", "targetReps": 2},
            {"id": "1", "drillType": "FULL_THROW", "implementWeight": "700g", "targetReps": 1},
        ]
        plan["drills"][0]["id"] = client_id
        response = client.post("/api/training-sessions", json=plan, headers=_as(people["coach"], "COACH"))
        assert response.status_code == 200, response.get_json()
        drill_ids = [drill["id"] for drill in response.get_json()["session"]["drills"]]
        assert "1" not in drill_ids and "None" not in drill_ids


def test_athletes_endpoint_is_for_coaches(client, people) -> None:
    response = client.get("/api/athletes", headers=_as(people["coach"], "COACH"))
    assert response.status_code == 200
    assert [row["name"] for row in response.get_json()["athletes"]] == ["Ana Thrower"]

    assert client.get("/api/athletes", headers=_as(people["athlete"], "ATHLETE")).status_code == 403
    assert client.get("/api/athletes").status_code == 401


def test_session_list_endpoint(client, people) -> None:
    session = _create(client, people)

    response = client.get("/api/training-sessions", headers=_as(people["athlete"], "ATHLETE"))
    assert response.status_code == 200
    body = response.get_json()
    assert [item["id"] for item in body["sessions"]] == [session["id"]]
    assert body["counts"]["PLANNED"] == 1

    response = client.get("/api/training-sessions", headers=_as(people["other_coach"], "COACH"))
    assert response.get_json()["sessions"] == []
    response = client.get(
        f"/api/training-sessions?athlete={people['athlete']}",
        headers=_as(people["other_coach"], "COACH"),
    )
    assert response.status_code == 403


def test_workout_create_and_assign(client, people, store) -> None:
    store.upsert_exercise(Exercise(id="squats", name="Squats", equipment=["Bodyweight"]))
    coach = _as(people["coach"], "COACH")

    exercises = client.get("/api/exercises", headers=coach).get_json()["exercises"]
    assert [item["id"] for item in exercises] == ["squats"]

    response = client.post(
        "/api/workouts",
        json={"name": "Legs", "exercises": [{"exerciseId": "squats", "sets": 3, "reps": 12}]},
        headers=coach,
    )
    assert response.status_code == 200
    workout = response.get_json()["workout"]
    assert workout["exercises"][0]["order"] == 1

    response = client.post(
        "/api/workouts",
        json={"name": "Legs"},
        headers=_as(people["athlete"], "ATHLETE"),
    )
    assert response.status_code == 403

    body = {"workoutId": workout["id"], "athleteIds": [people["athlete"]], "dueDate": "2024-05-08"}
    response = client.post("/api/workouts/assign", json=body, headers=_as(people["other_coach"], "COACH"))
    assert response.status_code == 404

    response = client.post("/api/workouts/assign", json=body, headers=coach)
    assert response.status_code == 200
    assert response.get_json()["assignmentsCreated"] == 1
    assert response.get_json()["assignments"][0]["dueDate"] == "2024-05-08"

    response = client.get("/api/workouts", headers=_as(people["athlete"], "ATHLETE"))
    assert [item["name"] for item in response.get_json()["workouts"]] == ["Legs"]
