from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Mapping

from .aggregation import ReportSnapshot, build_chart_series
from .config import get_config
from .models import (
    Difficulty,
    Drill,
    DrillType,
    Exercise,
    FoulReason,
    Role,
    SessionStatus,
    TrainingSession,
    ValidationError,
    Workout,
    WorkoutAssignment,
    WorkoutExercise,
    coerce_number,
    parse_iso_date,
)
from .policy import Action, Actor, authorize, require
from .storage import NotFoundError, ThrowsStore
from .tracker import SessionCompletionPayload, payload_from_mapping, tracker_from_submission

LOGGER = logging.getLogger(__name__)

DEMO_COACH_EMAIL = "coach@demo.com"
DEMO_ATHLETE_EMAIL = "athlete@demo.com"
DEMO_EXERCISES = (
    Exercise(
        id="push-ups",
        name="Push-ups",
        description="Classic bodyweight exercise targeting chest, shoulders, and triceps",
        instructions=(
            "1. Start in plank position\n2. Lower your body until chest nearly touches floor\n"
            "3. Push back up to starting position\n4. Repeat"
        ),
        muscle_groups=["Chest", "Shoulders", "Triceps", "Core"],
        equipment=["Bodyweight"],
    ),
    Exercise(
        id="squats",
        name="Squats",
        description="Fundamental lower body exercise targeting quads, glutes, and hamstrings",
        instructions=(
            "1. Stand with feet shoulder-width apart\n2. Lower body by bending knees and hips\n"
            "3. Keep chest up and weight on heels\n4. Return to starting position"
        ),
        muscle_groups=["Quadriceps", "Glutes", "Hamstrings", "Core"],
        equipment=["Bodyweight"],
    ),
    Exercise(
        id="planks",
        name="Planks",
        description="Isometric core strengthening exercise",
        instructions="1. Start in push-up position\n2. Lower onto forearms\n3. Keep body in straight line\n4. Hold position",
        muscle_groups=["Core", "Shoulders", "Glutes"],
        equipment=["Bodyweight"],
    ),
    Exercise(
        id="burpees",
        name="Burpees",
        description="Full-body high-intensity exercise combining squat, plank, and jump",
        instructions=(
            "1. Start standing\n2. Drop to squat position\n3. Jump back to plank\n4. Do push-up\n"
            "5. Jump forward to squat\n6. Explosive jump up"
        ),
        muscle_groups=["Full Body", "Cardiovascular"],
        equipment=["Bodyweight"],
        difficulty=Difficulty.INTERMEDIATE,
    ),
)


@dataclass(frozen=True)
class LogOutcome:
    """Structured outcome of storing a finalized session."""

    session: TrainingSession
    payload: SessionCompletionPayload
    throw_logs_written: int

    @property
    def confirmation(self) -> str:
        who = " on behalf of the athlete" if self.payload.logged_by_coach else ""
        return (
            f"Logged {self.throw_logs_written} throws for session {self.session.id}{who} "
            f"(RPE {self.payload.session_rpe})."
        )


def load_actor(store: ThrowsStore, user_id: str, role: Role | str) -> Actor:
    """Build an :class:`Actor`, resolving a coach's linked athletes."""
    role_value = Role(str(role).strip().upper()) if not isinstance(role, Role) else role
    athlete_ids: frozenset[str] = frozenset()
    if role_value == Role.COACH:
        athlete_ids = frozenset(row["id"] for row in store.list_athletes_for_coach(user_id))
    return Actor(id=user_id, role=role_value, athlete_ids=athlete_ids)


def create_training_session(store: ThrowsStore, actor: Actor, payload: Mapping[str, Any]) -> TrainingSession:
    """Validate a coach's session plan and store it with densely ordered drills."""
    if not actor.is_coach:
        require(actor, None, Action.CREATE_SESSION)

    raw_drills = payload.get("drills") or []
    athlete_id = str(payload.get("athleteId") or payload.get("athlete_id") or "").strip()
    focus = str(payload.get("focus") or "").strip()
    if not payload.get("date") or not focus or not athlete_id or not raw_drills:
        raise ValidationError("Date, focus, athlete, and at least one drill are required.")
    if not isinstance(raw_drills, list):
        raise ValidationError("drills must be a list.")

    require(actor, athlete_id, Action.CREATE_SESSION)

    # Stable sort keeps submission order for drills sharing an order value.
    indexed = list(enumerate(raw_drills))
    indexed.sort(key=lambda pair: (_order_key(pair[1]), pair[0]))
    drills = [
        Drill.from_mapping(_drill_plan(item, position), order=position)
        for position, (_, item) in enumerate(indexed, start=1)
    ]

    description = str(payload.get("description") or "").strip() or None
    session = TrainingSession(
        id="",
        date=parse_iso_date(payload.get("date"), field="date"),
        focus=focus,
        coach_id=actor.id,
        athlete_id=athlete_id,
        description=description,
        drills=drills,
    )
    return store.create_session(session)


def log_training_session(
    store: ThrowsStore,
    actor: Actor,
    payload: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> LogOutcome:
    """Finalize submitted throws through the tracker gates, then persist them."""
    request = payload_from_mapping(payload)
    session = store.get_session(request["session_id"])
    require(actor, session, Action.LOG_SESSION)

    tracker = tracker_from_submission(
        session,
        request["throws"],
        logged_by_coach=actor.is_coach and actor.id != session.athlete_id,
    )
    completion = tracker.finalize(request["session_rpe"], request["notes"])
    written = store.apply_completion(completion, session.athlete_id, now=now)
    LOGGER.info("Session %s completed by %s (%s)", session.id, actor.id, actor.role.value)
    return LogOutcome(session=store.get_session(session.id), payload=completion, throw_logs_written=written)


def build_throw_report(
    store: ThrowsStore,
    actor: Actor,
    *,
    athlete_id: str | None = None,
    window_days: Any = None,
    now: datetime | None = None,
) -> ReportSnapshot:
    """Load the throw logs visible to ``actor`` and aggregate them for charts."""
    days = int(
        coerce_number(
            window_days if window_days not in (None, "") else get_config().default_window_days,
            field="days",
            minimum=1,
            allow_float=False,
        )
    )
    allowed = get_config().allowed_windows
    if days not in allowed:
        raise ValidationError(f"days must be one of {', '.join(str(value) for value in allowed)}; received {days}.")
    scope = athlete_id or None
    if scope is None and not actor.is_coach:
        scope = actor.id
    require(actor, scope, Action.VIEW_REPORTS)

    athlete_ids = [scope] if scope else sorted(actor.athlete_ids)
    since = (now or datetime.now()) - timedelta(days=days)
    records = store.list_throw_logs(athlete_ids=athlete_ids, since=since)
    return build_chart_series(
        records,
        days,
        scope,
        now=now,
        athlete_labels=store.user_labels(record.athlete_id for record in records),
        drill_labels=store.drill_labels(record.drill_id for record in records),
    )


def list_athletes(store: ThrowsStore, actor: Actor) -> list[dict[str, Any]]:
    require(actor, None, Action.LIST_ATHLETES)
    return store.list_athletes_for_coach(actor.id)


def list_training_sessions(
    store: ThrowsStore,
    actor: Actor,
    *,
    athlete_id: str | None = None,
) -> list[TrainingSession]:
    """Sessions a coach planned (optionally for one athlete) or an athlete's own."""
    scope = athlete_id or None
    require(actor, scope, Action.LIST_SESSIONS)
    if actor.is_coach:
        return store.list_sessions(coach_id=actor.id, athlete_id=scope)
    return store.list_sessions(athlete_id=actor.id)


def create_workout(store: ThrowsStore, actor: Actor, payload: Mapping[str, Any]) -> Workout:
    """Store a coach's workout; exercises are ordered as submitted."""
    require(actor, None, Action.CREATE_WORKOUT)

    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationError("Workout name is required.")
    raw_exercises = payload.get("exercises") or []
    if not isinstance(raw_exercises, list):
        raise ValidationError("exercises must be a list.")

    items = []
    for order, item in enumerate(raw_exercises, start=1):
        if not isinstance(item, Mapping):
            raise ValidationError(f"exercises[{order}] must be an object.")
        items.append(WorkoutExercise.from_mapping(item, order=order))

    known = {exercise.id for exercise in store.list_exercises()}
    unknown = sorted({item.exercise_id for item in items} - known)
    if unknown:
        raise ValidationError(f"Unknown exercises: {', '.join(unknown)}.")

    duration = payload.get("duration")
    if duration not in (None, ""):
        duration = int(coerce_number(duration, field="duration", minimum=1, allow_float=False))
    else:
        duration = None

    workout = Workout(
        id="",
        name=name,
        created_by=actor.id,
        description=str(payload.get("description") or "").strip() or None,
        duration=duration,
        exercises=items,
    )
    return store.create_workout(workout)


def list_workouts(store: ThrowsStore, actor: Actor) -> list[Workout]:
    if actor.is_coach:
        return store.list_workouts(created_by=actor.id)
    return store.list_workouts(athlete_id=actor.id)


def assign_workout(
    store: ThrowsStore,
    actor: Actor,
    payload: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> list[WorkoutAssignment]:
    """Assign one of the coach's workouts to some of their linked athletes."""
    if not actor.is_coach:
        require(actor, None, Action.ASSIGN_WORKOUT)

    workout_id = str(payload.get("workoutId") or payload.get("workout_id") or "").strip()
    raw_athletes = payload.get("athleteIds") or payload.get("athlete_ids") or []
    if not isinstance(raw_athletes, list):
        raise ValidationError("athleteIds must be a list.")
    cleaned = (str(item).strip() for item in raw_athletes if item is not None)
    athlete_ids = list(dict.fromkeys(item for item in cleaned if item))
    if not workout_id or not athlete_ids:
        raise ValidationError("Workout ID and at least one athlete are required.")

    try:
        workout = store.get_workout(workout_id)
    except NotFoundError:
        workout = None
    if workout is None or not authorize(actor, workout, Action.ASSIGN_WORKOUT):
        raise NotFoundError(f"Workout {workout_id} not found or you do not have permission.")
    for athlete_id in athlete_ids:
        require(actor, athlete_id, Action.ASSIGN_WORKOUT)

    due_date = payload.get("dueDate", payload.get("due_date"))
    return store.assign_workout(
        workout.id,
        athlete_ids,
        actor.id,
        due_date=parse_iso_date(due_date, field="dueDate") if due_date else None,
        now=now,
    )


def seed_demo_data(store: ThrowsStore, *, today: date | None = None) -> dict[str, str]:
    """Create a linked demo coach and athlete with a logged session and an assigned workout."""
    coach_id = store.add_user(DEMO_COACH_EMAIL, Role.COACH, name="Demo Coach")
    athlete_id = store.add_user(DEMO_ATHLETE_EMAIL, Role.ATHLETE, name="Demo Athlete")
    store.link_athlete(athlete_id, coach_id)
    coach = load_actor(store, coach_id, Role.COACH)

    session_day = today or date.today()
    session = create_training_session(
        store,
        coach,
        {
            "date": session_day.isoformat(),
            "focus": "Release position",
            "athleteId": athlete_id,
            "drills": [
                {"drillType": DrillType.STAND_THROW.value, "implementWeight": "700g", "targetReps": 3},
                {"drillType": DrillType.FULL_THROW.value, "implementWeight": "800g", "targetReps": 2},
            ],
        },
    )
    stand, full = session.drills
    log_training_session(
        store,
        coach,
        {
            "sessionId": session.id,
            "sessionRPE": 6,
            "notes": "Demo session",
            "throws": [
                {"drillId": stand.id, "throwNumber": 1, "distance": 48.2, "isFoul": False},
                {"drillId": stand.id, "throwNumber": 2, "distance": 49.0, "isFoul": False},
                {"drillId": stand.id, "throwNumber": 3, "isFoul": True, "foulReason": FoulReason.OUT_FRONT.value},
                {"drillId": full.id, "throwNumber": 1, "distance": 58.4, "isFoul": False},
                {"drillId": full.id, "throwNumber": 2, "isFoul": True, "foulReason": FoulReason.SECTOR_LEFT.value},
            ],
        },
    )
    for exercise in DEMO_EXERCISES:
        store.upsert_exercise(exercise)
    workout = create_workout(
        store,
        coach,
        {
            "name": "Beginner Bodyweight Circuit",
            "description": "A full-body workout perfect for beginners using only bodyweight exercises",
            "duration": 30,
            "exercises": [
                {"exerciseId": "push-ups", "sets": 3, "reps": 10, "restTime": 60},
                {"exerciseId": "squats", "sets": 3, "reps": 15, "restTime": 60},
                {"exerciseId": "planks", "duration": 30, "restTime": 60},
                {"exerciseId": "burpees", "sets": 2, "reps": 8, "restTime": 90},
            ],
        },
    )
    assign_workout(
        store,
        coach,
        {"workoutId": workout.id, "athleteIds": [athlete_id], "dueDate": session_day + timedelta(days=7)},
    )

    LOGGER.info("Seeded demo coach %s and athlete %s", coach_id, athlete_id)
    return {
        "coach_id": coach_id,
        "athlete_id": athlete_id,
        "session_id": session.id,
        "workout_id": workout.id,
    }


def session_status_counts(sessions: list[TrainingSession]) -> dict[str, int]:
    counts = {status.value: 0 for status in SessionStatus}
    for session in sessions:
        counts[session.status.value] += 1
    return counts


def _drill_plan(item: Any, position: int) -> Mapping[str, Any]:
    if not isinstance(item, Mapping):
        raise ValidationError(f"drills[{position}] must be an object.")
    # Drill ids are minted by the store; client-side ids are only editor keys.
    return {key: value for key, value in item.items() if key not in ("id", "throwLogs", "throw_logs")}


def _order_key(item: Any) -> float:
    if not isinstance(item, Mapping):
        return 0.0
    try:
        return coerce_number(item.get("order", 0), field="order")
    except ValidationError:
        return 0.0
