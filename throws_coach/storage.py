from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, List

from .env import get_env
from .models import (
    DRILL_TYPE_LABELS,
    Difficulty,
    Drill,
    DrillType,
    Exercise,
    FoulReason,
    Role,
    SessionStatus,
    ThrowLogRecord,
    TrainingSession,
    Workout,
    WorkoutAssignment,
    WorkoutExercise,
    parse_iso_date,
)
from .tracker import SessionCompletionPayload

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_DB_FILENAME = "throws_coach.db"
LOGGER = logging.getLogger(__name__)

SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS Users (
    id TEXT PRIMARY KEY,
    name TEXT,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS AthleteCoaches (
    athlete_id TEXT NOT NULL,
    coach_id TEXT NOT NULL,
    PRIMARY KEY (athlete_id, coach_id),
    FOREIGN KEY (athlete_id) REFERENCES Users(id) ON DELETE CASCADE,
    FOREIGN KEY (coach_id) REFERENCES Users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS TrainingSessions (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    focus TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'PLANNED',
    session_rpe INTEGER,
    notes TEXT,
    coach_id TEXT NOT NULL,
    athlete_id TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (coach_id) REFERENCES Users(id),
    FOREIGN KEY (athlete_id) REFERENCES Users(id)
);

CREATE TABLE IF NOT EXISTS Drills (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    drill_type TEXT NOT NULL,
    implement_weight TEXT NOT NULL,
    target_reps INTEGER NOT NULL,
    description TEXT,
    drill_order INTEGER NOT NULL,
    UNIQUE (session_id, drill_order),
    FOREIGN KEY (session_id) REFERENCES TrainingSessions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS ThrowLogs (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    drill_id TEXT NOT NULL,
    athlete_id TEXT NOT NULL,
    throw_number INTEGER NOT NULL,
    distance REAL,
    is_foul INTEGER NOT NULL DEFAULT 0,
    foul_reason TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (session_id, drill_id, athlete_id, throw_number),
    FOREIGN KEY (session_id) REFERENCES TrainingSessions(id) ON DELETE CASCADE,
    FOREIGN KEY (drill_id) REFERENCES Drills(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_throwlogs_athlete_date
    ON ThrowLogs (athlete_id, created_at);

CREATE TABLE IF NOT EXISTS Exercises (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    instructions TEXT,
    muscle_groups TEXT NOT NULL DEFAULT '[]',
    equipment TEXT NOT NULL DEFAULT '[]',
    difficulty TEXT NOT NULL DEFAULT 'BEGINNER'
);

CREATE TABLE IF NOT EXISTS Workouts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    duration INTEGER,
    created_by TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (created_by) REFERENCES Users(id)
);

CREATE TABLE IF NOT EXISTS WorkoutExercises (
    workout_id TEXT NOT NULL,
    exercise_id TEXT NOT NULL,
    exercise_order INTEGER NOT NULL,
    sets INTEGER,
    reps INTEGER,
    weight REAL,
    duration INTEGER,
    rest_time INTEGER,
    PRIMARY KEY (workout_id, exercise_order),
    FOREIGN KEY (workout_id) REFERENCES Workouts(id) ON DELETE CASCADE,
    FOREIGN KEY (exercise_id) REFERENCES Exercises(id)
);

CREATE TABLE IF NOT EXISTS WorkoutAssignments (
    id TEXT PRIMARY KEY,
    workout_id TEXT NOT NULL,
    athlete_id TEXT NOT NULL,
    assigned_by TEXT NOT NULL,
    assigned_at TEXT NOT NULL,
    due_date TEXT,
    completed INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (workout_id) REFERENCES Workouts(id) ON DELETE CASCADE,
    FOREIGN KEY (athlete_id) REFERENCES Users(id)
);
"""


class NotFoundError(LookupError):
    """Raised when a requested record does not exist."""


class PersistenceError(RuntimeError):
    """Raised when the datastore rejects a write; nothing is partially applied."""


def default_database_file() -> Path:
    override = get_env("DB_FILE")
    if override:
        return Path(override).expanduser()
    data_dir = get_env("DATA_DIR")
    base = Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR
    return base / DEFAULT_DB_FILENAME


def _new_id() -> str:
    return uuid.uuid4().hex


class ThrowsStore:
    """SQLite-backed store for users, sessions, drills and throw logs."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path) if db_path else default_database_file()
        self._initialised = False

    def ensure_schema(self) -> None:
        if self._initialised:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()
        self._initialised = True

    @contextmanager
    def open_database(self, readonly: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager yielding a SQLite connection with ensured schema."""
        self.ensure_schema()
        if readonly:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        else:
            conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    # Users -----------------------------------------------------------------

    def add_user(self, email: str, role: Role, *, name: str | None = None, user_id: str | None = None) -> str:
        email_value = (email or "").strip().lower()
        if not email_value:
            raise ValueError("email is required.")
        identifier = user_id or _new_id()
        with self.open_database() as conn, conn:
            conn.execute(
                """
                INSERT INTO Users (id, name, email, role) VALUES (?, ?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET name = excluded.name, role = excluded.role
                """,
                (identifier, name, email_value, Role(role).value),
            )
            row = conn.execute("SELECT id FROM Users WHERE email = ?", (email_value,)).fetchone()
        return str(row["id"])

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self.open_database(readonly=True) as conn:
            row = conn.execute("SELECT id, name, email, role FROM Users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def link_athlete(self, athlete_id: str, coach_id: str) -> None:
        with self.open_database() as conn, conn:
            conn.execute(
                "INSERT OR IGNORE INTO AthleteCoaches (athlete_id, coach_id) VALUES (?, ?)",
                (athlete_id, coach_id),
            )

    def is_linked(self, athlete_id: str, coach_id: str) -> bool:
        with self.open_database(readonly=True) as conn:
            row = conn.execute(
                "SELECT 1 FROM AthleteCoaches WHERE athlete_id = ? AND coach_id = ?",
                (athlete_id, coach_id),
            ).fetchone()
        return row is not None

    def list_athletes_for_coach(self, coach_id: str) -> list[dict[str, Any]]:
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(
                """
                SELECT u.id, u.name, u.email FROM Users u
                JOIN AthleteCoaches ac ON ac.athlete_id = u.id
                WHERE ac.coach_id = ?
                ORDER BY COALESCE(u.name, u.email)
                """,
                (coach_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def user_labels(self, user_ids: Iterable[str]) -> dict[str, str]:
        """Display name per user id, falling back to the email address."""
        ids = sorted({user_id for user_id in user_ids if user_id})
        if not ids:
            return {}
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(
                f"SELECT id, name, email FROM Users WHERE id IN ({', '.join('?' for _ in ids)})",
                ids,
            ).fetchall()
        return {row["id"]: row["name"] or row["email"] for row in rows}

    # Sessions --------------------------------------------------------------

    def create_session(self, session: TrainingSession) -> TrainingSession:
        stored = replace(
            session,
            id=session.id or _new_id(),
            drills=[replace(drill, id=drill.id or _new_id(), throw_logs=[]) for drill in session.drills],
        )
        try:
            with self.open_database() as conn, conn:
                conn.execute(
                    """
                    INSERT INTO TrainingSessions
                        (id, date, focus, description, status, session_rpe, notes, coach_id, athlete_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.id,
                        stored.date.isoformat(),
                        stored.focus,
                        stored.description,
                        stored.status.value,
                        stored.session_rpe,
                        stored.notes,
                        stored.coach_id,
                        stored.athlete_id,
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO Drills
                        (id, session_id, drill_type, implement_weight, target_reps, description, drill_order)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            drill.id,
                            stored.id,
                            drill.drill_type.value,
                            drill.implement_weight,
                            drill.target_reps,
                            drill.description,
                            drill.order,
                        )
                        for drill in stored.drills
                    ],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not create training session: {exc}") from exc
        LOGGER.info("Created training session %s with %d drills", stored.id, len(stored.drills))
        return stored

    def get_session(self, session_id: str) -> TrainingSession:
        with self.open_database(readonly=True) as conn:
            row = conn.execute("SELECT * FROM TrainingSessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Training session {session_id} not found.")
            drill_rows = conn.execute(
                "SELECT * FROM Drills WHERE session_id = ? ORDER BY drill_order",
                (session_id,),
            ).fetchall()
            log_rows = conn.execute(
                "SELECT * FROM ThrowLogs WHERE session_id = ? ORDER BY drill_id, throw_number",
                (session_id,),
            ).fetchall()

        logs_by_drill: dict[str, list[ThrowLogRecord]] = {}
        for log_row in log_rows:
            record = _throw_log_from_row(log_row)
            logs_by_drill.setdefault(record.drill_id, []).append(record)
        drills = [
            Drill(
                id=drill_row["id"],
                drill_type=DrillType(drill_row["drill_type"]),
                implement_weight=drill_row["implement_weight"],
                target_reps=int(drill_row["target_reps"]),
                order=int(drill_row["drill_order"]),
                description=drill_row["description"],
                throw_logs=logs_by_drill.get(drill_row["id"], []),
            )
            for drill_row in drill_rows
        ]
        return _session_from_row(row, drills)

    def list_sessions(self, *, coach_id: str | None = None, athlete_id: str | None = None) -> list[TrainingSession]:
        clauses: list[str] = []
        params: list[Any] = []
        if coach_id:
            clauses.append("coach_id = ?")
            params.append(coach_id)
        if athlete_id:
            clauses.append("athlete_id = ?")
            params.append(athlete_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(
                f"SELECT id FROM TrainingSessions {where} ORDER BY date DESC",
                params,
            ).fetchall()
        return [self.get_session(row["id"]) for row in rows]

    # Throw logs ------------------------------------------------------------

    def list_throw_logs(
        self,
        *,
        athlete_ids: Iterable[str] | None = None,
        since: datetime | None = None,
    ) -> list[ThrowLogRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if athlete_ids is not None:
            ids = list(athlete_ids)
            if not ids:
                return []
            clauses.append(f"athlete_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(
                f"SELECT * FROM ThrowLogs {where} ORDER BY created_at, throw_number",
                params,
            ).fetchall()
        return [_throw_log_from_row(row) for row in rows]

    def drill_labels(self, drill_ids: Iterable[str]) -> dict[str, str]:
        """Human label per drill id, e.g. "Stand Throw (800g)"."""
        ids = sorted({drill_id for drill_id in drill_ids if drill_id})
        if not ids:
            return {}
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(
                f"SELECT id, drill_type, implement_weight FROM Drills WHERE id IN ({', '.join('?' for _ in ids)})",
                ids,
            ).fetchall()
        return {
            row["id"]: f"{DRILL_TYPE_LABELS.get(row['drill_type'], row['drill_type'])} ({row['implement_weight']})"
            for row in rows
        }

    def apply_completion(
        self,
        payload: SessionCompletionPayload,
        athlete_id: str,
        *,
        now: datetime | None = None,
    ) -> int:
        """
        Write a finalized session in one transaction.

        Throws are upserted by (session, drill, athlete, throw number); logs
        for the same session and athlete that are absent from the payload are
        removed. Returns the number of throws written.
        """
        logged_at = (now or datetime.now()).isoformat()
        keys = {(throw.drill_id, throw.throw_number) for throw in payload.throws}
        try:
            with self.open_database() as conn, conn:
                updated = conn.execute(
                    """
                    UPDATE TrainingSessions
                    SET status = ?, session_rpe = ?, notes = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (SessionStatus.COMPLETED.value, payload.session_rpe, payload.notes, logged_at, payload.session_id),
                )
                if updated.rowcount == 0:
                    raise NotFoundError(f"Training session {payload.session_id} not found.")
                conn.executemany(
                    """
                    INSERT INTO ThrowLogs
                        (id, session_id, drill_id, athlete_id, throw_number, distance, is_foul, foul_reason, notes, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(session_id, drill_id, athlete_id, throw_number) DO UPDATE SET
                        distance = excluded.distance,
                        is_foul = excluded.is_foul,
                        foul_reason = excluded.foul_reason,
                        notes = excluded.notes
                    """,
                    [
                        (
                            _new_id(),
                            payload.session_id,
                            throw.drill_id,
                            athlete_id,
                            throw.throw_number,
                            throw.distance,
                            int(throw.is_foul),
                            throw.foul_reason.value if throw.foul_reason else None,
                            throw.notes,
                            logged_at,
                        )
                        for throw in payload.throws
                    ],
                )
                existing = conn.execute(
                    "SELECT id, drill_id, throw_number FROM ThrowLogs WHERE session_id = ? AND athlete_id = ?",
                    (payload.session_id, athlete_id),
                ).fetchall()
                stale = [(row["id"],) for row in existing if (row["drill_id"], row["throw_number"]) not in keys]
                conn.executemany("DELETE FROM ThrowLogs WHERE id = ?", stale)
        except sqlite3.Error as exc:
            LOGGER.error("Failed to store throw logs for session %s: %s", payload.session_id, exc)
            raise PersistenceError(f"Could not store session {payload.session_id}: {exc}") from exc
        LOGGER.info(
            "Stored %d throw logs for session %s (%d stale removed)",
            len(payload.throws),
            payload.session_id,
            len(stale),
        )
        return len(payload.throws)

    # Workouts --------------------------------------------------------------

    def upsert_exercise(self, exercise: Exercise) -> Exercise:
        with self.open_database() as conn, conn:
            conn.execute(
                """
                INSERT INTO Exercises (id, name, description, instructions, muscle_groups, equipment, difficulty)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    instructions = excluded.instructions,
                    muscle_groups = excluded.muscle_groups,
                    equipment = excluded.equipment,
                    difficulty = excluded.difficulty
                """,
                (
                    exercise.id,
                    exercise.name,
                    exercise.description,
                    exercise.instructions,
                    json.dumps(exercise.muscle_groups),
                    json.dumps(exercise.equipment),
                    exercise.difficulty.value,
                ),
            )
        return exercise

    def list_exercises(self) -> list[Exercise]:
        with self.open_database(readonly=True) as conn:
            rows = conn.execute("SELECT * FROM Exercises ORDER BY name").fetchall()
        return [
            Exercise(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                instructions=row["instructions"],
                muscle_groups=json.loads(row["muscle_groups"] or "[]"),
                equipment=json.loads(row["equipment"] or "[]"),
                difficulty=Difficulty(row["difficulty"]),
            )
            for row in rows
        ]

    def create_workout(self, workout: Workout) -> Workout:
        stored = replace(workout, id=workout.id or _new_id())
        try:
            with self.open_database() as conn, conn:
                conn.execute(
                    "INSERT INTO Workouts (id, name, description, duration, created_by) VALUES (?, ?, ?, ?, ?)",
                    (stored.id, stored.name, stored.description, stored.duration, stored.created_by),
                )
                conn.executemany(
                    """
                    INSERT INTO WorkoutExercises
                        (workout_id, exercise_id, exercise_order, sets, reps, weight, duration, rest_time)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            stored.id,
                            item.exercise_id,
                            item.order,
                            item.sets,
                            item.reps,
                            item.weight,
                            item.duration,
                            item.rest_time,
                        )
                        for item in stored.exercises
                    ],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not create workout: {exc}") from exc
        LOGGER.info("Created workout %s with %d exercises", stored.id, len(stored.exercises))
        return stored

    def get_workout(self, workout_id: str) -> Workout:
        with self.open_database(readonly=True) as conn:
            row = conn.execute("SELECT * FROM Workouts WHERE id = ?", (workout_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Workout {workout_id} not found.")
            item_rows = conn.execute(
                "SELECT * FROM WorkoutExercises WHERE workout_id = ? ORDER BY exercise_order",
                (workout_id,),
            ).fetchall()
        return Workout(
            id=row["id"],
            name=row["name"],
            created_by=row["created_by"],
            description=row["description"],
            duration=row["duration"],
            exercises=[
                WorkoutExercise(
                    exercise_id=item["exercise_id"],
                    order=int(item["exercise_order"]),
                    sets=item["sets"],
                    reps=item["reps"],
                    weight=item["weight"],
                    duration=item["duration"],
                    rest_time=item["rest_time"],
                )
                for item in item_rows
            ],
        )

    def list_workouts(self, *, created_by: str | None = None, athlete_id: str | None = None) -> list[Workout]:
        clauses: list[str] = []
        params: list[Any] = []
        if created_by:
            clauses.append("created_by = ?")
            params.append(created_by)
        if athlete_id:
            clauses.append("id IN (SELECT workout_id FROM WorkoutAssignments WHERE athlete_id = ?)")
            params.append(athlete_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(f"SELECT id FROM Workouts {where} ORDER BY created_at DESC, name", params).fetchall()
        return [self.get_workout(row["id"]) for row in rows]

    def assign_workout(
        self,
        workout_id: str,
        athlete_ids: Iterable[str],
        assigned_by: str,
        *,
        due_date: date | None = None,
        now: datetime | None = None,
    ) -> list[WorkoutAssignment]:
        assigned_at = now or datetime.now()
        assignments = [
            WorkoutAssignment(
                id=_new_id(),
                workout_id=workout_id,
                athlete_id=athlete_id,
                assigned_by=assigned_by,
                assigned_at=assigned_at,
                due_date=due_date,
            )
            for athlete_id in athlete_ids
        ]
        try:
            with self.open_database() as conn, conn:
                conn.executemany(
                    """
                    INSERT INTO WorkoutAssignments
                        (id, workout_id, athlete_id, assigned_by, assigned_at, due_date, completed)
                    VALUES (?, ?, ?, ?, ?, ?, 0)
                    """,
                    [
                        (
                            item.id,
                            item.workout_id,
                            item.athlete_id,
                            item.assigned_by,
                            item.assigned_at.isoformat(),
                            item.due_date.isoformat() if item.due_date else None,
                        )
                        for item in assignments
                    ],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not assign workout {workout_id}: {exc}") from exc
        LOGGER.info("Assigned workout %s to %d athletes", workout_id, len(assignments))
        return assignments

    def list_assignments(
        self,
        *,
        athlete_id: str | None = None,
        workout_id: str | None = None,
    ) -> list[WorkoutAssignment]:
        clauses: list[str] = []
        params: list[Any] = []
        if athlete_id:
            clauses.append("athlete_id = ?")
            params.append(athlete_id)
        if workout_id:
            clauses.append("workout_id = ?")
            params.append(workout_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.open_database(readonly=True) as conn:
            rows = conn.execute(
                f"SELECT * FROM WorkoutAssignments {where} ORDER BY assigned_at DESC",
                params,
            ).fetchall()
        return [
            WorkoutAssignment(
                id=row["id"],
                workout_id=row["workout_id"],
                athlete_id=row["athlete_id"],
                assigned_by=row["assigned_by"],
                assigned_at=datetime.fromisoformat(row["assigned_at"]),
                due_date=parse_iso_date(row["due_date"]) if row["due_date"] else None,
                completed=bool(row["completed"]),
            )
            for row in rows
        ]


def _throw_log_from_row(row: sqlite3.Row) -> ThrowLogRecord:
    return ThrowLogRecord(
        id=row["id"],
        session_id=row["session_id"],
        drill_id=row["drill_id"],
        athlete_id=row["athlete_id"],
        throw_number=int(row["throw_number"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        distance=row["distance"],
        is_foul=bool(row["is_foul"]),
        foul_reason=FoulReason(row["foul_reason"]) if row["foul_reason"] else None,
        notes=row["notes"],
    )


def _session_from_row(row: sqlite3.Row, drills: List[Drill]) -> TrainingSession:
    return TrainingSession(
        id=row["id"],
        date=parse_iso_date(row["date"]),
        focus=row["focus"],
        coach_id=row["coach_id"],
        athlete_id=row["athlete_id"],
        status=SessionStatus(row["status"]),
        description=row["description"],
        session_rpe=row["session_rpe"],
        notes=row["notes"],
        drills=drills,
    )
