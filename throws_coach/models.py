from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

__all__ = [
    "parse_iso_date",
    "parse_timestamp",
    "coerce_number",
    "validate_distance",
    "parse_rpe",
    "parse_enum",
    "parse_flag",
    "DrillType",
    "FoulReason",
    "SessionStatus",
    "Role",
    "DRILL_TYPE_LABELS",
    "FOUL_REASON_LABELS",
    "ThrowLogRecord",
    "Drill",
    "TrainingSession",
    "AggregationWindow",
    "Difficulty",
    "Exercise",
    "WorkoutExercise",
    "Workout",
    "WorkoutAssignment",
    "ValidationError",
]

RPE_MIN = 1
RPE_MAX = 10

E = TypeVar("E", bound=Enum)


class ValidationError(ValueError):
    """Raised when user-supplied data cannot be normalised safely."""


class DrillType(str, Enum):
    FULL_THROW = "FULL_THROW"
    STAND_THROW = "STAND_THROW"
    GLIDE_DRILL = "GLIDE_DRILL"
    SPIN_DRILL = "SPIN_DRILL"
    TECHNICAL_DRILL = "TECHNICAL_DRILL"
    STRENGTH_DRILL = "STRENGTH_DRILL"
    MOBILITY_DRILL = "MOBILITY_DRILL"
    OTHER = "OTHER"


class FoulReason(str, Enum):
    OUT_FRONT = "OUT_FRONT"
    SECTOR_LEFT = "SECTOR_LEFT"
    SECTOR_RIGHT = "SECTOR_RIGHT"
    LATE_BLOCK = "LATE_BLOCK"
    BALANCE_LOSS = "BALANCE_LOSS"
    FOOTWORK_ERROR = "FOOTWORK_ERROR"
    RELEASE_ERROR = "RELEASE_ERROR"
    OTHER = "OTHER"


class SessionStatus(str, Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Role(str, Enum):
    COACH = "COACH"
    ATHLETE = "ATHLETE"


class Difficulty(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"


def _label(tag: str) -> str:
    return tag.replace("_", " ").title()


DRILL_TYPE_LABELS: dict[str, str] = {member.value: _label(member.value) for member in DrillType}
FOUL_REASON_LABELS: dict[str, str] = {member.value: _label(member.value) for member in FoulReason}


def parse_iso_date(value: Any, *, field: str = "date") -> date:
    """
    Parse user-supplied ISO-8601 dates.

    Accepts `datetime.date`, `datetime.datetime`, or strings. Raises `ValidationError`
    with a friendlier message if the payload cannot be parsed.
    """
    if isinstance(value, date):
        return value if not isinstance(value, datetime) else value.date()

    if not isinstance(value, str):
        raise ValidationError(
            f"{field} must be provided as YYYY-MM-DD text; received {value!r}."
        )

    candidate = value.strip()
    if not candidate:
        raise ValidationError(f"{field} cannot be empty.")

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValidationError(
            f"{field} must be a valid ISO date (YYYY-MM-DD); received {candidate!r}."
        ) from exc

    return parsed.date()


def parse_timestamp(value: Any, *, field: str = "created_at") -> datetime:
    """Parse an ISO-8601 timestamp; bare dates become midnight."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be an ISO timestamp; received {value!r}.")

    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO timestamp; received {value!r}.") from exc


def coerce_number(
    value: Any,
    *,
    field: str = "value",
    minimum: float | None = None,
    maximum: float | None = None,
    allow_float: bool = True,
) -> float:
    """
    Convert arbitrary input into a float with guardrails.

    The `minimum` and `maximum` bounds (inclusive) trigger a ValidationError when
    breached. When `allow_float` is False, the coerced number must be whole.
    """
    if value is None:
        raise ValidationError(f"{field} is required.")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required.")
        try:
            number = float(stripped)
        except ValueError as exc:
            raise ValidationError(f"{field} must be a number; received {value!r}.") from exc
    else:
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if not allow_float and number != round(number):
        raise ValidationError(f"{field} must be an integer; received {value!r}.")

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}; received {number}.")

    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}; received {number}.")

    return number


def validate_distance(value: Any, *, field: str = "distance") -> float:
    """Guard against negative throw distances while keeping the coercion logic shared."""
    return coerce_number(value, field=field, minimum=0.0)


def parse_rpe(value: Any, *, field: str = "sessionRPE") -> int:
    """
    Validate a session Rate of Perceived Exertion.

    Unlike a soft clamp, out-of-range values are rejected so the athlete can
    correct them.
    """
    coerced = coerce_number(value, field=field, allow_float=False)
    if coerced < RPE_MIN or coerced > RPE_MAX:
        raise ValidationError(f"{field} must be between {RPE_MIN} and {RPE_MAX}; received {value!r}.")
    return int(coerced)


def parse_enum(enum_cls: Type[E], value: Any, *, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    text = str(value or "").strip().upper()
    try:
        return enum_cls(text)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field} must be one of {allowed}; received {value!r}.") from exc


TRUE_FLAGS = frozenset({"true", "1", "yes", "on"})
FALSE_FLAGS = frozenset({"false", "0", "no", "off", ""})


def parse_flag(value: Any, *, field: str) -> bool:
    """
    Parse a boolean flag from JSON or form input.

    ``None`` means "not set" and reads as False. Strings must be one of the
    usual true/false spellings; anything else raises `ValidationError`
    rather than being judged by Python truthiness.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_FLAGS:
            return True
        if text in FALSE_FLAGS:
            return False
    raise ValidationError(f"{field} must be true or false; received {value!r}.")


def _pick(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return default


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class ThrowLogRecord:
    """A single logged throw inside a drill."""

    id: str
    session_id: str
    drill_id: str
    athlete_id: str
    throw_number: int
    created_at: datetime
    distance: Optional[float] = None
    is_foul: bool = False
    foul_reason: Optional[FoulReason] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.throw_number < 1:
            raise ValidationError(f"throwNumber must be positive; received {self.throw_number}.")
        if self.is_foul:
            self.distance = None
        elif self.distance is None:
            raise ValidationError("A non-foul throw must carry a distance.")
        elif not math.isfinite(self.distance):
            raise ValidationError(f"distance must be a finite number; received {self.distance}.")
        elif self.distance < 0:
            raise ValidationError(f"distance must be >= 0; received {self.distance}.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ThrowLogRecord":
        """Build a record from camelCase or snake_case keys."""
        is_foul = parse_flag(_pick(payload, "is_foul", "isFoul"), field="isFoul")
        raw_distance = _pick(payload, "distance")
        distance = None
        if not is_foul:
            distance = validate_distance(raw_distance, field="distance")
        raw_reason = _pick(payload, "foul_reason", "foulReason")
        foul_reason = parse_enum(FoulReason, raw_reason, field="foulReason") if raw_reason else None
        throw_number = coerce_number(
            _pick(payload, "throw_number", "throwNumber"),
            field="throwNumber",
            minimum=1,
            allow_float=False,
        )
        return cls(
            id=_optional_text(_pick(payload, "id")) or "",
            session_id=str(_pick(payload, "session_id", "sessionId", default="")),
            drill_id=str(_pick(payload, "drill_id", "drillId", default="")),
            athlete_id=str(_pick(payload, "athlete_id", "athleteId", default="")),
            throw_number=int(throw_number),
            created_at=parse_timestamp(_pick(payload, "created_at", "createdAt"), field="createdAt"),
            distance=distance,
            is_foul=is_foul,
            foul_reason=foul_reason,
            notes=_optional_text(_pick(payload, "notes")),
        )

    @property
    def is_valid_throw(self) -> bool:
        return not self.is_foul and self.distance is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "drillId": self.drill_id,
            "athleteId": self.athlete_id,
            "throwNumber": self.throw_number,
            "distance": self.distance,
            "isFoul": self.is_foul,
            "foulReason": self.foul_reason.value if self.foul_reason else None,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Drill:
    """A prescribed drill inside a training session."""

    id: str
    drill_type: DrillType
    implement_weight: str
    target_reps: int
    order: int
    description: Optional[str] = None
    throw_logs: List[ThrowLogRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.target_reps < 1:
            raise ValidationError(f"targetReps must be positive; received {self.target_reps}.")
        self.throw_logs.sort(key=lambda record: record.throw_number)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, order: int | None = None) -> "Drill":
        target_reps = coerce_number(
            _pick(payload, "target_reps", "targetReps"),
            field="targetReps",
            minimum=1,
            allow_float=False,
        )
        raw_order = order if order is not None else _pick(payload, "order", default=0)
        implement_weight = _optional_text(_pick(payload, "implement_weight", "implementWeight"))
        if not implement_weight:
            raise ValidationError("implementWeight is required.")
        return cls(
            id=_optional_text(_pick(payload, "id")) or "",
            drill_type=parse_enum(DrillType, _pick(payload, "drill_type", "drillType"), field="drillType"),
            implement_weight=implement_weight,
            target_reps=int(target_reps),
            order=int(coerce_number(raw_order, field="order", allow_float=False)),
            description=_optional_text(_pick(payload, "description")),
            throw_logs=[
                ThrowLogRecord.from_mapping(item)
                for item in _pick(payload, "throw_logs", "throwLogs", default=[]) or []
            ],
        )

    @property
    def label(self) -> str:
        return f"{DRILL_TYPE_LABELS[self.drill_type.value]} ({self.implement_weight})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "drillType": self.drill_type.value,
            "implementWeight": self.implement_weight,
            "targetReps": self.target_reps,
            "description": self.description,
            "order": self.order,
            "throwLogs": [record.to_dict() for record in self.throw_logs],
        }


@dataclass
class TrainingSession:
    """A coach-planned session assigned to one athlete."""

    id: str
    date: date
    focus: str
    coach_id: str
    athlete_id: str
    status: SessionStatus = SessionStatus.PLANNED
    description: Optional[str] = None
    session_rpe: Optional[int] = None
    notes: Optional[str] = None
    drills: List[Drill] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.drills.sort(key=lambda drill: drill.order)

    def drill_by_id(self, drill_id: str) -> Drill:
        for drill in self.drills:
            if drill.id == drill_id:
                return drill
        raise ValidationError(f"Unknown drill {drill_id!r} for session {self.id!r}.")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "focus": self.focus,
            "description": self.description,
            "status": self.status.value,
            "sessionRPE": self.session_rpe,
            "notes": self.notes,
            "coachId": self.coach_id,
            "athleteId": self.athlete_id,
            "drills": [drill.to_dict() for drill in self.drills],
        }


@dataclass(frozen=True)
class AggregationWindow:
    """Reporting window; the upper bound is "now" at construction time."""

    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, days: Any, *, now: datetime | None = None) -> "AggregationWindow":
        count = int(coerce_number(days, field="days", minimum=1, allow_float=False))
        end = now or datetime.now()
        return cls(start=end - timedelta(days=count), end=end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _optional_number(value: Any, *, field: str, allow_float: bool = True) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_number(value, field=field, minimum=0, allow_float=allow_float)


def _optional_int(value: Any, *, field: str) -> Optional[int]:
    number = _optional_number(value, field=field, allow_float=False)
    return None if number is None else int(number)


@dataclass
class Exercise:
    """Library exercise that workouts are composed from."""

    id: str
    name: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    muscle_groups: List[str] = field(default_factory=list)
    equipment: List[str] = field(default_factory=list)
    difficulty: Difficulty = Difficulty.BEGINNER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "instructions": self.instructions,
            "muscleGroups": list(self.muscle_groups),
            "equipment": list(self.equipment),
            "difficulty": self.difficulty.value,
        }


@dataclass
class WorkoutExercise:
    """One prescribed exercise inside a workout."""

    exercise_id: str
    order: int
    sets: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    duration: Optional[int] = None
    rest_time: Optional[int] = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, order: int) -> "WorkoutExercise":
        exercise_id = _optional_text(_pick(payload, "exercise_id", "exerciseId", "id"))
        if not exercise_id:
            raise ValidationError(f"exercises[{order}].exerciseId is required.")
        prefix = f"exercises[{order}]"
        return cls(
            exercise_id=exercise_id,
            order=order,
            sets=_optional_int(_pick(payload, "sets"), field=f"{prefix}.sets"),
            reps=_optional_int(_pick(payload, "reps"), field=f"{prefix}.reps"),
            weight=_optional_number(_pick(payload, "weight"), field=f"{prefix}.weight"),
            duration=_optional_int(_pick(payload, "duration"), field=f"{prefix}.duration"),
            rest_time=_optional_int(_pick(payload, "rest_time", "restTime"), field=f"{prefix}.restTime"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exerciseId": self.exercise_id,
            "order": self.order,
            "sets": self.sets,
            "reps": self.reps,
            "weight": self.weight,
            "duration": self.duration,
            "restTime": self.rest_time,
        }


@dataclass
class Workout:
    """Strength or conditioning workout a coach can assign to athletes."""

    id: str
    name: str
    created_by: str
    description: Optional[str] = None
    duration: Optional[int] = None
    exercises: List[WorkoutExercise] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.exercises.sort(key=lambda item: item.order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "createdBy": self.created_by,
            "exercises": [item.to_dict() for item in self.exercises],
        }


@dataclass
class WorkoutAssignment:
    id: str
    workout_id: str
    athlete_id: str
    assigned_by: str
    assigned_at: datetime
    due_date: Optional[date] = None
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workoutId": self.workout_id,
            "athleteId": self.athlete_id,
            "assignedBy": self.assigned_by,
            "assignedAt": self.assigned_at.isoformat(),
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "completed": self.completed,
        }
