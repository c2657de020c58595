from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from .models import (
    FoulReason,
    SessionStatus,
    TrainingSession,
    ValidationError,
    coerce_number,
    parse_enum,
    parse_flag,
    parse_rpe,
    validate_distance,
)

LOGGER = logging.getLogger(__name__)

EDITABLE_FIELDS = ("distance", "is_foul", "foul_reason", "notes")


class SessionIncompleteError(ValidationError):
    """Raised when a drill has fewer logged throws than its target reps."""


class RPEOutOfRangeError(ValidationError):
    """Raised when the session RPE is not an integer between 1 and 10."""


class IncompleteThrowError(ValidationError):
    """Raised when a logged throw is missing a foul reason or a distance."""


class SessionStateError(ValidationError):
    """Raised when the session status does not allow logging."""


@dataclass
class ThrowEntry:
    """Editable throw row; values stay as typed until the session is finalized."""

    throw_number: int
    distance: str = ""
    is_foul: bool = False
    foul_reason: str = ""
    notes: str = ""

    @property
    def issue(self) -> Optional[str]:
        if self.is_foul:
            reason = str(getattr(self.foul_reason, "value", self.foul_reason) or "").strip().upper()
            if not reason:
                return "foul requires a reason"
            if reason not in FoulReason.__members__:
                return "unknown foul reason"
            return None
        if not str(self.distance or "").strip():
            return "distance is required"
        try:
            validate_distance(self.distance)
        except ValidationError:
            return "distance must be a non-negative number"
        return None


@dataclass(frozen=True)
class IncompleteEntry:
    drill_id: str
    throw_number: int
    reason: str


@dataclass(frozen=True)
class ThrowWrite:
    drill_id: str
    throw_number: int
    distance: Optional[float]
    is_foul: bool
    foul_reason: Optional[FoulReason]
    notes: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drillId": self.drill_id,
            "throwNumber": self.throw_number,
            "distance": self.distance,
            "isFoul": self.is_foul,
            "foulReason": self.foul_reason.value if self.foul_reason else None,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class SessionCompletionPayload:
    """Write contract consumed by the persistence layer."""

    session_id: str
    session_rpe: int
    notes: Optional[str]
    throws: List[ThrowWrite] = field(default_factory=list)
    logged_by_coach: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "sessionRPE": self.session_rpe,
            "notes": self.notes,
            "throws": [throw.to_dict() for throw in self.throws],
        }


class SessionProgressTracker:
    """
    In-memory editing state for logging the throws of one training session.

    Drills are visited in their ``order``; each drill keeps a dense, 1-based
    list of :class:`ThrowEntry` rows capped at the drill's target reps.
    """

    def __init__(self, session: TrainingSession, *, logged_by_coach: bool = False) -> None:
        self.logged_by_coach = logged_by_coach
        self.current_drill_index = 0
        self._entries: Dict[str, List[ThrowEntry]] = {}
        self.initialize(session)

    def initialize(self, session: TrainingSession) -> None:
        """Seed the edit state from any throw logs already persisted."""
        self.session = session
        self.status = session.status
        self.current_drill_index = 0
        self._entries = {}
        for drill in session.drills:
            self._entries[drill.id] = [
                ThrowEntry(
                    throw_number=log.throw_number,
                    distance="" if log.distance is None else str(log.distance),
                    is_foul=log.is_foul,
                    foul_reason=log.foul_reason.value if log.foul_reason else "",
                    notes=log.notes or "",
                )
                for log in sorted(drill.throw_logs, key=lambda record: record.throw_number)
            ]

    @property
    def drill_count(self) -> int:
        return len(self.session.drills)

    @property
    def current_drill(self):
        if not self.session.drills:
            return None
        return self.session.drills[self.current_drill_index]

    def entries(self, drill_id: str) -> List[ThrowEntry]:
        self.session.drill_by_id(drill_id)
        return list(self._entries.get(drill_id, []))

    def advance_drill(self) -> int:
        if self.current_drill_index < self.drill_count - 1:
            self.current_drill_index += 1
        return self.current_drill_index

    def retreat_drill(self) -> int:
        if self.current_drill_index > 0:
            self.current_drill_index -= 1
        return self.current_drill_index

    def add_throw(self, drill_id: str) -> Optional[ThrowEntry]:
        """Append the next throw; returns ``None`` once the target reps are reached."""
        drill = self.session.drill_by_id(drill_id)
        entries = self._entries.setdefault(drill_id, [])
        if len(entries) >= drill.target_reps:
            return None
        entry = ThrowEntry(throw_number=len(entries) + 1)
        entries.append(entry)
        if self.status == SessionStatus.PLANNED:
            self.status = SessionStatus.IN_PROGRESS
        return entry

    def update_throw(self, drill_id: str, throw_number: int, field_name: str, value: Any) -> ThrowEntry:
        if field_name not in EDITABLE_FIELDS:
            raise ValidationError(
                f"Unknown throw field {field_name!r}; expected one of {', '.join(EDITABLE_FIELDS)}."
            )
        entry = self._find_entry(drill_id, throw_number)
        if field_name == "is_foul":
            value = parse_flag(value, field="isFoul")
        setattr(entry, field_name, value)
        return entry

    def remove_throw(self, drill_id: str, throw_number: int) -> None:
        entry = self._find_entry(drill_id, throw_number)
        remaining = [item for item in self._entries[drill_id] if item is not entry]
        for index, item in enumerate(remaining, start=1):
            item.throw_number = index
        self._entries[drill_id] = remaining

    def is_drill_complete(self, drill_id: str) -> bool:
        drill = self.session.drill_by_id(drill_id)
        return len(self._entries.get(drill_id, [])) >= drill.target_reps

    def is_session_complete(self) -> bool:
        return all(self.is_drill_complete(drill.id) for drill in self.session.drills)

    def incomplete_entries(self) -> List[IncompleteEntry]:
        issues: List[IncompleteEntry] = []
        for drill in self.session.drills:
            for entry in self._entries.get(drill.id, []):
                if entry.issue:
                    issues.append(IncompleteEntry(drill.id, entry.throw_number, entry.issue))
        return issues

    def finalize(self, session_rpe: Any, notes: Optional[str] = None) -> SessionCompletionPayload:
        """
        Flatten every drill's throws into a completion payload.

        Raises a :class:`ValidationError` subclass, leaving the edit state
        untouched, when the session is cancelled, a drill is short of its
        target, an entry is incomplete, or the RPE is out of range.
        """
        if self.status == SessionStatus.CANCELLED:
            raise SessionStateError(f"Session {self.session.id} was cancelled and cannot be logged.")
        if not self.is_session_complete():
            missing = [
                f"{drill.label}: {len(self._entries.get(drill.id, []))}/{drill.target_reps}"
                for drill in self.session.drills
                if not self.is_drill_complete(drill.id)
            ]
            raise SessionIncompleteError("All drills must reach their target reps (" + "; ".join(missing) + ").")
        issues = self.incomplete_entries()
        if issues:
            detail = "; ".join(f"throw {issue.throw_number}: {issue.reason}" for issue in issues)
            raise IncompleteThrowError(f"Some throws are incomplete ({detail}).")
        try:
            rpe = parse_rpe(session_rpe)
        except ValidationError as exc:
            raise RPEOutOfRangeError(str(exc)) from exc

        throws = [
            self._to_write(drill.id, entry)
            for drill in self.session.drills
            for entry in self._entries.get(drill.id, [])
        ]
        note_text = notes.strip() if isinstance(notes, str) and notes.strip() else None
        if self.status == SessionStatus.COMPLETED:
            LOGGER.info("Session %s finalized again; existing throw logs will be overwritten", self.session.id)
        self.status = SessionStatus.COMPLETED
        self.session = replace(self.session, status=SessionStatus.COMPLETED, session_rpe=rpe, notes=note_text)
        if self.logged_by_coach:
            LOGGER.info("Session %s logged by coach on behalf of athlete %s", self.session.id, self.session.athlete_id)
        else:
            LOGGER.info("Session %s logged by athlete %s", self.session.id, self.session.athlete_id)
        return SessionCompletionPayload(
            session_id=self.session.id,
            session_rpe=rpe,
            notes=note_text,
            throws=throws,
            logged_by_coach=self.logged_by_coach,
        )

    def _find_entry(self, drill_id: str, throw_number: int) -> ThrowEntry:
        self.session.drill_by_id(drill_id)
        for entry in self._entries.get(drill_id, []):
            if entry.throw_number == throw_number:
                return entry
        raise ValidationError(f"No throw #{throw_number} logged for drill {drill_id!r}.")

    @staticmethod
    def _to_write(drill_id: str, entry: ThrowEntry) -> ThrowWrite:
        field_name = f"throws[{drill_id}#{entry.throw_number}]"
        if entry.is_foul:
            distance = None
            reason = parse_enum(FoulReason, entry.foul_reason, field=f"{field_name}.foulReason")
        else:
            distance = validate_distance(entry.distance, field=f"{field_name}.distance")
            reason = None
        notes = str(entry.notes or "").strip()
        return ThrowWrite(
            drill_id=drill_id,
            throw_number=entry.throw_number,
            distance=distance,
            is_foul=bool(entry.is_foul),
            foul_reason=reason,
            notes=notes or None,
        )


def payload_from_mapping(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Parse the camelCase completion request sent by a client."""
    session_id = str(payload.get("sessionId") or payload.get("session_id") or "").strip()
    if not session_id:
        raise ValidationError("sessionId is required.")
    throws = payload.get("throws")
    if not isinstance(throws, list) or not throws:
        raise ValidationError("throws must be a non-empty list.")

    rows: List[Dict[str, Any]] = []
    for index, item in enumerate(throws, start=1):
        if not isinstance(item, Mapping):
            raise ValidationError(f"throws[{index}] must be an object.")
        drill_id = str(item.get("drillId") or item.get("drill_id") or "").strip()
        if not drill_id:
            raise ValidationError(f"throws[{index}].drillId is required.")
        number = coerce_number(
            item.get("throwNumber", item.get("throw_number")),
            field=f"throws[{index}].throwNumber",
            minimum=1,
            allow_float=False,
        )
        distance = item.get("distance")
        rows.append(
            {
                "drill_id": drill_id,
                "throw_number": int(number),
                "distance": "" if distance is None else str(distance),
                "is_foul": parse_flag(item.get("isFoul", item.get("is_foul")), field=f"throws[{index}].isFoul"),
                "foul_reason": str(item.get("foulReason") or item.get("foul_reason") or ""),
                "notes": str(item.get("notes") or ""),
            }
        )
    return {
        "session_id": session_id,
        "session_rpe": payload.get("sessionRPE", payload.get("session_rpe")),
        "notes": payload.get("notes"),
        "throws": rows,
    }


def tracker_from_submission(
    session: TrainingSession,
    throws: List[Mapping[str, Any]],
    *,
    logged_by_coach: bool = False,
) -> SessionProgressTracker:
    """Replay submitted throws through a fresh tracker so server-side gates match the editor."""
    blank = replace(session, drills=[replace(drill, throw_logs=[]) for drill in session.drills])
    tracker = SessionProgressTracker(blank, logged_by_coach=logged_by_coach)
    ordered = sorted(throws, key=lambda row: (row["drill_id"], row["throw_number"]))
    for row in ordered:
        entry = tracker.add_throw(row["drill_id"])
        if entry is None:
            raise ValidationError(
                f"Drill {row['drill_id']!r} received more throws than its target reps."
            )
        if entry.throw_number != row["throw_number"]:
            raise ValidationError(
                f"Throw numbers for drill {row['drill_id']!r} must be consecutive from 1."
            )
        for name in EDITABLE_FIELDS:
            tracker.update_throw(row["drill_id"], entry.throw_number, name, row[name])
    return tracker
