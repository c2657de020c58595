"""Single place where coach/athlete permissions are decided."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet

from .models import Role, TrainingSession, Workout


class PermissionDeniedError(Exception):
    """Raised when an actor may not perform an action on a resource."""


class Action(str, Enum):
    CREATE_SESSION = "create_session"
    VIEW_SESSION = "view_session"
    LOG_SESSION = "log_session"
    VIEW_REPORTS = "view_reports"
    LIST_ATHLETES = "list_athletes"
    LIST_SESSIONS = "list_sessions"
    CREATE_WORKOUT = "create_workout"
    ASSIGN_WORKOUT = "assign_workout"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role
    athlete_ids: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_coach(self) -> bool:
        return self.role == Role.COACH


def authorize(actor: Actor | None, resource: Any, action: Action) -> bool:
    """
    Decide whether ``actor`` may perform ``action`` on ``resource``.

    ``resource`` is a :class:`TrainingSession` for session actions, a
    :class:`Workout` or an athlete id for ``ASSIGN_WORKOUT``, and an athlete
    id (or ``None`` meaning "every athlete I can see") for ``CREATE_SESSION``,
    ``VIEW_REPORTS`` and ``LIST_SESSIONS``. ``actor.athlete_ids`` holds the
    athletes linked to a coach.
    """
    if actor is None:
        return False

    if action in (Action.VIEW_SESSION, Action.LOG_SESSION):
        if not isinstance(resource, TrainingSession):
            return False
        if resource.athlete_id == actor.id:
            return True
        return actor.is_coach and resource.coach_id == actor.id

    if action == Action.CREATE_SESSION:
        return actor.is_coach and resource is not None and str(resource) in actor.athlete_ids

    if action == Action.VIEW_REPORTS:
        if actor.is_coach:
            return resource is None or str(resource) in actor.athlete_ids
        return resource is not None and str(resource) == actor.id

    if action == Action.LIST_SESSIONS:
        if actor.is_coach:
            return resource is None or str(resource) in actor.athlete_ids
        return resource is None or str(resource) == actor.id

    if action in (Action.LIST_ATHLETES, Action.CREATE_WORKOUT):
        return actor.is_coach

    if action == Action.ASSIGN_WORKOUT:
        if not actor.is_coach:
            return False
        if isinstance(resource, Workout):
            return resource.created_by == actor.id
        return resource is not None and str(resource) in actor.athlete_ids

    return False


def require(actor: Actor | None, resource: Any, action: Action) -> None:
    if not authorize(actor, resource, action):
        raise PermissionDeniedError(f"Not allowed to {action.value.replace('_', ' ')}.")
