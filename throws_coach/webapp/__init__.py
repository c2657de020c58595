from __future__ import annotations

import logging
import os
from functools import wraps

from flask import Flask, current_app, g, jsonify, request

from .. import services
from ..env import get_env
from ..models import Role, ValidationError
from ..policy import Action, PermissionDeniedError, require
from ..storage import NotFoundError, PersistenceError, ThrowsStore
from ..tracker import IncompleteThrowError, RPEOutOfRangeError, SessionIncompleteError, SessionStateError

LOGGER = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"

ERROR_CODES = (
    (SessionIncompleteError, "session_incomplete"),
    (RPEOutOfRangeError, "rpe_out_of_range"),
    (IncompleteThrowError, "incomplete_throw"),
    (SessionStateError, "invalid_state"),
)


def create_app(store: ThrowsStore | None = None) -> Flask:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    app = Flask(__name__)
    env_secret = get_env("SECRET") or os.environ.get("SECRET_KEY")
    if not env_secret and os.environ.get("FLASK_ENV") == "production":
        raise RuntimeError("SECRET_KEY/THROWS_COACH_SECRET must be set in production.")
    app.secret_key = env_secret or "dev-secret"
    app.extensions["throws_store"] = store or ThrowsStore()

    @app.before_request
    def load_actor() -> None:
        g.actor = None
        user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
        role = (request.headers.get(USER_ROLE_HEADER) or "").strip().upper()
        if user_id and role in Role.__members__:
            g.actor = services.load_actor(_store(), user_id, Role(role))

    register_error_handlers(app)
    register_api(app)
    return app


def _store() -> ThrowsStore:
    return current_app.extensions["throws_store"]


def actor_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not getattr(g, "actor", None):
            return jsonify({"error": "Authentication required"}), 401
        return view(*args, **kwargs)

    return wrapped


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError):
        code = next((name for cls, name in ERROR_CODES if isinstance(exc, cls)), "invalid")
        return jsonify({"error": str(exc), "code": code}), 400

    @app.errorhandler(PermissionDeniedError)
    def handle_forbidden(exc: PermissionDeniedError):
        return jsonify({"error": str(exc)}), 403

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(PersistenceError)
    def handle_persistence(exc: PersistenceError):
        LOGGER.error("Persistence failure: %s", exc)
        return jsonify({"error": "Failed to save changes", "code": "persistence_failed"}), 500


def register_api(app: Flask) -> None:
    @app.post("/api/training-sessions")
    @actor_required
    def api_create_session():
        payload = request.get_json(silent=True) or {}
        session = services.create_training_session(_store(), g.actor, payload)
        return jsonify({"message": "Training session created successfully", "session": session.to_dict()})

    @app.get("/api/training-sessions/<session_id>")
    @actor_required
    def api_get_session(session_id: str):
        session = _store().get_session(session_id)
        require(g.actor, session, Action.VIEW_SESSION)
        return jsonify({"session": session.to_dict()})

    @app.post("/api/training-sessions/log")
    @actor_required
    def api_log_session():
        payload = request.get_json(silent=True) or {}
        outcome = services.log_training_session(_store(), g.actor, payload)
        return jsonify(
            {
                "message": "Session logged successfully",
                "session": outcome.session.to_dict(),
                "throwLogsCreated": outcome.throw_logs_written,
            }
        )

    @app.get("/api/reports/throws")
    @actor_required
    def api_throw_report():
        snapshot = services.build_throw_report(
            _store(),
            g.actor,
            athlete_id=(request.args.get("athlete") or "").strip() or None,
            window_days=request.args.get("days"),
        )
        return jsonify(snapshot.to_dict())

    @app.get("/api/athletes")
    @actor_required
    def api_list_athletes():
        return jsonify({"athletes": services.list_athletes(_store(), g.actor)})

    @app.get("/api/training-sessions")
    @actor_required
    def api_list_sessions():
        sessions = services.list_training_sessions(
            _store(),
            g.actor,
            athlete_id=(request.args.get("athlete") or "").strip() or None,
        )
        return jsonify(
            {
                "sessions": [session.to_dict() for session in sessions],
                "counts": services.session_status_counts(sessions),
            }
        )

    @app.get("/api/exercises")
    @actor_required
    def api_list_exercises():
        return jsonify({"exercises": [exercise.to_dict() for exercise in _store().list_exercises()]})

    @app.get("/api/workouts")
    @actor_required
    def api_list_workouts():
        workouts = services.list_workouts(_store(), g.actor)
        return jsonify({"workouts": [workout.to_dict() for workout in workouts]})

    @app.post("/api/workouts")
    @actor_required
    def api_create_workout():
        payload = request.get_json(silent=True) or {}
        workout = services.create_workout(_store(), g.actor, payload)
        return jsonify({"message": "Workout created successfully", "workout": workout.to_dict()})

    @app.post("/api/workouts/assign")
    @actor_required
    def api_assign_workout():
        payload = request.get_json(silent=True) or {}
        assignments = services.assign_workout(_store(), g.actor, payload)
        return jsonify(
            {
                "message": f"Workout assigned to {len(assignments)} athlete(s)",
                "assignmentsCreated": len(assignments),
                "assignments": [assignment.to_dict() for assignment in assignments],
            }
        )
