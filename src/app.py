from __future__ import annotations

import logging
import os
import threading
from typing import Any, Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from errors import ConfigurationError, RecommendationError, ValidationError
from recommender import RecommendationRequest, RecommendationService, build_service
from settings import Settings
from store import MovieStore


logger = logging.getLogger(__name__)

_EXTENSION_KEY = "cinematch"

api = Blueprint("api", __name__)


# ======================
# APP STATE
# ======================
class _AppState:
    def __init__(self, settings: Settings, service: Optional[RecommendationService]):
        self.settings = settings
        self.service = service
        self.lock = threading.Lock()


def _state() -> _AppState:
    return current_app.extensions[_EXTENSION_KEY]


def _require_configuration(*services: str) -> None:
    """
    Raise ConfigurationError for the first missing credential.

    With no arguments every credential the active strategy needs is checked.
    """
    for service_name, details in _state().settings.missing_credentials():
        if not services or service_name in services:
            raise ConfigurationError(service_name, details)


def _get_service() -> RecommendationService:
    state = _state()
    with state.lock:
        if state.service is None:
            state.service = build_service(state.settings)
        return state.service


def _get_store() -> MovieStore:
    return _get_service().store


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def _require_user_id(value: Any) -> str:
    user_id = str(value or "").strip()
    if not user_id:
        raise ValidationError("userId is required")
    return user_id


# ======================
# RECOMMENDATIONS
# ======================
@api.route("/api/recommendations", methods=["POST"])
def api_recommendations():
    """
    Recommend movies for a genre/language (+ optional actor and free-text hint).

    Request JSON:
    - genre: str (required)
    - language: str
    - additionalDetails: str (optional)
    - heroName: str (optional)
    - userId: str (optional; enables the per-user movie cache)
    - savePreferences: bool (optional; requires userId)

    Returns a JSON array of enriched movies.
    """
    _require_configuration()
    recommendation_request = RecommendationRequest.from_json(request.get_json(silent=True))
    logger.info(
        "[Recommend] genre=%r language=%r user=%s save=%s",
        recommendation_request.genre,
        recommendation_request.language,
        recommendation_request.user_id or "-",
        recommendation_request.save_preferences,
    )
    movies = _get_service().recommend(recommendation_request)
    return jsonify(movies), 200


@api.route("/api/preferences/<user_id>", methods=["GET"])
def api_get_preferences(user_id: str):
    _require_configuration("Supabase")
    preference = _get_store().get_preference(_require_user_id(user_id))
    return jsonify({"preferences": preference}), 200


# ======================
# MOVIE LISTS
# ======================
@api.route("/api/lists", methods=["GET"])
def api_get_lists():
    _require_configuration("Supabase")
    user_id = _require_user_id(request.args.get("userId"))
    return jsonify({"lists": _get_store().list_lists(user_id)}), 200


@api.route("/api/lists", methods=["POST"])
def api_create_list():
    """
    Create a named list, optionally seeded with one movie.

    Request JSON: userId, name, movie (optional enriched movie object)
    """
    _require_configuration("Supabase")
    body = _json_body()
    user_id = _require_user_id(body.get("userId"))
    seed_movie = body.get("movie")
    if seed_movie is not None and not isinstance(seed_movie, dict):
        raise ValidationError("movie must be an object")
    created = _get_store().create_list(user_id, str(body.get("name") or ""), seed_movie)
    return jsonify({"list": created}), 201


@api.route("/api/lists/<list_id>", methods=["PATCH"])
def api_rename_list(list_id: str):
    _require_configuration("Supabase")
    body = _json_body()
    user_id = _require_user_id(body.get("userId"))
    updated = _get_store().rename_list(list_id, user_id, str(body.get("name") or ""))
    return jsonify({"list": updated}), 200


@api.route("/api/lists/<list_id>", methods=["DELETE"])
def api_delete_list(list_id: str):
    _require_configuration("Supabase")
    user_id = _require_user_id(request.args.get("userId"))
    _get_store().delete_list(list_id, user_id)
    return jsonify({"success": True}), 200


@api.route("/api/lists/<list_id>/movies", methods=["POST"])
def api_add_movie_to_list(list_id: str):
    """
    Add a movie to a list. Adding a movie that is already present is a no-op
    reported with added=false.
    """
    _require_configuration("Supabase")
    body = _json_body()
    user_id = _require_user_id(body.get("userId"))
    movie = body.get("movie")
    if not isinstance(movie, dict) or movie.get("id") is None:
        raise ValidationError("movie with an id is required")
    added, movie_list = _get_store().add_movie_to_list(list_id, user_id, movie)
    message = "Movie added to list successfully!" if added else "This movie is already in the list!"
    return jsonify({"added": added, "message": message, "list": movie_list}), 200


@api.route("/api/lists/<list_id>/movies/<movie_id>", methods=["DELETE"])
def api_remove_movie_from_list(list_id: str, movie_id: str):
    _require_configuration("Supabase")
    user_id = _require_user_id(request.args.get("userId"))
    updated = _get_store().remove_movie_from_list(list_id, user_id, movie_id)
    return jsonify({"list": updated}), 200


# ======================
# PROFILE + HEALTH
# ======================
@api.route("/api/profile", methods=["POST"])
def api_ensure_profile():
    _require_configuration("Supabase")
    body = _json_body()
    user_id = _require_user_id(body.get("userId"))
    profile = _get_store().ensure_profile(user_id, body.get("name"), body.get("email"))
    return jsonify({"profile": profile}), 200


@api.route("/api/status", methods=["GET"])
def api_status():
    """
    Health check endpoint used for debugging.
    """
    settings = _state().settings
    return jsonify(
        {
            "status": "ok",
            "strategy": settings.candidate_strategy,
            "missing_configuration": [name for name, _ in settings.missing_credentials()],
        }
    ), 200


# ======================
# ERROR MAPPING
# ======================
def _handle_recommendation_error(error: RecommendationError):
    if error.status_code >= 500:
        logger.error("[API] %s: %s", error.label, error.details)
    return jsonify(error.to_payload()), error.status_code


def _handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("[API] Unhandled error: %s", error)
    return jsonify({"error": f"API route error: {error}", "details": "Internal server error"}), 500


def create_app(settings: Optional[Settings] = None, service: Optional[RecommendationService] = None) -> Flask:
    """
    Build the Flask app.

    `service` lets callers inject a RecommendationService wired to their own
    collaborators; otherwise one is built from `settings` on first use.
    """
    flask_app = Flask(__name__)
    CORS(flask_app, resources={r"/api/*": {"origins": "*"}})
    flask_app.extensions[_EXTENSION_KEY] = _AppState(settings or Settings.from_env(), service)
    flask_app.register_blueprint(api)
    flask_app.register_error_handler(RecommendationError, _handle_recommendation_error)
    flask_app.register_error_handler(Exception, _handle_unexpected_error)
    return flask_app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    debug = os.getenv("FLASK_DEBUG", "0").strip() == "1"
    host = os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0"
    port_text = os.getenv("PORT", "5000").strip() or "5000"
    app.run(debug=debug, host=host, port=int(port_text))
