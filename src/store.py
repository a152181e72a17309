from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client, create_client

from errors import ListNotFoundError, PersistenceError, ValidationError


logger = logging.getLogger(__name__)

PREFERENCES_TABLE = "user_preferences"
SAVED_MOVIES_TABLE = "user_movies"
LISTS_TABLE = "user_movie_lists"
PROFILES_TABLE = "profiles"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _movie_id(movie: Any) -> Any:
    if isinstance(movie, dict):
        return movie.get("id")
    return getattr(movie, "id", None)


def _as_movie_dict(movie: Any) -> dict[str, Any]:
    if isinstance(movie, dict):
        return dict(movie)
    return movie.to_dict()


class MovieStore:
    """
    Persistence facade over the Supabase tables used by the app.

    Every method raises PersistenceError on failure; whether that failure is
    surfaced or only logged is the caller's decision.
    """

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, anon_key: str) -> "MovieStore":
        return cls(create_client(url, anon_key))

    def _execute(self, query, action: str) -> list[dict[str, Any]]:
        try:
            response = query.execute()
        except Exception as store_error:
            raise PersistenceError(f"Failed to {action}: {store_error}") from store_error
        data = getattr(response, "data", None)
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    # ======================
    # PREFERENCES + MOVIE CACHE
    # ======================
    def upsert_preference(
        self,
        user_id: str,
        genre: str,
        language: str,
        additional_details: Optional[str] = None,
    ) -> None:
        row = {
            "user_id": user_id,
            "genre": genre,
            "language": language,
            "additional_details": additional_details or "",
            "updated_at": _now_iso(),
        }
        self._execute(
            self.client.table(PREFERENCES_TABLE).upsert(row, on_conflict="user_id"),
            "save preferences",
        )

    def get_preference(self, user_id: str) -> Optional[dict[str, Any]]:
        rows = self._execute(
            self.client.table(PREFERENCES_TABLE).select("*").eq("user_id", user_id).limit(1),
            "load preferences",
        )
        return rows[0] if rows else None

    def upsert_saved_movie(self, user_id: str, movie: Any) -> None:
        movie_data = _as_movie_dict(movie)
        genre_names = [str(g.get("name", "")) for g in movie_data.get("genres") or [] if isinstance(g, dict)]
        row = {
            "user_id": user_id,
            "movie_id": movie_data.get("id"),
            "movie_data": movie_data,
            "genre": ", ".join(n for n in genre_names if n),
            "language": movie_data.get("original_language", ""),
            "updated_at": _now_iso(),
        }
        self._execute(
            self.client.table(SAVED_MOVIES_TABLE).upsert(row, on_conflict="user_id,movie_id"),
            "save movie to user cache",
        )

    # ======================
    # MOVIE LISTS
    # ======================
    def list_lists(self, user_id: str) -> list[dict[str, Any]]:
        return self._execute(
            self.client.table(LISTS_TABLE).select("*").eq("user_id", user_id).order("created_at", desc=True),
            "load movie lists",
        )

    def get_list(self, list_id: Any, user_id: str) -> dict[str, Any]:
        rows = self._execute(
            self.client.table(LISTS_TABLE).select("*").eq("id", list_id).eq("user_id", user_id).limit(1),
            "load movie list",
        )
        if not rows:
            raise ListNotFoundError(f"No list {list_id} for this user")
        row = rows[0]
        if not isinstance(row.get("movies"), list):
            row["movies"] = []
        return row

    def create_list(self, user_id: str, name: str, seed_movie: Any = None) -> dict[str, Any]:
        list_name = (name or "").strip()
        if not list_name:
            raise ValidationError("List name is required")
        now = _now_iso()
        row = {
            "user_id": user_id,
            "name": list_name,
            "movies": [_as_movie_dict(seed_movie)] if seed_movie is not None else [],
            "created_at": now,
            "updated_at": now,
        }
        rows = self._execute(self.client.table(LISTS_TABLE).insert(row), "create movie list")
        return rows[0] if rows else row

    def _update_list(self, list_id: Any, user_id: str, changes: dict[str, Any], action: str) -> dict[str, Any]:
        changes = dict(changes, updated_at=_now_iso())
        rows = self._execute(
            self.client.table(LISTS_TABLE).update(changes).eq("id", list_id).eq("user_id", user_id),
            action,
        )
        if not rows:
            raise ListNotFoundError(f"No list {list_id} for this user")
        return rows[0]

    def add_movie_to_list(self, list_id: Any, user_id: str, movie: Any) -> tuple[bool, dict[str, Any]]:
        """
        Append a movie snapshot to a list.

        Returns (added, list_row). When the movie id is already in the list
        nothing is written and added is False.
        """
        current = self.get_list(list_id, user_id)
        movie_id = _movie_id(movie)
        if any(str(_movie_id(m)) == str(movie_id) for m in current["movies"]):
            return False, current
        movies = list(current["movies"]) + [_as_movie_dict(movie)]
        return True, self._update_list(list_id, user_id, {"movies": movies}, "add movie to list")

    def remove_movie_from_list(self, list_id: Any, user_id: str, movie_id: Any) -> dict[str, Any]:
        current = self.get_list(list_id, user_id)
        movies = [m for m in current["movies"] if str(_movie_id(m)) != str(movie_id)]
        return self._update_list(list_id, user_id, {"movies": movies}, "remove movie from list")

    def rename_list(self, list_id: Any, user_id: str, name: str) -> dict[str, Any]:
        list_name = (name or "").strip()
        if not list_name:
            raise ValidationError("List name is required")
        return self._update_list(list_id, user_id, {"name": list_name}, "update list name")

    def delete_list(self, list_id: Any, user_id: str) -> None:
        rows = self._execute(
            self.client.table(LISTS_TABLE).delete().eq("id", list_id).eq("user_id", user_id),
            "delete list",
        )
        if not rows:
            raise ListNotFoundError(f"No list {list_id} for this user")

    # ======================
    # PROFILES
    # ======================
    def get_profile(self, user_id: str) -> Optional[dict[str, Any]]:
        rows = self._execute(
            self.client.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1),
            "load user profile",
        )
        return rows[0] if rows else None

    def ensure_profile(self, user_id: str, name: Optional[str] = None, email: Optional[str] = None) -> dict[str, Any]:
        existing = self.get_profile(user_id)
        if existing:
            return existing
        row = {
            "id": user_id,
            "name": (name or "").strip() or "Movie Fan",
            "email": (email or "").strip() or None,
            "created_at": _now_iso(),
        }
        rows = self._execute(self.client.table(PROFILES_TABLE).insert(row), "create user profile")
        logger.info("[Supabase] Created profile for user %s", user_id)
        return rows[0] if rows else row
