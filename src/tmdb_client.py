from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

import requests

from errors import UpstreamError, ValidationError


logger = logging.getLogger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p"

SEARCH_ATTEMPTS = 3
SEARCH_RETRY_DELAY_SECONDS = 0.5


def poster_url(path: Optional[str]) -> Optional[str]:
    return f"{TMDB_IMAGE_BASE_URL}/w500{path}" if path else None


def backdrop_url(path: Optional[str]) -> Optional[str]:
    return f"{TMDB_IMAGE_BASE_URL}/w1280{path}" if path else None


@dataclass(frozen=True)
class CatalogMovie:
    id: int
    title: str
    overview: str = ""
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    release_date: str = ""
    vote_average: float = 0.0
    vote_count: int = 0
    original_language: str = ""

    @classmethod
    def from_search_result(cls, result: dict[str, Any]) -> "CatalogMovie":
        return cls(
            id=int(result.get("id") or 0),
            title=str(result.get("title") or "").strip(),
            overview=str(result.get("overview") or ""),
            poster_path=result.get("poster_path") or None,
            backdrop_path=result.get("backdrop_path") or None,
            release_date=str(result.get("release_date") or ""),
            vote_average=float(result.get("vote_average") or 0.0),
            vote_count=int(result.get("vote_count") or 0),
            original_language=str(result.get("original_language") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TMDbClient:
    """
    Thin wrapper over the TMDb v3 REST API.

    - search() is retried (fixed delay) because it is the call that decides
      whether a candidate exists at all.
    - get_details() / get_watch_providers() are single-shot; callers decide
      how to degrade.
    """

    def __init__(
        self,
        api_key: str,
        *,
        region: str = "US",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        attempts: int = SEARCH_ATTEMPTS,
        retry_delay: float = SEARCH_RETRY_DELAY_SECONDS,
    ):
        self.api_key = api_key
        self.region = (region or "US").upper()
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self.attempts = max(1, int(attempts))
        self.retry_delay = retry_delay

    def _get(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        query_params: dict[str, Any] = dict(params or {})
        query_params["api_key"] = self.api_key
        url = f"{TMDB_BASE_URL}{endpoint}"
        try:
            response = self.session.get(url, params=query_params, timeout=self.timeout)
        except requests.RequestException as request_error:
            raise UpstreamError(f"TMDb request to {endpoint} failed: {request_error}") from request_error

        if not 200 <= response.status_code < 300:
            raise UpstreamError(
                f"TMDb returned HTTP {response.status_code} for {endpoint}",
                status=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as decode_error:
            raise UpstreamError(f"TMDb returned invalid JSON for {endpoint}") from decode_error
        if not isinstance(payload, dict):
            raise UpstreamError(f"TMDb returned a non-object payload for {endpoint}")
        return payload

    def _search_once(self, query: str, language: str) -> list[CatalogMovie]:
        params: dict[str, Any] = {
            "query": query,
            "page": 1,
            "include_adult": "false",
        }
        if language:
            params["language"] = language
        payload = self._get("/search/movie", params)
        results = payload.get("results")
        if not isinstance(results, list):
            return []
        return [CatalogMovie.from_search_result(r) for r in results if isinstance(r, dict)]

    def search(self, query: str, language: str = "") -> list[CatalogMovie]:
        """
        Search movies by free-text query (one result page).

        Up to `attempts` tries with a fixed `retry_delay` in between; the last
        attempt's exception is re-raised as-is.
        """
        cleaned_query = (query or "").strip()
        if not cleaned_query:
            raise ValidationError("Search query is required")
        language_hint = (language or "").strip()

        for attempt in range(1, self.attempts + 1):
            try:
                return self._search_once(cleaned_query, language_hint)
            except Exception as search_error:
                if attempt == self.attempts:
                    raise
                logger.warning(
                    "[TMDb] Search for '%s' failed (attempt %d/%d): %s",
                    cleaned_query,
                    attempt,
                    self.attempts,
                    search_error,
                )
                self._sleep(self.retry_delay)
        return []

    def get_details(self, movie_id: int) -> dict[str, Any]:
        return self._get(
            f"/movie/{int(movie_id)}",
            {"append_to_response": "credits,videos,similar"},
        )

    def get_watch_providers(self, movie_id: int) -> Optional[dict[str, Any]]:
        """
        Return the provider entry for the configured region, or None when TMDb
        has nothing for that region.
        """
        payload = self._get(f"/movie/{int(movie_id)}/watch/providers")
        results = payload.get("results")
        if not isinstance(results, dict):
            return None
        region_entry = results.get(self.region)
        return region_entry if isinstance(region_entry, dict) and region_entry else None
