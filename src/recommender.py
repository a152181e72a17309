from __future__ import annotations

import atexit
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from functools import partial
from typing import Any, Callable, Optional

from errors import ConfigurationError, NoResultsError, PersistenceError, ValidationError
from gemini_client import GeminiClient, ask_movie_titles
from settings import STRATEGY_ORACLE, STRATEGY_SEARCH, Settings
from store import MovieStore
from tmdb_client import CatalogMovie, TMDbClient, backdrop_url, poster_url


logger = logging.getLogger(__name__)

MAX_CANDIDATES = 50
SEARCH_STAGGER_SECONDS = 0.2
SEQUENTIAL_PACE_SECONDS = 0.1


def _norm_title(title: str) -> str:
    return (title or "").strip().lower()


@dataclass(frozen=True)
class MovieCandidate:
    title: str
    score: Optional[float] = None


@dataclass(frozen=True)
class EnrichedMovie(CatalogMovie):
    runtime: int = 0
    genres: list[dict[str, Any]] = field(default_factory=list)
    credits: dict[str, list[dict[str, Any]]] = field(default_factory=lambda: {"cast": [], "crew": []})
    director: str = ""
    videos: list[dict[str, Any]] = field(default_factory=list)
    similar: list[int] = field(default_factory=list)
    providers: Optional[dict[str, Any]] = None
    status: str = "Unknown"
    tagline: str = ""

    @classmethod
    def from_catalog(cls, movie: CatalogMovie) -> "EnrichedMovie":
        return cls(**CatalogMovie.to_dict(movie))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "overview": self.overview or "No overview available",
            "poster_path": poster_url(self.poster_path),
            "backdrop_path": backdrop_url(self.backdrop_path),
            "release_date": self.release_date or "Unknown",
            "vote_average": self.vote_average or 0,
            "vote_count": self.vote_count or 0,
            "runtime": self.runtime,
            "genres": list(self.genres),
            "credits": {"cast": list(self.credits.get("cast", [])), "crew": list(self.credits.get("crew", []))},
            "director": self.director,
            "videos": list(self.videos),
            "similar": list(self.similar),
            "providers": self.providers,
            "original_language": self.original_language or "en",
            "status": self.status,
            "tagline": self.tagline,
        }


@dataclass(frozen=True)
class EnrichmentResult:
    """
    Outcome of enriching one catalog movie.

    `complete` is False when the detail lookup failed and `movie` only holds
    the search-result fields (enrichment fields at their defaults).
    """

    movie: EnrichedMovie
    complete: bool
    error: str = ""


@dataclass(frozen=True)
class RecommendationRequest:
    genre: str
    language: str = ""
    additional_details: str = ""
    hero_name: str = ""
    user_id: str = ""
    save_preferences: bool = False

    @classmethod
    def from_json(cls, payload: Any) -> "RecommendationRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON body")
        genre = str(payload.get("genre") or "").strip()
        if not genre:
            raise ValidationError("Genre is required")
        return cls(
            genre=genre,
            language=str(payload.get("language") or "").strip(),
            additional_details=str(payload.get("additionalDetails") or "").strip(),
            hero_name=str(payload.get("heroName") or "").strip(),
            user_id=str(payload.get("userId") or "").strip(),
            save_preferences=bool(payload.get("savePreferences")),
        )


# ======================
# ENRICHMENT
# ======================
def _director_from_crew(crew: list[Any]) -> str:
    for member in crew:
        if isinstance(member, dict) and member.get("job") == "Director":
            return str(member.get("name") or "")
    return ""


def merge_details(base: EnrichedMovie, details: dict[str, Any]) -> EnrichedMovie:
    credits = details.get("credits") or {}
    cast = [c for c in credits.get("cast") or [] if isinstance(c, dict)]
    crew = [c for c in credits.get("crew") or [] if isinstance(c, dict)]
    videos = [
        {
            "site": v.get("site", ""),
            "type": v.get("type", ""),
            "key": v.get("key", ""),
            "name": v.get("name", ""),
        }
        for v in (details.get("videos") or {}).get("results") or []
        if isinstance(v, dict)
    ]
    similar = [
        int(s["id"])
        for s in (details.get("similar") or {}).get("results") or []
        if isinstance(s, dict) and s.get("id") is not None
    ]
    genres = [
        {"id": g.get("id"), "name": g.get("name", "")}
        for g in details.get("genres") or []
        if isinstance(g, dict)
    ]
    return replace(
        base,
        runtime=int(details.get("runtime") or 0),
        genres=genres,
        credits={"cast": cast, "crew": crew},
        director=_director_from_crew(crew),
        videos=videos,
        similar=similar,
        status=str(details.get("status") or "Unknown"),
        tagline=str(details.get("tagline") or ""),
    )


def enrich_movie(catalog: TMDbClient, movie: CatalogMovie) -> EnrichmentResult:
    """
    Fetch details + watch providers for one movie. Never raises.
    """
    base = EnrichedMovie.from_catalog(movie)

    providers = None
    try:
        providers = catalog.get_watch_providers(movie.id)
    except Exception as provider_error:
        logger.debug("[TMDb] Providers lookup failed for %s: %s", movie.id, provider_error)
    base = replace(base, providers=providers)

    try:
        details = catalog.get_details(movie.id)
        return EnrichmentResult(merge_details(base, details), complete=True)
    except Exception as detail_error:
        logger.warning("[TMDb] Error enriching details for '%s' (%s): %s", movie.title, movie.id, detail_error)
        return EnrichmentResult(base, complete=False, error=str(detail_error))


# ======================
# CANDIDATE RESOLUTION
# ======================
def pick_search_match(title: str, results: list[CatalogMovie]) -> Optional[CatalogMovie]:
    """
    Case-insensitive exact title match, else the first search result.
    """
    if not results:
        return None
    wanted = _norm_title(title)
    for movie in results:
        if movie.title and _norm_title(movie.title) == wanted:
            return movie
    return results[0]


def resolve_titles(
    catalog: TMDbClient,
    candidates: list[MovieCandidate],
    language: str,
    *,
    sleep: Callable[[float], None] = time.sleep,
    stagger: float = SEARCH_STAGGER_SECONDS,
) -> list[CatalogMovie]:
    """
    Search every candidate title concurrently, the i-th lookup delayed by
    i * stagger seconds. Titles without a usable match are dropped.
    """
    if not candidates:
        return []

    def _resolve_one(index: int, candidate: MovieCandidate) -> Optional[CatalogMovie]:
        if index:
            sleep(index * stagger)
        try:
            results = catalog.search(candidate.title, language)
        except Exception as search_error:
            logger.error("[TMDb] Error fetching data for '%s': %s", candidate.title, search_error)
            return None
        if not results:
            logger.warning("[TMDb] No results for: %s", candidate.title)
            return None
        chosen = pick_search_match(candidate.title, results)
        if chosen is None or not chosen.title:
            logger.warning("[TMDb] Invalid movie data for: %s", candidate.title)
            return None
        return chosen

    with ThreadPoolExecutor(max_workers=len(candidates)) as executor:
        resolved = list(executor.map(_resolve_one, range(len(candidates)), candidates))
    return [movie for movie in resolved if movie is not None]


def build_keyword_query(hero_name: str, genre: str, additional_details: str) -> str:
    parts = [(hero_name or "").strip(), (genre or "").strip(), (additional_details or "").strip()]
    return " ".join(p for p in parts if p).strip()


def search_candidates(
    catalog: TMDbClient,
    request: RecommendationRequest,
    *,
    limit: int = MAX_CANDIDATES,
) -> list[CatalogMovie]:
    query = build_keyword_query(request.hero_name, request.genre, request.additional_details)
    logger.info("[TMDb] Keyword search: %r", query)
    results = catalog.search(query, request.language)
    return [movie for movie in results if movie.title][:limit]


# ======================
# SERVICE
# ======================
class RecommendationService:
    """
    Runs one recommendation request end to end.

    Preference and movie-cache writes are fire-and-forget: they run on a
    single-worker background executor, in submission order, and their
    failures are only logged.
    """

    def __init__(
        self,
        catalog: TMDbClient,
        store: MovieStore,
        oracle: Optional[GeminiClient] = None,
        *,
        strategy: str = STRATEGY_ORACLE,
        sleep: Callable[[float], None] = time.sleep,
        background: Optional[ThreadPoolExecutor] = None,
    ):
        self.catalog = catalog
        self.store = store
        self.oracle = oracle
        self.strategy = strategy if strategy in (STRATEGY_ORACLE, STRATEGY_SEARCH) else STRATEGY_ORACLE
        self._sleep = sleep
        self._background = background or ThreadPoolExecutor(max_workers=1, thread_name_prefix="persist")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ----- background persistence -----
    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.error("[Supabase] Background write crashed: %s", error)

    def _detach(self, fn: Callable[..., Any], *args: Any) -> None:
        future = self._background.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def wait_for_background(self, timeout: Optional[float] = None) -> None:
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def _save_preference_quietly(self, request: RecommendationRequest) -> None:
        try:
            self.store.upsert_preference(
                request.user_id,
                request.genre,
                request.language,
                request.additional_details,
            )
        except PersistenceError as store_error:
            logger.error("[Supabase] Error saving preferences: %s", store_error)

    def _save_movie_quietly(self, user_id: str, movie: EnrichedMovie) -> None:
        try:
            self.store.upsert_saved_movie(user_id, movie)
        except PersistenceError as store_error:
            logger.error("[Supabase] Error saving movie %s to user cache: %s", movie.id, store_error)

    # ----- strategies -----
    def _recommend_with_oracle(self, request: RecommendationRequest) -> list[EnrichmentResult]:
        if self.oracle is None:
            raise ConfigurationError("Gemini", "No Gemini client is configured for the oracle strategy.")

        titles = ask_movie_titles(
            self.oracle,
            genre=request.genre,
            language=request.language,
            additional_details=request.additional_details,
            actor=request.hero_name,
        )
        candidates = [MovieCandidate(title) for title in titles[:MAX_CANDIDATES]]
        movies = resolve_titles(self.catalog, candidates, request.language, sleep=self._sleep)
        if not movies:
            raise NoResultsError("TMDB returned no valid results for the suggested movies")
        logger.info("[Recommend] Resolved %d of %d suggested titles", len(movies), len(candidates))

        with ThreadPoolExecutor(max_workers=len(movies)) as executor:
            results = list(executor.map(partial(enrich_movie, self.catalog), movies))

        if request.user_id:
            for result in results:
                if result.complete:
                    self._detach(self._save_movie_quietly, request.user_id, result.movie)
        return results

    def _recommend_with_search(self, request: RecommendationRequest) -> list[EnrichmentResult]:
        movies = search_candidates(self.catalog, request)
        if not movies:
            raise NoResultsError("TMDB returned no results for the search query")

        # One request in flight at a time to stay under TMDb rate limits.
        results: list[EnrichmentResult] = []
        for index, movie in enumerate(movies):
            if index:
                self._sleep(SEQUENTIAL_PACE_SECONDS)
            result = enrich_movie(self.catalog, movie)
            if request.user_id and result.complete:
                self._save_movie_quietly(request.user_id, result.movie)
            results.append(result)
        return results

    def recommend(self, request: RecommendationRequest) -> list[dict[str, Any]]:
        if request.save_preferences and request.user_id:
            self._detach(self._save_preference_quietly, request)

        if self.strategy == STRATEGY_SEARCH:
            results = self._recommend_with_search(request)
        else:
            results = self._recommend_with_oracle(request)

        partial_count = sum(1 for r in results if not r.complete)
        if partial_count:
            logger.info("[Recommend] %d of %d movies returned without details", partial_count, len(results))
        return [r.movie.to_dict() for r in results]

    def shutdown(self) -> None:
        self._background.shutdown(wait=True)


def build_service(settings: Settings) -> RecommendationService:
    catalog = TMDbClient(
        settings.tmdb_api_key,
        region=settings.watch_region,
        timeout=settings.tmdb_timeout_seconds,
    )
    store = MovieStore.from_credentials(settings.supabase_url, settings.supabase_anon_key)
    oracle = GeminiClient(settings.gemini_api_key, model=settings.gemini_model) if settings.uses_oracle else None
    service = RecommendationService(catalog, store, oracle, strategy=settings.candidate_strategy)
    # Drain detached writes before the interpreter exits.
    atexit.register(service.shutdown)
    return service
