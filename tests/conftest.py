from __future__ import annotations

import copy
import itertools
import threading
from typing import Any, Optional

import pytest

from recommender import RecommendationService
from settings import STRATEGY_ORACLE, Settings
from store import MovieStore
from tmdb_client import CatalogMovie


# ======================
# CATALOG + ORACLE FAKES
# ======================
class FakeCatalog:
    """
    In-memory stand-in for TMDbClient.

    Values in the lookup maps may be exceptions, which are raised instead of
    returned.
    """

    def __init__(
        self,
        search_results: Optional[dict[str, Any]] = None,
        details: Optional[dict[int, Any]] = None,
        providers: Optional[dict[int, Any]] = None,
    ):
        self.search_results = search_results or {}
        self.details = details or {}
        self.providers = providers or {}
        self.calls: list[tuple[str, Any]] = []
        self._lock = threading.Lock()

    def _record(self, name: str, arg: Any) -> None:
        with self._lock:
            self.calls.append((name, arg))

    def _answer(self, value: Any) -> Any:
        if isinstance(value, Exception):
            raise value
        return value

    def search(self, query: str, language: str = "") -> list[CatalogMovie]:
        self._record("search", query)
        return self._answer(self.search_results.get(query, []))

    def get_details(self, movie_id: int) -> dict[str, Any]:
        self._record("details", movie_id)
        if movie_id not in self.details:
            raise RuntimeError(f"404 for movie {movie_id}")
        return self._answer(self.details[movie_id])

    def get_watch_providers(self, movie_id: int) -> Optional[dict[str, Any]]:
        self._record("providers", movie_id)
        return self._answer(self.providers.get(movie_id))

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeOracle:
    def __init__(self, text: str = "[]"):
        self.text = text
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.text, Exception):
            raise self.text
        return self.text


# ======================
# SUPABASE FAKE
# ======================
class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]):
        self.data = data


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict = ""
        self.filters: list[tuple[str, Any]] = []
        self.order_by: Optional[tuple[str, bool]] = None
        self.max_rows: Optional[int] = None

    def select(self, *_columns: str) -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, row: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "insert", row
        return self

    def upsert(self, row: dict[str, Any], on_conflict: str = "") -> "FakeQuery":
        self.op, self.payload, self.on_conflict = "upsert", row, on_conflict
        return self

    def update(self, changes: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "update", changes
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.max_rows = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(str(row.get(column)) == str(value) for column, value in self.filters)

    def execute(self) -> FakeResponse:
        with self.db.lock:
            self.db.calls.append((self.table, self.op))
            if self.table in self.db.failing_tables:
                raise RuntimeError(f"{self.table} is unavailable")
            rows = self.db.tables.setdefault(self.table, [])

            if self.op == "select":
                found = [copy.deepcopy(r) for r in rows if self._matches(r)]
                if self.order_by:
                    column, desc = self.order_by
                    found.sort(key=lambda r: str(r.get(column, "")), reverse=desc)
                if self.max_rows is not None:
                    found = found[: self.max_rows]
                return FakeResponse(found)

            if self.op == "insert":
                row = copy.deepcopy(self.payload)
                if "id" not in row:
                    row["id"] = next(self.db.ids)
                rows.append(row)
                return FakeResponse([copy.deepcopy(row)])

            if self.op == "upsert":
                row = copy.deepcopy(self.payload)
                keys = [k.strip() for k in self.on_conflict.split(",") if k.strip()]
                for index, existing in enumerate(rows):
                    if keys and all(existing.get(k) == row.get(k) for k in keys):
                        rows[index] = row
                        break
                else:
                    rows.append(row)
                return FakeResponse([copy.deepcopy(row)])

            if self.op == "update":
                updated = []
                for row in rows:
                    if self._matches(row):
                        row.update(copy.deepcopy(self.payload))
                        updated.append(copy.deepcopy(row))
                return FakeResponse(updated)

            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return FakeResponse(removed)


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failing_tables: set[str] = set()
        self.ids = itertools.count(1)
        self.lock = threading.Lock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        return self.tables.get(name, [])


# ======================
# FIXTURES
# ======================
def make_movie(movie_id: int, title: str, **overrides: Any) -> CatalogMovie:
    fields: dict[str, Any] = {
        "overview": f"Overview of {title}",
        "poster_path": f"/poster{movie_id}.jpg",
        "backdrop_path": f"/backdrop{movie_id}.jpg",
        "release_date": "2014-11-05",
        "vote_average": 8.4,
        "vote_count": 30000,
        "original_language": "en",
    }
    fields.update(overrides)
    return CatalogMovie(id=movie_id, title=title, **fields)


def make_details(runtime: int = 120, director: str = "Jane Doe") -> dict[str, Any]:
    return {
        "runtime": runtime,
        "genres": [{"id": 878, "name": "Science Fiction"}, {"id": 18, "name": "Drama"}],
        "credits": {
            "cast": [{"id": 1, "name": "Lead Actor", "character": "Hero"}],
            "crew": [
                {"id": 2, "name": "Some Writer", "job": "Screenplay"},
                {"id": 3, "name": director, "job": "Director"},
            ],
        },
        "videos": {"results": [{"site": "YouTube", "type": "Trailer", "key": "abc123", "name": "Trailer", "size": 1080}]},
        "similar": {"results": [{"id": 11, "title": "Other"}, {"id": 12, "title": "Another"}]},
        "status": "Released",
        "tagline": "Mankind was born on Earth.",
    }


@pytest.fixture
def configured_settings() -> Settings:
    return Settings(
        tmdb_api_key="tmdb-key",
        gemini_api_key="gemini-key",
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        candidate_strategy=STRATEGY_ORACLE,
    )


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def movie_store(supabase: FakeSupabase) -> MovieStore:
    return MovieStore(supabase)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_service(movie_store: MovieStore, sleeps: list[float]):
    created: list[RecommendationService] = []

    def _make(catalog: FakeCatalog, oracle: Optional[FakeOracle] = None, strategy: str = STRATEGY_ORACLE):
        service = RecommendationService(catalog, movie_store, oracle, strategy=strategy, sleep=sleeps.append)
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown()
