import pytest
import requests

from errors import UpstreamError, ValidationError
from tmdb_client import TMDbClient, backdrop_url, poster_url


class FakeHTTPResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeSession:
    """Returns the queued outcomes in order; the last one repeats."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


SEARCH_PAYLOAD = {
    "page": 1,
    "results": [
        {
            "id": 157336,
            "title": "Interstellar",
            "overview": "A team of explorers...",
            "poster_path": "/p.jpg",
            "backdrop_path": "/b.jpg",
            "release_date": "2014-11-05",
            "vote_average": 8.4,
            "vote_count": 35000,
            "original_language": "en",
        },
        {"id": 2, "title": "Interstellar: Behind the Scenes"},
    ],
}


def make_client(session, sleeps=None):
    recorded = sleeps if sleeps is not None else []
    return TMDbClient("key", session=session, sleep=recorded.append)


def test_search_sends_expected_params():
    session = FakeSession(FakeHTTPResponse(200, SEARCH_PAYLOAD))
    movies = make_client(session).search("  Interstellar ", "en-US")

    assert [m.title for m in movies] == ["Interstellar", "Interstellar: Behind the Scenes"]
    assert movies[0].id == 157336
    assert movies[0].vote_count == 35000
    call = session.calls[0]
    assert call["url"].endswith("/search/movie")
    assert call["params"]["query"] == "Interstellar"
    assert call["params"]["language"] == "en-US"
    assert call["params"]["include_adult"] == "false"
    assert call["params"]["page"] == 1
    assert call["params"]["api_key"] == "key"
    assert call["timeout"] == 10.0


def test_search_rejects_blank_query():
    session = FakeSession(FakeHTTPResponse(200, SEARCH_PAYLOAD))
    with pytest.raises(ValidationError):
        make_client(session).search("   ")
    assert session.calls == []


def test_search_retries_three_times_then_reraises_last_error():
    client = make_client(FakeSession(FakeHTTPResponse(200, SEARCH_PAYLOAD)))
    sleeps = []
    client._sleep = sleeps.append
    errors = [UpstreamError("first"), UpstreamError("second"), UpstreamError("third")]
    attempts = []

    def failing_search(query, language):
        attempts.append(query)
        raise errors[len(attempts) - 1]

    client._search_once = failing_search
    with pytest.raises(UpstreamError) as excinfo:
        client.search("Interstellar")

    assert excinfo.value is errors[-1]
    assert len(attempts) == 3
    assert sleeps == [0.5, 0.5]


def test_search_flaky_success_on_second_attempt():
    sleeps = []
    session = FakeSession(requests.Timeout("slow"), FakeHTTPResponse(200, SEARCH_PAYLOAD))
    movies = make_client(session, sleeps).search("Interstellar")

    assert movies[0].title == "Interstellar"
    assert len(session.calls) == 2
    assert sleeps == [0.5]


def test_search_non_2xx_is_upstream_error():
    session = FakeSession(FakeHTTPResponse(503, {"status_message": "down"}))
    with pytest.raises(UpstreamError) as excinfo:
        make_client(session).search("Interstellar")
    assert excinfo.value.status == 503
    assert len(session.calls) == 3


def test_details_not_found_is_not_retried():
    session = FakeSession(FakeHTTPResponse(404, {"status_message": "not found"}))
    with pytest.raises(UpstreamError):
        make_client(session).get_details(999)
    assert len(session.calls) == 1
    assert session.calls[0]["params"]["append_to_response"] == "credits,videos,similar"


def test_watch_providers_for_region():
    payload = {"id": 1, "results": {"US": {"link": "x", "flatrate": [{"provider_name": "Netflix"}]}}}
    session = FakeSession(FakeHTTPResponse(200, payload))
    providers = make_client(session).get_watch_providers(1)
    assert providers["flatrate"][0]["provider_name"] == "Netflix"
    assert session.calls[0]["url"].endswith("/movie/1/watch/providers")


def test_watch_providers_missing_region_is_none():
    payload = {"id": 1, "results": {"GB": {"link": "x"}}}
    assert make_client(FakeSession(FakeHTTPResponse(200, payload))).get_watch_providers(1) is None


def test_image_urls():
    assert poster_url("/p.jpg") == "https://image.tmdb.org/t/p/w500/p.jpg"
    assert backdrop_url("/b.jpg") == "https://image.tmdb.org/t/p/w1280/b.jpg"
    assert poster_url(None) is None
