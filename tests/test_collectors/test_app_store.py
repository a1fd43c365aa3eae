"""Tests for the iTunes Search API SERP client with mocked HTTP."""

import httpx
import pytest

from keyword_engine.collectors.app_store import AppStoreSerpClient
from keyword_engine.core.exceptions import (
    FetchBlocked,
    FetchErrorKind,
    FetchTransient,
    InvalidTerm,
    MetadataUnavailable,
)


def _item(track_id: int, name: str = "", rating: float = 4.5, count: int = 100) -> dict:
    return {
        "trackId": track_id,
        "trackName": name or f"App {track_id}",
        "sellerName": "Dev Co",
        "averageUserRating": rating,
        "userRatingCount": count,
        "primaryGenreName": "Health & Fitness",
    }


def _client(handler, page_size: int = 3) -> AppStoreSerpClient:
    return AppStoreSerpClient(
        search_url="https://search.test/search",
        lookup_url="https://search.test/lookup",
        timeout=5.0,
        page_size=page_size,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_fetch_serp_parses_results_in_order():
    seen_params = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_params.append(dict(request.url.params))
        return httpx.Response(200, json={"resultCount": 2, "results": [_item(11), _item(22, count=5000)]})

    serp = await _client(handler).fetch_serp("  Step Counter ", "US", max_pages=2)

    assert serp.term == "step counter"
    assert serp.region == "us"
    assert [a.app_id for a in serp.apps] == ["11", "22"]
    assert [a.position for a in serp.apps] == [1, 2]
    assert serp.apps[1].rating_count == 5000
    assert serp.max_position == 6
    # Short first page: no second request
    assert len(seen_params) == 1
    assert seen_params[0]["term"] == "step counter"
    assert seen_params[0]["country"] == "us"


@pytest.mark.asyncio
async def test_fetch_serp_pages_and_dedupes():
    pages = {
        "0": [_item(1), _item(2), _item(3)],
        "3": [_item(3), _item(4), _item(5)],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"results": pages.get(request.url.params["offset"], [])})

    serp = await _client(handler).fetch_serp("yoga", "us", max_pages=2)
    assert [a.app_id for a in serp.apps] == ["1", "2", "3", "4", "5"]
    assert [a.position for a in serp.apps] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_invalid_term_rejected_without_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"results": []})

    with pytest.raises(InvalidTerm):
        await _client(handler).fetch_serp("   !!! ", "us")
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [(429, FetchBlocked), (403, FetchBlocked), (400, InvalidTerm), (503, FetchTransient)],
)
async def test_http_status_mapping(status, error):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={})

    with pytest.raises(error):
        await _client(handler).fetch_serp("yoga", "us")


@pytest.mark.asyncio
async def test_captcha_page_is_blocked():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, html="<html>Please solve this CAPTCHA</html>")

    with pytest.raises(FetchBlocked) as exc_info:
        await _client(handler).fetch_serp("yoga", "us")
    assert exc_info.value.kind is FetchErrorKind.BLOCKED


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchTransient):
        await _client(handler).fetch_serp("yoga", "us")


@pytest.mark.asyncio
async def test_empty_first_page_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"resultCount": 0, "results": []})

    with pytest.raises(FetchTransient):
        await _client(handler).fetch_serp("yoga", "us")


@pytest.mark.asyncio
async def test_malformed_json_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json", headers={"Content-Type": "application/json"})

    with pytest.raises(FetchTransient):
        await _client(handler).fetch_serp("yoga", "us")


@pytest.mark.asyncio
async def test_lookup_app():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/lookup"
        item = _item(1000, name="FitTrack")
        item["description"] = "Track workouts"
        return httpx.Response(200, json={"results": [item]})

    app = await _client(handler).lookup_app("1000", "us")
    assert app.app_id == "1000"
    assert app.name == "FitTrack"
    assert app.category == "Health & Fitness"
    assert app.developer == "Dev Co"


@pytest.mark.asyncio
async def test_lookup_missing_app():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"resultCount": 0, "results": []})

    with pytest.raises(MetadataUnavailable):
        await _client(handler).lookup_app("404", "us")
