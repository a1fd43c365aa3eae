"""iTunes Search API SERP client — async version."""

import logging
import time
from datetime import datetime, timezone

import httpx

from keyword_engine.analysis.text import is_valid_term, normalize_term
from keyword_engine.analysis.types import AppMetadata, Platform, RankedApp, SerpResult
from keyword_engine.collectors.base import BaseSerpClient
from keyword_engine.core.config import settings
from keyword_engine.core.exceptions import (
    FetchBlocked,
    FetchError,
    FetchTransient,
    InvalidTerm,
    MetadataUnavailable,
)
from keyword_engine.core.metrics import SERP_FETCH_DURATION, SERP_FETCHES

logger = logging.getLogger(__name__)

MAX_API_LIMIT = 200  # iTunes Search API hard limit per request
_BOT_MARKERS = ("captcha", "unusual traffic", "access denied")


class AppStoreSerpClient(BaseSerpClient):
    """Fetch iOS App Store search results from the iTunes Search API."""

    platform = Platform.IOS

    def __init__(
        self,
        search_url: str | None = None,
        lookup_url: str | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.search_url = search_url or settings.serp_search_url
        self.lookup_url = lookup_url or settings.serp_lookup_url
        self.timeout = timeout if timeout is not None else settings.serp_timeout_seconds
        self.page_size = min(page_size or settings.serp_page_size, MAX_API_LIMIT)
        self.user_agent = user_agent or settings.serp_user_agent
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
        )

    async def fetch_serp(self, term: str, region: str, max_pages: int = 2) -> SerpResult:
        normalized = normalize_term(term)
        region = (region or "").lower()
        if not is_valid_term(normalized):
            SERP_FETCHES.labels(region=region, outcome="invalid_term").inc()
            raise InvalidTerm(f"Invalid search term: {term!r}")
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")

        start = time.perf_counter()
        try:
            apps = await self._fetch_pages(normalized, region, max_pages)
        except FetchError as e:
            SERP_FETCHES.labels(region=region, outcome=e.kind.value).inc()
            logger.info("SERP fetch failed for %r/%s: %s (%s)", normalized, region, e.kind.value, e.message)
            raise
        finally:
            SERP_FETCH_DURATION.labels(region=region).observe(time.perf_counter() - start)

        SERP_FETCHES.labels(region=region, outcome="ok").inc()
        return SerpResult(
            term=normalized,
            region=region,
            apps=apps,
            fetched_at=datetime.now(timezone.utc),
            max_position=max_pages * self.page_size,
        )

    async def lookup_app(self, app_id: str, region: str) -> AppMetadata:
        async with self._client() as client:
            payload = await self._get_json(client, self.lookup_url, {"id": app_id, "country": region, "entity": "software"})

        results = payload.get("results") or []
        if not results:
            raise MetadataUnavailable(f"App {app_id} not found in region {region}")
        item = results[0]
        return AppMetadata(
            app_id=str(item.get("trackId") or app_id),
            name=item.get("trackName", ""),
            description=item.get("description", ""),
            category=item.get("primaryGenreName", ""),
            developer=item.get("sellerName") or item.get("artistName", ""),
            platform=Platform.IOS,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch_pages(self, term: str, region: str, max_pages: int) -> list[RankedApp]:
        apps: list[RankedApp] = []
        seen: set[str] = set()
        cap = max_pages * self.page_size

        async with self._client() as client:
            for page in range(max_pages):
                params = {
                    "term": term,
                    "country": region,
                    "entity": "software",
                    "media": "software",
                    "limit": self.page_size,
                    "offset": page * self.page_size,
                }
                payload = await self._get_json(client, self.search_url, params)
                results = payload.get("results")
                if not isinstance(results, list):
                    raise FetchTransient("Response has no results list")
                if page == 0 and not results:
                    # An empty first page means a degraded response, not zero competition
                    raise FetchTransient("Suspiciously empty result page")

                for item in results:
                    app_id = str(item.get("trackId") or "")
                    if not app_id or app_id in seen:
                        continue
                    seen.add(app_id)
                    apps.append(self._parse_app(item, position=len(apps) + 1))

                if len(results) < self.page_size or len(apps) >= cap:
                    break

        return apps[:cap]

    @staticmethod
    async def _get_json(client: httpx.AsyncClient, url: str, params: dict) -> dict:
        try:
            resp = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise FetchTransient(f"Timeout after {client.timeout.read}s") from e
        except httpx.TransportError as e:
            raise FetchTransient(f"Transport error: {type(e).__name__}") from e

        if resp.status_code in (403, 429):
            raise FetchBlocked(f"HTTP {resp.status_code}")
        if 400 <= resp.status_code < 500:
            raise InvalidTerm(f"HTTP {resp.status_code}")
        if resp.status_code >= 500:
            raise FetchTransient(f"HTTP {resp.status_code}")

        content_type = resp.headers.get("Content-Type", "")
        if "html" in content_type:
            body = resp.text.lower()
            if any(marker in body for marker in _BOT_MARKERS):
                raise FetchBlocked("Bot challenge page")
            raise FetchTransient("Unexpected HTML response")

        try:
            data = resp.json()
        except ValueError as e:
            raise FetchTransient("Response is not valid JSON") from e
        if not isinstance(data, dict):
            raise FetchTransient("Unexpected response shape")
        return data

    @staticmethod
    def _parse_app(item: dict, position: int) -> RankedApp:
        return RankedApp(
            app_id=str(item.get("trackId")),
            position=position,
            name=item.get("trackName", ""),
            developer=item.get("sellerName") or item.get("artistName", ""),
            rating=float(item.get("averageUserRating") or 0.0),
            rating_count=int(item.get("userRatingCount") or 0),
            category=item.get("primaryGenreName", ""),
        )
