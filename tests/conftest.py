import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from keyword_engine.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.storage_backend = "memory"
settings.scheduler_mode = "inline"

from keyword_engine.analysis.types import AppMetadata, Candidate, Platform, RankedApp, SerpResult  # noqa: E402
from keyword_engine.collectors.base import BaseSerpClient  # noqa: E402
from keyword_engine.core.exceptions import MetadataUnavailable  # noqa: E402
from keyword_engine.gateway.rate_limiter import TokenBucketRateLimiter  # noqa: E402
from keyword_engine.gateway.types import BucketConfig, RetryPolicy  # noqa: E402
from keyword_engine.scheduler.scheduler import DiscoveryScheduler  # noqa: E402
from keyword_engine.services.engine import KeywordEngine  # noqa: E402
from keyword_engine.storage.memory import MemoryStore  # noqa: E402

TARGET_APP_ID = "1000"
TENANT_ID = "tenant-a"
FIXED_NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


def ranked(*app_ids: str) -> list[RankedApp]:
    """RankedApp list in source order."""
    return [RankedApp(app_id=a, position=i + 1, name=f"App {a}") for i, a in enumerate(app_ids)]


class FakeSerpClient(BaseSerpClient):
    """Scripted SERP source.

    ``serps`` maps a term to either a list of app ids, or a list of
    outcomes consumed one per call (exceptions are raised, lists returned).
    Unknown terms return an empty-but-valid SERP with the target absent.
    """

    def __init__(
        self,
        serps: dict | None = None,
        apps: dict[str, AppMetadata] | None = None,
        delay: float = 0.0,
    ):
        self.serps = dict(serps or {})
        self.apps = dict(apps or {})
        self.delay = delay
        self.calls: list[str] = []
        self.lookups: list[str] = []

    async def fetch_serp(self, term: str, region: str, max_pages: int = 2) -> SerpResult:
        self.calls.append(term)
        if self.delay:
            await asyncio.sleep(self.delay)

        script = self.serps.get(term, ["9001", "9002"])
        if script and isinstance(script[0], (list, Exception)):
            outcome = script.pop(0) if len(script) > 1 else script[0]
        else:
            outcome = script
        if isinstance(outcome, Exception):
            raise outcome
        return SerpResult(term=term, region=region, apps=ranked(*outcome), max_position=max_pages * self.page_size)

    async def lookup_app(self, app_id: str, region: str) -> AppMetadata:
        self.lookups.append(app_id)
        app = self.apps.get(app_id)
        if app is None:
            raise MetadataUnavailable(f"App {app_id} not found")
        return app


class FixedGenerator:
    """Candidate generator stand-in returning a fixed list."""

    def __init__(self, candidates: list[Candidate]):
        self.candidates = candidates

    def generate(self, app, seed_keywords=None, competitor_apps=None, region="us", max_candidates=50, methods=None):
        return list(self.candidates[:max_candidates])


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def target_app() -> AppMetadata:
    return AppMetadata(
        app_id=TARGET_APP_ID,
        name="FitTrack: Workout Planner",
        subtitle="Home workout and step counter",
        description="Plan your home workout. Track every workout with the step counter.",
        category="Health & Fitness",
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def fake_client(target_app) -> FakeSerpClient:
    return FakeSerpClient(apps={TARGET_APP_ID: target_app})


@pytest.fixture
def make_scheduler(store, fake_client) -> Callable[..., DiscoveryScheduler]:
    """Scheduler factory with a generous budget and near-zero retry delays."""

    def _make(**kwargs) -> DiscoveryScheduler:
        kwargs.setdefault(
            "retry_policy", RetryPolicy(max_retries=2, base_delay=0.001, max_delay=0.01, max_rate_limited_waits=50)
        )
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        kwargs.setdefault("cancel_poll_interval", 0.01)
        limiter = kwargs.pop(
            "rate_limiter", TokenBucketRateLimiter(BucketConfig(capacity=1000, refill_per_hour=360_000))
        )
        client = kwargs.pop("client", fake_client)
        return DiscoveryScheduler(kwargs.pop("store", store), {Platform.IOS: client}, limiter, **kwargs)

    return _make


@pytest.fixture
async def engine(store, make_scheduler):
    scheduler = make_scheduler()
    keyword_engine = KeywordEngine(store, scheduler, clock=lambda: FIXED_NOW)
    await keyword_engine.start()
    yield keyword_engine
    await keyword_engine.stop()


@pytest.fixture
async def client(engine) -> AsyncClient:
    """Async HTTP client bound to the app with a prebuilt in-memory engine."""
    from keyword_engine.main import app

    app.state.engine = engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.engine = None


@pytest.fixture
def tenant_headers() -> dict[str, str]:
    return {"X-Tenant-ID": TENANT_ID}
