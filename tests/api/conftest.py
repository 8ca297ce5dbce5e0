"""API test fixtures: httpx.AsyncClient against a fully wired app.

The app is built with ``create_app`` using injected components: an
in-memory admission controller on a fake clock with small limits, and an
insight service whose upstream providers are in-process fakes. No network,
no Redis.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from insights.admission.controller import AdmissionController
from insights.admission.store import InMemoryAdmissionStore
from insights.cache.response_cache import ResponseCache
from insights.cache.store import InMemoryCacheStore
from insights.fusion.fusion import DataFusionLayer
from insights.main import create_app
from insights.prediction.pipeline import InsightService
from tests.factories import FakeClock, FakeMarket, FakeNews, make_points, rising_prices

BURST_LIMIT = 3
DAILY_CAP = 5

NOW = datetime(2026, 10, 18, 12, tzinfo=UTC)

VALID_BODY = {
    "question": "Will BTC close above $70k by Friday?",
    "category": "crypto",
    "horizon": "7d",
    "analysisType": "basic",
}


def make_service(clock: FakeClock, bullish_news=None) -> InsightService:
    market = FakeMarket(points={"BTC": make_points(rising_prices(60), end=NOW)})
    fusion = DataFusionLayer(market, FakeNews(bullish_news), timeout=1.0, now=lambda: NOW)
    cache = ResponseCache(InMemoryCacheStore(), ttl_seconds=300, clock=clock)
    return InsightService(fusion, cache)


# ─── App / Client ───


@pytest.fixture
def test_app(clock, bullish_news) -> FastAPI:
    """App with small free-tier limits on a shared fake clock."""
    admission = AdmissionController(
        InMemoryAdmissionStore(),
        burst_limit=BURST_LIMIT,
        burst_window_seconds=60,
        daily_cap=DAILY_CAP,
        clock=clock,
    )
    return create_app(admission=admission, insight_service=make_service(clock, bullish_news))


@pytest_asyncio.fixture
async def client(test_app):
    """Async HTTP client wired to the test app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
