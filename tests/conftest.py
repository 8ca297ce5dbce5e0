"""Root test configuration: shared fixtures for all test modules.

IMPORTANT: Environment variables are set BEFORE any insights imports
so that config.py loads test Settings without a .env file.
"""

from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")  # Test DB 15
os.environ.setdefault("ADMISSION_SWEEP_INTERVAL_SECONDS", "0")
os.environ.pop("NEWS_API_TOKEN", None)

# Now safe to import insights modules
import pytest

from insights.common.config import Settings, get_settings
from insights.common.schemas import InsightRequest, MarketSeries, NewsItem
from tests.factories import FakeClock, make_points, make_request, rising_prices

# ─── Clear cached settings so test env vars are used ───
get_settings.cache_clear()


# ─── Fixtures ───


@pytest.fixture
def test_settings() -> Settings:
    """Settings as loaded from the test environment."""
    return get_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def btc_request() -> InsightRequest:
    return make_request()


@pytest.fixture
def advanced_request() -> InsightRequest:
    return make_request(analysis_type="advanced")


@pytest.fixture
def rising_series() -> MarketSeries:
    return MarketSeries(symbol="BTC", points=make_points(rising_prices(60)), quality=1.0)


@pytest.fixture
def bullish_news() -> list[NewsItem]:
    return [
        NewsItem(title="Bitcoin rally extends as BTC inflows surge", sentiment=0.8, source="A"),
        NewsItem(title="Analysts bullish on BTC close above resistance", sentiment=0.6, source="B"),
        NewsItem(title="Crypto adoption growth continues", sentiment=0.4, source="C"),
    ]
