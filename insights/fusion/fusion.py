"""Data fusion layer: concurrent market and news fetch with quality scoring.

Every provider call is bounded by a timeout. Failures, timeouts and
malformed payloads never propagate: they are logged, counted in
``insight_upstream_fetches_total`` and reported as quality 0 (market) or
an empty list (news). Downstream stages only ever see a quality score.

Quality per series:
    0.5 * success + 0.2 * freshness + 0.3 * completeness
    success      1 if any point was returned
    freshness    1 when the last point is <= 1 day old, linear to 0 at 7 days
    completeness min(1, points / lookback_days)

Market quality is the mean over requested symbols (failed symbols count 0).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import NamedTuple, Protocol

from insights.common.config import Settings, get_settings
from insights.common.exceptions import ParseError, UpstreamDataDegradedError
from insights.common.logging import get_logger
from insights.common.metrics import UPSTREAM_FETCHES_TOTAL
from insights.common.schemas import MarketSeries, NewsItem, PricePoint
from insights.fusion.market import CoinGeckoMarketProvider
from insights.fusion.news import CryptoPanicNewsProvider

logger = get_logger("FUSION")

FRESH_DAYS = 1.0
STALE_DAYS = 7.0


class MarketDataProvider(Protocol):
    name: str

    async def fetch_history(self, symbol: str, lookback_days: int) -> list[PricePoint]: ...


class NewsProvider(Protocol):
    name: str

    async def fetch_news(self, keywords: list[str], limit: int) -> list[NewsItem]: ...


class FusionResult(NamedTuple):
    """Joined output of one concurrent market + news fetch."""

    series: list[MarketSeries]
    market_quality: float
    news: list[NewsItem]


def series_quality(points: list[PricePoint], lookback_days: int, now: datetime) -> float:
    """Quality score in [0, 1] for one fetched series."""
    if not points:
        return 0.0

    age_days = (now - points[-1].timestamp).total_seconds() / 86400
    if age_days <= FRESH_DAYS:
        freshness = 1.0
    else:
        freshness = max(0.0, 1.0 - (age_days - FRESH_DAYS) / (STALE_DAYS - FRESH_DAYS))

    completeness = min(1.0, len(points) / lookback_days) if lookback_days > 0 else 1.0
    return round(0.5 + 0.2 * freshness + 0.3 * completeness, 4)


class DataFusionLayer:
    """Fetches market series and news concurrently, absorbing upstream faults.

    Args:
        market: Market history provider.
        news: News provider.
        timeout: Upper bound in seconds for each provider call.
        now: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        market: MarketDataProvider,
        news: NewsProvider,
        *,
        timeout: float = 5.0,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.market = market
        self.news = news
        self.timeout = timeout
        self._now = now

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DataFusionLayer:
        settings = settings or get_settings()
        return cls(
            CoinGeckoMarketProvider.from_settings(settings),
            CryptoPanicNewsProvider.from_settings(settings),
            timeout=settings.fetch_timeout_seconds,
        )

    async def fetch(
        self,
        symbols: list[str],
        lookback_days: int = 30,
    ) -> tuple[list[MarketSeries], float]:
        """Fetch every symbol concurrently.

        Returns:
            (series in request order, market quality in [0, 1]).
        """
        if not symbols:
            return [], 0.0

        series = list(
            await asyncio.gather(*(self._fetch_symbol(s, lookback_days) for s in symbols))
        )
        market_quality = sum(s.quality for s in series) / len(series)
        return series, round(market_quality, 4)

    async def _fetch_symbol(self, symbol: str, lookback_days: int) -> MarketSeries:
        try:
            points = await asyncio.wait_for(
                self.market.fetch_history(symbol, lookback_days),
                timeout=self.timeout,
            )
        except Exception as exc:
            self._record_failure("market", exc, {"symbol": symbol})
            return MarketSeries(symbol=symbol, points=[], quality=0.0)

        UPSTREAM_FETCHES_TOTAL.labels(source="market", outcome="success").inc()
        quality = series_quality(points, lookback_days, self._now())
        return MarketSeries(symbol=symbol, points=points, quality=quality)

    async def fetch_news(self, keywords: list[str], limit: int = 10) -> list[NewsItem]:
        """Fetch up to ``limit`` news items. Any failure yields an empty list."""
        try:
            items = await asyncio.wait_for(
                self.news.fetch_news(keywords, limit),
                timeout=self.timeout,
            )
        except Exception as exc:
            self._record_failure("news", exc, {"terms": keywords})
            return []

        UPSTREAM_FETCHES_TOTAL.labels(source="news", outcome="success").inc()
        return items[:limit]

    async def gather(
        self,
        symbols: list[str],
        keywords: list[str],
        *,
        lookback_days: int = 30,
        news_limit: int = 10,
    ) -> FusionResult:
        """Run the market and news fetches concurrently and join them."""
        (series, market_quality), news = await asyncio.gather(
            self.fetch(symbols, lookback_days),
            self.fetch_news(keywords, news_limit),
        )

        logger.info(
            "Fused upstream data",
            extra={
                "data": {
                    "symbols": symbols,
                    "series_with_data": sum(1 for s in series if s.points),
                    "market_quality": market_quality,
                    "news_items": len(news),
                }
            },
        )
        return FusionResult(series=series, market_quality=market_quality, news=news)

    def _record_failure(self, source: str, exc: Exception, data: dict) -> None:
        if isinstance(exc, TimeoutError):
            outcome = "timeout"
        elif isinstance(exc, ParseError):
            outcome = "parse_error"
        else:
            outcome = "error"
        UPSTREAM_FETCHES_TOTAL.labels(source=source, outcome=outcome).inc()

        # Expected degradations get a one-line warning; anything else keeps its traceback
        expected = isinstance(exc, UpstreamDataDegradedError | TimeoutError)
        logger.warning(
            f"{source} fetch degraded: {outcome}",
            extra={"data": {**data, "source": source, "error": str(exc)}},
            exc_info=not expected,
        )
