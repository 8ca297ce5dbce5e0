"""CoinGecko market data provider.

Fetches daily price and volume history for one ticker from the public
``/coins/{id}/market_chart`` endpoint.

API docs: https://docs.coingecko.com/reference/coins-id-market-chart
"""

from __future__ import annotations

import httpx

from insights.common.config import Settings, get_settings
from insights.common.exceptions import FetchError
from insights.common.logging import get_logger
from insights.common.schemas import PricePoint
from insights.fusion.http import fetch_json_with_retry
from insights.fusion.normalizer import normalize_market_chart
from insights.fusion.rate_limiter import RateLimiter
from insights.fusion.symbols import COINGECKO_IDS

logger = get_logger("MARKET")

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoMarketProvider:
    """Market history client for CoinGecko.

    Args:
        base_url: API root, without trailing slash.
        client: Optional shared httpx.AsyncClient.
        limiter: Rate limiter shared by every call of this provider.
        timeout: Per-attempt HTTP timeout in seconds.
        max_retries: Retries on 5xx / network errors.
    """

    name = "CoinGecko"

    def __init__(
        self,
        base_url: str = COINGECKO_BASE_URL,
        *,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        timeout: float = 5.0,
        max_retries: int = 1,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.limiter = limiter or RateLimiter(calls_per_second=5.0)
        self.timeout = timeout
        self.max_retries = max_retries

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> CoinGeckoMarketProvider:
        settings = settings or get_settings()
        return cls(
            settings.market_api_url,
            client=client,
            limiter=RateLimiter(calls_per_second=settings.market_rate_limit_per_second),
            timeout=settings.fetch_timeout_seconds,
        )

    async def fetch_history(self, symbol: str, lookback_days: int) -> list[PricePoint]:
        """Daily price history for ``symbol`` covering ``lookback_days``.

        Raises:
            FetchError: Unknown symbol or the request failed.
            ParseError: The payload was malformed.
        """
        coin_id = COINGECKO_IDS.get(symbol.upper())
        if coin_id is None:
            raise FetchError(f"No CoinGecko id for symbol {symbol}", {"symbol": symbol})

        logger.info(
            "Fetching market history",
            extra={"data": {"symbol": symbol, "coin_id": coin_id, "days": lookback_days}},
        )

        raw_response = await fetch_json_with_retry(
            f"{self.base_url}/coins/{coin_id}/market_chart",
            source="market",
            limiter=self.limiter,
            params={"vs_currency": "usd", "days": lookback_days, "interval": "daily"},
            client=self.client,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )
        points = normalize_market_chart(symbol, raw_response)

        logger.info(
            "Parsed market history",
            extra={"data": {"symbol": symbol, "points": len(points)}},
        )
        return points
