"""CryptoPanic news provider.

Fetches recent posts and scores each headline in [-1, 1]. CryptoPanic
requires an auth token; without one the provider is disabled and returns
no items, which the pipeline treats as "no news".

API docs: https://cryptopanic.com/developers/api/
"""

from __future__ import annotations

import httpx

from insights.common.config import Settings, get_settings
from insights.common.logging import get_logger
from insights.common.schemas import NewsItem
from insights.fusion.http import fetch_json_with_retry
from insights.fusion.normalizer import normalize_news_posts
from insights.fusion.rate_limiter import RateLimiter

logger = get_logger("NEWS")

CRYPTOPANIC_POSTS_URL = "https://cryptopanic.com/api/v1/posts/"


class CryptoPanicNewsProvider:
    """News client for the CryptoPanic posts API.

    Args:
        url: Posts endpoint.
        auth_token: API token. ``None`` disables the provider.
        client: Optional shared httpx.AsyncClient.
        limiter: Rate limiter shared by every call of this provider.
        timeout: Per-attempt HTTP timeout in seconds.
        max_retries: Retries on 5xx / network errors.
    """

    name = "CryptoPanic"

    def __init__(
        self,
        url: str = CRYPTOPANIC_POSTS_URL,
        auth_token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        timeout: float = 5.0,
        max_retries: int = 1,
    ) -> None:
        self.url = url
        self.auth_token = auth_token
        self.client = client
        self.limiter = limiter or RateLimiter(calls_per_second=2.0)
        self.timeout = timeout
        self.max_retries = max_retries

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> CryptoPanicNewsProvider:
        settings = settings or get_settings()
        return cls(
            settings.news_api_url,
            settings.news_api_token,
            client=client,
            limiter=RateLimiter(calls_per_second=settings.news_rate_limit_per_second),
            timeout=settings.fetch_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.auth_token)

    async def fetch_news(self, keywords: list[str], limit: int) -> list[NewsItem]:
        """Up to ``limit`` recent posts, those mentioning a keyword first.

        Raises:
            FetchError: The request failed.
            ParseError: The payload was malformed.
        """
        if not self.enabled:
            logger.debug("News provider disabled, no auth token configured")
            return []

        raw_response = await fetch_json_with_retry(
            self.url,
            source="news",
            limiter=self.limiter,
            params={"auth_token": self.auth_token, "public": "true", "kind": "news"},
            client=self.client,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )
        items = normalize_news_posts(raw_response)

        # Stable sort: keyword matches first, upstream order otherwise
        lowered = [k.lower() for k in keywords]
        items.sort(key=lambda item: not any(k in item.title.lower() for k in lowered))
        items = items[:limit]

        logger.info(
            "Parsed news posts",
            extra={"data": {"items": len(items), "terms": keywords}},
        )
        return items
