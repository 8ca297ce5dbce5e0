"""Shared JSON GET with retry for upstream providers."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from insights.common.exceptions import FetchError, ParseError
from insights.common.logging import get_logger
from insights.fusion.rate_limiter import RateLimiter

logger = get_logger("FUSION")


async def fetch_json_with_retry(
    url: str,
    *,
    source: str,
    limiter: RateLimiter,
    params: dict | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = 5.0,
    max_retries: int = 1,
    backoff_seconds: float = 0.5,
) -> Any:
    """GET a URL and decode its JSON body.

    Retries on 5xx responses and network errors with exponential backoff.
    4xx responses fail immediately. When no ``client`` is given a new
    httpx.AsyncClient is created per attempt.

    Args:
        url: The URL to fetch.
        source: Label used in logs and error context ("market", "news").
        limiter: Rate limiter acquired before every attempt.
        params: Optional query parameters. Never logged.
        client: Optional shared client (tests pass one with a MockTransport).
        timeout: Per-attempt timeout for self-created clients.
        max_retries: Retries after the initial attempt.
        backoff_seconds: First retry delay; doubles per attempt.

    Returns:
        The decoded JSON payload.

    Raises:
        FetchError: If the request fails after all retries.
        ParseError: If the body is not valid JSON.
    """
    last_error: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            await limiter.acquire()
            if client is not None:
                response = await client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=timeout) as owned_client:
                    response = await owned_client.get(url, params=params)
            response.raise_for_status()

        except httpx.HTTPStatusError as exc:
            last_error = exc
            status_code = exc.response.status_code

            if status_code >= 500 and attempt < max_retries:
                wait = backoff_seconds * 2**attempt
                logger.warning(
                    f"{source} upstream returned {status_code}, retrying",
                    extra={
                        "data": {
                            "source": source,
                            "status_code": status_code,
                            "attempt": attempt + 1,
                            "wait_seconds": wait,
                        }
                    },
                )
                await asyncio.sleep(wait)
                continue

            raise FetchError(
                f"{source} upstream HTTP {status_code} after {attempt + 1} attempts",
                {"source": source, "status_code": status_code},
            ) from exc

        except httpx.RequestError as exc:
            last_error = exc

            if attempt < max_retries:
                wait = backoff_seconds * 2**attempt
                logger.warning(
                    f"{source} upstream network error, retrying",
                    extra={
                        "data": {
                            "source": source,
                            "error": str(exc),
                            "attempt": attempt + 1,
                            "wait_seconds": wait,
                        }
                    },
                )
                await asyncio.sleep(wait)
                continue

            raise FetchError(
                f"{source} upstream network error after {attempt + 1} attempts: {exc}",
                {"source": source},
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(
                f"{source} upstream returned a non-JSON body",
                {"source": source, "status_code": response.status_code},
            ) from exc

    raise FetchError(f"All {source} retries exhausted", {"source": source}) from last_error
