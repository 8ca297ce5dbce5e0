"""Payload normalization: converts raw provider responses into schemas.

Each upstream returns its own JSON shape. This module turns them into the
standard MarketSeries points and NewsItem records defined in
insights.common.schemas. Nothing past this boundary sees raw JSON.

Shapes handled:
  - CoinGecko /coins/{id}/market_chart:
      {"prices": [[ms, price], ...], "total_volumes": [[ms, volume], ...]}
  - CryptoPanic /posts:
      {"results": [{"title", "url", "published_at", "source": {...},
                    "votes": {"positive", "negative", ...}}, ...]}
"""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime

from insights.common.exceptions import ParseError
from insights.common.logging import get_logger
from insights.common.schemas import NewsItem, PricePoint

logger = get_logger("FUSION")

# Headline lexicon, used when a post carries neither a score nor votes
POSITIVE_WORDS = frozenset(
    {"bullish", "moon", "pump", "surge", "rally", "breakthrough", "adoption", "growth", "success"}
)
NEGATIVE_WORDS = frozenset(
    {"bearish", "crash", "dump", "fall", "decline", "fear", "uncertainty", "risk", "volatility"}
)

_WORD_RE = re.compile(r"[a-z]+")


# ─── Market Data ───


def normalize_market_chart(symbol: str, raw_response: dict) -> list[PricePoint]:
    """Normalize a CoinGecko market_chart payload into ordered PricePoints.

    Malformed or non-positive entries are skipped with a warning. Volumes
    are matched to prices by timestamp; a missing volume is 0.

    Args:
        symbol: Ticker the payload belongs to (for logging).
        raw_response: Decoded JSON body.

    Returns:
        PricePoints sorted by timestamp, one per distinct timestamp.

    Raises:
        ParseError: If the payload has no ``prices`` list.
    """
    try:
        prices = raw_response["prices"]
    except (KeyError, TypeError) as exc:
        raise ParseError(f"Market payload for {symbol} missing prices", {"symbol": symbol}) from exc
    if not isinstance(prices, list):
        raise ParseError(f"Market payload for {symbol} has non-list prices", {"symbol": symbol})

    volumes: dict[int, float] = {}
    for entry in raw_response.get("total_volumes") or []:
        try:
            volumes[int(entry[0])] = float(entry[1])
        except (IndexError, TypeError, ValueError):
            continue

    points: dict[int, PricePoint] = {}
    skipped = 0
    for entry in prices:
        try:
            ts_ms = int(entry[0])
            price = float(entry[1])
            if not math.isfinite(price) or price <= 0:
                raise ValueError(f"price {price} out of range")
            volume = volumes.get(ts_ms, 0.0)
            if not math.isfinite(volume) or volume < 0:
                volume = 0.0
            points[ts_ms] = PricePoint(
                timestamp=datetime.fromtimestamp(ts_ms / 1000, tz=UTC),
                price=price,
                volume=volume,
            )
        except (IndexError, TypeError, ValueError, OverflowError, OSError):
            skipped += 1

    if skipped:
        logger.warning(
            "Skipped malformed market points",
            extra={"data": {"symbol": symbol, "skipped": skipped, "kept": len(points)}},
        )

    return [points[ts] for ts in sorted(points)]


# ─── News ───


def headline_sentiment(title: str) -> float:
    """Lexicon score in [-1, 1]: (positive - negative) / matched words."""
    words = _WORD_RE.findall(title.lower())
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    if positive + negative == 0:
        return 0.0
    return (positive - negative) / (positive + negative)


def _post_sentiment(post: dict) -> float:
    """Numeric ``sentiment`` field, else vote balance, else headline lexicon."""
    score = post.get("sentiment")
    if isinstance(score, int | float) and not isinstance(score, bool) and math.isfinite(score):
        return max(-1.0, min(1.0, float(score)))

    votes = post.get("votes")
    if isinstance(votes, dict):
        try:
            positive = float(votes.get("positive") or 0)
            negative = float(votes.get("negative") or 0)
        except (TypeError, ValueError):
            positive = negative = 0.0
        if positive + negative > 0:
            return (positive - negative) / (positive + negative)

    return headline_sentiment(post["title"])


def _post_source(post: dict) -> str:
    source = post.get("source")
    if isinstance(source, dict):
        return source.get("title") or source.get("domain") or "CryptoPanic"
    if isinstance(source, str) and source:
        return source
    return "CryptoPanic"


def _parse_published(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def normalize_news_posts(raw_response: dict) -> list[NewsItem]:
    """Normalize a CryptoPanic posts payload into NewsItems.

    Posts without a usable title are skipped.

    Raises:
        ParseError: If the payload has no ``results`` list.
    """
    try:
        results = raw_response["results"]
    except (KeyError, TypeError) as exc:
        raise ParseError("News payload missing results") from exc
    if not isinstance(results, list):
        raise ParseError("News payload has non-list results")

    items: list[NewsItem] = []
    for post in results:
        try:
            title = post["title"]
            if not isinstance(title, str) or not title.strip():
                raise ValueError("empty title")
            items.append(
                NewsItem(
                    title=title.strip(),
                    sentiment=_post_sentiment(post),
                    source=_post_source(post),
                    url=post.get("url"),
                    published_at=_parse_published(post.get("published_at")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Skipping malformed news post",
                extra={"data": {"error": str(exc)}},
            )
            continue

    return items
