"""Sentiment fusion: collapses scored headlines into one signed value."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from insights.common.schemas import NewsItem
from insights.fusion.symbols import extract_keywords

BASE_RELEVANCE = 0.5
RELEVANCE_STEP = 0.1

_WORD_RE = re.compile(r"[a-z0-9]+")


def fuse_sentiment(items: Sequence[NewsItem], question: str) -> float:
    """Mean headline sentiment scaled by relevance to the question.

    Relevance starts at 0.5 and grows by 0.1 for every question keyword
    found in a headline, capped at 1.0. Non-finite scores count as 0.
    Never raises; returns 0.0 with no items.
    """
    if not items:
        return 0.0

    scores = [item.sentiment if math.isfinite(item.sentiment) else 0.0 for item in items]
    mean_score = sum(scores) / len(scores)

    keywords = set(extract_keywords(question))
    relevance = BASE_RELEVANCE
    if keywords:
        for item in items:
            matches = len(keywords & set(_WORD_RE.findall(item.title.lower())))
            if matches:
                relevance = min(1.0, relevance + RELEVANCE_STEP * matches)

    return max(-1.0, min(1.0, mean_score * relevance))
