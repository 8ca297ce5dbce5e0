"""Probability calibration for basic analysis.

Turns indicators, sentiment and data quality into a bounded probability,
a confidence value and a confidence interval. Also owns ``build_context``,
the one place where raw fused data is normalized into a PipelineContext:
everything downstream may assume finite, in-range inputs.

Formulas:
    technical   = mean(rsi_zone, trend_score, ma_crossover)
    raw         = 0.7 * technical + 0.3 * (0.5 + 0.1 * sentiment)
    probability = clamp(0.5 + (raw - 0.5) * data_quality, 0.05, 0.95)
    confidence  = clamp(0.4 * data_quality + 0.3 * strength + 0.3 * completeness, 0.1, 0.95)
    interval    = probability +/- (1 - confidence) * 0.3, clamped to [0, 1]
"""

from __future__ import annotations

import math

from insights.common.logging import get_logger
from insights.common.metrics import DATA_QUALITY
from insights.common.schemas import (
    Indicators,
    InsightRequest,
    MarketSeries,
    NewsItem,
    PipelineContext,
    ProbabilityInterval,
)

logger = get_logger("MODEL")

PROBABILITY_FLOOR = 0.05
PROBABILITY_CEILING = 0.95
CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 0.95
NEUTRAL_PROBABILITY = 0.5
DEFAULT_CONFIDENCE = 0.6
MAX_INTERVAL_SPREAD = 0.3
COMPLETE_SERIES_POINTS = 30
NEWS_FULL_COUNT = 5
NO_NEWS_QUALITY = 0.3


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _finite_or(value: float | None, default: float) -> float:
    if value is None or not math.isfinite(value):
        return default
    return value


# ─── Context ───


def calculate_data_quality(market_quality: float, news_count: int) -> float:
    """Blend market and news quality: 0.6 * market + 0.4 * news.

    News quality is min(1, n / 5), or 0.3 when there is no news at all.
    """
    market_quality = _clamp(_finite_or(market_quality, 0.0), 0.0, 1.0)
    news_quality = min(1.0, news_count / NEWS_FULL_COUNT) if news_count > 0 else NO_NEWS_QUALITY
    return 0.6 * market_quality + 0.4 * news_quality


def build_context(
    request: InsightRequest,
    fingerprint: str,
    series: list[MarketSeries],
    news: list[NewsItem],
    indicators: Indicators,
    sentiment: float,
    market_quality: float,
) -> PipelineContext:
    """Normalize fused inputs into an immutable PipelineContext.

    Non-finite sentiment or quality values are defaulted and everything is
    clamped to its documented range.
    """
    sentiment = _clamp(_finite_or(sentiment, 0.0), -1.0, 1.0)
    market_quality = _clamp(_finite_or(market_quality, 0.0), 0.0, 1.0)
    data_quality = calculate_data_quality(market_quality, len(news))
    DATA_QUALITY.observe(data_quality)

    return PipelineContext(
        request=request,
        fingerprint=fingerprint,
        series=series,
        news=news,
        indicators=indicators,
        sentiment=sentiment,
        market_quality=market_quality,
        data_quality=data_quality,
    )


# ─── Probability ───


def technical_score(indicators: Indicators) -> float:
    """Mean of the RSI zone, trend and moving-average crossover scores."""
    rsi = indicators.rsi
    if rsi is not None and rsi > 70:
        rsi_zone = 0.3  # overbought
    elif rsi is not None and rsi < 30:
        rsi_zone = 0.7  # oversold
    else:
        rsi_zone = 0.5

    trend_score = {"up": 0.65, "down": 0.35}.get(indicators.trend, 0.5)

    sma20, sma50 = indicators.sma20, indicators.sma50
    if sma20 is None or sma50 is None or sma20 == sma50:
        crossover = 0.5
    elif sma20 > sma50:
        crossover = 0.6
    else:
        crossover = 0.4

    return (rsi_zone + trend_score + crossover) / 3


def calibrate_probability(context: PipelineContext) -> float:
    """Calibrated probability in [0.05, 0.95]; 0.5 if anything is non-finite."""
    technical = technical_score(context.indicators)
    raw = 0.7 * technical + 0.3 * (0.5 + 0.1 * context.sentiment)
    probability = 0.5 + (raw - 0.5) * context.data_quality

    if not math.isfinite(probability):
        logger.warning(
            "Non-finite probability, using neutral",
            extra={"data": {"fingerprint": context.fingerprint}},
        )
        return NEUTRAL_PROBABILITY
    return _clamp(probability, PROBABILITY_FLOOR, PROBABILITY_CEILING)


def series_completeness(context: PipelineContext) -> float:
    primary = context.primary_series
    if primary is None:
        return 0.0
    return min(1.0, len(primary.points) / COMPLETE_SERIES_POINTS)


def derive_confidence(context: PipelineContext) -> float:
    """Confidence in [0.1, 0.95]; 0.6 if anything is non-finite."""
    confidence = (
        0.4 * context.data_quality
        + 0.3 * context.indicators.strength
        + 0.3 * series_completeness(context)
    )
    if not math.isfinite(confidence):
        return DEFAULT_CONFIDENCE
    return _clamp(confidence, CONFIDENCE_FLOOR, CONFIDENCE_CEILING)


def probability_interval(probability: float, confidence: float) -> ProbabilityInterval:
    """Interval around ``probability`` that narrows as confidence rises.

    Bounds are rounded to 3 decimals and always contain ``probability``
    when it is itself rounded to 3 decimals.
    """
    spread = (1.0 - confidence) * MAX_INTERVAL_SPREAD
    lower = max(0.0, probability - spread)
    upper = min(1.0, probability + spread)
    return ProbabilityInterval(lower=round(lower, 3), upper=round(upper, 3))
