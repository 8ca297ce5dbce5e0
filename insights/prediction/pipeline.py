"""Insight pipeline orchestrator.

Ties every stage into a single entry point:
    1. Cache lookup by (analysis type, request fingerprint)
    2. Concurrent market + news fetch (degraded sources lower quality)
    3. Indicators and fused sentiment
    4. Context normalization and data quality
    5. Calibrated probability (basic) or ensemble probability (advanced)
    6. Interval, scenarios, rationale and sources
    7. Cache store (fallback responses are never cached)

Any unexpected fault after admission yields the neutral fallback response
instead of an error, so callers always receive a well-formed insight.

Usage:
    from insights.prediction.pipeline import InsightService

    service = InsightService.from_settings()
    result = await service.get_insight(request)
"""

from __future__ import annotations

import time
from typing import NamedTuple

from insights.cache.fingerprint import fingerprint
from insights.cache.response_cache import ResponseCache
from insights.common.config import Settings, get_settings
from insights.common.exceptions import PipelineFailureError
from insights.common.logging import get_logger
from insights.common.metrics import PIPELINE_DURATION_SECONDS, PIPELINE_RUNS_TOTAL
from insights.common.schemas import (
    EnsembleOutput,
    Indicators,
    InsightMetrics,
    InsightRequest,
    InsightResponse,
    PipelineContext,
    ProbabilityInterval,
)
from insights.fusion.fusion import DataFusionLayer
from insights.fusion.symbols import extract_keywords, extract_symbols
from insights.prediction.calibration import (
    CONFIDENCE_CEILING,
    CONFIDENCE_FLOOR,
    build_context,
    calibrate_probability,
    derive_confidence,
    probability_interval,
)
from insights.prediction.ensemble import EnsemblePredictor
from insights.prediction.indicators import compute_primary_indicators
from insights.prediction.rationale import FALLBACK_RATIONALE, compile_sources, generate_rationale
from insights.prediction.scenarios import build_scenarios, fallback_scenarios
from insights.prediction.sentiment import fuse_sentiment

logger = get_logger("MODEL")

ENSEMBLE_CONFIDENCE_WEIGHT = 0.3


class InsightResult(NamedTuple):
    """What the HTTP layer needs to render one response."""

    response: InsightResponse
    cached: bool
    cache_age_seconds: int | None = None
    degraded: bool = False


def _round(value: float | None, digits: int = 4) -> float | None:
    return round(value, digits) if value is not None else None


def build_metrics(indicators: Indicators, sentiment: float, data_quality: float) -> InsightMetrics:
    return InsightMetrics(
        rsi=_round(indicators.rsi, 2),
        sma20=_round(indicators.sma20),
        sma50=_round(indicators.sma50),
        ema12=_round(indicators.ema12),
        ema26=_round(indicators.ema26),
        atr=_round(indicators.atr),
        support=_round(indicators.support),
        resistance=_round(indicators.resistance),
        trend=indicators.trend,
        sentiment=round(sentiment, 4),
        data_quality=round(data_quality, 3),
    )


def blend_ensemble_confidence(base_confidence: float, consensus: float) -> float:
    """0.7 * derived confidence + 0.3 * ensemble consensus, clamped."""
    blended = (
        1 - ENSEMBLE_CONFIDENCE_WEIGHT
    ) * base_confidence + ENSEMBLE_CONFIDENCE_WEIGHT * consensus
    return max(CONFIDENCE_FLOOR, min(CONFIDENCE_CEILING, blended))


def fallback_response(took_ms: int = 0) -> InsightResponse:
    """Neutral response returned when the pipeline cannot complete."""
    return InsightResponse(
        probability=0.5,
        confidence=0.3,
        interval=ProbabilityInterval(lower=0.3, upper=0.7),
        rationale=FALLBACK_RATIONALE,
        scenarios=fallback_scenarios(),
        sources=[],
        metrics=InsightMetrics(trend="neutral", sentiment=0.0),
        took_ms=took_ms,
    )


class InsightService:
    """Cache-fronted insight generation.

    Args:
        fusion: Upstream data fusion layer.
        cache: Response cache.
        ensemble: Ensemble used for advanced analysis.
        lookback_days: Market history window.
        news_limit: Maximum news items per request.
    """

    def __init__(
        self,
        fusion: DataFusionLayer,
        cache: ResponseCache,
        ensemble: EnsemblePredictor | None = None,
        *,
        lookback_days: int = 30,
        news_limit: int = 10,
    ) -> None:
        self.fusion = fusion
        self.cache = cache
        self.ensemble = ensemble or EnsemblePredictor()
        self.lookback_days = lookback_days
        self.news_limit = news_limit

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> InsightService:
        settings = settings or get_settings()
        return cls(
            DataFusionLayer.from_settings(settings),
            ResponseCache.from_settings(settings),
            EnsemblePredictor.from_settings(settings),
            lookback_days=settings.market_lookback_days,
            news_limit=settings.news_item_limit,
        )

    async def get_insight(self, request: InsightRequest) -> InsightResult:
        """Serve from cache when fresh, otherwise generate and cache."""
        entry = await self.cache.get(request)
        if entry is not None:
            PIPELINE_RUNS_TOTAL.labels(analysis_type=request.analysis_type, outcome="cached").inc()
            return InsightResult(
                response=entry.data,
                cached=True,
                cache_age_seconds=self.cache.age(entry),
            )

        with PIPELINE_DURATION_SECONDS.labels(analysis_type=request.analysis_type).time():
            response, degraded = await self.generate(request)

        if not degraded:
            await self.cache.set(request, response)
        return InsightResult(response=response, cached=False, degraded=degraded)

    async def generate(self, request: InsightRequest) -> tuple[InsightResponse, bool]:
        """Run the pipeline once, bypassing the cache.

        Returns:
            (response, degraded) where degraded is True for the neutral fallback.
        """
        start = time.perf_counter()
        request_fingerprint = fingerprint(request)

        try:
            response = await self._run(request, request_fingerprint, start)
        except Exception as exc:
            error = PipelineFailureError(
                "Insight pipeline failed, returning neutral fallback",
                {"fingerprint": request_fingerprint, "error": str(exc)},
            )
            logger.warning(str(error), exc_info=True)
            PIPELINE_RUNS_TOTAL.labels(
                analysis_type=request.analysis_type, outcome="fallback"
            ).inc()
            return fallback_response(_elapsed_ms(start)), True

        PIPELINE_RUNS_TOTAL.labels(analysis_type=request.analysis_type, outcome="success").inc()
        return response, False

    async def _run(
        self,
        request: InsightRequest,
        request_fingerprint: str,
        start: float,
    ) -> InsightResponse:
        symbols = extract_symbols(request.question, request.category)
        keywords = extract_keywords(request.question)

        fused = await self.fusion.gather(
            symbols,
            keywords,
            lookback_days=self.lookback_days,
            news_limit=self.news_limit,
        )

        indicators = compute_primary_indicators(fused.series)
        sentiment = fuse_sentiment(fused.news, request.question)
        context = build_context(
            request,
            request_fingerprint,
            fused.series,
            fused.news,
            indicators,
            sentiment,
            fused.market_quality,
        )

        probability = calibrate_probability(context)
        confidence = derive_confidence(context)

        ensemble_output: EnsembleOutput | None = None
        if request.analysis_type == "advanced":
            ensemble_output = await self.ensemble.predict(context)
            probability = ensemble_output.probability
            confidence = blend_ensemble_confidence(confidence, ensemble_output.consensus)

        probability = round(probability, 3)
        confidence = round(confidence, 3)

        response = self._assemble(context, probability, confidence, ensemble_output, start)

        logger.info(
            "Insight generated",
            extra={
                "data": {
                    "fingerprint": request_fingerprint,
                    "analysis_type": request.analysis_type,
                    "symbols": symbols,
                    "probability": probability,
                    "confidence": confidence,
                    "data_quality": round(context.data_quality, 3),
                    "took_ms": response.took_ms,
                }
            },
        )
        return response

    def _assemble(
        self,
        context: PipelineContext,
        probability: float,
        confidence: float,
        ensemble_output: EnsembleOutput | None,
        start: float,
    ) -> InsightResponse:
        rationale = generate_rationale(context, probability, confidence)
        if ensemble_output is not None:
            rationale = f"{rationale}\n\n**Ensemble Analysis**\n{ensemble_output.rationale}"

        return InsightResponse(
            probability=probability,
            confidence=confidence,
            interval=probability_interval(probability, confidence),
            rationale=rationale,
            scenarios=build_scenarios(context, probability),
            sources=compile_sources(context.series, context.news),
            metrics=build_metrics(context.indicators, context.sentiment, context.data_quality),
            ensemble=ensemble_output,
            took_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
