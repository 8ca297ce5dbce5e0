"""Pydantic schemas: the interface contracts between all modules.

Every stage of the insight pipeline passes these types to the next one:
admission → fusion → indicators/sentiment → calibration/ensemble →
scenarios → cache. Cross-module communication never uses ad-hoc dicts.

RULES:
- Probabilities, confidences and data-quality scores are floats in [0, 1].
- Sentiment is a signed float in [-1, 1].
- JSON field names are camelCase (``analysisType``, ``tookMs``); Python
  attribute names are snake_case. Serialize with ``by_alias=True``.
- Timestamps inside admission/cache state are epoch seconds (float) so the
  stores can be swapped for Redis without changing the call contract.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

AnalysisType = Literal["basic", "advanced"]
Trend = Literal["up", "down", "neutral"]
Tier = Literal["free", "pro"]
AdmissionReason = Literal["OK", "PRO_BYPASS", "RATE_LIMIT", "DAILY_LIMIT"]


# ─── Request ───


class InsightRequest(BaseModel):
    """A validated, immutable insight request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    question: str = Field(min_length=1, max_length=500)
    category: str = Field(min_length=1, max_length=64)
    horizon: str = Field(min_length=1, max_length=64)
    analysis_type: AnalysisType = Field(default="basic", alias="analysisType")

    @field_validator("question", "category", mode="before")
    @classmethod
    def strip_text(cls, v: object) -> object:
        """Trim surrounding whitespace before length checks."""
        return v.strip() if isinstance(v, str) else v

    @field_validator("horizon")
    @classmethod
    def horizon_not_blank(cls, v: str) -> str:
        """Reject whitespace-only horizons but keep the raw string for fingerprinting."""
        if not v.strip():
            msg = "horizon must not be blank"
            raise ValueError(msg)
        return v


# ─── Data Fusion ───


class PricePoint(BaseModel):
    """One daily observation of a market series."""

    timestamp: datetime
    price: float = Field(gt=0)
    volume: float = Field(default=0.0, ge=0)


class MarketSeries(BaseModel):
    """Ordered price history for one symbol plus its fetch quality."""

    symbol: str
    points: list[PricePoint] = Field(default_factory=list)
    quality: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def prices(self) -> list[float]:
        return [p.price for p in self.points]


class NewsItem(BaseModel):
    """A headline with a signed sentiment score."""

    title: str
    sentiment: float = Field(ge=-1.0, le=1.0)
    source: str
    url: str | None = None
    published_at: datetime | None = None


# ─── Features ───


class Indicators(BaseModel):
    """Technical indicators for the primary series. ``None`` means unavailable."""

    rsi: float | None = Field(default=None, ge=0.0, le=100.0)
    sma20: float | None = None
    sma50: float | None = None
    ema12: float | None = None
    ema26: float | None = None
    atr: float | None = None
    support: float | None = None
    resistance: float | None = None
    last_price: float | None = None
    short_return: float | None = None
    trend: Trend = "neutral"
    strength: float = Field(default=0.0, ge=0.0, le=1.0)


class PipelineContext(BaseModel):
    """Everything one pipeline run knows. Built once by ``build_context``, read-only after."""

    model_config = ConfigDict(frozen=True)

    request: InsightRequest
    fingerprint: str
    series: list[MarketSeries]
    news: list[NewsItem]
    indicators: Indicators
    sentiment: float = Field(ge=-1.0, le=1.0)
    market_quality: float = Field(ge=0.0, le=1.0)
    data_quality: float = Field(ge=0.0, le=1.0)

    @property
    def primary_series(self) -> MarketSeries | None:
        """First series that actually has points."""
        return next((s for s in self.series if s.points), None)


# ─── Output ───


class Scenario(BaseModel):
    """One of the bull/base/bear narratives."""

    label: str
    probability: float = Field(ge=0.0, le=1.0)
    drivers: list[str] = Field(default_factory=list)


class ProbabilityInterval(BaseModel):
    lower: float = Field(ge=0.0, le=1.0)
    upper: float = Field(ge=0.0, le=1.0)


class SourceRef(BaseModel):
    name: str
    url: str


class InsightMetrics(BaseModel):
    """Indicator snapshot returned to the caller alongside the probability."""

    model_config = ConfigDict(populate_by_name=True)

    rsi: float | None = None
    sma20: float | None = None
    sma50: float | None = None
    ema12: float | None = None
    ema26: float | None = None
    atr: float | None = None
    support: float | None = None
    resistance: float | None = None
    trend: Trend = "neutral"
    sentiment: float = 0.0
    data_quality: float | None = Field(default=None, alias="dataQuality")


class MemberPrediction(BaseModel):
    """Output of one ensemble member."""

    model: str
    probability: float = Field(ge=0.0, le=1.0)
    weight: float
    reliability: float
    drivers: list[str] = Field(default_factory=list)


class EnsembleOutput(BaseModel):
    """Reliability-weighted combination of ensemble members."""

    model_config = ConfigDict(populate_by_name=True)

    probability: float = Field(ge=0.0, le=1.0)
    drivers: list[str] = Field(default_factory=list)
    rationale: str
    models_used: list[str] = Field(alias="modelsUsed")
    individual_predictions: list[MemberPrediction] = Field(alias="individualPredictions")
    consensus: float = Field(ge=0.0, le=1.0)
    disagreement: float = Field(ge=0.0, le=1.0)


class InsightResponse(BaseModel):
    """Final response of the insight pipeline."""

    model_config = ConfigDict(populate_by_name=True)

    probability: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    interval: ProbabilityInterval
    rationale: str
    scenarios: list[Scenario] = Field(min_length=3, max_length=3)
    sources: list[SourceRef] = Field(default_factory=list)
    metrics: InsightMetrics
    ensemble: EnsembleOutput | None = None
    took_ms: int = Field(default=0, ge=0, alias="tookMs")

    @field_validator("scenarios")
    @classmethod
    def validate_scenario_probabilities(cls, v: list[Scenario]) -> list[Scenario]:
        """Validate that scenario probabilities sum to approximately 1.0."""
        total = sum(s.probability for s in v)
        if not (0.99 <= total <= 1.01):
            msg = f"Scenario probabilities must sum to ~1.0, got {total:.4f}"
            raise ValueError(msg)
        return v


# ─── Admission ───


class RateLimitState(BaseModel):
    """Per-identifier counters for the free tier."""

    window_count: int = 0
    window_reset_at: float
    daily_count: int = 0
    daily_reset_at: float


class AdmissionDecision(BaseModel):
    """Result of ``AdmissionController.admit``."""

    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    tier: Tier
    reason: AdmissionReason
    retry_after: int | None = Field(default=None, alias="retryAfter")
    remaining: int | None = None


# ─── Cache ───


class CacheEntry(BaseModel):
    """A stored response plus the bookkeeping needed for TTL expiry."""

    fingerprint: str
    data: InsightResponse
    created_at: float
    ttl: int

    def is_expired(self, now: float) -> bool:
        return now > self.created_at + self.ttl
