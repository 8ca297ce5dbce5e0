"""Multi-member ensemble for advanced analysis.

Four specialist members score the same PipelineContext. Each member is a
deterministic heuristic plus a small perturbation drawn from a
``numpy.random.Generator`` seeded from the request fingerprint and the
member name, so the same request always yields the same ensemble output
regardless of member scheduling order.

Members run concurrently, each under its own timeout. Failing members are
excluded; if none succeed the calibrated baseline is reported as a single
``fallback`` member.

Usage:
    from insights.prediction.ensemble import EnsemblePredictor

    ensemble = EnsemblePredictor.from_settings()
    output = await ensemble.predict(context)
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import numpy as np

from insights.common.config import Settings, get_settings
from insights.common.logging import get_logger
from insights.common.metrics import ENSEMBLE_DISAGREEMENT, ENSEMBLE_MEMBER_RUNS_TOTAL
from insights.common.schemas import EnsembleOutput, MemberPrediction, PipelineContext
from insights.prediction.calibration import calibrate_probability, technical_score

logger = get_logger("ENSEMBLE")

PROBABILITY_FLOOR = 0.05
PROBABILITY_CEILING = 0.95
MAX_DRIVERS = 5

FALLBACK_MODEL = "fallback"

# scorer(context, rng) -> (probability, drivers)
Scorer = Callable[[PipelineContext, np.random.Generator], Awaitable[tuple[float, list[str]]]]


def _clamp(
    value: float,
    lower: float = PROBABILITY_FLOOR,
    upper: float = PROBABILITY_CEILING,
) -> float:
    return max(lower, min(upper, value))


@dataclass(frozen=True)
class EnsembleMember:
    """One specialist in the ensemble.

    Attributes:
        name: Model name reported in ``modelsUsed``.
        weight: Prior weight in the combination.
        reliability: Multiplies the weight (historical trust in the member).
        categories: Lower-case categories the member applies to; "all" matches any.
        scorer: Async callable producing (probability, drivers).
    """

    name: str
    weight: float
    reliability: float
    categories: frozenset[str]
    scorer: Scorer = field(compare=False)

    def applies_to(self, category: str) -> bool:
        return "all" in self.categories or category.strip().lower() in self.categories


# ─── Member Scorers ───


async def score_technical(
    context: PipelineContext,
    rng: np.random.Generator,
) -> tuple[float, list[str]]:
    """Indicator score nudged by short-term momentum."""
    ind = context.indicators
    momentum = max(-0.1, min(0.1, (ind.short_return or 0.0) * 2))
    probability = technical_score(ind) + momentum + rng.normal(0.0, 0.02)

    drivers: list[str] = []
    if ind.trend == "up":
        drivers.append("Technical indicators show bullish momentum")
    elif ind.trend == "down":
        drivers.append("Technical indicators show bearish momentum")
    if ind.rsi is not None:
        if ind.rsi > 70:
            drivers.append("RSI signals overbought conditions")
        elif ind.rsi < 30:
            drivers.append("RSI signals oversold conditions")
    if ind.last_price is not None and ind.support is not None and ind.last_price > ind.support:
        drivers.append("Support levels holding")
    return _clamp(probability), drivers


async def score_sentiment(
    context: PipelineContext,
    rng: np.random.Generator,
) -> tuple[float, list[str]]:
    """Fused news sentiment mapped around 0.5."""
    probability = 0.5 + 0.3 * context.sentiment + rng.uniform(-0.03, 0.03)

    drivers: list[str] = []
    if not context.news:
        drivers.append("Limited news coverage")
    elif context.sentiment > 0.1:
        drivers.append("News coverage shows optimistic tone")
    elif context.sentiment < -0.1:
        drivers.append("News coverage shows pessimistic tone")
    else:
        drivers.append("News sentiment is mixed")
    return _clamp(probability), drivers


async def score_fundamental(
    context: PipelineContext,
    rng: np.random.Generator,
) -> tuple[float, list[str]]:
    """Conservative score from long-run price level and volume trend."""
    ind = context.indicators
    drivers: list[str] = []
    distance = 0.0
    if ind.last_price is not None and ind.sma50:
        distance = max(-0.1, min(0.1, ind.last_price / ind.sma50 - 1.0))
        drivers.append(
            "Price above long-term average" if distance > 0 else "Price below long-term average"
        )

    volume_tilt = 0.0
    primary = context.primary_series
    if primary is not None and len(primary.points) >= 14:
        volumes = np.array([p.volume for p in primary.points], dtype=float)
        recent, prior = volumes[-7:].mean(), volumes[-14:-7].mean()
        if prior > 0:
            volume_tilt = max(-0.05, min(0.05, (recent / prior - 1.0) * 0.1))
            if recent > prior:
                drivers.append("Trading volume rising")
            elif recent < prior:
                drivers.append("Trading volume falling")

    probability = 0.5 + 0.5 * distance + volume_tilt + rng.uniform(-0.05, 0.05)
    return _clamp(probability), drivers


async def score_baseline(
    context: PipelineContext,
    rng: np.random.Generator,
) -> tuple[float, list[str]]:
    """The basic-mode calibrator, unperturbed."""
    return calibrate_probability(context), ["Calibrated technical and sentiment baseline"]


DEFAULT_MEMBERS: tuple[EnsembleMember, ...] = (
    EnsembleMember(
        "technical-expert", 0.30, 0.75, frozenset({"crypto", "stocks", "forex"}), score_technical
    ),
    EnsembleMember(
        "sentiment-analyst",
        0.25,
        0.70,
        frozenset({"crypto", "politics", "social"}),
        score_sentiment,
    ),
    EnsembleMember(
        "fundamental-analyst",
        0.25,
        0.80,
        frozenset({"crypto", "stocks", "economics"}),
        score_fundamental,
    ),
    EnsembleMember("baseline-model", 0.20, 0.60, frozenset({"all"}), score_baseline),
)


def member_rng(fingerprint: str, member_name: str) -> np.random.Generator:
    """Generator seeded from the request fingerprint and member name."""
    digest = hashlib.sha256(f"{fingerprint}:{member_name}".encode()).digest()
    return np.random.default_rng(int.from_bytes(digest[:8], "big"))


# ─── Combination ───


def consensus_score(probabilities: list[float]) -> float:
    """1 - min(1, 2 * population std). One member is full consensus."""
    if len(probabilities) <= 1:
        return 1.0
    return 1.0 - min(1.0, float(np.std(probabilities)) * 2)


def disagreement_score(probabilities: list[float]) -> float:
    if len(probabilities) <= 1:
        return 0.0
    return max(probabilities) - min(probabilities)


def ensemble_rationale(
    count: int,
    probability: float,
    consensus: float,
    disagreement: float,
) -> str:
    text = f"This prediction combines insights from {count} specialized models. "
    if consensus > 0.8:
        text += "All models show strong agreement, indicating high confidence in this assessment. "
    elif consensus > 0.6:
        text += "Models show good agreement with some variation in approach. "
    else:
        text += "Models show mixed signals, reflecting the complexity of this prediction. "
    text += (
        f"The ensemble probability of {probability * 100:.1f}% is a reliability-weighted average."
    )
    if disagreement > 0.3:
        text += (
            f" Note: Models show significant disagreement ({disagreement * 100:.0f}% spread), "
            "indicating high uncertainty in this prediction."
        )
    return text


class EnsemblePredictor:
    """Runs applicable members concurrently and combines their outputs.

    Args:
        members: Ensemble members; defaults to the four specialists.
        member_timeout: Seconds each member may take before it is dropped.
    """

    def __init__(
        self,
        members: tuple[EnsembleMember, ...] | list[EnsembleMember] | None = None,
        member_timeout: float = 2.0,
    ) -> None:
        self.members = tuple(members) if members is not None else DEFAULT_MEMBERS
        self.member_timeout = member_timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EnsemblePredictor:
        settings = settings or get_settings()
        return cls(member_timeout=settings.ensemble_member_timeout_seconds)

    def applicable_members(self, category: str) -> list[EnsembleMember]:
        return [m for m in self.members if m.applies_to(category)]

    async def _run_member(
        self,
        member: EnsembleMember,
        context: PipelineContext,
    ) -> MemberPrediction:
        probability, drivers = await asyncio.wait_for(
            member.scorer(context, member_rng(context.fingerprint, member.name)),
            timeout=self.member_timeout,
        )
        if not np.isfinite(probability):
            raise ValueError(f"{member.name} produced a non-finite probability")
        return MemberPrediction(
            model=member.name,
            probability=_clamp(float(probability)),
            weight=member.weight,
            reliability=member.reliability,
            drivers=drivers,
        )

    async def predict(self, context: PipelineContext) -> EnsembleOutput:
        """Combine every applicable member that succeeds.

        Never raises for member failures; falls back to the calibrated
        baseline when no member produces a usable prediction.
        """
        members = self.applicable_members(context.request.category)
        results = await asyncio.gather(
            *(self._run_member(m, context) for m in members),
            return_exceptions=True,
        )

        predictions: list[MemberPrediction] = []
        for member, result in zip(members, results, strict=True):
            if isinstance(result, BaseException):
                status = "timeout" if isinstance(result, TimeoutError) else "error"
                ENSEMBLE_MEMBER_RUNS_TOTAL.labels(member=member.name, status=status).inc()
                logger.warning(
                    f"Ensemble member {member.name} failed: {status}",
                    extra={"data": {"member": member.name, "error": str(result)}},
                )
                continue
            ENSEMBLE_MEMBER_RUNS_TOTAL.labels(member=member.name, status="success").inc()
            predictions.append(result)

        if not predictions:
            return self._fallback(context)

        total_weight = sum(p.weight * p.reliability for p in predictions)
        if total_weight <= 0:
            return self._fallback(context)

        combined = sum(p.probability * p.weight * p.reliability for p in predictions) / total_weight
        combined = _clamp(combined)

        probabilities = [p.probability for p in predictions]
        consensus = consensus_score(probabilities)
        disagreement = disagreement_score(probabilities)
        ENSEMBLE_DISAGREEMENT.observe(disagreement)

        drivers: list[str] = []
        for p in predictions:
            for driver in p.drivers:
                if driver not in drivers:
                    drivers.append(driver)

        logger.info(
            "Ensemble combined",
            extra={
                "data": {
                    "fingerprint": context.fingerprint,
                    "members": [p.model for p in predictions],
                    "probability": round(combined, 4),
                    "consensus": round(consensus, 3),
                    "disagreement": round(disagreement, 3),
                }
            },
        )

        return EnsembleOutput(
            probability=combined,
            drivers=drivers[:MAX_DRIVERS],
            rationale=ensemble_rationale(len(predictions), combined, consensus, disagreement),
            models_used=[p.model for p in predictions],
            individual_predictions=predictions,
            consensus=consensus,
            disagreement=disagreement,
        )

    def _fallback(self, context: PipelineContext) -> EnsembleOutput:
        probability = calibrate_probability(context)
        logger.warning(
            "No ensemble member succeeded, using calibrated fallback",
            extra={"data": {"fingerprint": context.fingerprint, "probability": probability}},
        )
        ENSEMBLE_MEMBER_RUNS_TOTAL.labels(member=FALLBACK_MODEL, status="success").inc()
        return EnsembleOutput(
            probability=probability,
            drivers=["Calibrated technical and sentiment baseline"],
            rationale=(
                "Ensemble members were unavailable, so this estimate comes from the "
                "calibrated baseline model."
            ),
            models_used=[FALLBACK_MODEL],
            individual_predictions=[
                MemberPrediction(
                    model=FALLBACK_MODEL,
                    probability=probability,
                    weight=1.0,
                    reliability=1.0,
                    drivers=["Calibrated technical and sentiment baseline"],
                )
            ],
            consensus=1.0,
            disagreement=0.0,
        )
