"""Bull / base / bear scenario construction."""

from __future__ import annotations

from insights.common.schemas import PipelineContext, Scenario

BULL_CAP = 0.6
BEAR_FLOOR = 0.1
SCENARIO_SHIFT = 0.2
MAX_DRIVERS = 3

BASE_DRIVERS = ["Current market conditions", "Technical analysis balance"]


def _bull_drivers(context: PipelineContext) -> list[str]:
    ind = context.indicators
    drivers: list[str] = []
    if ind.trend == "up":
        drivers.append("Strong upward trend")
    if ind.rsi is not None and ind.rsi < 70:
        drivers.append("Room for growth (RSI)")
    if context.sentiment > 0:
        drivers.append("Positive market sentiment")
    if ind.sma20 is not None and ind.sma50 is not None and ind.sma20 > ind.sma50:
        drivers.append("Bullish moving averages")
    return drivers[:MAX_DRIVERS]


def _bear_drivers(context: PipelineContext) -> list[str]:
    ind = context.indicators
    drivers: list[str] = []
    if ind.trend == "down":
        drivers.append("Bearish trend confirmed")
    if ind.rsi is not None and ind.rsi > 70:
        drivers.append("Overbought conditions")
    if context.sentiment < 0:
        drivers.append("Negative sentiment")
    if ind.sma20 is not None and ind.sma50 is not None and ind.sma20 < ind.sma50:
        drivers.append("Bearish moving averages")
    return drivers[:MAX_DRIVERS]


def build_scenarios(context: PipelineContext, probability: float) -> list[Scenario]:
    """Three scenarios whose probabilities sum to exactly 1.000.

    Bull = min(0.6, p + 0.2), Base = p, Bear = max(0.1, p - 0.2), then
    normalized. Bull and Bear are rounded to 3 decimals and Base takes
    the residual.
    """
    bull = min(BULL_CAP, probability + SCENARIO_SHIFT)
    base = probability
    bear = max(BEAR_FLOOR, probability - SCENARIO_SHIFT)
    total = bull + base + bear

    bull_share = round(bull / total, 3)
    bear_share = round(bear / total, 3)
    base_share = round(1.0 - bull_share - bear_share, 3)

    return [
        Scenario(label="Bull Case", probability=bull_share, drivers=_bull_drivers(context)),
        Scenario(label="Base Case", probability=base_share, drivers=list(BASE_DRIVERS)),
        Scenario(label="Bear Case", probability=bear_share, drivers=_bear_drivers(context)),
    ]


def fallback_scenarios() -> list[Scenario]:
    """Neutral scenarios used when the pipeline cannot complete."""
    return [
        Scenario(label="Bull Case", probability=0.35, drivers=["Potential upside factors"]),
        Scenario(label="Base Case", probability=0.30, drivers=["Current conditions"]),
        Scenario(label="Bear Case", probability=0.35, drivers=["Potential downside risks"]),
    ]
