"""Technical indicator engine.

Pure, deterministic functions over a price series. Every indicator is
``None`` when the series is too short to compute it; callers treat
``None`` as "unavailable" rather than as zero.

Usage:
    from insights.prediction.indicators import compute_indicators

    indicators = compute_indicators(series.prices)
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from insights.common.logging import get_logger
from insights.common.schemas import Indicators, MarketSeries

logger = get_logger("INDICATOR")

RSI_PERIOD = 14
ATR_PERIOD = 14
SMA_SHORT = 20
SMA_LONG = 50
EMA_FAST = 12
EMA_SLOW = 26
BAND_WINDOW = 20
BAND_PCT = 0.02
RETURN_PERIODS = 5
TREND_RETURN_THRESHOLD = 0.01


def rsi(prices: np.ndarray, period: int = RSI_PERIOD) -> float | None:
    """Simple-average RSI over the last ``period`` changes.

    Returns 100 when there are no losses in the window.
    """
    if len(prices) < period + 1:
        return None
    deltas = np.diff(prices[-(period + 1) :])
    avg_gain = float(np.clip(deltas, 0, None).mean())
    avg_loss = float(np.clip(-deltas, 0, None).mean())
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def sma(prices: np.ndarray, period: int) -> float | None:
    if len(prices) < period:
        return None
    return float(prices[-period:].mean())


def ema(prices: np.ndarray, period: int) -> float | None:
    """EMA seeded with the SMA of the first ``period`` prices."""
    if len(prices) < period:
        return None
    alpha = 2.0 / (period + 1)
    value = float(prices[:period].mean())
    for price in prices[period:]:
        value = alpha * float(price) + (1 - alpha) * value
    return value


def atr(prices: np.ndarray, period: int = ATR_PERIOD) -> float | None:
    """Mean absolute close-to-close change (close-only series have no high/low)."""
    if len(prices) < period + 1:
        return None
    return float(np.abs(np.diff(prices[-(period + 1) :])).mean())


def support_resistance(
    prices: np.ndarray,
    window: int = BAND_WINDOW,
) -> tuple[float | None, float | None]:
    """2% band below the trailing minimum and above the trailing maximum."""
    if len(prices) == 0:
        return None, None
    recent = prices[-window:]
    return float(recent.min()) * (1 - BAND_PCT), float(recent.max()) * (1 + BAND_PCT)


def period_return(prices: np.ndarray, periods: int = RETURN_PERIODS) -> float | None:
    if len(prices) < periods + 1:
        return None
    return float(prices[-1] / prices[-(periods + 1)] - 1.0)


def classify_trend(
    price: float | None,
    sma20: float | None,
    sma50: float | None,
    short_return: float | None,
) -> str:
    """up iff price > sma20 > sma50 with return above +1%; down is the mirror."""
    if price is None or sma20 is None or sma50 is None or short_return is None:
        return "neutral"
    if price > sma20 > sma50 and short_return > TREND_RETURN_THRESHOLD:
        return "up"
    if price < sma20 < sma50 and short_return < -TREND_RETURN_THRESHOLD:
        return "down"
    return "neutral"


def trend_strength(price: float | None, sma50: float | None, rsi_value: float | None) -> float:
    """Mean of the available terms: MA distance and RSI distance from 50."""
    terms: list[float] = []
    if price is not None and sma50 is not None and sma50 > 0:
        terms.append(min(1.0, abs(price / sma50 - 1.0) * 10))
    if rsi_value is not None:
        terms.append(abs(rsi_value - 50.0) / 50.0)
    if not terms:
        return 0.0
    return min(1.0, sum(terms) / len(terms))


def compute_indicators(prices: Sequence[float]) -> Indicators:
    """Compute every indicator for one price series (oldest first).

    Non-finite and non-positive prices are dropped before computing.
    """
    arr = np.asarray(prices, dtype=float)
    arr = arr[np.isfinite(arr) & (arr > 0)]

    if len(arr) == 0:
        return Indicators()

    last_price = float(arr[-1])
    rsi_value = rsi(arr)
    sma20 = sma(arr, SMA_SHORT)
    sma50 = sma(arr, SMA_LONG)
    short_return = period_return(arr)
    support, resistance = support_resistance(arr)

    return Indicators(
        rsi=rsi_value,
        sma20=sma20,
        sma50=sma50,
        ema12=ema(arr, EMA_FAST),
        ema26=ema(arr, EMA_SLOW),
        atr=atr(arr),
        support=support,
        resistance=resistance,
        last_price=last_price,
        short_return=short_return,
        trend=classify_trend(last_price, sma20, sma50, short_return),
        strength=trend_strength(last_price, sma50, rsi_value),
    )


def compute_primary_indicators(series: Sequence[MarketSeries]) -> Indicators:
    """Indicators for the first series that has any points."""
    primary = next((s for s in series if s.points), None)
    if primary is None:
        logger.info("No market series with data, indicators unavailable")
        return Indicators()

    indicators = compute_indicators(primary.prices)
    logger.debug(
        "Indicators computed",
        extra={
            "data": {
                "symbol": primary.symbol,
                "points": len(primary.points),
                "rsi": indicators.rsi,
                "trend": indicators.trend,
                "strength": round(indicators.strength, 3),
            }
        },
    )
    return indicators
