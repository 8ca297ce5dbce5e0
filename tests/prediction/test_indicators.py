"""Tests for the technical indicator engine."""

from __future__ import annotations

import numpy as np
import pytest

from insights.common.schemas import MarketSeries
from insights.prediction.indicators import (
    atr,
    classify_trend,
    compute_indicators,
    compute_primary_indicators,
    ema,
    period_return,
    rsi,
    sma,
    support_resistance,
    trend_strength,
)
from tests.factories import falling_prices, make_points, rising_prices


# ─── Individual Indicators ───


class TestRsi:
    def test_needs_period_plus_one_prices(self):
        assert rsi(np.arange(1.0, 15.0)) is None
        assert rsi(np.arange(1.0, 16.0)) is not None

    def test_no_losses_is_100(self):
        assert rsi(np.array(rising_prices(20))) == 100.0

    def test_no_gains_is_0(self):
        assert rsi(np.array(falling_prices(20))) == 0.0

    def test_balanced_is_50(self):
        """Alternating +1/-1 moves give equal average gain and loss."""
        prices = np.array([10.0, 11.0] * 8)[:15]
        assert rsi(prices) == pytest.approx(50.0)


class TestMovingAverages:
    def test_sma(self):
        assert sma(np.arange(1.0, 21.0), 20) == pytest.approx(10.5)

    def test_sma_too_short(self):
        assert sma(np.arange(1.0, 20.0), 20) is None

    def test_ema_of_constant_is_constant(self):
        assert ema(np.full(40, 42.0), 12) == pytest.approx(42.0)

    def test_ema_tracks_recent_prices(self):
        """On a rising series the fast EMA sits above the slow one."""
        prices = np.array(rising_prices(60))
        assert ema(prices, 12) > ema(prices, 26)


class TestAtrAndBands:
    def test_atr_of_constant_steps(self):
        assert atr(np.array(rising_prices(20, step=300.0))) == pytest.approx(300.0)

    def test_atr_too_short(self):
        assert atr(np.arange(1.0, 10.0)) is None

    def test_support_resistance_band(self):
        support, resistance = support_resistance(np.array([100.0, 110.0, 90.0]))
        assert support == pytest.approx(88.2)
        assert resistance == pytest.approx(112.2)

    def test_support_resistance_empty(self):
        assert support_resistance(np.array([])) == (None, None)

    def test_period_return(self):
        assert period_return(np.array([100.0, 1, 1, 1, 1, 110.0])) == pytest.approx(0.1)


# ─── Trend ───


class TestTrend:
    def test_up_requires_aligned_averages_and_return(self):
        assert classify_trend(120.0, 110.0, 100.0, 0.02) == "up"

    def test_up_rejected_on_small_return(self):
        assert classify_trend(120.0, 110.0, 100.0, 0.005) == "neutral"

    def test_down(self):
        assert classify_trend(80.0, 90.0, 100.0, -0.05) == "down"

    def test_missing_inputs_neutral(self):
        assert classify_trend(120.0, None, 100.0, 0.02) == "neutral"

    def test_strength_bounded(self):
        assert trend_strength(200.0, 100.0, 100.0) == 1.0
        assert trend_strength(100.0, 100.0, 50.0) == 0.0
        assert trend_strength(None, None, None) == 0.0


# ─── Full Computation ───


class TestComputeIndicators:
    def test_rising_series(self):
        ind = compute_indicators(rising_prices(60))
        assert ind.trend == "up"
        assert ind.rsi == 100.0
        assert ind.sma20 > ind.sma50
        assert ind.strength == pytest.approx(1.0)
        assert ind.last_price == rising_prices(60)[-1]

    def test_falling_series(self):
        ind = compute_indicators(falling_prices(60))
        assert ind.trend == "down"
        assert ind.sma20 < ind.sma50

    def test_short_series_partial(self):
        """Ten prices: bands and last price only, everything else unavailable."""
        ind = compute_indicators(rising_prices(10))
        assert ind.rsi is None
        assert ind.sma20 is None
        assert ind.atr is None
        assert ind.support is not None
        assert ind.trend == "neutral"

    def test_empty_series(self):
        ind = compute_indicators([])
        assert ind.last_price is None
        assert ind.trend == "neutral"
        assert ind.strength == 0.0

    def test_drops_non_finite_and_non_positive(self):
        ind = compute_indicators([100.0, float("nan"), -5.0, 0.0, float("inf"), 101.0])
        assert ind.last_price == 101.0
        assert ind.support == pytest.approx(98.0)

    def test_deterministic(self):
        prices = rising_prices(45)
        assert compute_indicators(prices) == compute_indicators(prices)


class TestComputePrimaryIndicators:
    def test_uses_first_series_with_points(self):
        empty = MarketSeries(symbol="BTC", points=[])
        sol = MarketSeries(symbol="SOL", points=make_points(falling_prices(60)))
        assert compute_primary_indicators([empty, sol]).trend == "down"

    def test_no_data(self):
        ind = compute_primary_indicators([MarketSeries(symbol="BTC")])
        assert ind.rsi is None
