"""Tests for rationale text and source attribution."""

from __future__ import annotations

from insights.common.schemas import Indicators, MarketSeries, NewsItem
from insights.prediction.rationale import (
    MARKET_SOURCE,
    NEWS_SOURCE,
    compile_sources,
    generate_rationale,
)
from tests.factories import make_context, make_points, make_request, rising_prices

UPTREND = Indicators(
    rsi=75.0, trend="up", sma20=110.0, sma50=100.0, atr=8.0, last_price=120.0, strength=0.8
)


class TestGenerateRationale:
    def test_basic_crypto_sections(self):
        context = make_context(indicators=UPTREND, sentiment=0.6, data_quality=0.8)
        text = generate_rationale(context, 0.62, 0.55)
        assert text.startswith("**Executive Summary**")
        assert "62% probability with 55% confidence" in text
        assert "**Technical Analysis**" in text
        assert "RSI at 75.0 indicates overbought conditions." in text
        assert "ATR indicates high volatility." in text
        assert "**Market Sentiment**" in text
        assert "strong positive" in text
        assert "**Advanced Research**" not in text
        assert "Key uncertainty: Crypto markets are highly volatile." in text

    def test_advanced_adds_research_and_crossover(self):
        context = make_context(
            request=make_request(analysis_type="advanced"), indicators=UPTREND
        )
        text = generate_rationale(context, 0.6, 0.5)
        assert "**Advanced Research**" in text
        assert "bullish crossover pattern" in text
        assert "comprehensive multi-source" in text

    def test_non_market_category_skips_technicals(self):
        context = make_context(
            request=make_request(question="Will the bill pass?", category="politics"),
            sentiment=-0.3,
            data_quality=0.5,
        )
        text = generate_rationale(context, 0.45, 0.3)
        assert "**Technical Analysis**" not in text
        assert "**Contextual Sentiment**" in text
        assert "moderate negative" in text
        assert "Non-market predictions involve inherent uncertainty" in text
        assert "Limited data availability increases uncertainty" in text

    def test_negligible_sentiment_omitted(self):
        text = generate_rationale(make_context(sentiment=0.05), 0.5, 0.5)
        assert "Sentiment**" not in text


class TestCompileSources:
    def test_both_sources(self):
        series = [MarketSeries(symbol="BTC", points=make_points(rising_prices(5)))]
        news = [NewsItem(title="x", sentiment=0.0, source="A")]
        assert compile_sources(series, news) == [MARKET_SOURCE, NEWS_SOURCE]

    def test_empty_series_not_credited(self):
        assert compile_sources([MarketSeries(symbol="BTC")], []) == []
