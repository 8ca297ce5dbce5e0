"""Rationale text and source attribution for insight responses.

The rationale is a short markdown document with bold section headings:
Executive Summary, Data Quality Assessment, Technical Analysis (market
topics only), Sentiment (when it is not negligible), Advanced Research
(advanced mode only) and Risk Assessment.
"""

from __future__ import annotations

import math
import re

from insights.common.schemas import MarketSeries, NewsItem, PipelineContext, SourceRef

MARKET_SOURCE = SourceRef(name="CoinGecko Market Data", url="https://coingecko.com")
NEWS_SOURCE = SourceRef(name="CryptoPanic News", url="https://cryptopanic.com")

FALLBACK_RATIONALE = (
    "Unable to perform complete analysis due to data limitations. "
    "This is a neutral assessment."
)

_MARKET_TOPIC_RE = re.compile(r"crypto|btc|eth|market", re.IGNORECASE)


def _percent(value: float, default: float) -> int:
    return round((value if math.isfinite(value) else default) * 100)


def _technical_section(context: PipelineContext, advanced: bool) -> str:
    ind = context.indicators
    text = "**Technical Analysis**\n"
    if ind.trend == "up":
        text += "Current trend is bullish with positive momentum indicators. "
    elif ind.trend == "down":
        text += "Current trend is bearish with negative momentum indicators. "
    else:
        text += "Market is in a neutral trend with mixed signals. "

    if ind.rsi is not None:
        if ind.rsi > 70:
            text += f"RSI at {ind.rsi:.1f} indicates overbought conditions."
        elif ind.rsi < 30:
            text += f"RSI at {ind.rsi:.1f} shows oversold levels."
        else:
            text += f"RSI at {ind.rsi:.1f} is in neutral territory."

    if advanced and ind.sma20 is not None and ind.sma50 is not None:
        pattern = "bullish" if ind.sma20 > ind.sma50 else "bearish"
        text += f" Moving averages show {pattern} crossover pattern."

    if ind.atr is not None and ind.last_price:
        volatility = "high" if ind.atr / ind.last_price > 0.05 else "moderate"
        text += f" ATR indicates {volatility} volatility."

    return text.rstrip()


def generate_rationale(context: PipelineContext, probability: float, confidence: float) -> str:
    """Assemble the markdown rationale for one response."""
    request = context.request
    advanced = request.analysis_type == "advanced"
    market_scope = bool(_MARKET_TOPIC_RE.search(request.category))
    sections: list[str] = []

    depth = "comprehensive multi-source" if advanced else "standard"
    basis = (
        f"Based on {depth} market analysis"
        if market_scope
        else "Based on available evidence and assumptions"
    )
    sections.append(
        f"**Executive Summary**\n{basis}, this prediction has a "
        f"{_percent(probability, 0.5)}% probability with {_percent(confidence, 0.6)}% confidence."
    )

    if market_scope:
        data_sources = (
            "technical indicators, sentiment analysis, fundamental data, and market intelligence"
            if advanced
            else "technical indicators and market sentiment"
        )
    else:
        data_sources = (
            "available data sources, contextual analysis, and comprehensive research"
            if advanced
            else "available evidence and contextual factors"
        )
    sections.append(
        f"**Data Quality Assessment**\nAnalysis incorporates "
        f"{_percent(context.data_quality, 0.7)}% quality data from {data_sources}."
    )

    if market_scope:
        sections.append(_technical_section(context, advanced))

    sentiment = context.sentiment
    if abs(sentiment) > 0.1:
        polarity = "positive" if sentiment > 0 else "negative"
        strength = "strong" if abs(sentiment) > 0.5 else "moderate"
        if market_scope:
            heading = "Market Sentiment"
            impact = (
                "supporting upside scenarios" if sentiment > 0 else "creating downside pressure"
            )
        else:
            heading = "Contextual Sentiment"
            impact = (
                "supporting favorable outcomes" if sentiment > 0 else "indicating challenges ahead"
            )
        sections.append(
            f"**{heading}**\nCurrent sentiment is {strength} {polarity}, {impact}."
        )

    if advanced:
        research = (
            "multi-timeframe technical patterns, cross-asset correlation analysis, "
            "and institutional flow indicators"
            if market_scope
            else "multi-source data integration, contextual pattern recognition, "
            "and comprehensive scenario modeling"
        )
        sections.append(f"**Advanced Research**\nComprehensive analysis includes {research}.")

    risks: list[str] = []
    if request.category.lower() == "crypto":
        risks.append("Crypto markets are highly volatile")
    elif not market_scope:
        risks.append("Non-market predictions involve inherent uncertainty")
    rsi = context.indicators.rsi
    if market_scope and rsi is not None and (rsi > 70 or rsi < 30):
        risks.append("Technical indicators suggest potential reversal risk")
    if context.data_quality < 0.7:
        risks.append("Limited data availability increases uncertainty")
    if advanced:
        risks.append(
            "Advanced analysis accounts for macro-economic factors and regulatory risks"
            if market_scope
            else "Advanced analysis accounts for complex interdependencies and external factors"
        )
    if risks:
        text = f"**Risk Assessment**\nKey uncertainty: {risks[0]}."
        if len(risks) > 1:
            text += f" Additional factors: {', '.join(risks[1:])}."
        sections.append(text)

    return "\n\n".join(sections)


def compile_sources(series: list[MarketSeries], news: list[NewsItem]) -> list[SourceRef]:
    """Attribution for every upstream that actually contributed data."""
    sources: list[SourceRef] = []
    if any(s.points for s in series):
        sources.append(MARKET_SOURCE)
    if news:
        sources.append(NEWS_SOURCE)
    return sources
