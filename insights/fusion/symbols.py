"""Symbol and keyword extraction from free-text questions.

Symbols drive the market fetch; keywords drive the news fetch and the
relevance weighting in the sentiment fuser.
"""

from __future__ import annotations

import re

# Alias -> ticker. Matched as whole words, case-insensitively.
SYMBOL_ALIASES: dict[str, str] = {
    "bitcoin": "BTC",
    "btc": "BTC",
    "ethereum": "ETH",
    "eth": "ETH",
    "solana": "SOL",
    "sol": "SOL",
    "usdc": "USDC",
    "cardano": "ADA",
    "ada": "ADA",
}

# Ticker -> CoinGecko coin id
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "USDC": "usd-coin",
    "ADA": "cardano",
}

CRYPTO_DEFAULT_SYMBOLS = ["BTC", "SOL"]
GENERIC_DEFAULT_SYMBOLS = ["BTC"]

STOP_WORDS = frozenset(
    {
        "will",
        "what",
        "when",
        "where",
        "which",
        "how",
        "the",
        "and",
        "or",
        "but",
        "for",
        "with",
        "this",
        "that",
        "from",
        "into",
        "than",
        "then",
        "there",
        "their",
        "have",
        "does",
    }
)

_WORD_RE = re.compile(r"[a-z0-9]+")


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def extract_symbols(question: str, category: str) -> list[str]:
    """Tickers mentioned in the question, deduplicated in first-seen order.

    Falls back to a category default when nothing matches:
    crypto -> BTC, SOL; anything else -> BTC.
    """
    symbols: list[str] = []
    for word in _words(question):
        symbol = SYMBOL_ALIASES.get(word)
        if symbol and symbol not in symbols:
            symbols.append(symbol)

    if symbols:
        return symbols
    if "crypto" in category.lower():
        return list(CRYPTO_DEFAULT_SYMBOLS)
    return list(GENERIC_DEFAULT_SYMBOLS)


def extract_keywords(question: str, limit: int = 5) -> list[str]:
    """Up to ``limit`` distinct lower-case words longer than 3 chars, minus stop words."""
    keywords: list[str] = []
    for word in _words(question):
        if len(word) <= 3 or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords
