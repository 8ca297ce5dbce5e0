"""Data fusion: market and news providers, payload normalization, quality scoring."""
