"""Insight engine: probability, confidence, scenarios and rationale for one question.

Orchestrates: fusion → indicators + sentiment → calibration or ensemble → scenarios → cache.
"""

from __future__ import annotations

from insights.prediction.pipeline import InsightService

__all__ = ["InsightService"]
