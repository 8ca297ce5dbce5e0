"""Custom exceptions for the insight service.

All modules should raise these exceptions instead of generic ones.
The FastAPI exception handlers in main.py map the client-facing ones
(validation, admission) to structured JSON error responses. The rest are
absorbed where they occur: upstream and cache faults degrade quality or
become cache misses, pipeline faults become the neutral fallback response.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from insights.common.schemas import AdmissionDecision


class InsightBaseException(Exception):
    """Base exception for all insight service errors.

    Args:
        message: Human-readable error description.
        context: Optional dict of structured data for logging/debugging.
    """

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            safe_context = {
                k: "[REDACTED]" if _is_secret_key(k) else v for k, v in self.context.items()
            }
            return f"{super().__str__()} | context={safe_context}"
        return super().__str__()


class InsightValidationError(InsightBaseException):
    """A request field is missing, malformed, or out of bounds. Never retried."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AdmissionDeniedError(InsightBaseException):
    """The caller exceeded its burst window or daily cap."""

    def __init__(self, decision: AdmissionDecision) -> None:
        super().__init__(
            f"Admission denied: {decision.reason}",
            {"reason": decision.reason, "retry_after": decision.retry_after},
        )
        self.decision = decision


class UpstreamDataDegradedError(InsightBaseException):
    """A market or news source failed, timed out, or returned malformed data."""


class FetchError(UpstreamDataDegradedError):
    """Failed to fetch data from an external API (CoinGecko, CryptoPanic)."""


class ParseError(UpstreamDataDegradedError):
    """Failed to parse response data from an external API."""


class PipelineFailureError(InsightBaseException):
    """Unexpected internal fault while generating an insight."""


class CacheFailureError(InsightBaseException):
    """The response cache store could not be read or written."""


def _is_secret_key(key: str) -> bool:
    """Check if a dict key name suggests it contains secret data."""
    secret_words = {"key", "secret", "password", "token", "private", "credential"}
    key_lower = key.lower()
    return any(word in key_lower for word in secret_words)
