"""Request fingerprinting for the response cache.

The fingerprint covers the normalized (question, category, horizon)
triple. Question and category are trimmed and lower-cased; the horizon is
used verbatim. Analysis type is not part of the fingerprint; the cache
prefixes it onto the store key instead.
"""

from __future__ import annotations

import hashlib
import json

from insights.common.schemas import InsightRequest


def canonical_triple(request: InsightRequest) -> str:
    """Compact JSON array ``["question","category","horizon"]``.

    Encoded with ``json.dumps(..., ensure_ascii=False, separators=(",", ":"))``
    so that newlines or quotes inside a field cannot shift a field boundary.
    """
    return json.dumps(
        [
            request.question.strip().lower(),
            request.category.strip().lower(),
            request.horizon,
        ],
        ensure_ascii=False,
        separators=(",", ":"),
    )


def fingerprint(request: InsightRequest) -> str:
    """SHA-256 hex digest of ``canonical_triple(request)`` encoded as UTF-8."""
    return hashlib.sha256(canonical_triple(request).encode("utf-8")).hexdigest()


def cache_key(request: InsightRequest) -> str:
    """Store key: ``{analysis_type}:{fingerprint}``."""
    return f"{request.analysis_type}:{fingerprint(request)}"
