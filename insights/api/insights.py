"""Insight endpoints -- generate an insight and report admission usage.

POST /insights runs validation (request body), then admission, then the
cached pipeline. Invalid bodies never consume quota.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from insights.admission.controller import AdmissionController
from insights.api.deps import (
    get_account_tier,
    get_admission_controller,
    get_client_identifier,
    get_insight_service,
)
from insights.api.response_schemas import (
    AdmissionErrorResponse,
    UsageResponse,
    ValidationErrorResponse,
)
from insights.common.exceptions import AdmissionDeniedError
from insights.common.logging import get_logger
from insights.common.schemas import InsightRequest, InsightResponse, Tier
from insights.prediction.pipeline import InsightService

logger = get_logger("API")

router = APIRouter()


@router.post(
    "",
    response_model=InsightResponse,
    responses={
        400: {"model": ValidationErrorResponse},
        429: {"model": AdmissionErrorResponse},
    },
)
async def create_insight(
    body: InsightRequest,
    identifier: str = Depends(get_client_identifier),
    tier: Tier = Depends(get_account_tier),
    admission: AdmissionController = Depends(get_admission_controller),
    service: InsightService = Depends(get_insight_service),
) -> JSONResponse:
    """Generate (or serve from cache) an insight for one question.

    Response headers:
        X-Cache: HIT or MISS.
        X-Cache-Age: seconds since the cached entry was written (hits only).
        X-RateLimit-Remaining: free-tier requests left today.

    Raises:
        AdmissionDeniedError: Burst window or daily cap exceeded (429).
    """
    decision = await admission.admit(identifier, tier)
    if not decision.allowed:
        raise AdmissionDeniedError(decision)

    result = await service.get_insight(body)

    headers = {"X-Cache": "HIT" if result.cached else "MISS"}
    if result.cache_age_seconds is not None:
        headers["X-Cache-Age"] = str(result.cache_age_seconds)
    if decision.remaining is not None:
        headers["X-RateLimit-Remaining"] = str(decision.remaining)

    return JSONResponse(
        content=result.response.model_dump(mode="json", by_alias=True),
        headers=headers,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    identifier: str = Depends(get_client_identifier),
    tier: Tier = Depends(get_account_tier),
    admission: AdmissionController = Depends(get_admission_controller),
) -> UsageResponse:
    """Current admission counters for the caller. Does not consume quota."""
    state = await admission.usage(identifier)
    limited = tier == "free"
    return UsageResponse(
        identifier=identifier,
        tier=tier,
        window_limit=admission.burst_limit if limited else None,
        window_count=state.window_count,
        window_reset_at=state.window_reset_at,
        daily_cap=admission.daily_cap if limited else None,
        daily_count=state.daily_count,
        daily_remaining=max(0, admission.daily_cap - state.daily_count) if limited else None,
        daily_reset_at=state.daily_reset_at,
    )
