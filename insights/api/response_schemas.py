"""API response schemas -- types used only by the REST layer."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from insights.common.schemas import Tier


class FieldError(BaseModel):
    """One invalid request field."""

    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    """400 body for malformed or out-of-bounds request fields."""

    error: Literal["ValidationError"] = "ValidationError"
    message: str
    fields: list[FieldError] = Field(default_factory=list)


class AdmissionErrorResponse(BaseModel):
    """429 body when the caller exceeded its burst window or daily cap."""

    model_config = ConfigDict(populate_by_name=True)

    error: Literal["AdmissionDenied"] = "AdmissionDenied"
    code: Literal["RATE_LIMIT", "FREE_DAILY_LIMIT"]
    message: str
    retry_after: int = Field(alias="retryAfter")


class UsageResponse(BaseModel):
    """Admission counters for the calling identifier."""

    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    tier: Tier
    window_limit: int | None = Field(alias="windowLimit")
    window_count: int = Field(alias="windowCount")
    window_reset_at: float = Field(alias="windowResetAt")
    daily_cap: int | None = Field(alias="dailyCap")
    daily_count: int = Field(alias="dailyCount")
    daily_remaining: int | None = Field(alias="dailyRemaining")
    daily_reset_at: float = Field(alias="dailyResetAt")
