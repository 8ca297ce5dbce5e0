"""FastAPI dependencies for the insight endpoints.

Identifier and tier resolution are small, overridable
dependencies: deployments that key admission on accounts instead of
network addresses, or that look tiers up in a billing system, replace
them with ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Header, Request

from insights.admission.controller import AdmissionController
from insights.common.exceptions import InsightValidationError
from insights.common.schemas import Tier
from insights.prediction.pipeline import InsightService


def get_admission_controller(request: Request) -> AdmissionController:
    """The process-wide admission controller created in the app lifespan."""
    return request.app.state.admission


def get_insight_service(request: Request) -> InsightService:
    """The process-wide insight service created in the app lifespan."""
    return request.app.state.insight_service


def get_client_identifier(request: Request) -> str:
    """Admission identifier for the caller.

    Precedence: ``X-Wallet-Id`` header, first ``X-Forwarded-For`` hop,
    ``X-Real-IP``, then the socket peer address.
    """
    wallet = request.headers.get("x-wallet-id", "").strip()
    if wallet:
        return f"wallet:{wallet}"

    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return f"ip:{first_hop}"

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return f"ip:{real_ip}"

    if request.client is not None and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


def get_account_tier(x_account_tier: str | None = Header(default=None)) -> Tier:
    """Account tier from ``X-Account-Tier``, default free.

    Raises:
        InsightValidationError: The header names an unknown tier.
    """
    if x_account_tier is None or not x_account_tier.strip():
        return "free"
    tier = x_account_tier.strip().lower()
    if tier not in ("free", "pro"):
        raise InsightValidationError(
            f"Unknown account tier: {x_account_tier}",
            field="X-Account-Tier",
        )
    return tier
