"""Admission control: per-client burst window, daily cap, and tier bypass.

Free tier callers carry two independent counters per identifier:
1. Burst window: at most ``burst_limit`` requests per ``burst_window_seconds``.
2. Daily cap: at most ``daily_cap`` requests per rolling day, counted from
   the first request of the day window.

Pro tier callers are always admitted but still recorded (reason
``PRO_BYPASS``) so they show up in logs and metrics.

State transitions (free tier, evaluated at call time, no timers):
    now >= window_reset_at  -> window_count = 0, window_reset_at = now + window
    now >= daily_reset_at   -> daily_count = 0, daily_reset_at = now + day
    daily_count >= cap      -> deny DAILY_LIMIT, retry after daily reset
    window_count >= limit   -> deny RATE_LIMIT, retry after window reset
    otherwise               -> admit, increment both counters

Which identifier to use (IP or wallet) is the caller's decision; see
insights.api.deps.get_client_identifier.

Usage:
    from insights.admission.controller import AdmissionController

    controller = AdmissionController.from_settings(store)
    decision = await controller.admit("203.0.113.7", "free")
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable

from insights.admission.store import AdmissionStore
from insights.common.config import Settings, get_settings
from insights.common.logging import get_logger
from insights.common.metrics import ADMISSION_DECISIONS_TOTAL
from insights.common.schemas import AdmissionDecision, RateLimitState, Tier

logger = get_logger("ADMISSION")


class AdmissionController:
    """Decides whether a request may enter the insight pipeline.

    Args:
        store: Where per-identifier counters live.
        burst_limit: Requests allowed per burst window.
        burst_window_seconds: Length of the burst window.
        daily_cap: Requests allowed per day window.
        daily_window_seconds: Length of the day window.
        clock: Returns the current time in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        store: AdmissionStore,
        *,
        burst_limit: int = 10,
        burst_window_seconds: int = 60,
        daily_cap: int = 100,
        daily_window_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.burst_limit = burst_limit
        self.burst_window_seconds = burst_window_seconds
        self.daily_cap = daily_cap
        self.daily_window_seconds = daily_window_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: AdmissionStore,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> AdmissionController:
        settings = settings or get_settings()
        return cls(
            store,
            burst_limit=settings.free_burst_limit,
            burst_window_seconds=settings.free_burst_window_seconds,
            daily_cap=settings.free_daily_cap,
            daily_window_seconds=settings.free_daily_window_seconds,
            clock=clock,
        )

    async def admit(self, identifier: str, tier: Tier) -> AdmissionDecision:
        """Admit or deny one request, counting it if admitted."""
        if tier == "pro":
            decision = AdmissionDecision(allowed=True, tier="pro", reason="PRO_BYPASS")
            self._record(identifier, decision)
            return decision

        now = self._clock()
        decision = await self.store.transact(
            identifier,
            lambda state: self._evaluate(state, now),
        )
        self._record(identifier, decision)
        return decision

    def _evaluate(
        self,
        state: RateLimitState | None,
        now: float,
    ) -> tuple[RateLimitState, AdmissionDecision]:
        """Pure transition function, run under the identifier's lock."""
        state = self._reset_expired(state, now)

        if state.daily_count >= self.daily_cap:
            return state, AdmissionDecision(
                allowed=False,
                tier="free",
                reason="DAILY_LIMIT",
                retry_after=_seconds_until(state.daily_reset_at, now),
                remaining=0,
            )

        if state.window_count >= self.burst_limit:
            return state, AdmissionDecision(
                allowed=False,
                tier="free",
                reason="RATE_LIMIT",
                retry_after=_seconds_until(state.window_reset_at, now),
                remaining=self.daily_cap - state.daily_count,
            )

        admitted = state.model_copy(
            update={
                "window_count": state.window_count + 1,
                "daily_count": state.daily_count + 1,
            }
        )
        return admitted, AdmissionDecision(
            allowed=True,
            tier="free",
            reason="OK",
            remaining=self.daily_cap - admitted.daily_count,
        )

    def _reset_expired(self, state: RateLimitState | None, now: float) -> RateLimitState:
        if state is None:
            return RateLimitState(
                window_reset_at=now + self.burst_window_seconds,
                daily_reset_at=now + self.daily_window_seconds,
            )

        updates: dict[str, float | int] = {}
        if now >= state.window_reset_at:
            updates["window_count"] = 0
            updates["window_reset_at"] = now + self.burst_window_seconds
        if now >= state.daily_reset_at:
            updates["daily_count"] = 0
            updates["daily_reset_at"] = now + self.daily_window_seconds
        return state.model_copy(update=updates) if updates else state

    async def usage(self, identifier: str) -> RateLimitState:
        """Current counters for an identifier as they would be seen by ``admit``.

        Read-only: expired windows are reported as reset but not written back.
        """
        state = await self.store.get(identifier)
        return self._reset_expired(state, self._clock())

    async def sweep(self) -> int:
        """Remove identifiers with no live window. Housekeeping only."""
        return await self.store.sweep(self._clock())

    def _record(self, identifier: str, decision: AdmissionDecision) -> None:
        ADMISSION_DECISIONS_TOTAL.labels(tier=decision.tier, reason=decision.reason).inc()
        data = {
            "identifier": identifier,
            "tier": decision.tier,
            "reason": decision.reason,
            "remaining": decision.remaining,
            "retry_after": decision.retry_after,
        }
        if decision.allowed:
            logger.debug("Request admitted", extra={"data": data})
        else:
            logger.warning("Request denied", extra={"data": data})


def _seconds_until(reset_at: float, now: float) -> int:
    """Whole seconds until ``reset_at``, never less than 1."""
    return max(1, math.ceil(reset_at - now))


async def run_periodic_sweep(controller: AdmissionController, interval_seconds: float) -> None:
    """Sweep expired admission entries forever, every ``interval_seconds``.

    Started as a background task in the app lifespan; cancelled on shutdown.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await controller.sweep()
        except Exception:
            logger.warning("Admission sweep failed", exc_info=True)
            continue
        if removed:
            logger.info("Admission sweep complete", extra={"data": {"removed": removed}})
