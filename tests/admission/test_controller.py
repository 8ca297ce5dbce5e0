"""Tests for the admission controller and its in-memory store."""

from __future__ import annotations

import asyncio

import pytest

from insights.admission import AdmissionController, InMemoryAdmissionStore, run_periodic_sweep
from insights.common.config import Settings
from tests.factories import FakeClock


def _controller(clock: FakeClock, **kwargs) -> AdmissionController:
    params = {"burst_limit": 3, "burst_window_seconds": 60, "daily_cap": 5}
    params.update(kwargs)
    return AdmissionController(InMemoryAdmissionStore(), clock=clock, **params)


# ─── Burst Window ───


class TestBurstWindow:
    @pytest.mark.asyncio
    async def test_admits_up_to_burst_limit(self, clock):
        """The first burst_limit requests are admitted."""
        controller = _controller(clock)
        decisions = [await controller.admit("ip:1.2.3.4", "free") for _ in range(3)]
        assert all(d.allowed for d in decisions)
        assert [d.reason for d in decisions] == ["OK", "OK", "OK"]
        assert [d.remaining for d in decisions] == [4, 3, 2]

    @pytest.mark.asyncio
    async def test_denies_over_burst_limit(self, clock):
        """Request burst_limit + 1 inside the window is denied with RATE_LIMIT."""
        controller = _controller(clock)
        for _ in range(3):
            await controller.admit("ip:1.2.3.4", "free")
        clock.advance(15)
        decision = await controller.admit("ip:1.2.3.4", "free")
        assert not decision.allowed
        assert decision.reason == "RATE_LIMIT"
        assert decision.retry_after == 45

    @pytest.mark.asyncio
    async def test_denied_requests_are_not_counted(self, clock):
        """Denials do not consume the daily cap."""
        controller = _controller(clock)
        for _ in range(6):
            await controller.admit("ip:1.2.3.4", "free")
        usage = await controller.usage("ip:1.2.3.4")
        assert usage.daily_count == 3
        assert usage.window_count == 3

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, clock):
        """A denied identifier is admitted again once the burst window passes."""
        controller = _controller(clock)
        for _ in range(3):
            await controller.admit("ip:1.2.3.4", "free")
        denied = await controller.admit("ip:1.2.3.4", "free")
        assert not denied.allowed
        assert denied.reason == "RATE_LIMIT"

        clock.advance(60)
        decision = await controller.admit("ip:1.2.3.4", "free")
        assert decision.allowed
        assert decision.reason == "OK"
        assert decision.remaining == 1

        usage = await controller.usage("ip:1.2.3.4")
        assert usage.window_count == 1
        assert usage.daily_count == 4
        assert usage.window_reset_at == clock() + 60

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, clock):
        controller = _controller(clock)
        for _ in range(3):
            await controller.admit("ip:1.2.3.4", "free")
        decision = await controller.admit("wallet:0xabc", "free")
        assert decision.allowed


# ─── Daily Cap ───


class TestDailyCap:
    @pytest.mark.asyncio
    async def test_daily_cap_denies_with_daily_limit(self, clock):
        """After daily_cap admissions the reason is DAILY_LIMIT with remaining 0."""
        controller = _controller(clock, burst_limit=100)
        for _ in range(5):
            assert (await controller.admit("ip:9.9.9.9", "free")).allowed
        decision = await controller.admit("ip:9.9.9.9", "free")
        assert not decision.allowed
        assert decision.reason == "DAILY_LIMIT"
        assert decision.remaining == 0
        assert decision.retry_after == 86400

    @pytest.mark.asyncio
    async def test_daily_cap_checked_before_burst(self, clock):
        """When both limits are exhausted, DAILY_LIMIT wins."""
        controller = _controller(clock, burst_limit=2, daily_cap=2)
        await controller.admit("ip:9.9.9.9", "free")
        await controller.admit("ip:9.9.9.9", "free")
        decision = await controller.admit("ip:9.9.9.9", "free")
        assert decision.reason == "DAILY_LIMIT"

    @pytest.mark.asyncio
    async def test_daily_cap_resets_after_day(self, clock):
        controller = _controller(clock, burst_limit=100)
        for _ in range(5):
            await controller.admit("ip:9.9.9.9", "free")
        clock.advance(86400)
        decision = await controller.admit("ip:9.9.9.9", "free")
        assert decision.allowed
        assert decision.remaining == 4

    @pytest.mark.asyncio
    async def test_retry_after_never_below_one(self, clock):
        controller = _controller(clock, burst_limit=100, daily_cap=1)
        await controller.admit("ip:9.9.9.9", "free")
        clock.advance(86399.9)
        decision = await controller.admit("ip:9.9.9.9", "free")
        assert decision.retry_after == 1


# ─── Pro Tier ───


class TestProTier:
    @pytest.mark.asyncio
    async def test_pro_bypasses_limits(self, clock):
        """Pro callers are never denied and never counted."""
        controller = _controller(clock, burst_limit=1, daily_cap=1)
        decisions = [await controller.admit("wallet:0xpro", "pro") for _ in range(10)]
        assert all(d.allowed and d.reason == "PRO_BYPASS" for d in decisions)
        assert all(d.retry_after is None for d in decisions)
        assert len(controller.store) == 0


# ─── Concurrency ───


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_limit(self, clock):
        """Simultaneous requests from one identifier admit exactly burst_limit."""
        controller = _controller(clock, burst_limit=10, daily_cap=100)
        decisions = await asyncio.gather(
            *(controller.admit("ip:5.5.5.5", "free") for _ in range(25))
        )
        assert sum(d.allowed for d in decisions) == 10
        assert sum(d.reason == "RATE_LIMIT" for d in decisions) == 15


# ─── Usage / Sweep ───


class TestUsageAndSweep:
    @pytest.mark.asyncio
    async def test_usage_is_read_only(self, clock):
        """Reading usage does not create state or consume quota."""
        controller = _controller(clock)
        usage = await controller.usage("ip:7.7.7.7")
        assert usage.window_count == 0
        assert usage.daily_count == 0
        assert len(controller.store) == 0

    @pytest.mark.asyncio
    async def test_usage_reports_expired_window_as_reset(self, clock):
        controller = _controller(clock)
        await controller.admit("ip:7.7.7.7", "free")
        clock.advance(61)
        usage = await controller.usage("ip:7.7.7.7")
        assert usage.window_count == 0
        assert usage.daily_count == 1

    @pytest.mark.asyncio
    async def test_sweep_removes_fully_expired_entries(self, clock):
        controller = _controller(clock)
        await controller.admit("ip:1.1.1.1", "free")
        clock.advance(3600)
        await controller.admit("ip:2.2.2.2", "free")
        clock.advance(86400 - 3600)
        removed = await controller.sweep()
        assert removed == 1
        assert len(controller.store) == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_entries(self, clock):
        controller = _controller(clock)
        await controller.admit("ip:1.1.1.1", "free")
        clock.advance(120)
        assert await controller.sweep() == 0

    @pytest.mark.asyncio
    async def test_periodic_sweep_runs_until_cancelled(self, clock):
        """The background sweep removes expired entries and stops on cancel."""
        controller = _controller(clock)
        await controller.admit("ip:1.1.1.1", "free")
        clock.advance(86400)

        task = asyncio.create_task(run_periodic_sweep(controller, 0.01))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if len(controller.store) == 0:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(controller.store) == 0


class TestFromSettings:
    def test_reads_free_tier_limits(self):
        settings = Settings(free_burst_limit=4, free_daily_cap=40)
        controller = AdmissionController.from_settings(InMemoryAdmissionStore(), settings)
        assert controller.burst_limit == 4
        assert controller.daily_cap == 40
