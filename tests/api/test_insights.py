"""Tests for POST /insights and GET /insights/usage."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from insights.api.deps import get_insight_service
from tests.api.conftest import BURST_LIMIT, DAILY_CAP, VALID_BODY


# ─── Happy Path ───


class TestCreateInsight:
    @pytest.mark.asyncio
    async def test_returns_insight(self, client):
        resp = await client.post("/insights", json=VALID_BODY)
        assert resp.status_code == 200
        data = resp.json()
        assert 0.05 <= data["probability"] <= 0.95
        assert 0.1 <= data["confidence"] <= 0.95
        assert data["interval"]["lower"] <= data["probability"] <= data["interval"]["upper"]
        assert len(data["scenarios"]) == 3
        assert "tookMs" in data
        assert "dataQuality" in data["metrics"]
        assert data["ensemble"] is None

    @pytest.mark.asyncio
    async def test_miss_then_hit_is_byte_identical(self, client, clock):
        """The second identical request is a cache hit with the same body."""
        first = await client.post("/insights", json=VALID_BODY)
        clock.advance(5)
        second = await client.post("/insights", json=VALID_BODY)

        assert first.headers["x-cache"] == "MISS"
        assert "x-cache-age" not in first.headers
        assert second.headers["x-cache"] == "HIT"
        assert second.headers["x-cache-age"] == "5"
        assert second.content == first.content

    @pytest.mark.asyncio
    async def test_normalized_question_hits_cache(self, client):
        await client.post("/insights", json=VALID_BODY)
        variant = {**VALID_BODY, "question": "  will btc CLOSE above $70k by friday?  "}
        resp = await client.post("/insights", json=variant)
        assert resp.headers["x-cache"] == "HIT"

    @pytest.mark.asyncio
    async def test_advanced_includes_ensemble(self, client):
        resp = await client.post("/insights", json={**VALID_BODY, "analysisType": "advanced"})
        assert resp.status_code == 200
        ensemble = resp.json()["ensemble"]
        assert len(ensemble["modelsUsed"]) == 4
        assert len(ensemble["individualPredictions"]) == 4
        assert 0.0 <= ensemble["consensus"] <= 1.0

    @pytest.mark.asyncio
    async def test_remaining_header(self, client):
        resp = await client.post("/insights", json=VALID_BODY)
        assert resp.headers["x-ratelimit-remaining"] == str(DAILY_CAP - 1)

    @pytest.mark.asyncio
    async def test_analysis_type_defaults_to_basic(self, client):
        body = {k: v for k, v in VALID_BODY.items() if k != "analysisType"}
        resp = await client.post("/insights", json=body)
        assert resp.status_code == 200
        assert resp.json()["ensemble"] is None


# ─── Validation ───


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_field_is_400(self, client):
        body = {k: v for k, v in VALID_BODY.items() if k != "question"}
        resp = await client.post("/insights", json=body)
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "ValidationError"
        assert [f["field"] for f in data["fields"]] == ["question"]

    @pytest.mark.asyncio
    async def test_blank_question_is_400(self, client):
        resp = await client.post("/insights", json={**VALID_BODY, "question": "   "})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_overlong_question_is_400(self, client):
        resp = await client.post("/insights", json={**VALID_BODY, "question": "x" * 501})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_analysis_type_is_400(self, client):
        resp = await client.post("/insights", json={**VALID_BODY, "analysisType": "deep"})
        assert resp.status_code == 400
        assert resp.json()["fields"][0]["field"] == "analysisType"

    @pytest.mark.asyncio
    async def test_invalid_requests_do_not_consume_quota(self, client):
        for _ in range(BURST_LIMIT + 2):
            await client.post("/insights", json={"question": ""})
        resp = await client.post("/insights", json=VALID_BODY)
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_tier_is_400(self, client):
        resp = await client.post(
            "/insights", json=VALID_BODY, headers={"X-Account-Tier": "platinum"}
        )
        assert resp.status_code == 400
        assert resp.json()["fields"][0]["field"] == "X-Account-Tier"


# ─── Admission ───


class TestAdmission:
    @pytest.mark.asyncio
    async def test_burst_limit_is_429_rate_limit(self, client, clock):
        for _ in range(BURST_LIMIT):
            assert (await client.post("/insights", json=VALID_BODY)).status_code == 200
        clock.advance(20)

        resp = await client.post("/insights", json=VALID_BODY)

        assert resp.status_code == 429
        data = resp.json()
        assert data["code"] == "RATE_LIMIT"
        assert data["retryAfter"] == 40
        assert resp.headers["retry-after"] == "40"

    @pytest.mark.asyncio
    async def test_daily_cap_is_429_free_daily_limit(self, client, clock):
        for _ in range(BURST_LIMIT):
            await client.post("/insights", json=VALID_BODY)
        clock.advance(60)
        for _ in range(DAILY_CAP - BURST_LIMIT):
            assert (await client.post("/insights", json=VALID_BODY)).status_code == 200
        clock.advance(60)

        resp = await client.post("/insights", json=VALID_BODY)

        assert resp.status_code == 429
        assert resp.json()["code"] == "FREE_DAILY_LIMIT"
        assert int(resp.headers["retry-after"]) == 86400 - 120

    @pytest.mark.asyncio
    async def test_cache_hits_still_count(self, client):
        """Admission runs before the cache lookup."""
        statuses = [
            (await client.post("/insights", json=VALID_BODY)).status_code
            for _ in range(BURST_LIMIT + 1)
        ]
        assert statuses == [200] * BURST_LIMIT + [429]

    @pytest.mark.asyncio
    async def test_pro_tier_bypasses_limits(self, client):
        headers = {"X-Account-Tier": "pro"}
        for _ in range(DAILY_CAP + 2):
            resp = await client.post("/insights", json=VALID_BODY, headers=headers)
            assert resp.status_code == 200
            assert "x-ratelimit-remaining" not in resp.headers

    @pytest.mark.asyncio
    async def test_wallet_has_its_own_quota(self, client):
        for _ in range(BURST_LIMIT):
            await client.post("/insights", json=VALID_BODY)
        resp = await client.post("/insights", json=VALID_BODY, headers={"X-Wallet-Id": "0xabc"})
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_forwarded_for_first_hop_identifies_client(self, client):
        headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        for _ in range(BURST_LIMIT):
            await client.post("/insights", json=VALID_BODY, headers=headers)
        blocked = await client.post("/insights", json=VALID_BODY, headers=headers)
        other = await client.post("/insights", json=VALID_BODY)
        assert blocked.status_code == 429
        assert other.status_code == 200


# ─── Usage ───


class TestUsage:
    @pytest.mark.asyncio
    async def test_usage_reports_counters(self, client):
        await client.post("/insights", json=VALID_BODY)
        await client.post("/insights", json=VALID_BODY)

        resp = await client.get("/insights/usage")

        assert resp.status_code == 200
        data = resp.json()
        assert data["identifier"] == "ip:127.0.0.1"
        assert data["tier"] == "free"
        assert data["windowCount"] == 2
        assert data["dailyCount"] == 2
        assert data["dailyRemaining"] == DAILY_CAP - 2
        assert data["windowLimit"] == BURST_LIMIT

    @pytest.mark.asyncio
    async def test_usage_does_not_consume_quota(self, client):
        for _ in range(BURST_LIMIT + 2):
            await client.get("/insights/usage")
        data = (await client.get("/insights/usage")).json()
        assert data["dailyCount"] == 0

    @pytest.mark.asyncio
    async def test_pro_usage_has_no_limits(self, client):
        data = (await client.get("/insights/usage", headers={"X-Account-Tier": "pro"})).json()
        assert data["tier"] == "pro"
        assert data["dailyCap"] is None
        assert data["dailyRemaining"] is None


# ─── Unexpected Errors ───


class ExplodingService:
    async def get_insight(self, request):
        raise RuntimeError("unexpected")


class TestUnhandledErrors:
    @pytest.mark.asyncio
    async def test_unhandled_exception_is_500(self, test_app):
        test_app.dependency_overrides[get_insight_service] = lambda: ExplodingService()
        transport = ASGITransport(app=test_app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.post("/insights", json=VALID_BODY)
        assert resp.status_code == 500
        assert resp.json()["error"] == "InternalServerError"
