"""Integration tests for API endpoints using FastAPI TestClient."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from hookly.application import consumers
from hookly.config import get_settings
from hookly.dependencies import get_health_monitor
from hookly.main import create_app

API = "/api/v1"


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return get_settings(
        storage_backend="memory",
        ai_daily_budget="1.00",
        ai_monthly_budget="10.00",
        ai_max_cost_per_generation="0.05",
    )


@pytest.fixture
def client(settings, clock):
    app = create_app(settings, clock=clock)
    with TestClient(app) as c:
        yield c


def _record(client: TestClient, provider_id: str, cost: str, **extra) -> None:
    resp = client.post(
        f"{API}/costs/records",
        json={
            "provider_id": provider_id,
            "input_tokens": 1000,
            "output_tokens": 500,
            "cost": cost,
            **extra,
        },
    )
    assert resp.status_code == 202


# ═══════════════════════════════════════════════════════════════
#  Health & metrics
# ═══════════════════════════════════════════════════════════════
class TestHealthEndpoints:
    def test_health_check(self, client):
        resp = client.get(f"{API}/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["services"]["health_store"] == "connected"
        assert data["services"]["storage_backend"] == "memory"

    def test_request_id_echoed(self, client):
        resp = client.get(f"{API}/health", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"

    def test_prometheus_metrics(self, client):
        _record(client, "openai", "0.001")
        resp = client.get(f"{API}/metrics")
        assert resp.status_code == 200
        assert "http_requests_total" in resp.text
        assert "generation_cost_usd_total" in resp.text


# ═══════════════════════════════════════════════════════════════
#  Provider health
# ═══════════════════════════════════════════════════════════════
class TestProviderEndpoints:
    def test_unknown_provider_is_404(self, client):
        resp = client.get(f"{API}/providers/nobody/health")
        assert resp.status_code == 404
        assert resp.json()["code"] == "PROVIDER_NOT_FOUND"

        assert client.get(f"{API}/providers/nobody/circuit").status_code == 404

    def test_unknown_provider_is_available(self, client):
        resp = client.get(f"{API}/providers/nobody/available")
        assert resp.json() == {"provider_id": "nobody", "available": True}

    def test_recorded_health_is_served(self, client):
        monitor = get_health_monitor()
        client.portal.call(monitor.record_success, "gemini", 250.0)
        client.portal.call(monitor.record_failure, "openai", "rate limited")

        resp = client.get(f"{API}/providers/openai/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["failed_requests"] == 1
        assert body["last_error"] == "rate limited"
        assert body["recent_errors"][0]["error"] == "rate limited"

        listed = client.get(f"{API}/providers/health").json()
        assert [m["provider_id"] for m in listed] == ["gemini", "openai"]

        assert client.get(f"{API}/providers/ranking").json() == {
            "providers": ["gemini", "openai"]
        }

    def test_breaker_trips_and_blocks(self, client, clock):
        monitor = get_health_monitor()
        for _ in range(5):
            client.portal.call(monitor.record_failure, "openai", "503")

        circuit = client.get(f"{API}/providers/openai/circuit").json()
        assert circuit["state"] == "open"
        assert circuit["failure_count"] == 5
        assert client.get(f"{API}/providers/openai/available").json()["available"] is False

        clock.advance(30)
        assert client.get(f"{API}/providers/openai/circuit").json()["state"] == "half_open"
        assert client.get(f"{API}/providers/openai/available").json()["available"] is True
        # the single probe is now claimed
        assert client.get(f"{API}/providers/openai/available").json()["available"] is False

    def test_admin_circuit_override(self, client):
        resp = client.patch(f"{API}/providers/groq/circuit", json={"state": "open"})
        assert resp.status_code == 200
        assert resp.json()["state"] == "open"
        assert resp.json()["next_retry_time"] is not None
        assert client.get(f"{API}/providers/groq/available").json()["available"] is False

        resp = client.post(f"{API}/providers/groq/circuit/reset")
        assert resp.json()["state"] == "closed"
        assert resp.json()["failure_count"] == 0
        assert client.get(f"{API}/providers/groq/available").json()["available"] is True

    def test_admin_naive_timestamps_are_utc(self, client, clock):
        resp = client.patch(
            f"{API}/providers/groq/circuit",
            json={"state": "open", "next_retry_time": "2030-01-01T00:00:00"},
        )
        assert resp.status_code == 200
        assert resp.json()["next_retry_time"] in ("2030-01-01T00:00:00Z", "2030-01-01T00:00:00+00:00")
        assert client.get(f"{API}/providers/groq/available").json()["available"] is False

        resp = client.patch(
            f"{API}/providers/groq/circuit",
            json={"state": "closed", "last_failure": "2026-10-17T11:59:00"},
        )
        assert resp.status_code == 200
        assert resp.json()["last_failure"].startswith("2026-10-17T11:59:00")
        assert client.get(f"{API}/providers/groq/available").json()["available"] is True

    @pytest.mark.parametrize(
        "payload",
        [{"state": "melted"}, {"failure_count": -1}, {"trip_count": 3}],
    )
    def test_admin_circuit_override_validation(self, client, payload):
        resp = client.patch(f"{API}/providers/groq/circuit", json=payload)
        assert resp.status_code == 422

    def test_reset_health(self, client):
        monitor = get_health_monitor()
        client.portal.call(monitor.record_failure, "openai", "boom")

        resp = client.post(f"{API}/providers/openai/health/reset")
        assert resp.status_code == 200
        assert resp.json()["total_requests"] == 0
        assert resp.json()["status"] == "healthy"


# ═══════════════════════════════════════════════════════════════
#  Costs
# ═══════════════════════════════════════════════════════════════
class TestCostEndpoints:
    def test_record_and_query(self, client):
        _record(client, "openai", "0.0042", user_id="u-1")
        _record(client, "openai", "0.0018")

        resp = client.get(f"{API}/costs/metrics/openai")
        assert resp.status_code == 200
        body = resp.json()
        # money is serialised as strings
        assert Decimal(body["total_cost"]) == Decimal("0.0060")
        assert Decimal(body["average_cost_per_generation"]) == Decimal("0.003")
        assert body["total_generations"] == 2
        assert body["period_start"].startswith("2026-10-17T00:00:00")

        daily = client.get(f"{API}/costs/openai/daily").json()
        assert Decimal(daily["total_cost"]) == Decimal("0.0060")
        monthly = client.get(f"{API}/costs/openai/monthly?month=2026-10").json()
        assert Decimal(monthly["total_cost"]) == Decimal("0.0060")
        assert Decimal(client.get(f"{API}/costs/total").json()["total_cost"]) == Decimal("0.0060")

        listed = client.get(f"{API}/costs/metrics").json()
        assert [m["provider_id"] for m in listed] == ["openai"]

    def test_other_day_and_month(self, client):
        _record(client, "openai", "0.01")
        assert Decimal(
            client.get(f"{API}/costs/openai/daily?day=2026-10-16").json()["total_cost"]
        ) == 0
        assert Decimal(
            client.get(f"{API}/costs/openai/monthly?month=2026-09").json()["total_cost"]
        ) == 0

    def test_bad_month_format(self, client):
        assert client.get(f"{API}/costs/openai/monthly?month=2026-13").status_code == 422

    def test_half_given_period_rejected(self, client):
        resp = client.get(f"{API}/costs/total?start=2026-10-17T00:00:00Z")
        assert resp.status_code == 422

    def test_unknown_provider_metrics(self, client):
        assert client.get(f"{API}/costs/metrics/nobody").status_code == 404

    def test_invalid_record_rejected(self, client):
        resp = client.post(
            f"{API}/costs/records",
            json={"provider_id": "openai", "input_tokens": -1, "output_tokens": 1, "cost": "0.1"},
        )
        assert resp.status_code == 422

    def test_estimate(self, client):
        resp = client.post(
            f"{API}/costs/estimate",
            json={"provider_id": "openai", "input_tokens": 1000, "output_tokens": 500},
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["estimated_cost"]) == Decimal("0.00045")

        resp = client.post(
            f"{API}/costs/estimate",
            json={"provider_id": "anthropic", "input_tokens": 1, "output_tokens": 1},
        )
        assert resp.status_code == 404

    def test_budget_check(self, client):
        for _ in range(19):
            _record(client, "openai", "0.05")

        ok = client.post(f"{API}/costs/check", json={"provider_id": "openai", "estimated_cost": "0.05"})
        assert ok.json()["would_exceed"] is False
        over = client.post(f"{API}/costs/check", json={"provider_id": "openai", "estimated_cost": "0.051"})
        assert over.json()["would_exceed"] is True

    def test_budget_get_and_patch(self, client):
        budget = client.get(f"{API}/costs/budget").json()
        assert Decimal(budget["daily_budget"]) == Decimal("1.00")
        assert Decimal(budget["alert_thresholds"]["daily"]) == Decimal("80")

        resp = client.patch(
            f"{API}/costs/budget",
            json={"daily_budget": "2.00", "alert_thresholds": {"monthly": "90"}},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["daily_budget"]) == Decimal("2.00")
        assert Decimal(body["monthly_budget"]) == Decimal("10.00")
        assert Decimal(body["alert_thresholds"]["monthly"]) == Decimal("90")

    @pytest.mark.parametrize(
        "payload",
        [
            {"daily_budget": "-1"},
            {"daily_budget": "50"},
            {"alert_thresholds": {"daily": "150"}},
            {"weekly_budget": "5"},
        ],
    )
    def test_budget_patch_rejected(self, client, payload):
        resp = client.patch(f"{API}/costs/budget", json=payload)
        assert resp.status_code == 422
        assert Decimal(client.get(f"{API}/costs/budget").json()["daily_budget"]) == Decimal("1.00")

    def test_alert_flow(self, client):
        _record(client, "openai", "0.06")

        alerts = client.get(f"{API}/costs/alerts").json()
        assert len(alerts) == 1
        assert alerts[0]["type"] == "per_generation_exceeded"
        assert alerts[0]["acknowledged"] is False
        assert alerts[0]["current_cost"] == "0.06"

        resp = client.post(f"{API}/costs/alerts/{alerts[0]['id']}/acknowledge")
        assert resp.status_code == 200
        assert client.get(f"{API}/costs/alerts?acknowledged=false").json() == []
        assert len(client.get(f"{API}/costs/alerts?acknowledged=true").json()) == 1

    def test_alerts_reach_ops_log(self, client):
        with patch.object(consumers, "logger", MagicMock()) as ops_logger:
            _record(client, "openai", "0.06")
        events = [c.args[0] for c in ops_logger.warning.call_args_list]
        assert events == ["ops_cost_alert_raised"]

    def test_acknowledge_unknown_alert(self, client):
        resp = client.post(f"{API}/costs/alerts/missing/acknowledge")
        assert resp.status_code == 404
        assert resp.json()["code"] == "ALERT_NOT_FOUND"

    def test_cost_ranking(self, client):
        _record(client, "gemini", "0.002")
        _record(client, "openai", "0.004")
        _record(client, "local", "0")

        rows = client.get(f"{API}/costs/ranking").json()
        assert [r["provider_id"] for r in rows] == ["local", "gemini", "openai"]
        assert rows[0]["quality_to_cost_ratio"] is None
        assert rows[1]["quality_to_cost_ratio"] == pytest.approx(500.0)
