"""Unit tests for the provider health monitor service."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from hookly.application.services import ProviderHealthMonitor
from hookly.domain.entities import CircuitBreakerState
from hookly.domain.enums import CircuitState, ProviderStatus
from hookly.domain.events import CircuitStateChangedEvent
from hookly.domain.exceptions import (
    InvalidConfigurationError,
    ProviderNotFoundError,
    StorageUnavailableError,
    ValidationError,
)


async def _trip(monitor: ProviderHealthMonitor, provider_id: str = "openai", n: int = 5) -> None:
    for i in range(n):
        await monitor.record_failure(provider_id, f"upstream 500 #{i}")


@pytest.fixture
def failing_store():
    store = AsyncMock()
    store.get_metrics.side_effect = StorageUnavailableError("get_metrics", "connection refused")
    store.get_circuit.side_effect = StorageUnavailableError("get_circuit", "connection refused")
    store.lock = MagicMock(return_value=contextlib.nullcontext())
    return store


# ═══════════════════════════════════════════════════════════════
#  Outcome recording
# ═══════════════════════════════════════════════════════════════
class TestRecording:
    @pytest.mark.asyncio
    async def test_success_creates_metrics(self, monitor) -> None:
        await monitor.record_success("gemini", 120.0)
        m = await monitor.get_health_metrics("gemini")
        assert m.total_requests == 1
        assert m.successful_requests == 1
        assert m.response_time == 120.0
        assert m.status == ProviderStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_failure_records_error(self, monitor, clock) -> None:
        await monitor.record_failure("gemini", "rate limited")
        m = await monitor.get_health_metrics("gemini")
        assert m.failed_requests == 1
        assert m.last_error == "rate limited"
        assert m.last_failure_at == clock.now
        assert m.recent_errors[-1].error == "rate limited"

    @pytest.mark.asyncio
    async def test_counters_are_lossless_under_concurrency(self, monitor) -> None:
        await asyncio.gather(
            *(monitor.record_success("groq", 50.0) for _ in range(50)),
            *(monitor.record_failure("groq", "boom") for _ in range(30)),
        )
        m = await monitor.get_health_metrics("groq")
        assert m.total_requests == 80
        assert m.successful_requests == 50
        assert m.failed_requests == 30

    @pytest.mark.asyncio
    async def test_empty_provider_rejected(self, monitor) -> None:
        with pytest.raises(ValidationError):
            await monitor.record_success("  ", 10.0)

    @pytest.mark.asyncio
    async def test_storage_outage_is_swallowed(self, failing_store, clock) -> None:
        monitor = ProviderHealthMonitor(failing_store, clock=clock)
        await monitor.record_success("openai", 100.0)
        await monitor.record_failure("openai", "boom")
        failing_store.save_metrics.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response_time", [float("nan"), float("inf"), -1.0, "fast", True])
    async def test_bad_response_time_rejected(self, monitor, response_time) -> None:
        await monitor.record_success("fast", 100.0)
        with pytest.raises(ValidationError):
            await monitor.record_success("slow", response_time)
        with pytest.raises(ValidationError):
            await monitor.record_success("fast", response_time)

        with pytest.raises(ProviderNotFoundError):
            await monitor.get_health_metrics("slow")
        m = await monitor.get_health_metrics("fast")
        assert m.total_requests == 1
        assert m.average_response_time == 100.0
        assert await monitor.get_provider_ranking() == ["fast"]

    @pytest.mark.asyncio
    async def test_lock_outage_is_swallowed(self, health_store, clock) -> None:
        health_store.lock = MagicMock(side_effect=StorageUnavailableError("lock", "timed out"))
        monitor = ProviderHealthMonitor(health_store, clock=clock)
        await monitor.record_success("openai", 100.0)
        await monitor.record_failure("openai", "boom")
        assert await monitor.is_provider_available("openai") is True
        assert await health_store.list_metrics() == []


# ═══════════════════════════════════════════════════════════════
#  Circuit breaker
# ═══════════════════════════════════════════════════════════════
class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_unknown_provider_is_available(self, monitor) -> None:
        assert await monitor.is_provider_available("never-seen") is True

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, monitor, clock) -> None:
        await _trip(monitor, n=4)
        assert (await monitor.get_circuit_breaker_state("openai")).state == CircuitState.CLOSED
        assert await monitor.is_provider_available("openai") is True

        await monitor.record_failure("openai", "upstream 500 #4")
        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.OPEN
        assert cb.next_retry_time == clock.now + timedelta(seconds=30)
        assert await monitor.is_provider_available("openai") is False

    @pytest.mark.asyncio
    async def test_openai_recovers_through_probe(self, monitor, clock) -> None:
        await _trip(monitor)
        clock.advance(29)
        assert await monitor.is_provider_available("openai") is False

        clock.advance(1)
        assert await monitor.is_provider_available("openai") is True
        await monitor.record_success("openai", 250.0)

        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert await monitor.is_provider_available("openai") is True

    @pytest.mark.asyncio
    async def test_single_probe_under_concurrency(self, monitor, clock) -> None:
        await _trip(monitor)
        clock.advance(30)

        results = await asyncio.gather(
            *(monitor.is_provider_available("openai") for _ in range(20))
        )

        assert results.count(True) == 1
        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.probe_in_flight is True

    @pytest.mark.asyncio
    async def test_probe_failure_doubles_backoff(self, monitor, clock) -> None:
        await _trip(monitor)
        clock.advance(30)
        assert await monitor.is_provider_available("openai") is True

        await monitor.record_failure("openai", "still down")

        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.OPEN
        assert cb.trip_count == 2
        assert cb.next_retry_time == clock.now + timedelta(seconds=60)

        clock.advance(59)
        assert await monitor.is_provider_available("openai") is False
        clock.advance(1)
        assert await monitor.is_provider_available("openai") is True

    @pytest.mark.asyncio
    async def test_abandoned_probe_is_reclaimed(self, monitor, clock) -> None:
        await _trip(monitor)
        clock.advance(30)
        assert await monitor.is_provider_available("openai") is True
        clock.advance(59)
        assert await monitor.is_provider_available("openai") is False
        clock.advance(1)
        assert await monitor.is_provider_available("openai") is True

    @pytest.mark.asyncio
    async def test_state_read_reports_due_half_open(self, monitor, clock) -> None:
        await _trip(monitor)
        clock.advance(31)
        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.probe_in_flight is False
        # the read did not claim the probe
        assert await monitor.is_provider_available("openai") is True

    @pytest.mark.asyncio
    async def test_late_success_keeps_circuit_open(self, monitor) -> None:
        await _trip(monitor)
        await monitor.record_success("openai", 100.0)
        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_availability_fails_open(self, failing_store, clock) -> None:
        monitor = ProviderHealthMonitor(failing_store, clock=clock)
        assert await monitor.is_provider_available("openai") is True

    @pytest.mark.asyncio
    async def test_transitions_are_published(self, monitor, event_bus, clock) -> None:
        seen: list[CircuitStateChangedEvent] = []

        async def handler(event: CircuitStateChangedEvent) -> None:
            seen.append(event)

        event_bus.subscribe("CIRCUIT_STATE_CHANGED", handler)
        await _trip(monitor)
        clock.advance(30)
        await monitor.is_provider_available("openai")
        await monitor.record_success("openai", 10.0)

        assert [(e.previous_state, e.new_state) for e in seen] == [
            ("closed", "open"),
            ("open", "half_open"),
            ("half_open", "closed"),
        ]
        assert seen[0].provider_id == "openai"
        assert seen[0].next_retry_time is not None


# ═══════════════════════════════════════════════════════════════
#  Reads and admin operations
# ═══════════════════════════════════════════════════════════════
class TestAdmin:
    @pytest.mark.asyncio
    async def test_unknown_provider_reads_raise(self, monitor) -> None:
        with pytest.raises(ProviderNotFoundError):
            await monitor.get_health_metrics("nope")
        with pytest.raises(ProviderNotFoundError):
            await monitor.get_circuit_breaker_state("nope")

    @pytest.mark.asyncio
    async def test_all_metrics_sorted(self, monitor) -> None:
        for pid in ("openai", "gemini", "groq"):
            await monitor.record_success(pid, 100.0)
        assert [m.provider_id for m in await monitor.get_all_health_metrics()] == [
            "gemini",
            "groq",
            "openai",
        ]

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, monitor) -> None:
        await _trip(monitor)
        await monitor.reset_circuit_breaker("openai")
        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert await monitor.is_provider_available("openai") is True

    @pytest.mark.asyncio
    async def test_reset_health_metrics(self, monitor) -> None:
        await _trip(monitor)
        await monitor.reset_health_metrics("openai")
        m = await monitor.get_health_metrics("openai")
        assert m.total_requests == 0
        assert m.consecutive_failures == 0
        assert m.status == ProviderStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_force_open_sets_retry_time(self, monitor, clock) -> None:
        await monitor.update_circuit_breaker_state("groq", state="open")
        cb = await monitor.get_circuit_breaker_state("groq")
        assert cb.state == CircuitState.OPEN
        assert cb.next_retry_time == clock.now + timedelta(seconds=30)
        assert await monitor.is_provider_available("groq") is False

    @pytest.mark.asyncio
    async def test_force_closed(self, monitor) -> None:
        await _trip(monitor)
        await monitor.update_circuit_breaker_state("openai", state=CircuitState.CLOSED)
        cb = await monitor.get_circuit_breaker_state("openai")
        assert cb.state == CircuitState.CLOSED
        assert cb.next_retry_time is None

    @pytest.mark.asyncio
    async def test_partial_update(self, monitor) -> None:
        await monitor.record_failure("groq", "e")
        await monitor.update_circuit_breaker_state("groq", failure_count=4)
        await monitor.record_failure("groq", "e")
        cb = await monitor.get_circuit_breaker_state("groq")
        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_field(self, monitor) -> None:
        with pytest.raises(InvalidConfigurationError):
            await monitor.update_circuit_breaker_state("groq", colour="red")

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_state(self, monitor) -> None:
        with pytest.raises(InvalidConfigurationError):
            await monitor.update_circuit_breaker_state("groq", state="ajar")

    @pytest.mark.asyncio
    async def test_update_rejects_negative_count(self, monitor) -> None:
        with pytest.raises(InvalidConfigurationError):
            await monitor.update_circuit_breaker_state("groq", failure_count=-1)

    @pytest.mark.asyncio
    async def test_naive_timestamps_taken_as_utc(self, monitor, clock) -> None:
        await monitor.update_circuit_breaker_state(
            "groq",
            state="open",
            last_failure=datetime(2026, 10, 17, 11, 0),
            next_retry_time=datetime(2030, 1, 1),
        )
        cb = await monitor.get_circuit_breaker_state("groq")
        assert cb.next_retry_time == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert cb.last_failure == datetime(2026, 10, 17, 11, 0, tzinfo=timezone.utc)
        assert await monitor.is_provider_available("groq") is False

        clock.advance(days=3000)
        assert await monitor.is_provider_available("groq") is True

    @pytest.mark.asyncio
    async def test_offset_timestamps_converted_to_utc(self, monitor) -> None:
        plus_two = timezone(timedelta(hours=2))
        await monitor.update_circuit_breaker_state(
            "groq", state="open", next_retry_time=datetime(2026, 10, 17, 16, 0, tzinfo=plus_two)
        )
        cb = await monitor.get_circuit_breaker_state("groq")
        assert cb.next_retry_time == datetime(2026, 10, 17, 14, 0, tzinfo=timezone.utc)
        assert cb.next_retry_time.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_update_rejects_non_datetime(self, monitor) -> None:
        with pytest.raises(InvalidConfigurationError):
            await monitor.update_circuit_breaker_state("groq", next_retry_time="tomorrow")


# ═══════════════════════════════════════════════════════════════
#  Ranking
# ═══════════════════════════════════════════════════════════════
class TestRanking:
    @pytest.mark.asyncio
    async def test_ranking_orders_by_score(self, monitor) -> None:
        await monitor.record_success("fast", 100.0)
        await monitor.record_success("slow", 5000.0)
        await monitor.record_failure("flaky", "boom")
        assert await monitor.get_provider_ranking() == ["fast", "slow", "flaky"]

    @pytest.mark.asyncio
    async def test_open_circuit_ranks_last(self, monitor, clock) -> None:
        await monitor.record_success("alpha", 100.0)
        await monitor.record_success("beta", 3000.0)
        assert await monitor.get_provider_ranking() == ["alpha", "beta"]

        await monitor.update_circuit_breaker_state("alpha", state="open")
        assert await monitor.get_provider_ranking() == ["beta", "alpha"]

        # once the backoff has elapsed the circuit no longer counts as open
        clock.advance(30)
        assert await monitor.get_provider_ranking() == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_ranking_reads_persisted_circuits(self, monitor, health_store, clock) -> None:
        await monitor.record_success("alpha", 100.0)
        await monitor.record_success("beta", 100.0)
        await health_store.save_circuit(
            CircuitBreakerState(
                "alpha",
                state=CircuitState.OPEN,
                trip_count=1,
                next_retry_time=clock.now + timedelta(minutes=5),
            )
        )
        assert await monitor.get_provider_ranking() == ["beta", "alpha"]

    @pytest.mark.asyncio
    async def test_empty_ranking(self, monitor) -> None:
        assert await monitor.get_provider_ranking() == []
