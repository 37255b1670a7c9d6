"""Provider health monitor — liveness metrics and circuit breaking per provider.

The generation orchestrator calls ``is_provider_available`` before dispatch
and reports every outcome through ``record_success`` / ``record_failure``.
Each provider's read-modify-write cycle runs under the store's
``lock("health:{provider_id}")``, which the Redis store shares across
workers, so counters never lose updates and only one caller anywhere can
claim a half-open probe.

Outcome reporting is telemetry: a storage outage is logged and counted, never
raised to the caller.  For the same reason availability fails open.
"""

from __future__ import annotations

import dataclasses
import math
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Callable

import structlog

from hookly.domain.entities import CircuitBreakerState, ProviderHealthMetrics, utcnow
from hookly.domain.enums import CircuitState
from hookly.domain.events import CircuitStateChangedEvent
from hookly.domain.exceptions import (
    InvalidConfigurationError,
    ProviderNotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from hookly.domain.value_objects import as_utc
from hookly.ports.inbound import ProviderHealthPort
from hookly.ports.outbound import EventBusPort, HealthStorePort
from hookly.shared.observability.metrics import (
    AVAILABILITY_DENIALS,
    CIRCUIT_TRANSITIONS,
    PROVIDER_OUTCOMES,
    PROVIDER_RESPONSE_TIME,
    TELEMETRY_DROPS,
)
from hookly.shared.providers import (
    CircuitBreakerConfig,
    CircuitBreakerPolicy,
    CircuitTransition,
    HealthConfig,
    HealthMetricsPolicy,
)

logger = structlog.get_logger(__name__)

_ADMIN_CIRCUIT_FIELDS = frozenset({"state", "failure_count", "last_failure", "next_retry_time"})


def _require_provider(provider_id: str) -> None:
    if not provider_id or not provider_id.strip():
        raise ValidationError("provider_id must be a non-empty string")


def _require_response_time(response_time: Any) -> float:
    if (
        isinstance(response_time, bool)
        or not isinstance(response_time, (int, float))
        or not math.isfinite(response_time)
        or response_time < 0
    ):
        raise ValidationError(
            f"response_time must be a finite, non-negative number of ms, got {response_time!r}"
        )
    return float(response_time)


def _as_utc_or_none(field: str, value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise InvalidConfigurationError(f"{field} must be a datetime")
    # naive timestamps are taken as UTC
    return as_utc(value)


class ProviderHealthMonitor(ProviderHealthPort):
    """Tracks provider health and gates traffic through a circuit breaker."""

    def __init__(
        self,
        store: HealthStorePort,
        *,
        breaker_config: CircuitBreakerConfig | None = None,
        health_config: HealthConfig | None = None,
        event_bus: EventBusPort | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._breaker = CircuitBreakerPolicy(breaker_config)
        self._health = HealthMetricsPolicy(
            health_config, failure_threshold=self._breaker.config.failure_threshold
        )
        self._event_bus = event_bus
        self._clock = clock

    # ── Outcome reporting ────────────────────────────────────
    async def record_success(self, provider_id: str, response_time: float) -> None:
        _require_provider(provider_id)
        response_time = _require_response_time(response_time)
        PROVIDER_OUTCOMES.labels(provider=provider_id, outcome="success").inc()
        PROVIDER_RESPONSE_TIME.labels(provider=provider_id).observe(response_time / 1000)

        try:
            async with self._lock(provider_id):
                now = self._clock()
                metrics, cb = await self._load(provider_id, now)
                self._health.apply_success(metrics, response_time, now)
                transition = self._breaker.on_success(cb, now)
                await self._store.save_metrics(metrics)
                await self._store.save_circuit(cb)
        except StorageUnavailableError as exc:
            self._drop("record_success", provider_id, exc)
            return

        if transition:
            await self._emit(transition, cb)

    async def record_failure(self, provider_id: str, error: str) -> None:
        _require_provider(provider_id)
        PROVIDER_OUTCOMES.labels(provider=provider_id, outcome="failure").inc()

        try:
            async with self._lock(provider_id):
                now = self._clock()
                metrics, cb = await self._load(provider_id, now)
                self._health.apply_failure(metrics, error, now)
                transition = self._breaker.on_failure(cb, now)
                await self._store.save_metrics(metrics)
                await self._store.save_circuit(cb)
        except StorageUnavailableError as exc:
            self._drop("record_failure", provider_id, exc)
            return

        logger.debug(
            "provider_failure_recorded",
            provider=provider_id,
            consecutive_failures=metrics.consecutive_failures,
            error=error,
        )
        if transition:
            await self._emit(transition, cb)

    # ── Reads ────────────────────────────────────────────────
    async def get_health_metrics(self, provider_id: str) -> ProviderHealthMetrics:
        metrics = await self._store.get_metrics(provider_id)
        if metrics is None:
            raise ProviderNotFoundError(provider_id, what="health metrics")
        return metrics

    async def get_all_health_metrics(self) -> list[ProviderHealthMetrics]:
        return sorted(await self._store.list_metrics(), key=lambda m: m.provider_id)

    async def get_circuit_breaker_state(self, provider_id: str) -> CircuitBreakerState:
        cb = await self._store.get_circuit(provider_id)
        if cb is None:
            raise ProviderNotFoundError(provider_id, what="circuit breaker state")
        # Report a due retry as half-open; the probe is claimed only by admission
        if self._breaker.is_due(cb, self._clock()):
            cb.state = CircuitState.HALF_OPEN
            cb.release_probe()
        return cb

    # ── Admission ────────────────────────────────────────────
    async def is_provider_available(self, provider_id: str) -> bool:
        try:
            async with self._lock(provider_id):
                now = self._clock()
                cb = await self._store.get_circuit(provider_id)
                if cb is None:
                    return True

                before = (cb.state, cb.probe_in_flight, cb.probe_started_at)
                allowed, transition = self._breaker.admit(cb, now)
                if (cb.state, cb.probe_in_flight, cb.probe_started_at) != before:
                    await self._store.save_circuit(cb)
        except StorageUnavailableError as exc:
            logger.error(
                "availability_check_failed_open",
                provider=provider_id,
                operation=exc.operation,
                error=exc.message,
            )
            return True

        if transition:
            await self._emit(transition, cb)
        if not allowed:
            AVAILABILITY_DENIALS.labels(provider=provider_id).inc()
            logger.debug("provider_unavailable", provider=provider_id, state=cb.state.value)
        return allowed

    # ── Admin ────────────────────────────────────────────────
    async def update_circuit_breaker_state(self, provider_id: str, **changes: Any) -> None:
        _require_provider(provider_id)
        unknown = set(changes) - _ADMIN_CIRCUIT_FIELDS
        if unknown:
            raise InvalidConfigurationError(f"Unknown circuit breaker fields: {sorted(unknown)}")

        if "state" in changes:
            try:
                changes["state"] = CircuitState(changes["state"])
            except ValueError as exc:
                raise InvalidConfigurationError(
                    f"Unknown circuit state {changes['state']!r}"
                ) from exc
        if "failure_count" in changes:
            count = changes["failure_count"]
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise InvalidConfigurationError("failure_count must be a non-negative integer")
        for field in ("last_failure", "next_retry_time"):
            if field in changes:
                changes[field] = _as_utc_or_none(field, changes[field])

        async with self._lock(provider_id):
            now = self._clock()
            cb = await self._store.get_circuit(provider_id) or CircuitBreakerState(provider_id)
            previous = cb.state

            target = changes.pop("state", cb.state)
            if target == CircuitState.CLOSED and previous != CircuitState.CLOSED:
                cb.force_closed()
            cb = dataclasses.replace(cb, **changes)
            # Admin writes bypass the transition table
            cb.state = target
            if target != CircuitState.HALF_OPEN:
                cb.release_probe()
            self._breaker.ensure_retry_time(cb, now)
            await self._store.save_circuit(cb)

        logger.warning(
            "circuit_breaker_updated",
            provider=provider_id,
            previous_state=previous.value,
            new_state=cb.state.value,
            fields=sorted(set(changes) | {"state"}),
        )
        if cb.state != previous:
            await self._emit(CircuitTransition(provider_id, previous, cb.state), cb)

    async def reset_circuit_breaker(self, provider_id: str) -> None:
        _require_provider(provider_id)
        async with self._lock(provider_id):
            cb = await self._store.get_circuit(provider_id) or CircuitBreakerState(provider_id)
            previous = cb.state
            cb.force_closed()
            await self._store.save_circuit(cb)

        logger.warning("circuit_breaker_reset", provider=provider_id, previous_state=previous.value)
        if previous != CircuitState.CLOSED:
            await self._emit(CircuitTransition(provider_id, previous, cb.state), cb)

    async def reset_health_metrics(self, provider_id: str) -> None:
        _require_provider(provider_id)
        async with self._lock(provider_id):
            await self._store.save_metrics(
                ProviderHealthMetrics(provider_id=provider_id, last_checked=self._clock())
            )
        logger.warning("health_metrics_reset", provider=provider_id)

    # ── Ranking ──────────────────────────────────────────────
    async def get_provider_ranking(self) -> list[str]:
        now = self._clock()
        metrics = await self._store.list_metrics()
        circuits = await self._store.list_circuits()
        open_circuits = {
            cb.provider_id
            for cb in circuits
            if cb.state == CircuitState.OPEN and not self._breaker.is_due(cb, now)
        }
        return self._health.rank(metrics, open_circuits)

    # ── Internals ────────────────────────────────────────────
    async def _load(
        self, provider_id: str, now: datetime
    ) -> tuple[ProviderHealthMetrics, CircuitBreakerState]:
        metrics = await self._store.get_metrics(provider_id)
        if metrics is None:
            metrics = ProviderHealthMetrics(provider_id=provider_id, last_checked=now)
        cb = await self._store.get_circuit(provider_id) or CircuitBreakerState(provider_id)
        return metrics, cb

    def _lock(self, provider_id: str) -> AbstractAsyncContextManager[Any]:
        return self._store.lock(f"health:{provider_id}")

    def _drop(self, operation: str, provider_id: str, exc: StorageUnavailableError) -> None:
        TELEMETRY_DROPS.labels(operation=operation).inc()
        logger.error(
            "telemetry_write_dropped",
            operation=operation,
            provider=provider_id,
            error=exc.message,
        )

    async def _emit(self, transition: CircuitTransition, cb: CircuitBreakerState) -> None:
        CIRCUIT_TRANSITIONS.labels(
            provider=transition.provider_id,
            from_state=transition.previous.value,
            to_state=transition.current.value,
        ).inc()
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            CircuitStateChangedEvent(
                provider_id=transition.provider_id,
                previous_state=transition.previous.value,
                new_state=transition.current.value,
                failure_count=cb.failure_count,
                next_retry_time=cb.next_retry_time.isoformat() if cb.next_retry_time else None,
            )
        )
