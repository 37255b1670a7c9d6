"""Circuit breaker — prevents cascading failures by isolating unhealthy providers.

State machine:
    CLOSED    → (N consecutive failures)  → OPEN
    OPEN      → (next_retry_time elapses) → HALF_OPEN
    HALF_OPEN → (probe succeeds)          → CLOSED
    HALF_OPEN → (probe fails)             → OPEN, with a longer backoff

The policy is stateless: it mutates a ``CircuitBreakerState`` record handed
in by the caller, who is responsible for holding the provider lock and
persisting the record afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog

from hookly.domain.entities import CircuitBreakerState
from hookly.domain.enums import CircuitState
from hookly.shared.providers.types import CircuitBreakerConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CircuitTransition:
    provider_id: str
    previous: CircuitState
    current: CircuitState


class CircuitBreakerPolicy:
    """Applies breaker transitions to per-provider state records."""

    def __init__(self, config: CircuitBreakerConfig | None = None) -> None:
        self._config = config or CircuitBreakerConfig()

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    def on_success(self, cb: CircuitBreakerState, now: datetime) -> CircuitTransition | None:
        """Record a successful call — closes a half-open circuit."""
        if cb.state == CircuitState.HALF_OPEN:
            previous = cb.state
            cb.transition_to(CircuitState.CLOSED)
            cb.failure_count = 0
            cb.trip_count = 0
            cb.next_retry_time = None
            cb.release_probe()
            logger.info(
                "circuit_breaker_closed",
                provider=cb.provider_id,
                previous_state=previous.value,
            )
            return CircuitTransition(cb.provider_id, previous, cb.state)

        if cb.state == CircuitState.CLOSED:
            cb.failure_count = 0
            return None

        # A request dispatched before the trip finished late; it is not a probe.
        logger.debug("circuit_breaker_late_success", provider=cb.provider_id)
        return None

    def on_failure(self, cb: CircuitBreakerState, now: datetime) -> CircuitTransition | None:
        """Record a failed call — may trip the circuit."""
        cb.failure_count += 1
        cb.last_failure = now

        if cb.state == CircuitState.HALF_OPEN:
            # Probe failed — go back to OPEN with a longer backoff
            cb.transition_to(CircuitState.OPEN)
            cb.trip_count += 1
            cb.next_retry_time = now + self._config.backoff(cb.trip_count)
            cb.release_probe()
            logger.warning(
                "circuit_breaker_reopened",
                provider=cb.provider_id,
                failures=cb.failure_count,
                trip_count=cb.trip_count,
                next_retry_time=cb.next_retry_time.isoformat(),
            )
            return CircuitTransition(cb.provider_id, CircuitState.HALF_OPEN, cb.state)

        if (
            cb.state == CircuitState.CLOSED
            and cb.failure_count >= self._config.failure_threshold
        ):
            cb.transition_to(CircuitState.OPEN)
            cb.trip_count = 1
            cb.next_retry_time = now + self._config.backoff(cb.trip_count)
            logger.warning(
                "circuit_breaker_opened",
                provider=cb.provider_id,
                failures=cb.failure_count,
                next_retry_time=cb.next_retry_time.isoformat(),
            )
            return CircuitTransition(cb.provider_id, CircuitState.CLOSED, cb.state)

        return None

    @staticmethod
    def is_due(cb: CircuitBreakerState, now: datetime) -> bool:
        """True when an OPEN circuit has waited out its backoff."""
        if cb.state != CircuitState.OPEN:
            return False
        return cb.next_retry_time is None or now >= cb.next_retry_time

    def refresh(self, cb: CircuitBreakerState, now: datetime) -> CircuitTransition | None:
        """Move a due OPEN circuit to HALF_OPEN."""
        if not self.is_due(cb, now):
            return None

        cb.transition_to(CircuitState.HALF_OPEN)
        cb.release_probe()
        logger.info(
            "circuit_breaker_half_open",
            provider=cb.provider_id,
            trip_count=cb.trip_count,
        )
        return CircuitTransition(cb.provider_id, CircuitState.OPEN, cb.state)

    def admit(
        self, cb: CircuitBreakerState, now: datetime
    ) -> tuple[bool, CircuitTransition | None]:
        """Decide whether a request may go through; claims the probe if half-open."""
        transition = self.refresh(cb, now)

        if cb.state == CircuitState.CLOSED:
            return True, transition

        if cb.state == CircuitState.HALF_OPEN:
            if not cb.probe_in_flight or self._probe_abandoned(cb, now):
                if cb.probe_in_flight:
                    logger.warning(
                        "circuit_breaker_probe_reclaimed",
                        provider=cb.provider_id,
                        probe_started_at=cb.probe_started_at.isoformat()
                        if cb.probe_started_at
                        else None,
                    )
                cb.claim_probe(now)
                logger.info("circuit_breaker_probe_admitted", provider=cb.provider_id)
                return True, transition
            return False, transition

        # OPEN — no requests allowed
        return False, transition

    def ensure_retry_time(self, cb: CircuitBreakerState, now: datetime) -> None:
        """Give an OPEN circuit a future retry time if it lacks one (admin writes)."""
        if cb.state != CircuitState.OPEN:
            return
        if cb.next_retry_time is None or cb.next_retry_time <= now:
            cb.trip_count = max(cb.trip_count, 1)
            cb.next_retry_time = now + self._config.backoff(cb.trip_count)

    def _probe_abandoned(self, cb: CircuitBreakerState, now: datetime) -> bool:
        if cb.probe_started_at is None:
            return True
        elapsed = (now - cb.probe_started_at).total_seconds()
        return elapsed >= self._config.probe_timeout_s
