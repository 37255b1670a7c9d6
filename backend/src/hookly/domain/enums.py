"""Domain enumerations for the provider resilience core."""

from __future__ import annotations

import enum


class ProviderStatus(str, enum.Enum):
    """Health status of an upstream AI provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class CircuitState(str, enum.Enum):
    """Circuit breaker state machine.

    CLOSED    → (N consecutive failures) → OPEN
    OPEN      → (next_retry_time elapses) → HALF_OPEN
    HALF_OPEN → (probe succeeds)         → CLOSED
    HALF_OPEN → (probe fails)            → OPEN
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    # ── Allowed transitions ──
    def can_transition_to(self, target: CircuitState) -> bool:
        return target in _CIRCUIT_TRANSITIONS.get(self, set())


_CIRCUIT_TRANSITIONS: dict[CircuitState, set[CircuitState]] = {
    CircuitState.CLOSED: {CircuitState.OPEN},
    CircuitState.OPEN: {CircuitState.HALF_OPEN},
    CircuitState.HALF_OPEN: {CircuitState.CLOSED, CircuitState.OPEN},
}


class CostAlertType(str, enum.Enum):
    """Why a cost alert was raised."""

    DAILY_THRESHOLD = "daily_threshold"
    MONTHLY_THRESHOLD = "monthly_threshold"
    PER_GENERATION_EXCEEDED = "per_generation_exceeded"
    BUDGET_EXCEEDED = "budget_exceeded"


class StorageBackend(str, enum.Enum):
    """Where provider health and cost state is kept."""

    MEMORY = "memory"
    REDIS = "redis"
