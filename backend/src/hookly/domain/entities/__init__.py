"""Domain entities — objects with identity and lifecycle.

Entities are *mutable* but expose controlled mutation methods that enforce
business invariants.  Health and breaker records are keyed by ``provider_id``;
cost records and alerts carry their own ``id``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from hookly.domain.enums import CircuitState, CostAlertType, ProviderStatus
from hookly.domain.exceptions import InvalidCircuitTransitionError
from hookly.domain.value_objects import Period


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════
#  Provider health
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class RecentError:
    timestamp: datetime
    error: str


@dataclass(slots=True)
class ProviderHealthMetrics:
    """Liveness and quality signal for one provider.

    Response times are in milliseconds.  ``error_rate`` is an exponential
    moving average of the failure indicator so it recovers once a provider
    stabilises; ``uptime`` is the lifetime success ratio.
    """

    provider_id: str
    status: ProviderStatus = ProviderStatus.HEALTHY
    response_time: float = 0.0
    average_response_time: float = 0.0
    min_response_time: float = 0.0
    max_response_time: float = 0.0
    error_rate: float = 0.0
    uptime: float = 1.0
    last_checked: datetime = field(default_factory=utcnow)
    consecutive_failures: int = 0
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: str | None = None
    recent_errors: list[RecentError] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════
#  Circuit breaker
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class CircuitBreakerState:
    """Persisted breaker state for one provider.

    ``trip_count`` counts consecutive trips since the breaker last closed and
    drives backoff growth.  ``probe_in_flight`` is the half-open admission
    token: exactly one caller may hold it.
    """

    provider_id: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure: datetime | None = None
    next_retry_time: datetime | None = None
    trip_count: int = 0
    probe_in_flight: bool = False
    probe_started_at: datetime | None = None

    # ── State transitions ────────────────────────────────────
    def transition_to(self, target: CircuitState) -> None:
        if not self.state.can_transition_to(target):
            raise InvalidCircuitTransitionError(self.state.value, target.value)
        self.state = target

    def claim_probe(self, now: datetime) -> None:
        self.probe_in_flight = True
        self.probe_started_at = now

    def release_probe(self) -> None:
        self.probe_in_flight = False
        self.probe_started_at = None

    def force_closed(self) -> None:
        """Admin override; bypasses the transition table."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.trip_count = 0
        self.next_retry_time = None
        self.release_probe()


# ═══════════════════════════════════════════════════════════════
#  Cost ledger
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class CostRecord:
    """Immutable ledger entry for one generation's spend."""

    provider_id: str
    input_tokens: int
    output_tokens: int
    cost: Decimal
    user_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True, slots=True)
class CostMetrics:
    """Aggregate spend for one provider over a period.  Derived, never stored."""

    provider_id: str
    period: Period
    total_cost: Decimal = Decimal("0")
    total_generations: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    @property
    def average_cost_per_generation(self) -> Decimal:
        if not self.total_generations:
            return Decimal("0")
        return self.total_cost / self.total_generations

    @classmethod
    def aggregate(
        cls, provider_id: str, period: Period, records: list[CostRecord]
    ) -> CostMetrics:
        return cls(
            provider_id=provider_id,
            period=period,
            total_cost=sum((r.cost for r in records), Decimal("0")),
            total_generations=len(records),
            total_input_tokens=sum(r.input_tokens for r in records),
            total_output_tokens=sum(r.output_tokens for r in records),
        )


@dataclass(slots=True)
class CostAlert:
    """Audit-trail entry raised when spend crosses a threshold.

    Only ``acknowledged`` ever changes after creation.
    """

    type: CostAlertType
    message: str
    current_cost: Decimal
    threshold: Decimal
    period_key: str
    provider_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    acknowledged: bool = False
    id: str = field(default_factory=_new_id)

    def acknowledge(self) -> None:
        self.acknowledged = True

    def matches(self, alert_type: CostAlertType, provider_id: str | None, period_key: str) -> bool:
        return (
            self.type == alert_type
            and self.provider_id == provider_id
            and self.period_key == period_key
        )
