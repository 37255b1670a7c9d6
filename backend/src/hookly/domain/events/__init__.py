"""Domain events — typed records of things that happened in the domain.

Events are published *after* the state change is persisted so that ops
tooling (alert fan-out, dashboards) can react asynchronously.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_type: str = "DOMAIN_EVENT"
    occurred_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


# ── Circuit breaker events ───────────────────────────────────
@dataclass(frozen=True, slots=True)
class CircuitStateChangedEvent(DomainEvent):
    event_type: str = "CIRCUIT_STATE_CHANGED"
    provider_id: str = ""
    previous_state: str = ""
    new_state: str = ""
    failure_count: int = 0
    next_retry_time: str | None = None


# ── Cost events ──────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class CostAlertRaisedEvent(DomainEvent):
    event_type: str = "COST_ALERT_RAISED"
    alert_id: str = ""
    alert_type: str = ""
    provider_id: str | None = None
    current_cost: str = "0"
    threshold: str = "0"
    message: str = ""
