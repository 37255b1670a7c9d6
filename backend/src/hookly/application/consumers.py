"""Event consumers (handlers) for domain events.

Bridges the in-process EventBus to the ops log stream, where log shipping
turns breaker transitions and cost alerts into pages and dashboard markers.
"""

from __future__ import annotations

import structlog

from hookly.domain.events import CircuitStateChangedEvent, CostAlertRaisedEvent
from hookly.ports.outbound import EventBusPort

logger = structlog.get_logger(__name__)

CIRCUIT_STATE_CHANGED = "CIRCUIT_STATE_CHANGED"
COST_ALERT_RAISED = "COST_ALERT_RAISED"


class OpsNotificationConsumer:
    """Logs circuit transitions and cost alerts for on-call."""

    def __init__(self, bus: EventBusPort) -> None:
        self._bus = bus

    def attach(self) -> None:
        self._bus.subscribe(CIRCUIT_STATE_CHANGED, self.handle_circuit_state_changed)
        self._bus.subscribe(COST_ALERT_RAISED, self.handle_cost_alert_raised)

    def detach(self) -> None:
        self._bus.unsubscribe(CIRCUIT_STATE_CHANGED, self.handle_circuit_state_changed)
        self._bus.unsubscribe(COST_ALERT_RAISED, self.handle_cost_alert_raised)

    async def handle_circuit_state_changed(self, event: CircuitStateChangedEvent) -> None:
        # opening is the page-worthy direction
        log = logger.warning if event.new_state == "open" else logger.info
        log(
            "ops_circuit_state_changed",
            provider=event.provider_id,
            previous_state=event.previous_state,
            new_state=event.new_state,
            failure_count=event.failure_count,
            next_retry_time=event.next_retry_time,
            occurred_at=event.occurred_at.isoformat(),
        )

    async def handle_cost_alert_raised(self, event: CostAlertRaisedEvent) -> None:
        logger.warning(
            "ops_cost_alert_raised",
            alert_id=event.alert_id,
            alert_type=event.alert_type,
            provider=event.provider_id,
            current_cost=event.current_cost,
            threshold=event.threshold,
            message=event.message,
            occurred_at=event.occurred_at.isoformat(),
        )
