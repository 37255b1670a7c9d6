"""Unit tests for the in-process event bus."""

from __future__ import annotations

import pytest

from hookly.adapters.outbound.event_bus import InProcessEventBus
from hookly.domain.events import CircuitStateChangedEvent, CostAlertRaisedEvent


@pytest.fixture
def bus() -> InProcessEventBus:
    return InProcessEventBus()


class TestInProcessEventBus:
    @pytest.mark.asyncio
    async def test_fan_out_by_type(self, bus) -> None:
        first, second, other = [], [], []

        async def h1(event):
            first.append(event)

        async def h2(event):
            second.append(event)

        async def h3(event):
            other.append(event)

        bus.subscribe("CIRCUIT_STATE_CHANGED", h1)
        bus.subscribe("CIRCUIT_STATE_CHANGED", h2)
        bus.subscribe("COST_ALERT_RAISED", h3)

        event = CircuitStateChangedEvent(provider_id="openai", previous_state="closed", new_state="open")
        await bus.publish(event)

        assert first == [event]
        assert second == [event]
        assert other == []

    @pytest.mark.asyncio
    async def test_handler_error_is_isolated(self, bus) -> None:
        seen = []

        async def broken(event):
            raise RuntimeError("pager down")

        async def healthy(event):
            seen.append(event)

        bus.subscribe("COST_ALERT_RAISED", broken)
        bus.subscribe("COST_ALERT_RAISED", healthy)

        await bus.publish(CostAlertRaisedEvent(alert_id="a-1"))
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus) -> None:
        seen = []

        async def handler(event):
            seen.append(event)

        bus.subscribe("COST_ALERT_RAISED", handler)
        bus.unsubscribe("COST_ALERT_RAISED", handler)
        bus.unsubscribe("COST_ALERT_RAISED", handler)

        await bus.publish(CostAlertRaisedEvent(alert_id="a-1"))
        assert seen == []

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self, bus) -> None:
        await bus.publish(CostAlertRaisedEvent(alert_id="a-1"))
