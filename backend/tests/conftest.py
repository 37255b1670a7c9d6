"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add src to path so imports work
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from hookly.adapters.outbound.event_bus import InProcessEventBus
from hookly.adapters.outbound.storage import InMemoryCostStore, InMemoryHealthStore
from hookly.application.services import CostTracker, ProviderHealthMonitor
from hookly.domain.value_objects import CostBudget, ProviderPricing
from hookly.shared.providers import CircuitBreakerConfig


class FakeClock:
    """Controllable UTC clock; call it to read, ``advance`` to move forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def event_bus() -> InProcessEventBus:
    return InProcessEventBus()


@pytest.fixture
def health_store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def cost_store() -> InMemoryCostStore:
    return InMemoryCostStore()


@pytest.fixture
def breaker_config() -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_threshold=5,
        backoff_base_s=30,
        backoff_multiplier=2,
        backoff_max_s=600,
        probe_timeout_s=60,
    )


@pytest.fixture
def monitor(
    health_store: InMemoryHealthStore,
    breaker_config: CircuitBreakerConfig,
    event_bus: InProcessEventBus,
    clock: FakeClock,
) -> ProviderHealthMonitor:
    return ProviderHealthMonitor(
        health_store,
        breaker_config=breaker_config,
        event_bus=event_bus,
        clock=clock,
    )


@pytest.fixture
def pricing() -> dict[str, ProviderPricing]:
    return {
        "gemini": ProviderPricing(input_per_1m="0.10", output_per_1m="0.40"),
        "groq": ProviderPricing(input_per_1m="0.11", output_per_1m="0.34"),
        "openai": ProviderPricing(input_per_1m="0.15", output_per_1m="0.60"),
    }


@pytest.fixture
def budget() -> CostBudget:
    return CostBudget(
        daily_budget="100",
        monthly_budget="1000",
        per_generation_max="10",
        alert_thresholds={"daily": "80", "monthly": "85"},
    )


@pytest.fixture
def tracker(
    cost_store: InMemoryCostStore,
    budget: CostBudget,
    pricing: dict[str, ProviderPricing],
    event_bus: InProcessEventBus,
    clock: FakeClock,
) -> CostTracker:
    return CostTracker(
        cost_store,
        default_budget=budget,
        pricing=pricing,
        event_bus=event_bus,
        clock=clock,
    )
