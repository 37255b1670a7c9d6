"""In-memory stores implementing the health and cost store ports.

Default backend for single-process deployments and the substitute used in
tests.  Locks are plain ``asyncio.Lock``s, so they only exclude callers
within one event loop.  Records are deep-copied on the way in and out so callers never hold
a live reference into the store.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from datetime import datetime

import structlog

from hookly.domain.entities import (
    CircuitBreakerState,
    CostAlert,
    CostRecord,
    ProviderHealthMetrics,
)
from hookly.domain.value_objects import CostBudget
from hookly.ports.outbound import CostStorePort, HealthStorePort

logger = structlog.get_logger(__name__)


class InMemoryHealthStore(HealthStorePort):
    """Process-local health metrics and breaker state."""

    def __init__(self) -> None:
        self._metrics: dict[str, ProviderHealthMetrics] = {}
        self._circuits: dict[str, CircuitBreakerState] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        logger.info("health_store_initialized_memory")

    async def get_metrics(self, provider_id: str) -> ProviderHealthMetrics | None:
        metrics = self._metrics.get(provider_id)
        return copy.deepcopy(metrics) if metrics else None

    async def save_metrics(self, metrics: ProviderHealthMetrics) -> None:
        self._metrics[metrics.provider_id] = copy.deepcopy(metrics)

    async def list_metrics(self) -> list[ProviderHealthMetrics]:
        return [copy.deepcopy(m) for _, m in sorted(self._metrics.items())]

    async def get_circuit(self, provider_id: str) -> CircuitBreakerState | None:
        state = self._circuits.get(provider_id)
        return copy.deepcopy(state) if state else None

    async def save_circuit(self, state: CircuitBreakerState) -> None:
        self._circuits[state.provider_id] = copy.deepcopy(state)

    async def list_circuits(self) -> list[CircuitBreakerState]:
        return [copy.deepcopy(c) for _, c in sorted(self._circuits.items())]

    def lock(self, name: str) -> asyncio.Lock:
        return self._locks[name]

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryCostStore(CostStorePort):
    """Process-local cost ledger, budget and alerts."""

    def __init__(self) -> None:
        self._records: list[CostRecord] = []
        self._providers: set[str] = set()
        self._budget: CostBudget | None = None
        self._alerts: dict[str, CostAlert] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        logger.info("cost_store_initialized_memory")

    async def append_record(self, record: CostRecord) -> None:
        # CostRecord is frozen, no copy needed
        self._records.append(record)
        self._providers.add(record.provider_id)

    async def list_records(
        self,
        *,
        provider_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CostRecord]:
        selected = [
            r
            for r in self._records
            if (provider_id is None or r.provider_id == provider_id)
            and (start is None or r.timestamp >= start)
            and (end is None or r.timestamp < end)
        ]
        return sorted(selected, key=lambda r: r.timestamp)

    async def list_providers(self) -> list[str]:
        return sorted(self._providers)

    async def get_budget(self) -> CostBudget | None:
        return self._budget

    async def save_budget(self, budget: CostBudget) -> None:
        self._budget = budget

    async def save_alert(self, alert: CostAlert) -> None:
        self._alerts[alert.id] = copy.deepcopy(alert)

    async def get_alert(self, alert_id: str) -> CostAlert | None:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    async def list_alerts(self) -> list[CostAlert]:
        return sorted(
            (copy.deepcopy(a) for a in self._alerts.values()),
            key=lambda a: (a.timestamp, a.id),
        )

    def lock(self, name: str) -> asyncio.Lock:
        return self._locks[name]

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
