"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The application
services depend only on these abstractions, so tests can swap in the
in-memory stores and production can run against Redis.

Store methods raise ``StorageUnavailableError`` when the backend fails.
``lock(name)`` must exclude every holder of the same name across all
processes sharing the store, not just the calling event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from hookly.domain.entities import (
    CircuitBreakerState,
    CostAlert,
    CostRecord,
    ProviderHealthMetrics,
)
from hookly.domain.events import DomainEvent
from hookly.domain.value_objects import CostBudget


# ═══════════════════════════════════════════════════════════════
#  Health store port
# ═══════════════════════════════════════════════════════════════
class HealthStorePort(ABC):
    """Per-provider health metrics and circuit breaker state."""

    @abstractmethod
    async def get_metrics(self, provider_id: str) -> ProviderHealthMetrics | None: ...

    @abstractmethod
    async def save_metrics(self, metrics: ProviderHealthMetrics) -> None: ...

    @abstractmethod
    async def list_metrics(self) -> list[ProviderHealthMetrics]: ...

    @abstractmethod
    async def get_circuit(self, provider_id: str) -> CircuitBreakerState | None: ...

    @abstractmethod
    async def save_circuit(self, state: CircuitBreakerState) -> None: ...

    @abstractmethod
    async def list_circuits(self) -> list[CircuitBreakerState]: ...

    @abstractmethod
    def lock(self, name: str) -> AbstractAsyncContextManager[Any]:
        """Exclusive section for a read-modify-write cycle on ``name``."""
        ...

    @abstractmethod
    async def health_check(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Cost store port
# ═══════════════════════════════════════════════════════════════
class CostStorePort(ABC):
    """Append-only cost ledger, budget singleton, and alert inbox."""

    @abstractmethod
    async def append_record(self, record: CostRecord) -> None: ...

    @abstractmethod
    async def list_records(
        self,
        *,
        provider_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CostRecord]:
        """Records with ``start <= timestamp < end``, oldest first."""
        ...

    @abstractmethod
    async def list_providers(self) -> list[str]: ...

    @abstractmethod
    async def get_budget(self) -> CostBudget | None: ...

    @abstractmethod
    async def save_budget(self, budget: CostBudget) -> None: ...

    @abstractmethod
    async def save_alert(self, alert: CostAlert) -> None:
        """Insert or overwrite an alert by id."""
        ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> CostAlert | None: ...

    @abstractmethod
    async def list_alerts(self) -> list[CostAlert]: ...

    @abstractmethod
    def lock(self, name: str) -> AbstractAsyncContextManager[Any]: ...

    @abstractmethod
    async def health_check(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Event bus port
# ═══════════════════════════════════════════════════════════════
class EventBusPort(ABC):
    """Publish/subscribe for domain events."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None: ...

    @abstractmethod
    def subscribe(
        self,
        event_type: str,
        handler: Any,
    ) -> None: ...

    @abstractmethod
    def unsubscribe(
        self,
        event_type: str,
        handler: Any,
    ) -> None: ...
