"""Inbound ports — the contracts the generation orchestrator and ops surface call.

Before dispatching a generation, the orchestrator asks
``ProviderHealthPort.is_provider_available`` and
``CostTrackingPort.would_exceed_budget``; afterwards it reports the outcome
through ``record_success`` / ``record_failure`` and ``record_generation_cost``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from hookly.domain.entities import (
    CircuitBreakerState,
    CostAlert,
    CostMetrics,
    ProviderHealthMetrics,
)
from hookly.domain.value_objects import CostBudget, Period

Amount = Decimal | float | int | str


class ProviderHealthPort(ABC):
    """Liveness signal and circuit breaker per provider."""

    @abstractmethod
    async def record_success(self, provider_id: str, response_time: float) -> None:
        """Record a successful request.  Never raises on storage failure.

        ``response_time`` is in milliseconds; NaN, infinite or negative values
        raise ``ValidationError``.
        """
        ...

    @abstractmethod
    async def record_failure(self, provider_id: str, error: str) -> None:
        """Record a failed request.  Never raises on storage failure."""
        ...

    @abstractmethod
    async def get_health_metrics(self, provider_id: str) -> ProviderHealthMetrics: ...

    @abstractmethod
    async def get_all_health_metrics(self) -> list[ProviderHealthMetrics]: ...

    @abstractmethod
    async def get_circuit_breaker_state(self, provider_id: str) -> CircuitBreakerState: ...

    @abstractmethod
    async def update_circuit_breaker_state(self, provider_id: str, **changes: Any) -> None:
        """Admin override.  Naive ``last_failure`` / ``next_retry_time`` are taken as UTC."""
        ...

    @abstractmethod
    async def is_provider_available(self, provider_id: str) -> bool: ...

    @abstractmethod
    async def reset_circuit_breaker(self, provider_id: str) -> None: ...

    @abstractmethod
    async def reset_health_metrics(self, provider_id: str) -> None: ...

    @abstractmethod
    async def get_provider_ranking(self) -> list[str]: ...


class CostTrackingPort(ABC):
    """Spend accounting and budget admission control."""

    @abstractmethod
    async def record_generation_cost(
        self,
        provider_id: str,
        input_tokens: int,
        output_tokens: int,
        cost: Amount,
        user_id: str | None = None,
    ) -> None:
        """Append a cost record and evaluate alerts.  Never raises on storage failure."""
        ...

    @abstractmethod
    async def get_cost_metrics(
        self, provider_id: str, period: Period | None = None
    ) -> CostMetrics: ...

    @abstractmethod
    async def get_all_cost_metrics(self, period: Period | None = None) -> list[CostMetrics]: ...

    @abstractmethod
    async def get_daily_cost(
        self, provider_id: str, day: datetime | date | None = None
    ) -> Decimal: ...

    @abstractmethod
    async def get_monthly_cost(
        self, provider_id: str, month: datetime | date | None = None
    ) -> Decimal: ...

    @abstractmethod
    async def get_total_cost(self, period: Period | None = None) -> Decimal: ...

    @abstractmethod
    async def would_exceed_budget(self, provider_id: str, estimated_cost: Amount) -> bool: ...

    @abstractmethod
    async def estimate_generation_cost(
        self, provider_id: str, input_tokens: int, output_tokens: int
    ) -> Decimal: ...

    @abstractmethod
    async def get_budget(self) -> CostBudget: ...

    @abstractmethod
    async def update_budget(self, **changes: Any) -> CostBudget: ...

    @abstractmethod
    async def get_cost_alerts(self, acknowledged: bool | None = None) -> list[CostAlert]: ...

    @abstractmethod
    async def acknowledge_cost_alert(self, alert_id: str) -> None: ...

    @abstractmethod
    async def get_provider_cost_ranking(
        self, quality_scores: Mapping[str, float] | None = None
    ) -> list[dict[str, Any]]: ...
