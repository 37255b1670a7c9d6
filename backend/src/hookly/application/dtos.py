"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.  Money fields are ``Decimal`` and
serialise as strings.
"""

from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hookly.domain.entities import CostMetrics
from hookly.domain.enums import CircuitState, CostAlertType, ProviderStatus


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Provider health
# ═══════════════════════════════════════════════════════════════
class RecentErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime
    error: str


class ProviderHealthResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: str
    status: ProviderStatus
    response_time: float
    average_response_time: float
    min_response_time: float
    max_response_time: float
    error_rate: float
    uptime: float
    last_checked: datetime
    consecutive_failures: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: str | None = None
    recent_errors: list[RecentErrorResponse] = Field(default_factory=list)


class CircuitBreakerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: str
    state: CircuitState
    failure_count: int
    last_failure: datetime | None = None
    next_retry_time: datetime | None = None
    trip_count: int = 0
    probe_in_flight: bool = False


class CircuitBreakerUpdateRequest(BaseModel):
    """Admin override; only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    state: CircuitState | None = None
    failure_count: int | None = Field(None, ge=0)
    last_failure: datetime | None = None
    next_retry_time: datetime | None = None


class AvailabilityResponse(BaseModel):
    provider_id: str
    available: bool


class ProviderRankingResponse(BaseModel):
    providers: list[str]


# ═══════════════════════════════════════════════════════════════
#  Costs
# ═══════════════════════════════════════════════════════════════
class CostRecordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    provider_id: str = Field(..., min_length=1, max_length=64, examples=["openai"])
    input_tokens: int = Field(..., ge=0)
    output_tokens: int = Field(..., ge=0)
    cost: Decimal = Field(..., ge=0)
    user_id: str | None = Field(None, max_length=128)


class CostMetricsResponse(BaseModel):
    provider_id: str
    period_start: datetime
    period_end: datetime
    total_cost: Decimal
    total_generations: int
    average_cost_per_generation: Decimal
    total_input_tokens: int
    total_output_tokens: int

    @classmethod
    def from_metrics(cls, m: CostMetrics) -> CostMetricsResponse:
        return cls(
            provider_id=m.provider_id,
            period_start=m.period.start,
            period_end=m.period.end,
            total_cost=m.total_cost,
            total_generations=m.total_generations,
            average_cost_per_generation=m.average_cost_per_generation,
            total_input_tokens=m.total_input_tokens,
            total_output_tokens=m.total_output_tokens,
        )


class CostAmountResponse(BaseModel):
    provider_id: str | None = None
    period_start: datetime
    period_end: datetime
    total_cost: Decimal


class EstimateRequest(BaseModel):
    provider_id: str = Field(..., min_length=1, max_length=64)
    input_tokens: int = Field(..., ge=0)
    output_tokens: int = Field(..., ge=0)


class EstimateResponse(BaseModel):
    provider_id: str
    input_tokens: int
    output_tokens: int
    estimated_cost: Decimal


class BudgetCheckRequest(BaseModel):
    provider_id: str = Field(..., min_length=1, max_length=64)
    estimated_cost: Decimal = Field(..., ge=0)


class BudgetCheckResponse(BaseModel):
    provider_id: str
    estimated_cost: Decimal
    would_exceed: bool


class AlertThresholdsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    daily: Decimal
    monthly: Decimal


class BudgetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    daily_budget: Decimal
    monthly_budget: Decimal
    per_generation_max: Decimal
    alert_thresholds: AlertThresholdsResponse


class AlertThresholdsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    daily: Decimal | None = None
    monthly: Decimal | None = None


class BudgetUpdateRequest(BaseModel):
    """Partial budget update; range checks happen in the domain."""

    model_config = ConfigDict(extra="forbid")

    daily_budget: Decimal | None = None
    monthly_budget: Decimal | None = None
    per_generation_max: Decimal | None = None
    alert_thresholds: AlertThresholdsUpdate | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class CostAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: CostAlertType
    provider_id: str | None = None
    message: str
    current_cost: Decimal
    threshold: Decimal
    period_key: str
    timestamp: datetime
    acknowledged: bool


class CostRankingEntry(BaseModel):
    provider_id: str
    average_cost_per_generation: Decimal
    # null when every generation this month was free
    quality_to_cost_ratio: float | None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> CostRankingEntry:
        ratio = row["quality_to_cost_ratio"]
        return cls(
            provider_id=row["provider_id"],
            average_cost_per_generation=row["average_cost_per_generation"],
            quality_to_cost_ratio=None if math.isinf(ratio) else ratio,
        )
