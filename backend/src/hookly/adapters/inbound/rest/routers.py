"""Health, Provider Health and Cost — admin / ops REST routers."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query
from fastapi.responses import ORJSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from hookly.application.dtos import (
    AvailabilityResponse,
    BudgetCheckRequest,
    BudgetCheckResponse,
    BudgetResponse,
    BudgetUpdateRequest,
    CircuitBreakerResponse,
    CircuitBreakerUpdateRequest,
    CostAlertResponse,
    CostAmountResponse,
    CostMetricsResponse,
    CostRankingEntry,
    CostRecordRequest,
    EstimateRequest,
    EstimateResponse,
    HealthResponse,
    ProviderHealthResponse,
    ProviderRankingResponse,
)
from hookly.config import Settings
from hookly.dependencies import (
    get_app_settings,
    get_clock,
    get_cost_store,
    get_cost_tracker,
    get_health_monitor,
    get_health_store,
)
from hookly.domain.exceptions import ValidationError
from hookly.domain.value_objects import Period
from hookly.ports.inbound import CostTrackingPort, ProviderHealthPort
from hookly.ports.outbound import CostStorePort, HealthStorePort


def _period(start: datetime | None, end: datetime | None) -> Period | None:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise ValidationError("start and end must be given together")
    return Period(start, end)


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_app_settings),
    health_store: HealthStorePort = Depends(get_health_store),
    cost_store: CostStorePort = Depends(get_cost_store),
) -> ORJSONResponse:
    services = {
        "health_store": "connected" if await health_store.health_check() else "disconnected",
        "cost_store": "connected" if await cost_store.health_check() else "disconnected",
    }
    overall = "ok" if all(v == "connected" for v in services.values()) else "degraded"
    services["storage_backend"] = settings.storage_backend.value

    body = HealthResponse(
        status=overall,
        environment=settings.app_env.value,
        services=services,
    )
    return ORJSONResponse(
        content=body.model_dump(),
        status_code=200 if overall == "ok" else 503,
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Provider Health
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Health"])


@providers_router.get("/health", response_model=list[ProviderHealthResponse])
async def list_provider_health(
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> list[ProviderHealthResponse]:
    return [
        ProviderHealthResponse.model_validate(m) for m in await monitor.get_all_health_metrics()
    ]


@providers_router.get("/ranking", response_model=ProviderRankingResponse)
async def provider_ranking(
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> ProviderRankingResponse:
    return ProviderRankingResponse(providers=await monitor.get_provider_ranking())


@providers_router.get("/{provider_id}/health", response_model=ProviderHealthResponse)
async def provider_health(
    provider_id: str,
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> ProviderHealthResponse:
    return ProviderHealthResponse.model_validate(await monitor.get_health_metrics(provider_id))


@providers_router.post("/{provider_id}/health/reset", response_model=ProviderHealthResponse)
async def reset_provider_health(
    provider_id: str,
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> ProviderHealthResponse:
    """Admin: zero the provider's health record."""
    await monitor.reset_health_metrics(provider_id)
    return ProviderHealthResponse.model_validate(await monitor.get_health_metrics(provider_id))


@providers_router.get("/{provider_id}/circuit", response_model=CircuitBreakerResponse)
async def circuit_state(
    provider_id: str,
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> CircuitBreakerResponse:
    return CircuitBreakerResponse.model_validate(
        await monitor.get_circuit_breaker_state(provider_id)
    )


@providers_router.patch("/{provider_id}/circuit", response_model=CircuitBreakerResponse)
async def update_circuit_state(
    provider_id: str,
    payload: CircuitBreakerUpdateRequest,
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> CircuitBreakerResponse:
    """Admin: force breaker fields."""
    await monitor.update_circuit_breaker_state(
        provider_id, **payload.model_dump(exclude_unset=True)
    )
    return CircuitBreakerResponse.model_validate(
        await monitor.get_circuit_breaker_state(provider_id)
    )


@providers_router.post("/{provider_id}/circuit/reset", response_model=CircuitBreakerResponse)
async def reset_circuit(
    provider_id: str,
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> CircuitBreakerResponse:
    """Admin: force the breaker closed."""
    await monitor.reset_circuit_breaker(provider_id)
    return CircuitBreakerResponse.model_validate(
        await monitor.get_circuit_breaker_state(provider_id)
    )


@providers_router.get("/{provider_id}/available", response_model=AvailabilityResponse)
async def provider_available(
    provider_id: str,
    monitor: ProviderHealthPort = Depends(get_health_monitor),
) -> AvailabilityResponse:
    """Admission check; may claim the half-open probe like any other caller."""
    return AvailabilityResponse(
        provider_id=provider_id,
        available=await monitor.is_provider_available(provider_id),
    )


# ═══════════════════════════════════════════════════════════════
#  Costs
# ═══════════════════════════════════════════════════════════════
costs_router = APIRouter(prefix="/costs", tags=["Costs"])


@costs_router.get("/metrics", response_model=list[CostMetricsResponse])
async def list_cost_metrics(
    start: datetime | None = None,
    end: datetime | None = None,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> list[CostMetricsResponse]:
    metrics = await tracker.get_all_cost_metrics(_period(start, end))
    return [CostMetricsResponse.from_metrics(m) for m in metrics]


@costs_router.get("/metrics/{provider_id}", response_model=CostMetricsResponse)
async def cost_metrics(
    provider_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> CostMetricsResponse:
    return CostMetricsResponse.from_metrics(
        await tracker.get_cost_metrics(provider_id, _period(start, end))
    )


@costs_router.get("/total", response_model=CostAmountResponse)
async def total_cost(
    start: datetime | None = None,
    end: datetime | None = None,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CostAmountResponse:
    period = _period(start, end) or Period.day(clock())
    return CostAmountResponse(
        period_start=period.start,
        period_end=period.end,
        total_cost=await tracker.get_total_cost(period),
    )


@costs_router.get("/{provider_id}/daily", response_model=CostAmountResponse)
async def daily_cost(
    provider_id: str,
    day: date | None = None,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CostAmountResponse:
    period = Period.day(day or clock())
    return CostAmountResponse(
        provider_id=provider_id,
        period_start=period.start,
        period_end=period.end,
        total_cost=await tracker.get_daily_cost(provider_id, period.start),
    )


@costs_router.get("/{provider_id}/monthly", response_model=CostAmountResponse)
async def monthly_cost(
    provider_id: str,
    month: str | None = Query(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$", examples=["2026-10"]),
    tracker: CostTrackingPort = Depends(get_cost_tracker),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CostAmountResponse:
    anchor = date(int(month[:4]), int(month[5:7]), 1) if month else clock()
    period = Period.month(anchor)
    return CostAmountResponse(
        provider_id=provider_id,
        period_start=period.start,
        period_end=period.end,
        total_cost=await tracker.get_monthly_cost(provider_id, period.start),
    )


@costs_router.post("/estimate", response_model=EstimateResponse)
async def estimate_cost(
    payload: EstimateRequest,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> EstimateResponse:
    return EstimateResponse(
        provider_id=payload.provider_id,
        input_tokens=payload.input_tokens,
        output_tokens=payload.output_tokens,
        estimated_cost=await tracker.estimate_generation_cost(
            payload.provider_id, payload.input_tokens, payload.output_tokens
        ),
    )


@costs_router.post("/check", response_model=BudgetCheckResponse)
async def check_budget(
    payload: BudgetCheckRequest,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> BudgetCheckResponse:
    return BudgetCheckResponse(
        provider_id=payload.provider_id,
        estimated_cost=payload.estimated_cost,
        would_exceed=await tracker.would_exceed_budget(
            payload.provider_id, payload.estimated_cost
        ),
    )


@costs_router.post("/records", status_code=202)
async def record_cost(
    payload: CostRecordRequest,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> dict[str, str]:
    """Accepted rather than created: a storage outage drops the record silently."""
    await tracker.record_generation_cost(
        payload.provider_id,
        payload.input_tokens,
        payload.output_tokens,
        payload.cost,
        user_id=payload.user_id,
    )
    return {"status": "accepted", "provider_id": payload.provider_id}


@costs_router.get("/budget", response_model=BudgetResponse)
async def get_budget(
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> BudgetResponse:
    return BudgetResponse.model_validate(await tracker.get_budget())


@costs_router.patch("/budget", response_model=BudgetResponse)
async def update_budget(
    payload: BudgetUpdateRequest,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> BudgetResponse:
    return BudgetResponse.model_validate(await tracker.update_budget(**payload.changes()))


@costs_router.get("/alerts", response_model=list[CostAlertResponse])
async def list_alerts(
    acknowledged: bool | None = None,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> list[CostAlertResponse]:
    return [
        CostAlertResponse.model_validate(a)
        for a in await tracker.get_cost_alerts(acknowledged=acknowledged)
    ]


@costs_router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> dict[str, str]:
    await tracker.acknowledge_cost_alert(alert_id)
    return {"status": "acknowledged", "alert_id": alert_id}


@costs_router.get("/ranking", response_model=list[CostRankingEntry])
async def cost_ranking(
    tracker: CostTrackingPort = Depends(get_cost_tracker),
) -> list[CostRankingEntry]:
    return [CostRankingEntry.from_row(r) for r in await tracker.get_provider_cost_ranking()]
