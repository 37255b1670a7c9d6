"""Cost tracker — generation spend ledger, budget guard and cost alerts.

Money is ``Decimal`` throughout.  Budget enforcement is *soft*: the
orchestrator asks ``would_exceed_budget`` before dispatch and records the
actual cost afterwards, so concurrent generations may overshoot briefly.

Recording a cost and evaluating its alerts happen under the store's
``lock("cost:{provider_id}")``, shared across workers on Redis, which keeps
alert creation idempotent per ``(type, provider, period)``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

import structlog

from hookly.domain.entities import CostAlert, CostMetrics, CostRecord, utcnow
from hookly.domain.events import CostAlertRaisedEvent
from hookly.domain.exceptions import (
    AlertNotFoundError,
    ProviderNotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from hookly.domain.services.budget_guard import BudgetGuard
from hookly.domain.value_objects import CostBudget, Period, ProviderPricing, to_decimal
from hookly.ports.inbound import Amount, CostTrackingPort
from hookly.ports.outbound import CostStorePort, EventBusPort
from hookly.shared.observability.metrics import (
    BUDGET_REJECTIONS,
    COST_ALERTS,
    GENERATION_COST,
    GENERATION_TOKENS,
    TELEMETRY_DROPS,
)

logger = structlog.get_logger(__name__)

_ZERO = Decimal("0")


def _check_tokens(input_tokens: int, output_tokens: int) -> None:
    for name, value in (("input_tokens", input_tokens), ("output_tokens", output_tokens)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer, got {value!r}")
        if value < 0:
            raise ValidationError(f"{name} must be >= 0, got {value}")


def _check_amount(value: Amount, *, name: str) -> Decimal:
    amount = to_decimal(value, name=name)
    if amount < 0:
        raise ValidationError(f"{name} must be >= 0, got {amount}")
    return amount


class CostTracker(CostTrackingPort):
    """Records spend, answers budget questions and raises cost alerts."""

    def __init__(
        self,
        store: CostStorePort,
        *,
        default_budget: CostBudget | None = None,
        pricing: Mapping[str, ProviderPricing] | None = None,
        quality_scores: Mapping[str, float] | None = None,
        event_bus: EventBusPort | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._default_budget = default_budget or CostBudget()
        self._pricing = dict(pricing or {})
        self._quality_scores = dict(quality_scores or {})
        self._event_bus = event_bus
        self._clock = clock
        self._guard = BudgetGuard()

    # ═══════════════════════════════════════════════════════════
    #  Recording
    # ═══════════════════════════════════════════════════════════
    async def record_generation_cost(
        self,
        provider_id: str,
        input_tokens: int,
        output_tokens: int,
        cost: Amount,
        user_id: str | None = None,
    ) -> None:
        if not provider_id or not provider_id.strip():
            raise ValidationError("provider_id must be a non-empty string")
        _check_tokens(input_tokens, output_tokens)
        amount = _check_amount(cost, name="cost")

        try:
            async with self._store.lock(f"cost:{provider_id}"):
                now = self._clock()
                record = CostRecord(
                    provider_id=provider_id,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    cost=amount,
                    user_id=user_id,
                    timestamp=now,
                )
                await self._store.append_record(record)
                raised = await self._evaluate_alerts(provider_id, amount, now)
        except StorageUnavailableError as exc:
            TELEMETRY_DROPS.labels(operation="record_generation_cost").inc()
            logger.error(
                "telemetry_write_dropped",
                operation="record_generation_cost",
                provider=provider_id,
                cost=str(amount),
                error=exc.message,
            )
            return

        GENERATION_COST.labels(provider=provider_id).inc(float(amount))
        GENERATION_TOKENS.labels(provider=provider_id, direction="input").inc(input_tokens)
        GENERATION_TOKENS.labels(provider=provider_id, direction="output").inc(output_tokens)
        logger.debug(
            "generation_cost_recorded",
            provider=provider_id,
            cost=str(amount),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            user_id=user_id,
        )

        for alert in raised:
            await self._publish_alert(alert)

    async def _evaluate_alerts(
        self, provider_id: str, cost: Decimal, now: datetime
    ) -> list[CostAlert]:
        budget = await self.get_budget()
        daily_total = await self._sum(provider_id, Period.day(now))
        monthly_total = await self._sum(provider_id, Period.month(now))

        candidates = self._guard.alert_candidates(
            budget,
            provider_id=provider_id,
            cost=cost,
            daily_total=daily_total,
            monthly_total=monthly_total,
            now=now,
        )
        if not candidates:
            return []

        open_alerts = [a for a in await self._store.list_alerts() if not a.acknowledged]
        raised: list[CostAlert] = []
        for candidate in candidates:
            if any(
                a.matches(candidate.type, candidate.provider_id, candidate.period_key)
                for a in open_alerts
            ):
                continue
            alert = CostAlert(
                type=candidate.type,
                message=candidate.message,
                current_cost=candidate.current_cost,
                threshold=candidate.threshold,
                period_key=candidate.period_key,
                provider_id=candidate.provider_id,
                timestamp=now,
            )
            await self._store.save_alert(alert)
            open_alerts.append(alert)
            raised.append(alert)
            COST_ALERTS.labels(alert_type=alert.type.value).inc()
            logger.warning(
                "cost_alert_raised",
                alert_id=alert.id,
                alert_type=alert.type.value,
                provider=provider_id,
                period=alert.period_key,
                current_cost=str(alert.current_cost),
                threshold=str(alert.threshold),
            )
        return raised

    async def _publish_alert(self, alert: CostAlert) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            CostAlertRaisedEvent(
                alert_id=alert.id,
                alert_type=alert.type.value,
                provider_id=alert.provider_id,
                current_cost=str(alert.current_cost),
                threshold=str(alert.threshold),
                message=alert.message,
            )
        )

    # ═══════════════════════════════════════════════════════════
    #  Aggregation
    # ═══════════════════════════════════════════════════════════
    async def get_cost_metrics(
        self, provider_id: str, period: Period | None = None
    ) -> CostMetrics:
        if provider_id not in await self._store.list_providers():
            raise ProviderNotFoundError(provider_id, what="cost records")
        period = period or Period.day(self._clock())
        records = await self._store.list_records(
            provider_id=provider_id, start=period.start, end=period.end
        )
        return CostMetrics.aggregate(provider_id, period, records)

    async def get_all_cost_metrics(self, period: Period | None = None) -> list[CostMetrics]:
        period = period or Period.day(self._clock())
        records = await self._store.list_records(start=period.start, end=period.end)

        by_provider: dict[str, list[CostRecord]] = {
            pid: [] for pid in await self._store.list_providers()
        }
        for record in records:
            by_provider.setdefault(record.provider_id, []).append(record)
        return [
            CostMetrics.aggregate(pid, period, by_provider[pid]) for pid in sorted(by_provider)
        ]

    async def get_daily_cost(
        self, provider_id: str, day: datetime | date | None = None
    ) -> Decimal:
        return await self._sum(provider_id, Period.day(day or self._clock()))

    async def get_monthly_cost(
        self, provider_id: str, month: datetime | date | None = None
    ) -> Decimal:
        return await self._sum(provider_id, Period.month(month or self._clock()))

    async def get_total_cost(self, period: Period | None = None) -> Decimal:
        period = period or Period.day(self._clock())
        records = await self._store.list_records(start=period.start, end=period.end)
        return sum((r.cost for r in records), _ZERO)

    async def _sum(self, provider_id: str, period: Period) -> Decimal:
        records = await self._store.list_records(
            provider_id=provider_id, start=period.start, end=period.end
        )
        return sum((r.cost for r in records), _ZERO)

    # ═══════════════════════════════════════════════════════════
    #  Budget
    # ═══════════════════════════════════════════════════════════
    async def would_exceed_budget(self, provider_id: str, estimated_cost: Amount) -> bool:
        estimate = _check_amount(estimated_cost, name="estimated_cost")
        now = self._clock()
        budget = await self.get_budget()
        verdict = self._guard.check(
            budget,
            provider_id=provider_id,
            daily_spent=await self._sum(provider_id, Period.day(now)),
            monthly_spent=await self._sum(provider_id, Period.month(now)),
            estimated_cost=estimate,
        )
        if verdict.exceeds:
            BUDGET_REJECTIONS.labels(provider=provider_id).inc()
        return verdict.exceeds

    async def estimate_generation_cost(
        self, provider_id: str, input_tokens: int, output_tokens: int
    ) -> Decimal:
        _check_tokens(input_tokens, output_tokens)
        pricing = self._pricing.get(provider_id)
        if pricing is None:
            raise ProviderNotFoundError(provider_id, what="pricing configured")
        return pricing.cost_for(input_tokens, output_tokens)

    async def get_budget(self) -> CostBudget:
        return await self._store.get_budget() or self._default_budget

    async def update_budget(self, **changes: Any) -> CostBudget:
        async with self._store.lock("cost-budget"):
            updated = (await self.get_budget()).with_changes(**changes)
            await self._store.save_budget(updated)
        logger.warning(
            "budget_updated",
            daily_budget=str(updated.daily_budget),
            monthly_budget=str(updated.monthly_budget),
            per_generation_max=str(updated.per_generation_max),
            daily_alert_pct=str(updated.alert_thresholds.daily),
            monthly_alert_pct=str(updated.alert_thresholds.monthly),
        )
        return updated

    # ═══════════════════════════════════════════════════════════
    #  Alerts
    # ═══════════════════════════════════════════════════════════
    async def get_cost_alerts(self, acknowledged: bool | None = None) -> list[CostAlert]:
        alerts = await self._store.list_alerts()
        if acknowledged is not None:
            alerts = [a for a in alerts if a.acknowledged is acknowledged]
        return sorted(alerts, key=lambda a: (a.timestamp, a.id))

    async def acknowledge_cost_alert(self, alert_id: str) -> None:
        async with self._store.lock("cost-alerts"):
            alert = await self._store.get_alert(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if alert.acknowledged:
                return
            alert.acknowledge()
            await self._store.save_alert(alert)
        logger.info("cost_alert_acknowledged", alert_id=alert_id, alert_type=alert.type.value)

    # ═══════════════════════════════════════════════════════════
    #  Ranking
    # ═══════════════════════════════════════════════════════════
    async def get_provider_cost_ranking(
        self, quality_scores: Mapping[str, float] | None = None
    ) -> list[dict[str, Any]]:
        """Providers by quality per dollar over the current calendar month.

        Providers without generations this month are left out.
        """
        scores = self._quality_scores if quality_scores is None else quality_scores
        rows: list[dict[str, Any]] = []
        for metrics in await self.get_all_cost_metrics(Period.month(self._clock())):
            if not metrics.total_generations:
                continue
            average = metrics.average_cost_per_generation
            quality = float(scores.get(metrics.provider_id, 1.0))
            ratio = quality / float(average) if average > 0 else math.inf
            rows.append(
                {
                    "provider_id": metrics.provider_id,
                    "average_cost_per_generation": average,
                    "quality_to_cost_ratio": ratio,
                }
            )
        return sorted(rows, key=lambda r: (-r["quality_to_cost_ratio"], r["provider_id"]))
