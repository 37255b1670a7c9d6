"""Budget guard — admission control and alert rules for generation spend.

A *pure domain service*: it takes current totals and the budget and returns
verdicts.  Looking the totals up, locking, and persisting alerts is the
cost tracker's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import structlog

from hookly.domain.enums import CostAlertType
from hookly.domain.value_objects import CostBudget, day_key, month_key

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BudgetVerdict:
    """Outcome of a pre-flight budget check.  Never an error."""

    exceeds: bool
    violations: tuple[str, ...] = ()

    @classmethod
    def within(cls) -> BudgetVerdict:
        return cls(exceeds=False)

    @classmethod
    def over(cls, violations: list[str]) -> BudgetVerdict:
        return cls(exceeds=True, violations=tuple(violations))


@dataclass(frozen=True, slots=True)
class AlertCandidate:
    """An alert the rules say should exist for the current period."""

    type: CostAlertType
    provider_id: str
    period_key: str
    current_cost: Decimal
    threshold: Decimal
    message: str


class BudgetGuard:
    """Stateless budget evaluator.

    Ceilings are strict: a total *equal* to a budget is within it.
    """

    def check(
        self,
        budget: CostBudget,
        *,
        provider_id: str,
        daily_spent: Decimal,
        monthly_spent: Decimal,
        estimated_cost: Decimal,
    ) -> BudgetVerdict:
        violations: list[str] = []

        # ── Per-generation ceiling ───────────────────────────
        if estimated_cost > budget.per_generation_max:
            violations.append(
                f"Estimated cost {estimated_cost} exceeds per-generation max "
                f"{budget.per_generation_max}"
            )

        # ── Daily ceiling ────────────────────────────────────
        if daily_spent + estimated_cost > budget.daily_budget:
            violations.append(
                f"Daily spend {daily_spent} + {estimated_cost} exceeds daily budget "
                f"{budget.daily_budget}"
            )

        # ── Monthly ceiling ──────────────────────────────────
        if monthly_spent + estimated_cost > budget.monthly_budget:
            violations.append(
                f"Monthly spend {monthly_spent} + {estimated_cost} exceeds monthly budget "
                f"{budget.monthly_budget}"
            )

        if violations:
            logger.info(
                "budget_check_rejected",
                provider=provider_id,
                violations=violations,
            )
            return BudgetVerdict.over(violations)

        return BudgetVerdict.within()

    def alert_candidates(
        self,
        budget: CostBudget,
        *,
        provider_id: str,
        cost: Decimal,
        daily_total: Decimal,
        monthly_total: Decimal,
        now: datetime,
    ) -> list[AlertCandidate]:
        """Alerts warranted after ``cost`` was recorded, given the new totals."""
        day = day_key(now)
        month = month_key(now)
        candidates: list[AlertCandidate] = []

        if cost > budget.per_generation_max:
            candidates.append(
                AlertCandidate(
                    type=CostAlertType.PER_GENERATION_EXCEEDED,
                    provider_id=provider_id,
                    period_key=day,
                    current_cost=cost,
                    threshold=budget.per_generation_max,
                    message=(
                        f"Generation on {provider_id} cost {cost}, above the per-generation "
                        f"max of {budget.per_generation_max}"
                    ),
                )
            )

        if daily_total >= budget.daily_alert_amount:
            candidates.append(
                AlertCandidate(
                    type=CostAlertType.DAILY_THRESHOLD,
                    provider_id=provider_id,
                    period_key=day,
                    current_cost=daily_total,
                    threshold=budget.daily_alert_amount,
                    message=(
                        f"Daily spend on {provider_id} reached {daily_total}, "
                        f"{budget.alert_thresholds.daily}% of the {budget.daily_budget} budget"
                    ),
                )
            )

        if monthly_total >= budget.monthly_alert_amount:
            candidates.append(
                AlertCandidate(
                    type=CostAlertType.MONTHLY_THRESHOLD,
                    provider_id=provider_id,
                    period_key=month,
                    current_cost=monthly_total,
                    threshold=budget.monthly_alert_amount,
                    message=(
                        f"Monthly spend on {provider_id} reached {monthly_total}, "
                        f"{budget.alert_thresholds.monthly}% of the {budget.monthly_budget} budget"
                    ),
                )
            )

        if daily_total > budget.daily_budget:
            candidates.append(
                AlertCandidate(
                    type=CostAlertType.BUDGET_EXCEEDED,
                    provider_id=provider_id,
                    period_key=day,
                    current_cost=daily_total,
                    threshold=budget.daily_budget,
                    message=(
                        f"Daily spend on {provider_id} of {daily_total} exceeds the "
                        f"{budget.daily_budget} daily budget"
                    ),
                )
            )

        if monthly_total > budget.monthly_budget:
            candidates.append(
                AlertCandidate(
                    type=CostAlertType.BUDGET_EXCEEDED,
                    provider_id=provider_id,
                    period_key=month,
                    current_cost=monthly_total,
                    threshold=budget.monthly_budget,
                    message=(
                        f"Monthly spend on {provider_id} of {monthly_total} exceeds the "
                        f"{budget.monthly_budget} monthly budget"
                    ),
                )
            )

        return candidates
