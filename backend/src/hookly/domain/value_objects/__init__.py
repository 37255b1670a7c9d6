"""Domain value objects — immutable, self-validating types.

Value objects have *no identity*; two instances with equal fields are equal.
They enforce invariants at construction time so the rest of the domain can
trust their contents without re-checking.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_UP, Decimal, InvalidOperation
from typing import Any

from hookly.domain.exceptions import InvalidConfigurationError, ValidationError

_ONE_MILLION = Decimal("1000000")
_COST_QUANTUM = Decimal("0.00000001")
_HUNDRED = Decimal("100")


def to_decimal(value: Any, *, name: str = "value") -> Decimal:
    """Coerce ints, floats, strings and Decimals into a finite Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"{name} must be numeric, got {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return result


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# ═══════════════════════════════════════════════════════════════
#  Period
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class Period:
    """Half-open time window ``[start, end)`` in UTC.

    Naive datetimes are interpreted as UTC.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.end <= self.start:
            raise ValidationError(
                f"Period end {self.end.isoformat()} must be after start {self.start.isoformat()}"
            )

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) < self.end

    @classmethod
    def day(cls, moment: datetime | date) -> Period:
        """Calendar day (UTC) containing ``moment``."""
        start = _day_start(moment)
        return cls(start, start + timedelta(days=1))

    @classmethod
    def month(cls, moment: datetime | date) -> Period:
        """Calendar month (UTC) containing ``moment``, not a rolling 30 days."""
        day_start = _day_start(moment)
        start = day_start.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return cls(start, end)


def _day_start(moment: datetime | date) -> datetime:
    if isinstance(moment, datetime):
        moment = as_utc(moment)
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)


def day_key(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m-%d")


def month_key(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m")


# ═══════════════════════════════════════════════════════════════
#  Pricing
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class ProviderPricing:
    """USD price per one million input / output tokens."""

    input_per_1m: Decimal
    output_per_1m: Decimal

    def __post_init__(self) -> None:
        for name in ("input_per_1m", "output_per_1m"):
            amount = to_decimal(getattr(self, name), name=name)
            if amount < 0:
                raise InvalidConfigurationError(f"{name} must be >= 0")
            object.__setattr__(self, name, amount)

    def cost_for(self, input_tokens: int, output_tokens: int) -> Decimal:
        """Price a request, rounded *up* to 8 decimal places."""
        raw = (
            Decimal(input_tokens) / _ONE_MILLION * self.input_per_1m
            + Decimal(output_tokens) / _ONE_MILLION * self.output_per_1m
        )
        return raw.quantize(_COST_QUANTUM, rounding=ROUND_UP)


# ═══════════════════════════════════════════════════════════════
#  Budget
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class AlertThresholds:
    """Alert trigger points, as percentages of the matching budget."""

    daily: Decimal = Decimal("80")
    monthly: Decimal = Decimal("85")

    def __post_init__(self) -> None:
        for name in ("daily", "monthly"):
            pct = to_decimal(getattr(self, name), name=f"alert_thresholds.{name}")
            if not (0 < pct <= _HUNDRED):
                raise InvalidConfigurationError(
                    f"alert_thresholds.{name} must be in (0, 100], got {pct}"
                )
            object.__setattr__(self, name, pct)


@dataclass(frozen=True, slots=True)
class CostBudget:
    """Global spend ceilings.  Replaced wholesale on update, never mutated."""

    daily_budget: Decimal = Decimal("50.00")
    monthly_budget: Decimal = Decimal("500.00")
    per_generation_max: Decimal = Decimal("0.005")
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)

    def __post_init__(self) -> None:
        for name in ("daily_budget", "monthly_budget", "per_generation_max"):
            amount = to_decimal(getattr(self, name), name=name)
            if amount < 0:
                raise InvalidConfigurationError(f"{name} must be >= 0, got {amount}")
            object.__setattr__(self, name, amount)

        if isinstance(self.alert_thresholds, dict):
            object.__setattr__(self, "alert_thresholds", AlertThresholds(**self.alert_thresholds))

        if self.per_generation_max > self.daily_budget:
            raise InvalidConfigurationError(
                f"per_generation_max {self.per_generation_max} exceeds "
                f"daily_budget {self.daily_budget}"
            )
        if self.daily_budget > self.monthly_budget:
            raise InvalidConfigurationError(
                f"daily_budget {self.daily_budget} exceeds monthly_budget {self.monthly_budget}"
            )

    @property
    def daily_alert_amount(self) -> Decimal:
        return self.daily_budget * self.alert_thresholds.daily / _HUNDRED

    @property
    def monthly_alert_amount(self) -> Decimal:
        return self.monthly_budget * self.alert_thresholds.monthly / _HUNDRED

    def with_changes(self, **changes: Any) -> CostBudget:
        """Return a validated copy with ``changes`` applied.

        ``alert_thresholds`` may be given as a partial dict; missing keys keep
        their current values.
        """
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise InvalidConfigurationError(f"Unknown budget fields: {sorted(unknown)}")

        thresholds = changes.pop("alert_thresholds", None)
        try:
            if isinstance(thresholds, dict):
                unknown_thr = set(thresholds) - {"daily", "monthly"}
                if unknown_thr:
                    raise InvalidConfigurationError(
                        f"Unknown alert threshold fields: {sorted(unknown_thr)}"
                    )
                changes["alert_thresholds"] = dataclasses.replace(
                    self.alert_thresholds, **thresholds
                )
            elif thresholds is not None:
                changes["alert_thresholds"] = thresholds
            return dataclasses.replace(self, **changes)
        except ValidationError as exc:
            raise InvalidConfigurationError(exc.message) from exc
