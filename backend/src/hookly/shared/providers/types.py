"""Core configuration types for the provider resilience core."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from hookly.domain.exceptions import InvalidConfigurationError


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Tuning for the per-provider circuit breaker.

    Attributes:
        failure_threshold:  Consecutive failures before the circuit opens.
        backoff_base_s:     Open duration after the first trip.
        backoff_multiplier: Growth factor applied for every re-trip from half-open.
        backoff_max_s:      Upper bound on the open duration.
        probe_timeout_s:    A half-open probe claim older than this is treated
                            as abandoned and may be handed to another caller.
    """

    failure_threshold: int = 5
    backoff_base_s: float = 30.0
    backoff_multiplier: float = 2.0
    backoff_max_s: float = 600.0
    probe_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise InvalidConfigurationError("failure_threshold must be >= 1")
        if self.backoff_base_s <= 0:
            raise InvalidConfigurationError("backoff_base_s must be > 0")
        if self.backoff_multiplier < 1:
            raise InvalidConfigurationError("backoff_multiplier must be >= 1")
        if self.backoff_max_s < self.backoff_base_s:
            raise InvalidConfigurationError("backoff_max_s must be >= backoff_base_s")
        if self.probe_timeout_s <= 0:
            raise InvalidConfigurationError("probe_timeout_s must be > 0")

    def backoff(self, trip_count: int) -> timedelta:
        """Open duration for the ``trip_count``-th consecutive trip (1-based)."""
        exponent = max(trip_count, 1) - 1
        seconds = self.backoff_base_s * (self.backoff_multiplier ** exponent)
        return timedelta(seconds=min(seconds, self.backoff_max_s))


@dataclass(frozen=True)
class HealthConfig:
    """Tuning for health metric aggregation and provider ranking.

    Attributes:
        ema_alpha:            Weight of the newest sample in moving averages.
        degraded_error_rate:  Error rate at which a provider is DEGRADED.
        unhealthy_error_rate: Error rate at which a provider is UNHEALTHY.
        recent_errors_limit:  How many recent error messages are retained.
        latency_reference_ms: Response time that scores 0.5 on the latency axis.
        weight_error_rate:    Ranking weight of ``1 - error_rate``.
        weight_uptime:        Ranking weight of lifetime uptime.
        weight_latency:       Ranking weight of the latency score.
    """

    ema_alpha: float = 0.2
    degraded_error_rate: float = 0.30
    unhealthy_error_rate: float = 0.60
    recent_errors_limit: int = 10
    latency_reference_ms: float = 1000.0
    weight_error_rate: float = 0.5
    weight_uptime: float = 0.3
    weight_latency: float = 0.2

    def __post_init__(self) -> None:
        if not 0 < self.ema_alpha <= 1:
            raise InvalidConfigurationError("ema_alpha must be in (0, 1]")
        if not 0 < self.degraded_error_rate <= self.unhealthy_error_rate <= 1:
            raise InvalidConfigurationError(
                "error rate thresholds must satisfy 0 < degraded <= unhealthy <= 1"
            )
        if self.recent_errors_limit < 0:
            raise InvalidConfigurationError("recent_errors_limit must be >= 0")
        if self.latency_reference_ms <= 0:
            raise InvalidConfigurationError("latency_reference_ms must be > 0")
        if min(self.weight_error_rate, self.weight_uptime, self.weight_latency) < 0:
            raise InvalidConfigurationError("ranking weights must be >= 0")
