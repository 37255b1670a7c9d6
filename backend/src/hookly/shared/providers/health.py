"""Health aggregation for a single provider.

Every update is O(1): response time and error rate are exponential moving
averages, the lifetime mean is maintained incrementally, and only a bounded
tail of error messages is kept.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from hookly.domain.entities import ProviderHealthMetrics, RecentError
from hookly.domain.enums import ProviderStatus
from hookly.shared.providers.types import HealthConfig


def ema(previous: float, sample: float, alpha: float, *, first: bool) -> float:
    if first:
        return sample
    return alpha * sample + (1 - alpha) * previous


class HealthMetricsPolicy:
    """Applies recorded outcomes to ``ProviderHealthMetrics`` records."""

    def __init__(self, config: HealthConfig | None = None, *, failure_threshold: int = 5) -> None:
        self._config = config or HealthConfig()
        self._failure_threshold = failure_threshold

    @property
    def config(self) -> HealthConfig:
        return self._config

    # ── Recording ────────────────────────────────────────────
    def apply_success(
        self, m: ProviderHealthMetrics, response_time_ms: float, now: datetime
    ) -> None:
        latency = max(float(response_time_ms), 0.0)
        first_latency = m.successful_requests == 0
        first_sample = m.total_requests == 0

        m.total_requests += 1
        m.successful_requests += 1
        m.consecutive_failures = 0

        m.response_time = ema(m.response_time, latency, self._config.ema_alpha, first=first_latency)
        m.average_response_time += (latency - m.average_response_time) / m.successful_requests
        if first_latency:
            m.min_response_time = latency
            m.max_response_time = latency
        else:
            m.min_response_time = min(m.min_response_time, latency)
            m.max_response_time = max(m.max_response_time, latency)

        m.error_rate = ema(m.error_rate, 0.0, self._config.ema_alpha, first=first_sample)
        m.last_success_at = now
        self._finish(m, now)

    def apply_failure(self, m: ProviderHealthMetrics, error: str, now: datetime) -> None:
        first_sample = m.total_requests == 0

        m.total_requests += 1
        m.failed_requests += 1
        m.consecutive_failures += 1

        m.error_rate = ema(m.error_rate, 1.0, self._config.ema_alpha, first=first_sample)
        m.last_failure_at = now
        m.last_error = error

        limit = self._config.recent_errors_limit
        if limit:
            m.recent_errors.append(RecentError(timestamp=now, error=error))
            del m.recent_errors[:-limit]
        self._finish(m, now)

    # ── Status derivation ────────────────────────────────────
    def derive_status(self, m: ProviderHealthMetrics) -> ProviderStatus:
        if m.consecutive_failures >= self._failure_threshold:
            return ProviderStatus.UNHEALTHY
        if m.error_rate >= self._config.unhealthy_error_rate:
            return ProviderStatus.UNHEALTHY
        if m.error_rate >= self._config.degraded_error_rate:
            return ProviderStatus.DEGRADED
        return ProviderStatus.HEALTHY

    # ── Ranking ──────────────────────────────────────────────
    def score(self, m: ProviderHealthMetrics) -> float:
        """Composite score in [0, 1]; higher is better."""
        cfg = self._config
        latency_score = 1.0 / (1.0 + m.response_time / cfg.latency_reference_ms)
        total_weight = cfg.weight_error_rate + cfg.weight_uptime + cfg.weight_latency
        if total_weight == 0:
            return 0.0
        raw = (
            cfg.weight_error_rate * (1.0 - m.error_rate)
            + cfg.weight_uptime * m.uptime
            + cfg.weight_latency * latency_score
        )
        return raw / total_weight

    def rank(
        self, metrics: Iterable[ProviderHealthMetrics], open_circuits: set[str]
    ) -> list[str]:
        """Provider ids, best first.  Open circuits sink to the bottom; ties by id."""
        return [
            m.provider_id
            for m in sorted(
                metrics,
                key=lambda m: (
                    m.provider_id in open_circuits,
                    -round(self.score(m), 9),
                    m.provider_id,
                ),
            )
        ]

    # ── Internals ────────────────────────────────────────────
    def _finish(self, m: ProviderHealthMetrics, now: datetime) -> None:
        m.uptime = m.successful_requests / m.total_requests
        m.last_checked = now
        m.status = self.derive_status(m)
