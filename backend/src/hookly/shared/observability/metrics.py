"""Prometheus metrics for the provider resilience core."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Provider health metrics ──────────────────────────────────
PROVIDER_OUTCOMES = Counter(
    "provider_outcomes_total",
    "Generation outcomes reported per provider",
    ["provider", "outcome"],  # success / failure
)

PROVIDER_RESPONSE_TIME = Histogram(
    "provider_response_time_seconds",
    "Upstream provider response time for successful generations",
    ["provider"],
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

CIRCUIT_TRANSITIONS = Counter(
    "circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["provider", "from_state", "to_state"],
)

AVAILABILITY_DENIALS = Counter(
    "provider_availability_denials_total",
    "Requests refused because the circuit was open or a probe was in flight",
    ["provider"],
)

# ── Cost metrics ─────────────────────────────────────────────
GENERATION_COST = Counter(
    "generation_cost_usd_total",
    "Recorded generation spend in USD",
    ["provider"],
)

GENERATION_TOKENS = Counter(
    "generation_tokens_total",
    "Recorded generation tokens",
    ["provider", "direction"],  # input / output
)

COST_ALERTS = Counter(
    "cost_alerts_total",
    "Cost alerts raised",
    ["alert_type"],
)

BUDGET_REJECTIONS = Counter(
    "budget_rejections_total",
    "Pre-flight budget checks that would exceed a ceiling",
    ["provider"],
)

# ── Telemetry path ───────────────────────────────────────────
TELEMETRY_DROPS = Counter(
    "telemetry_writes_dropped_total",
    "Telemetry writes lost because storage was unavailable",
    ["operation"],
)
