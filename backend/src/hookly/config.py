"""Hookly provider resilience core — application configuration."""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hookly.domain.enums import StorageBackend
from hookly.domain.value_objects import AlertThresholds, CostBudget, ProviderPricing
from hookly.shared.providers import CircuitBreakerConfig, HealthConfig


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _default_pricing() -> dict[str, dict[str, Decimal]]:
    # USD per 1M tokens
    return {
        "gemini": {"input": Decimal("0.10"), "output": Decimal("0.40")},
        "groq": {"input": Decimal("0.11"), "output": Decimal("0.34")},
        "openai": {"input": Decimal("0.15"), "output": Decimal("0.60")},
    }


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file.

    Mapping fields (``provider_pricing``, ``provider_quality_scores``) are
    read from the environment as JSON.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "hookly-provider-resilience"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Storage ──────────────────────────────────────────────
    storage_backend: StorageBackend = StorageBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = Field(50, ge=1)
    redis_key_prefix: str = "hookly"
    redis_lock_timeout_seconds: float = Field(10.0, gt=0)
    redis_lock_wait_seconds: float = Field(5.0, gt=0)

    # ── Circuit breaker ──────────────────────────────────────
    circuit_breaker_failure_threshold: int = Field(5, ge=1)
    circuit_breaker_backoff_base_seconds: float = Field(30.0, gt=0)
    circuit_breaker_backoff_multiplier: float = Field(2.0, ge=1)
    circuit_breaker_backoff_max_seconds: float = Field(600.0, gt=0)
    circuit_breaker_probe_timeout_seconds: float = Field(60.0, gt=0)

    # ── Health scoring ───────────────────────────────────────
    health_ema_alpha: float = Field(0.2, gt=0, le=1)
    health_degraded_error_rate: float = Field(0.30, gt=0, le=1)
    health_unhealthy_error_rate: float = Field(0.60, gt=0, le=1)
    health_recent_errors_limit: int = Field(10, ge=0)
    health_latency_reference_ms: float = Field(1000.0, gt=0)
    health_weight_error_rate: float = Field(0.5, ge=0)
    health_weight_uptime: float = Field(0.3, ge=0)
    health_weight_latency: float = Field(0.2, ge=0)

    # ── Budget defaults (USD) ────────────────────────────────
    ai_daily_budget: Decimal = Field(Decimal("50.00"), ge=0)
    ai_monthly_budget: Decimal = Field(Decimal("500.00"), ge=0)
    ai_max_cost_per_generation: Decimal = Field(Decimal("0.005"), ge=0)
    ai_daily_alert_threshold: Decimal = Field(Decimal("80"), gt=0, le=100)
    ai_monthly_alert_threshold: Decimal = Field(Decimal("85"), gt=0, le=100)

    # ── Providers ────────────────────────────────────────────
    provider_pricing: dict[str, dict[str, Decimal]] = Field(default_factory=_default_pricing)
    provider_quality_scores: dict[str, float] = Field(default_factory=dict)

    # ── Observability ────────────────────────────────────────
    prometheus_enabled: bool = True

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("redis_url")
    @classmethod
    def _validate_redis_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must start with 'redis://', 'rediss://' or 'unix://'")
        return v

    @field_validator("provider_pricing")
    @classmethod
    def _validate_pricing(
        cls, v: dict[str, dict[str, Decimal]]
    ) -> dict[str, dict[str, Decimal]]:
        for provider, prices in v.items():
            if set(prices) != {"input", "output"}:
                raise ValueError(
                    f"pricing for {provider!r} needs exactly 'input' and 'output' keys"
                )
            if min(prices.values()) < 0:
                raise ValueError(f"pricing for {provider!r} must be >= 0")
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> Settings:
        if self.health_degraded_error_rate > self.health_unhealthy_error_rate:
            raise ValueError("health_degraded_error_rate must be <= health_unhealthy_error_rate")
        if self.circuit_breaker_backoff_max_seconds < self.circuit_breaker_backoff_base_seconds:
            raise ValueError(
                "circuit_breaker_backoff_max_seconds must be >= circuit_breaker_backoff_base_seconds"
            )
        if self.ai_max_cost_per_generation > self.ai_daily_budget:
            raise ValueError("ai_max_cost_per_generation must be <= ai_daily_budget")
        if self.ai_daily_budget > self.ai_monthly_budget:
            raise ValueError("ai_daily_budget must be <= ai_monthly_budget")
        return self

    # ── Domain config builders ───────────────────────────────
    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_breaker_failure_threshold,
            backoff_base_s=self.circuit_breaker_backoff_base_seconds,
            backoff_multiplier=self.circuit_breaker_backoff_multiplier,
            backoff_max_s=self.circuit_breaker_backoff_max_seconds,
            probe_timeout_s=self.circuit_breaker_probe_timeout_seconds,
        )

    def health_config(self) -> HealthConfig:
        return HealthConfig(
            ema_alpha=self.health_ema_alpha,
            degraded_error_rate=self.health_degraded_error_rate,
            unhealthy_error_rate=self.health_unhealthy_error_rate,
            recent_errors_limit=self.health_recent_errors_limit,
            latency_reference_ms=self.health_latency_reference_ms,
            weight_error_rate=self.health_weight_error_rate,
            weight_uptime=self.health_weight_uptime,
            weight_latency=self.health_weight_latency,
        )

    def default_budget(self) -> CostBudget:
        return CostBudget(
            daily_budget=self.ai_daily_budget,
            monthly_budget=self.ai_monthly_budget,
            per_generation_max=self.ai_max_cost_per_generation,
            alert_thresholds=AlertThresholds(
                daily=self.ai_daily_alert_threshold,
                monthly=self.ai_monthly_alert_threshold,
            ),
        )

    def pricing_table(self) -> dict[str, ProviderPricing]:
        return {
            provider: ProviderPricing(
                input_per_1m=prices["input"], output_per_1m=prices["output"]
            )
            for provider, prices in self.provider_pricing.items()
        }


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
