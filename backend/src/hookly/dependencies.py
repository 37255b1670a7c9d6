"""Dependency injection container — wires adapters to ports.

FastAPI's ``Depends()`` system uses these factories to inject the
configured service implementations into route handlers.  ``init_dependencies``
builds the whole graph from one ``Settings`` object; the app factory calls it
so every app instance (and every test) starts from a clean graph.
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Callable

import redis.asyncio as redis
import structlog

from hookly.adapters.outbound.event_bus import InProcessEventBus
from hookly.adapters.outbound.storage import (
    InMemoryCostStore,
    InMemoryHealthStore,
    RedisCostStore,
    RedisHealthStore,
    create_redis_client,
)
from hookly.application.services import CostTracker, ProviderHealthMonitor
from hookly.config import Settings, get_settings
from hookly.domain.entities import utcnow
from hookly.domain.enums import StorageBackend
from hookly.ports.outbound import CostStorePort, HealthStorePort

logger = structlog.get_logger(__name__)


# ── Settings ─────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_cached_settings() -> Settings:
    return get_settings()


# ── Singletons ───────────────────────────────────────────────
_settings: Settings | None = None
_redis: redis.Redis | None = None
_health_store: HealthStorePort | None = None
_cost_store: CostStorePort | None = None
_event_bus: InProcessEventBus | None = None
_health_monitor: ProviderHealthMonitor | None = None
_cost_tracker: CostTracker | None = None
_clock: Callable[[], datetime] = utcnow


def init_dependencies(
    settings: Settings | None = None,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Build stores, event bus and services for ``settings``."""
    global _settings, _redis, _health_store, _cost_store, _event_bus
    global _health_monitor, _cost_tracker, _clock

    s = settings or get_cached_settings()
    _settings = s
    _clock = clock

    if s.storage_backend == StorageBackend.REDIS:
        _redis = create_redis_client(s.redis_url, s.redis_max_connections)
        store_opts = {
            "prefix": s.redis_key_prefix,
            "lock_timeout": s.redis_lock_timeout_seconds,
            "lock_wait": s.redis_lock_wait_seconds,
        }
        _health_store = RedisHealthStore(_redis, **store_opts)
        _cost_store = RedisCostStore(_redis, **store_opts)
    else:
        _redis = None
        _health_store = InMemoryHealthStore()
        _cost_store = InMemoryCostStore()

    _event_bus = InProcessEventBus()
    _health_monitor = ProviderHealthMonitor(
        _health_store,
        breaker_config=s.circuit_breaker_config(),
        health_config=s.health_config(),
        event_bus=_event_bus,
        clock=clock,
    )
    _cost_tracker = CostTracker(
        _cost_store,
        default_budget=s.default_budget(),
        pricing=s.pricing_table(),
        quality_scores=s.provider_quality_scores,
        event_bus=_event_bus,
        clock=clock,
    )
    logger.info("dependencies_initialized", storage_backend=s.storage_backend.value)


def _ensure_initialized() -> None:
    if _health_monitor is None or _cost_tracker is None:
        init_dependencies()


async def shutdown_dependencies() -> None:
    """Close storage connections.  Safe to call more than once."""
    global _redis
    for store in (_health_store, _cost_store):
        if store is not None:
            await store.close()
    if _redis is not None:
        await _redis.aclose()
        _redis = None


# ── Route dependencies ───────────────────────────────────────
def get_app_settings() -> Settings:
    return _settings or get_cached_settings()


def get_clock() -> Callable[[], datetime]:
    return _clock


def get_event_bus() -> InProcessEventBus:
    _ensure_initialized()
    assert _event_bus is not None
    return _event_bus


def get_health_store() -> HealthStorePort:
    _ensure_initialized()
    assert _health_store is not None
    return _health_store


def get_cost_store() -> CostStorePort:
    _ensure_initialized()
    assert _cost_store is not None
    return _cost_store


def get_health_monitor() -> ProviderHealthMonitor:
    _ensure_initialized()
    assert _health_monitor is not None
    return _health_monitor


def get_cost_tracker() -> CostTracker:
    _ensure_initialized()
    assert _cost_tracker is not None
    return _cost_tracker
