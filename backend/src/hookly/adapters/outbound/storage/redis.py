"""Redis stores implementing the health and cost store ports.

Layout (``prefix`` defaults to ``hookly``)::

    {prefix}:health:metrics         hash  provider_id -> metrics JSON
    {prefix}:health:circuits        hash  provider_id -> breaker JSON
    {prefix}:cost:providers         set   provider ids with at least one record
    {prefix}:cost:records:{pid}     zset  record JSON scored by epoch seconds
    {prefix}:cost:budget            str   budget JSON
    {prefix}:cost:alerts            hash  alert_id -> alert JSON
    {prefix}:lock:{name}            str   owner token of a ``lock(name)`` holder

Transient connection errors are retried; anything that still fails surfaces
as ``StorageUnavailableError``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

import orjson
import redis.asyncio as redis
import structlog
from redis.exceptions import LockError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hookly.domain.entities import (
    CircuitBreakerState,
    CostAlert,
    CostRecord,
    ProviderHealthMetrics,
    RecentError,
)
from hookly.domain.enums import CircuitState, CostAlertType, ProviderStatus
from hookly.domain.exceptions import StorageUnavailableError
from hookly.domain.value_objects import AlertThresholds, CostBudget
from hookly.ports.outbound import CostStorePort, HealthStorePort

logger = structlog.get_logger(__name__)

# Shared retry policy for transient Redis failures
_redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
    retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
    before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
    reraise=True,
)


def create_redis_client(url: str, max_connections: int = 50) -> redis.Redis:
    pool = redis.ConnectionPool.from_url(
        url,
        max_connections=max_connections,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=pool)


# ═══════════════════════════════════════════════════════════════
#  Codec
# ═══════════════════════════════════════════════════════════════
def _dumps(data: dict[str, Any]) -> str:
    return orjson.dumps(data, default=_default).decode()


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def encode_metrics(m: ProviderHealthMetrics) -> str:
    return _dumps(
        {
            "provider_id": m.provider_id,
            "status": m.status.value,
            "response_time": m.response_time,
            "average_response_time": m.average_response_time,
            "min_response_time": m.min_response_time,
            "max_response_time": m.max_response_time,
            "error_rate": m.error_rate,
            "uptime": m.uptime,
            "last_checked": m.last_checked,
            "consecutive_failures": m.consecutive_failures,
            "total_requests": m.total_requests,
            "successful_requests": m.successful_requests,
            "failed_requests": m.failed_requests,
            "last_success_at": m.last_success_at,
            "last_failure_at": m.last_failure_at,
            "last_error": m.last_error,
            "recent_errors": [
                {"timestamp": e.timestamp, "error": e.error} for e in m.recent_errors
            ],
        }
    )


def decode_metrics(raw: str) -> ProviderHealthMetrics:
    data = orjson.loads(raw)
    return ProviderHealthMetrics(
        provider_id=data["provider_id"],
        status=ProviderStatus(data["status"]),
        response_time=data["response_time"],
        average_response_time=data["average_response_time"],
        min_response_time=data["min_response_time"],
        max_response_time=data["max_response_time"],
        error_rate=data["error_rate"],
        uptime=data["uptime"],
        last_checked=datetime.fromisoformat(data["last_checked"]),
        consecutive_failures=data["consecutive_failures"],
        total_requests=data["total_requests"],
        successful_requests=data["successful_requests"],
        failed_requests=data["failed_requests"],
        last_success_at=_dt(data.get("last_success_at")),
        last_failure_at=_dt(data.get("last_failure_at")),
        last_error=data.get("last_error"),
        recent_errors=[
            RecentError(timestamp=datetime.fromisoformat(e["timestamp"]), error=e["error"])
            for e in data.get("recent_errors", [])
        ],
    )


def encode_circuit(cb: CircuitBreakerState) -> str:
    return _dumps(
        {
            "provider_id": cb.provider_id,
            "state": cb.state.value,
            "failure_count": cb.failure_count,
            "last_failure": cb.last_failure,
            "next_retry_time": cb.next_retry_time,
            "trip_count": cb.trip_count,
            "probe_in_flight": cb.probe_in_flight,
            "probe_started_at": cb.probe_started_at,
        }
    )


def decode_circuit(raw: str) -> CircuitBreakerState:
    data = orjson.loads(raw)
    return CircuitBreakerState(
        provider_id=data["provider_id"],
        state=CircuitState(data["state"]),
        failure_count=data["failure_count"],
        last_failure=_dt(data.get("last_failure")),
        next_retry_time=_dt(data.get("next_retry_time")),
        trip_count=data.get("trip_count", 0),
        probe_in_flight=data.get("probe_in_flight", False),
        probe_started_at=_dt(data.get("probe_started_at")),
    )


def encode_record(r: CostRecord) -> str:
    return _dumps(
        {
            "id": r.id,
            "provider_id": r.provider_id,
            "input_tokens": r.input_tokens,
            "output_tokens": r.output_tokens,
            "cost": r.cost,
            "user_id": r.user_id,
            "timestamp": r.timestamp,
        }
    )


def decode_record(raw: str) -> CostRecord:
    data = orjson.loads(raw)
    return CostRecord(
        id=data["id"],
        provider_id=data["provider_id"],
        input_tokens=data["input_tokens"],
        output_tokens=data["output_tokens"],
        cost=Decimal(data["cost"]),
        user_id=data.get("user_id"),
        timestamp=datetime.fromisoformat(data["timestamp"]),
    )


def encode_budget(b: CostBudget) -> str:
    return _dumps(
        {
            "daily_budget": b.daily_budget,
            "monthly_budget": b.monthly_budget,
            "per_generation_max": b.per_generation_max,
            "alert_thresholds": {
                "daily": b.alert_thresholds.daily,
                "monthly": b.alert_thresholds.monthly,
            },
        }
    )


def decode_budget(raw: str) -> CostBudget:
    data = orjson.loads(raw)
    return CostBudget(
        daily_budget=Decimal(data["daily_budget"]),
        monthly_budget=Decimal(data["monthly_budget"]),
        per_generation_max=Decimal(data["per_generation_max"]),
        alert_thresholds=AlertThresholds(
            daily=Decimal(data["alert_thresholds"]["daily"]),
            monthly=Decimal(data["alert_thresholds"]["monthly"]),
        ),
    )


def encode_alert(a: CostAlert) -> str:
    return _dumps(
        {
            "id": a.id,
            "type": a.type.value,
            "provider_id": a.provider_id,
            "message": a.message,
            "current_cost": a.current_cost,
            "threshold": a.threshold,
            "period_key": a.period_key,
            "timestamp": a.timestamp,
            "acknowledged": a.acknowledged,
        }
    )


def decode_alert(raw: str) -> CostAlert:
    data = orjson.loads(raw)
    return CostAlert(
        id=data["id"],
        type=CostAlertType(data["type"]),
        provider_id=data.get("provider_id"),
        message=data["message"],
        current_cost=Decimal(data["current_cost"]),
        threshold=Decimal(data["threshold"]),
        period_key=data["period_key"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        acknowledged=data["acknowledged"],
    )


# ═══════════════════════════════════════════════════════════════
#  Stores
# ═══════════════════════════════════════════════════════════════
class _RedisStore:
    """Command execution with retry and error translation."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "hookly",
        owns_client: bool = False,
        lock_timeout: float = 10.0,
        lock_wait: float = 5.0,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._owns_client = owns_client
        self._lock_timeout = lock_timeout
        self._lock_wait = lock_wait

    def _key(self, *parts: str) -> str:
        return ":".join((self._prefix, *parts))

    @_redis_retry
    async def _execute(self, command: str, *args: Any, **kwargs: Any) -> Any:
        return await getattr(self._client, command)(*args, **kwargs)

    async def _run(self, operation: str, command: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await self._execute(command, *args, **kwargs)
        except redis.RedisError as exc:
            logger.error("redis_command_failed", operation=operation, command=command, error=str(exc))
            raise StorageUnavailableError(operation, str(exc)) from exc

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        """Hold the shared ``{prefix}:lock:{name}`` key for the block.

        The key expires after ``lock_timeout`` so a crashed worker cannot
        wedge a provider.  Waiting longer than ``lock_wait`` is treated as
        the store being unavailable.
        """
        key = self._key("lock", name)
        lock = self._client.lock(key, timeout=self._lock_timeout, blocking_timeout=self._lock_wait)
        try:
            acquired = await lock.acquire()
        except redis.RedisError as exc:
            logger.error("redis_lock_failed", lock=key, error=str(exc))
            raise StorageUnavailableError("lock", str(exc)) from exc
        if not acquired:
            logger.error("redis_lock_timeout", lock=key, wait_s=self._lock_wait)
            raise StorageUnavailableError("lock", f"timed out waiting for {key}")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # Expired mid-block; another worker may already hold it
                logger.error("redis_lock_expired", lock=key, timeout_s=self._lock_timeout, error=str(exc))
            except redis.RedisError as exc:
                logger.error("redis_lock_release_failed", lock=key, error=str(exc))
                raise StorageUnavailableError("lock", str(exc)) from exc

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RedisHealthStore(_RedisStore, HealthStorePort):
    """Health metrics and breaker state shared across workers."""

    async def get_metrics(self, provider_id: str) -> ProviderHealthMetrics | None:
        raw = await self._run("get_metrics", "hget", self._key("health", "metrics"), provider_id)
        return decode_metrics(raw) if raw else None

    async def save_metrics(self, metrics: ProviderHealthMetrics) -> None:
        await self._run(
            "save_metrics",
            "hset",
            self._key("health", "metrics"),
            metrics.provider_id,
            encode_metrics(metrics),
        )

    async def list_metrics(self) -> list[ProviderHealthMetrics]:
        raw = await self._run("list_metrics", "hgetall", self._key("health", "metrics"))
        return [decode_metrics(raw[pid]) for pid in sorted(raw)]

    async def get_circuit(self, provider_id: str) -> CircuitBreakerState | None:
        raw = await self._run("get_circuit", "hget", self._key("health", "circuits"), provider_id)
        return decode_circuit(raw) if raw else None

    async def save_circuit(self, state: CircuitBreakerState) -> None:
        await self._run(
            "save_circuit",
            "hset",
            self._key("health", "circuits"),
            state.provider_id,
            encode_circuit(state),
        )

    async def list_circuits(self) -> list[CircuitBreakerState]:
        raw = await self._run("list_circuits", "hgetall", self._key("health", "circuits"))
        return [decode_circuit(raw[pid]) for pid in sorted(raw)]


class RedisCostStore(_RedisStore, CostStorePort):
    """Cost ledger, budget and alert inbox shared across workers."""

    async def append_record(self, record: CostRecord) -> None:
        await self._run(
            "append_record",
            "zadd",
            self._key("cost", "records", record.provider_id),
            {encode_record(record): record.timestamp.timestamp()},
        )
        await self._run("append_record", "sadd", self._key("cost", "providers"), record.provider_id)

    async def list_records(
        self,
        *,
        provider_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CostRecord]:
        providers = [provider_id] if provider_id is not None else await self.list_providers()
        low = start.timestamp() if start is not None else "-inf"
        high = end.timestamp() if end is not None else "+inf"

        records: list[CostRecord] = []
        for pid in providers:
            members = await self._run(
                "list_records", "zrangebyscore", self._key("cost", "records", pid), low, high
            )
            records.extend(decode_record(m) for m in members)

        # Scores are floats; re-check the exact half-open bounds
        selected = [
            r
            for r in records
            if (start is None or r.timestamp >= start) and (end is None or r.timestamp < end)
        ]
        return sorted(selected, key=lambda r: r.timestamp)

    async def list_providers(self) -> list[str]:
        members = await self._run("list_providers", "smembers", self._key("cost", "providers"))
        return sorted(members)

    async def get_budget(self) -> CostBudget | None:
        raw = await self._run("get_budget", "get", self._key("cost", "budget"))
        return decode_budget(raw) if raw else None

    async def save_budget(self, budget: CostBudget) -> None:
        await self._run("save_budget", "set", self._key("cost", "budget"), encode_budget(budget))

    async def save_alert(self, alert: CostAlert) -> None:
        await self._run(
            "save_alert", "hset", self._key("cost", "alerts"), alert.id, encode_alert(alert)
        )

    async def get_alert(self, alert_id: str) -> CostAlert | None:
        raw = await self._run("get_alert", "hget", self._key("cost", "alerts"), alert_id)
        return decode_alert(raw) if raw else None

    async def list_alerts(self) -> list[CostAlert]:
        raw = await self._run("list_alerts", "hgetall", self._key("cost", "alerts"))
        return sorted((decode_alert(v) for v in raw.values()), key=lambda a: (a.timestamp, a.id))
