"""Storage adapters for provider health and cost state."""

from hookly.adapters.outbound.storage.memory import InMemoryCostStore, InMemoryHealthStore
from hookly.adapters.outbound.storage.redis import (
    RedisCostStore,
    RedisHealthStore,
    create_redis_client,
)

__all__ = [
    "InMemoryCostStore",
    "InMemoryHealthStore",
    "RedisCostStore",
    "RedisHealthStore",
    "create_redis_client",
]
