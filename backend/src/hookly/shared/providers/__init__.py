"""Provider resilience primitives.

Circuit breaking and health aggregation policies shared by the health
monitor; they operate on persisted records and hold no state of their own.
"""

from hookly.shared.providers.types import CircuitBreakerConfig, HealthConfig
from hookly.shared.providers.health import HealthMetricsPolicy
from hookly.shared.providers.circuit_breaker import CircuitBreakerPolicy, CircuitTransition

__all__ = [
    "CircuitBreakerConfig",
    "CircuitBreakerPolicy",
    "CircuitTransition",
    "HealthConfig",
    "HealthMetricsPolicy",
]
