"""Application services implementing the inbound ports."""

from hookly.application.services.cost_tracker import CostTracker
from hookly.application.services.health_monitor import ProviderHealthMonitor

__all__ = ["CostTracker", "ProviderHealthMonitor"]
