"""Plugin contract shared by embedding providers and other health-checked subsystems."""

from notebrain.plugins.health import HealthChangedEvent, HealthMonitor, HealthSnapshot
from notebrain.plugins.types import HealthResult, Plugin

__all__ = [
    "HealthChangedEvent",
    "HealthMonitor",
    "HealthResult",
    "HealthSnapshot",
    "Plugin",
]
