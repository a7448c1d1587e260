"""Plugin base types.

Every pluggable subsystem (embedding providers, messaging channels, ...)
exposes the same identity + health-check shape so one monitor can poll them
all without knowing what they are.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class HealthResult:
    """Outcome of a single health check.

    Attributes:
        healthy: Whether the plugin can do its job right now.
        message: What is wrong (unhealthy results), e.g. "Cannot reach Ollama".
        resolution: What the operator should do about it.
    """

    healthy: bool
    message: str | None = None
    resolution: str | None = None


@runtime_checkable
class Plugin(Protocol):
    """Minimal capability set the health monitor relies on."""

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def type(self) -> str:
        """Plugin family, e.g. ``"embeddings"`` or ``"channel"``."""
        ...

    @property
    def health_check_interval(self) -> float | None:
        """Preferred polling interval in seconds, or None for the default."""
        ...

    def health_check(self) -> HealthResult:
        """Probe the plugin. Must report failures, not raise them."""
        ...
