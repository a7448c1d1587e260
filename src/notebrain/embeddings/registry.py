"""ProviderRegistry — which embedding provider is active, intended, or degraded.

Three pieces of state, all behind one lock and changed only through the
named transitions below:

- ``active_id``: the provider embed calls go to. Always None while degraded.
- ``intended_id``: what the operator chose. Survives degradation so the
  engine knows what to recover.
- ``degraded_health``: why the intended provider is unusable, or None.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from notebrain.embeddings.types import EmbeddingProvider
from notebrain.plugins.types import HealthResult

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, settings: dict[str, dict[str, Any]] | None = None) -> None:
        self._providers: dict[str, EmbeddingProvider] = {}
        self._settings: dict[str, dict[str, Any]] = dict(settings or {})
        self._active_id: str | None = None
        self._intended_id: str | None = None
        self._degraded: HealthResult | None = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, provider: EmbeddingProvider) -> None:
        with self._lock:
            self._providers[provider.id] = provider

    def unregister(self, provider_id: str) -> None:
        with self._lock:
            self._providers.pop(provider_id, None)
            if self._active_id == provider_id:
                self._active_id = None

    def get(self, provider_id: str) -> EmbeddingProvider | None:
        with self._lock:
            return self._providers.get(provider_id)

    def list(self) -> list[EmbeddingProvider]:
        with self._lock:
            return list(self._providers.values())

    # ------------------------------------------------------------------
    # Active / intended
    # ------------------------------------------------------------------

    def get_active(self) -> EmbeddingProvider | None:
        """The active provider, or None (nothing chosen, or degraded)."""
        with self._lock:
            if self._active_id is None:
                return None
            return self._providers.get(self._active_id)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def intended_id(self) -> str | None:
        return self._intended_id

    def set_active(self, provider_id: str | None) -> None:
        """Make *provider_id* the active provider.

        Does not initialize the provider. The previously active provider is
        cleaned up when it differs. Activating records intent and clears the
        degraded state; ``None`` (operator disabled embeddings) clears intent
        as well.

        Raises:
            KeyError: If *provider_id* is not registered.
        """
        with self._lock:
            if provider_id is not None and provider_id not in self._providers:
                raise KeyError(f"Embedding provider not registered: {provider_id}")

            previous = self.get_active()
            if previous is not None and previous.id != provider_id:
                previous.cleanup()

            self._active_id = provider_id
            self._intended_id = provider_id
            self._degraded = None
        logger.info("Active embedding provider: %s", provider_id or "none")

    def set_intended(self, provider_id: str | None) -> None:
        with self._lock:
            self._intended_id = provider_id

    # ------------------------------------------------------------------
    # Degraded mode
    # ------------------------------------------------------------------

    def set_degraded(self, health: HealthResult) -> None:
        """Stop routing embed calls; keep the intended provider for recovery."""
        with self._lock:
            self._degraded = health
            self._active_id = None
        logger.warning(
            "Embeddings degraded (%s): %s", self._intended_id or "no provider", health.message
        )

    def clear_degraded(self) -> None:
        with self._lock:
            self._degraded = None

    @property
    def degraded_health(self) -> HealthResult | None:
        return self._degraded

    def is_degraded(self) -> bool:
        return self._degraded is not None

    # ------------------------------------------------------------------
    # Per-provider settings
    # ------------------------------------------------------------------

    def get_provider_settings(self, provider_id: str) -> dict[str, Any]:
        with self._lock:
            return dict(self._settings.get(provider_id, {}))

    def set_provider_settings(self, provider_id: str, settings: dict[str, Any]) -> None:
        with self._lock:
            self._settings[provider_id] = dict(settings)
