"""HealthMonitor — polls registered plugins and reports health transitions.

Observation only: the monitor never recovers anything. Consumers subscribe
with :meth:`HealthMonitor.add_listener` and react to ``health_changed``
events (see :class:`notebrain.engine.MemoryEngine`).

Polling interval per plugin (first match wins):
  1. ``health.plugins.<id>.interval_seconds`` in config
  2. the plugin's own ``health_check_interval``
  3. ``health.defaults.interval_seconds`` in config
  4. the monitor's default (60 s)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, ClassVar

from notebrain.plugins.types import HealthResult, Plugin

if TYPE_CHECKING:
    from collections.abc import Callable

    from notebrain.config import HealthCfg

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class HealthSnapshot:
    health: HealthResult
    checked_at: datetime


@dataclass(frozen=True)
class HealthChangedEvent:
    """A plugin's health moved from *previous* to *current*."""

    name: ClassVar[str] = "health_changed"

    plugin_id: str
    plugin_type: str
    plugin_name: str
    previous: HealthResult | None
    current: HealthResult
    checked_at: datetime


@dataclass
class _Entry:
    plugin: Plugin
    timer: threading.Timer | None = None
    snapshot: HealthSnapshot | None = None
    checking: bool = False


class HealthMonitor:
    """Poll every registered plugin on its own timer.

    ``start()`` takes a silent baseline of every plugin, then events fire only
    on transitions: healthy flipped, or the message/resolution changed while
    unhealthy. Healthy→healthy and identical unhealthy polls are silent.
    """

    def __init__(
        self,
        default_interval: float = DEFAULT_INTERVAL_SECONDS,
        config: HealthCfg | None = None,
    ) -> None:
        self._default_interval = default_interval
        self._config = config
        self._entries: dict[str, _Entry] = {}
        self._listeners: list[Callable[[HealthChangedEvent], None]] = []
        self._lock = threading.RLock()
        self._running = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, plugin: Plugin) -> None:
        """Register *plugin*. If the monitor is running, baseline it and start polling."""
        with self._lock:
            if plugin.id in self._entries:
                return
            entry = _Entry(plugin=plugin)
            self._entries[plugin.id] = entry
            running = self._running
        if running:
            self._baseline(entry)
            self._schedule(entry)

    def unregister(self, plugin_id: str) -> None:
        """Stop polling *plugin_id* and forget its health."""
        with self._lock:
            entry = self._entries.pop(plugin_id, None)
            if entry and entry.timer:
                entry.timer.cancel()
                entry.timer = None

    def add_listener(self, listener: Callable[[HealthChangedEvent], None]) -> None:
        """Subscribe to ``health_changed`` events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[HealthChangedEvent], None]) -> bool:
        """Unsubscribe *listener*. Return True if it was subscribed."""
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Baseline every plugin (no events), then arm one timer per plugin."""
        with self._lock:
            if self._running:
                return
            self._running = True
            entries = list(self._entries.values())

        if entries:
            with ThreadPoolExecutor(max_workers=len(entries)) as pool:
                list(pool.map(self._baseline, entries))

        for entry in entries:
            self._schedule(entry)
        logger.debug("Health monitor started for %d plugin(s)", len(entries))

    def stop(self) -> None:
        """Cancel every plugin timer."""
        with self._lock:
            self._running = False
            for entry in self._entries.values():
                if entry.timer:
                    entry.timer.cancel()
                    entry.timer = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_health(self, plugin_id: str) -> HealthSnapshot | None:
        entry = self._entries.get(plugin_id)
        return entry.snapshot if entry else None

    def get_all_health(self) -> dict[str, HealthSnapshot]:
        with self._lock:
            return {pid: e.snapshot for pid, e in self._entries.items() if e.snapshot}

    def check_now(self, plugin_id: str) -> HealthResult | None:
        """Poll *plugin_id* immediately, emitting an event on transition.

        Without a stored snapshot the result is recorded as the baseline and
        no event fires.

        Returns:
            The fresh result, or None if the plugin is unknown or a check for
            it is already in flight.
        """
        entry = self._entries.get(plugin_id)
        if entry is None:
            return None
        return self._poll(entry)

    def resolve_interval(self, plugin: Plugin) -> float:
        """Polling interval in seconds for *plugin*."""
        if self._config is not None:
            override = self._config.plugin_intervals.get(plugin.id)
            if override is not None:
                return override
        preferred = getattr(plugin, "health_check_interval", None)
        if preferred is not None:
            return preferred
        if self._config is not None and self._config.default_interval_seconds is not None:
            return self._config.default_interval_seconds
        return self._default_interval

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _baseline(self, entry: _Entry) -> None:
        try:
            health = entry.plugin.health_check()
        except Exception:
            logger.warning("Initial health check of %s raised", entry.plugin.id, exc_info=True)
            health = HealthResult(healthy=False, message="Initial health check failed")
        entry.snapshot = HealthSnapshot(health=health, checked_at=_now())

    def _schedule(self, entry: _Entry) -> None:
        with self._lock:
            if not self._running or self._entries.get(entry.plugin.id) is not entry:
                return
            timer = threading.Timer(self.resolve_interval(entry.plugin), self._tick, args=(entry,))
            timer.daemon = True
            entry.timer = timer
            timer.start()

    def _tick(self, entry: _Entry) -> None:
        if not self._running:
            return
        self._poll(entry)
        self._schedule(entry)

    def _poll(self, entry: _Entry) -> HealthResult | None:
        with self._lock:
            if entry.checking:
                return None
            entry.checking = True
        try:
            try:
                health = entry.plugin.health_check()
            except Exception:
                logger.warning("Health check of %s raised", entry.plugin.id, exc_info=True)
                health = HealthResult(healthy=False, message="Health check threw an exception")
            checked_at = _now()
            previous = entry.snapshot.health if entry.snapshot else None
            entry.snapshot = HealthSnapshot(health=health, checked_at=checked_at)
        finally:
            entry.checking = False

        if _has_changed(previous, health):
            self._emit(
                HealthChangedEvent(
                    plugin_id=entry.plugin.id,
                    plugin_type=entry.plugin.type,
                    plugin_name=entry.plugin.name,
                    previous=previous,
                    current=health,
                    checked_at=checked_at,
                )
            )
        return health

    def _emit(self, event: HealthChangedEvent) -> None:
        logger.info(
            "Plugin %s is now %s%s",
            event.plugin_id,
            "healthy" if event.current.healthy else "unhealthy",
            f": {event.current.message}" if event.current.message else "",
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(
                    "Listener %r failed for %s on %s",
                    listener,
                    event.name,
                    event.plugin_id,
                    exc_info=True,
                )


def _has_changed(previous: HealthResult | None, current: HealthResult) -> bool:
    # the first observation is a baseline, even via check_now() before start()
    if previous is None:
        return False
    if previous.healthy != current.healthy:
        return True
    if not current.healthy:
        return (previous.message, previous.resolution) != (current.message, current.resolution)
    return False


def _now() -> datetime:
    return datetime.now(timezone.utc)
