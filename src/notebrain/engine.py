"""MemoryEngine — owns the index, providers, sync, search and health polling.

Recovery wiring lives here, not in the monitor:

- unhealthy transition for the *active* embedding provider → registry degraded
  (keyword-only search from then on);
- healthy transition for the *intended* provider while none is active →
  initialize, reactivate, realign the vector index, resync once.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from notebrain.config import (
    LOCAL_PROVIDER_ID,
    OLLAMA_PROVIDER_ID,
    NotebrainConfig,
    normalize_provider_id,
)
from notebrain.db.connection import Database
from notebrain.db.models import IndexStatus
from notebrain.db.repository import Repository
from notebrain.db.schema import initialize
from notebrain.embeddings.diagnostics import suggest_resolution
from notebrain.embeddings.local import DEFAULT_MODEL as LOCAL_DEFAULT_MODEL
from notebrain.embeddings.local import LocalEmbeddingProvider
from notebrain.embeddings.ollama import DEFAULT_HOST, OllamaEmbeddingProvider
from notebrain.embeddings.ollama import DEFAULT_MODEL as OLLAMA_DEFAULT_MODEL
from notebrain.embeddings.registry import ProviderRegistry
from notebrain.embeddings.types import PLUGIN_TYPE, EmbeddingProvider, ProgressCallback
from notebrain.ingest.chunker import MarkdownChunker
from notebrain.ingest.notebook import init_notebook
from notebrain.ingest.sync import SyncResult, SyncService
from notebrain.plugins.health import HealthChangedEvent, HealthMonitor, HealthSnapshot
from notebrain.plugins.types import HealthResult
from notebrain.rag import tools
from notebrain.rag.retriever import RecallResult, SearchService

logger = logging.getLogger(__name__)

# Minimum gap between on-demand recovery probes triggered by recall().
_LAZY_RECOVERY_COOLDOWN = 30.0


@dataclass
class ProviderStatus:
    id: str
    name: str
    model: str
    ready: bool
    health: HealthSnapshot | None = None


@dataclass
class EngineStatus:
    index: IndexStatus
    active_provider: str | None
    intended_provider: str | None
    degraded: HealthResult | None
    watching: bool
    providers: list[ProviderStatus] = field(default_factory=list)


def build_default_providers(config: NotebrainConfig) -> list[EmbeddingProvider]:
    """The built-in providers, configured from ``embeddings.plugins``."""
    local = config.embeddings.plugins.get(LOCAL_PROVIDER_ID, {})
    ollama = config.embeddings.plugins.get(OLLAMA_PROVIDER_ID, {})
    return [
        LocalEmbeddingProvider(
            config.models_dir, model=str(local.get("model", LOCAL_DEFAULT_MODEL))
        ),
        OllamaEmbeddingProvider(
            host=str(ollama.get("host", DEFAULT_HOST)),
            model=str(ollama.get("model", OLLAMA_DEFAULT_MODEL)),
        ),
    ]


class MemoryEngine:
    """Composition root for the memory subsystem.

    Args:
        config: Loaded configuration.
        providers: Embedding providers to register. Defaults to the built-in
            local and Ollama providers.
        monitor: Health monitor to poll providers with.
    """

    def __init__(
        self,
        config: NotebrainConfig,
        providers: list[EmbeddingProvider] | None = None,
        monitor: HealthMonitor | None = None,
    ) -> None:
        self.config = config
        self._providers = providers if providers is not None else build_default_providers(config)
        self.monitor = monitor or HealthMonitor(config=config.health)
        self.registry = ProviderRegistry(settings=config.embeddings.plugins)

        self._db: Database | None = None
        self._repo: Repository | None = None
        self._sync: SyncService | None = None
        self._search: SearchService | None = None
        self._chunking_changed = False
        self._recovery_lock = threading.Lock()
        self._last_lazy_probe: float | None = None
        self._resync_thread: threading.Thread | None = None
        self.last_sync_result: SyncResult | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, on_progress: ProgressCallback | None = None) -> MemoryEngine:
        """Create directories, open the index and activate the configured provider."""
        if self._db is not None:
            return self

        init_notebook(self.config.agent_dir)
        self._db = Database(self.config.db_path)
        conn = self._db.connect()
        initialize(conn)
        self._repo = Repository(conn)

        chunker = MarkdownChunker(
            max_chars=self.config.chunking.max_chars,
            overlap_chars=self.config.chunking.overlap_chars,
        )
        self._sync = SyncService(
            self.config.notebook_dir,
            self._repo,
            self.registry.get_active,
            chunker,
            debounce_seconds=self.config.sync.debounce_seconds,
        )
        self._search = SearchService(
            self._repo, self.registry.get_active, self.registry, rrf_k=self.config.search.rrf_k
        )

        for provider in self._providers:
            self.registry.register(provider)
            self.monitor.register(provider)
            if hasattr(provider, "on_degraded"):
                provider.on_degraded = self._degraded_callback(provider.id)
        self.monitor.add_listener(self._on_health_changed)

        self._chunking_changed = self._detect_chunking_change()

        active = self.config.embeddings.active
        if active:
            self.activate_provider(active, resync=False, on_progress=on_progress)
        return self

    def start(self) -> None:
        """Start the file watcher and the health monitor."""
        self._require_open()
        self.sync_service.start_watching()
        self.monitor.start()

    def stop(self) -> None:
        if self._sync is not None:
            self._sync.stop_watching()
        self.monitor.stop()

    def close(self) -> None:
        """Stop background work, release providers and close the database."""
        self.stop()
        if self._resync_thread is not None:
            self._resync_thread.join(timeout=30)
            self._resync_thread = None
        self.monitor.remove_listener(self._on_health_changed)
        for provider in self.registry.list():
            try:
                provider.cleanup()
            except Exception:
                logger.warning("Cleanup of %s failed", provider.id, exc_info=True)
        if self._db is not None:
            self._db.close()
        self._db = None
        self._repo = None
        self._sync = None
        self._search = None

    def __enter__(self) -> MemoryEngine:
        return self.open()

    def __exit__(self, *_: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def repo(self) -> Repository:
        self._require_open()
        return self._repo  # type: ignore[return-value]

    @property
    def sync_service(self) -> SyncService:
        self._require_open()
        return self._sync  # type: ignore[return-value]

    @property
    def search_service(self) -> SearchService:
        self._require_open()
        return self._search  # type: ignore[return-value]

    def _require_open(self) -> None:
        if self._db is None:
            raise RuntimeError("MemoryEngine is not open. Call open() first.")

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def activate_provider(
        self,
        provider_id: str | None,
        *,
        resync: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """Initialize and activate *provider_id* (None disables embeddings).

        On failure the provider is recorded as intended and the registry is
        marked degraded, so a later healthy transition can recover it.

        Returns:
            True if the provider is now active.

        Raises:
            KeyError: If *provider_id* is not registered.
        """
        self._require_open()
        provider_id = normalize_provider_id(provider_id)
        if provider_id is None:
            self.registry.set_active(None)
            return True

        provider = self.registry.get(provider_id)
        if provider is None:
            raise KeyError(f"Embedding provider not registered: {provider_id}")

        try:
            provider.initialize(on_progress)
            dimensions = provider.dimensions
            if dimensions is None:
                raise RuntimeError(f"{provider.name} did not report its dimensions")
        except Exception as exc:
            logger.warning("Could not activate %s: %s", provider_id, exc)
            self.registry.set_intended(provider_id)
            self.registry.set_degraded(
                HealthResult(
                    healthy=False,
                    message=str(exc),
                    resolution=suggest_resolution(
                        str(exc), provider.model_name, getattr(provider, "host", None)
                    ),
                )
            )
            return False

        self.registry.set_active(provider_id)
        changed = self.repo.reset_vector_index(provider_id, provider.model_name, dimensions)
        logger.info(
            "Activated %s (%s, %d dims)%s",
            provider_id,
            provider.model_name,
            dimensions,
            "; vector space changed" if changed else "",
        )
        if resync:
            result = self.sync(rebuild=changed)
            if result.in_progress:
                logger.info("A sync is already running; resyncing for %s once it finishes", provider_id)
                self._resync_thread = threading.Thread(
                    target=self._resync_when_idle,
                    args=(changed,),
                    name="notebrain-resync",
                    daemon=True,
                )
                self._resync_thread.start()
        return True

    def _resync_when_idle(self, rebuild: bool) -> None:
        try:
            self.sync(rebuild=rebuild, wait=True)
        except RuntimeError:
            logger.debug("Engine closed before the deferred resync ran")

    def _degraded_callback(self, provider_id: str):
        def _on_degraded(health: HealthResult) -> None:
            if self.registry.active_id == provider_id:
                self.registry.set_degraded(health)

        return _on_degraded

    def _on_health_changed(self, event: HealthChangedEvent) -> None:
        if event.plugin_type != PLUGIN_TYPE:
            return
        if not event.current.healthy:
            if event.plugin_id == self.registry.active_id:
                self.registry.set_degraded(event.current)
            return
        if event.plugin_id == self.registry.intended_id and self.registry.active_id is None:
            self._recover(event.plugin_id)

    def _recover(self, provider_id: str) -> bool:
        if not self._recovery_lock.acquire(blocking=False):
            return False
        try:
            if self.registry.active_id is not None or self._db is None:
                return False
            logger.info("Embedding provider %s is healthy again; reactivating", provider_id)
            return self.activate_provider(provider_id)
        finally:
            self._recovery_lock.release()

    def try_lazy_recovery(self) -> bool:
        """Probe the intended provider now if embeddings are degraded.

        Rate limited so a burst of queries does not hammer a dead service.
        Returns True if the provider was reactivated.
        """
        intended = self.registry.intended_id
        if not self.registry.is_degraded() or intended is None:
            return False
        now = time.monotonic()
        last = self._last_lazy_probe
        if last is not None and now - last < _LAZY_RECOVERY_COOLDOWN:
            return False
        self._last_lazy_probe = now

        provider = self.registry.get(intended)
        if provider is None:
            return False
        try:
            healthy = provider.health_check().healthy
        except Exception:
            logger.debug("Lazy health probe of %s raised", intended, exc_info=True)
            return False
        return healthy and self._recover(intended)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(self, rebuild: bool = False, wait: bool = False) -> SyncResult:
        """Full sync of the notebook; a rebuild when asked or when chunking changed.

        With *wait*, a sync already in flight is waited out instead of skipped.
        """
        if rebuild or self._chunking_changed:
            result = self.sync_service.rebuild(wait=wait)
            if not result.in_progress:
                self._chunking_changed = False
                self._record_chunking()
        else:
            result = self.sync_service.full_sync(wait=wait)
        self.last_sync_result = result
        return result

    def _detect_chunking_change(self) -> bool:
        meta = self.repo.get_index_meta()
        max_chars = self.config.chunking.max_chars
        overlap = self.config.chunking.overlap_chars
        if meta.chunk_max_chars is None and meta.chunk_overlap_chars is None:
            self._record_chunking()
            return self.repo.count_chunks() > 0
        changed = (meta.chunk_max_chars, meta.chunk_overlap_chars) != (max_chars, overlap)
        if changed:
            logger.info(
                "Chunking changed (%s/%s -> %s/%s); index will be rebuilt on next sync",
                meta.chunk_max_chars,
                meta.chunk_overlap_chars,
                max_chars,
                overlap,
            )
        return changed

    def _record_chunking(self) -> None:
        self.repo.set_index_meta(
            chunk_max_chars=self.config.chunking.max_chars,
            chunk_overlap_chars=self.config.chunking.overlap_chars,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def recall(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
    ) -> RecallResult:
        self.try_lazy_recovery()
        return tools.recall(
            self.search_service,
            query,
            max_results=max_results if max_results is not None else self.config.search.max_results,
            min_score=min_score if min_score is not None else self.config.search.min_score,
        )

    def notebook_read(
        self, path: str, start_line: int | None = None, lines: int | None = None
    ) -> str:
        return tools.notebook_read(self.config.notebook_dir, path, start_line, lines)

    def status(self) -> EngineStatus:
        providers = [
            ProviderStatus(
                id=p.id,
                name=p.name,
                model=p.model_name,
                ready=p.is_ready(),
                health=self.monitor.get_health(p.id),
            )
            for p in self.registry.list()
        ]
        return EngineStatus(
            index=self.repo.get_status(),
            active_provider=self.registry.active_id,
            intended_provider=self.registry.intended_id,
            degraded=self.registry.degraded_health,
            watching=self._sync.watching if self._sync else False,
            providers=providers,
        )

    @property
    def notebook_dir(self) -> Path:
        return self.config.notebook_dir

    def provider_settings(self, provider_id: str) -> dict[str, Any]:
        return self.registry.get_provider_settings(provider_id)
