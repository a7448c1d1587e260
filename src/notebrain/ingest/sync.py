"""Sync service — keeps the memory index in step with the notebook on disk.

Two entry points feed the same per-file pipeline:

- ``full_sync()`` walks every ``*.md`` file under the root, indexes what
  changed and drops records for files that disappeared.
- ``start_watching()`` runs a watchdog observer; create/modify events are
  debounced per path; file and directory deletes apply immediately.

Per file: read bytes → SHA-256 → skip if unchanged → delete old chunks →
chunk → insert chunks → embed (cache first) → insert vectors → write the
file record. The record (and its hash) is written last, so a crash part way
through is repaired by the next sync.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from notebrain.db.models import Chunk, FileRecord
from notebrain.db.repository import Repository
from notebrain.embeddings.types import EmbeddingProvider
from notebrain.ingest.chunker import MarkdownChunker, hash_bytes

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.5
SYNC_IN_PROGRESS = "Sync already in progress"


class SyncOutcome(str, enum.Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    ERROR = "error"


@dataclass
class SyncResult:
    """Summary of a full sync or rebuild."""

    added: int = 0
    updated: int = 0
    removed: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    in_progress: bool = False


class SyncService:
    """Index the markdown files under *root* into *repo*.

    Args:
        root: Notebook directory.
        repo: Open repository for the memory index.
        get_provider: Returns the active embedding provider, or None.
        chunker: Markdown chunker to split files with.
        debounce_seconds: Quiet period before a watched file is re-indexed.
    """

    def __init__(
        self,
        root: Path,
        repo: Repository,
        get_provider: Callable[[], EmbeddingProvider | None],
        chunker: MarkdownChunker | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._root = Path(root).resolve()
        self._repo = repo
        self._get_provider = get_provider
        self._chunker = chunker or MarkdownChunker()
        self._debounce = debounce_seconds

        self._sync_guard = threading.Lock()
        self._file_lock = threading.RLock()

        self._timers: dict[str, tuple[threading.Timer, object]] = {}
        self._timers_lock = threading.Lock()
        self._observer: Observer | None = None
        self._stopped = False

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def sync_file(self, path: str | Path) -> SyncOutcome:
        """Index one file. Read and storage errors are logged, not raised."""
        rel = self.relative_path(path)
        try:
            return self._index_file(rel)
        except Exception:
            logger.exception("Failed to sync %s", rel)
            return SyncOutcome.ERROR

    def remove_path(self, path: str | Path) -> bool:
        """Drop *path* from the index. Returns True if it was indexed."""
        rel = self.relative_path(path)
        with self._file_lock:
            if self._repo.get_file(rel) is None and self._repo.count_chunks(rel) == 0:
                return False
            removed = self._repo.remove_file(rel)
        logger.debug("Removed %s from index (%d chunks)", rel, removed)
        return True

    def _index_file(self, rel: str) -> SyncOutcome:
        abs_path = self._root / rel
        with self._file_lock:
            try:
                data = abs_path.read_bytes()
                stat = abs_path.stat()
            except FileNotFoundError:
                return SyncOutcome.REMOVED if self.remove_path(rel) else SyncOutcome.UNCHANGED

            file_hash = hash_bytes(data)
            existing = self._repo.get_file(rel)
            provider = self._ready_provider()
            if existing is not None and existing.hash == file_hash:
                if provider is not None and not existing.indexed_with_embeddings:
                    self._backfill_vectors(provider, rel)
                return SyncOutcome.UNCHANGED

            self._repo.delete_chunks_for_file(rel)
            chunks: list[Chunk] = []
            for result in self._chunker.chunk(data.decode("utf-8", errors="replace")):
                chunk = Chunk(
                    file_path=rel,
                    heading=result.heading,
                    start_line=result.start_line,
                    end_line=result.end_line,
                    text=result.text,
                    hash=result.content_hash,
                )
                self._repo.insert_chunk(chunk)
                chunks.append(chunk)

            embedded = self._embed_chunks(provider, chunks) if provider is not None else False

            self._repo.upsert_file(
                FileRecord(
                    path=rel,
                    hash=file_hash,
                    mtime=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                    size=stat.st_size,
                    indexed_at=_now_iso(),
                    indexed_with_embeddings=embedded,
                )
            )
        logger.debug("Indexed %s (%d chunks, vectors=%s)", rel, len(chunks), embedded)
        return SyncOutcome.UPDATED if existing is not None else SyncOutcome.ADDED

    def _backfill_vectors(self, provider: EmbeddingProvider, rel: str) -> None:
        """Embed the stored chunks of an unchanged file that lacks vectors."""
        chunks = self._repo.get_chunks_for_file(rel)
        # Vectors from an earlier partial run would collide on rowid.
        self._repo.delete_vectors([c.id for c in chunks])
        embedded = self._embed_chunks(provider, chunks)
        self._repo.set_indexed_with_embeddings(rel, embedded)
        logger.debug("Backfilled vectors for %s (%d chunks, complete=%s)", rel, len(chunks), embedded)

    def _ready_provider(self) -> EmbeddingProvider | None:
        provider = self._get_provider()
        if provider is None or not provider.is_ready():
            return None
        return provider

    def _embed_chunks(self, provider: EmbeddingProvider, chunks: list[Chunk]) -> bool:
        """Store a vector for every chunk it can. Returns True if none were skipped."""
        model = provider.model_name
        vectors: dict[int, list[float]] = {}
        misses: list[Chunk] = []
        for chunk in chunks:
            cached = self._repo.get_cached_embedding(chunk.hash, model)
            if cached is not None:
                vectors[chunk.id] = cached
            else:
                misses.append(chunk)

        if misses:
            try:
                fresh = provider.embed_batch([c.text for c in misses])
            except Exception as exc:
                logger.warning(
                    "Embedding %d chunk(s) of %s failed; indexed without vectors: %s",
                    len(misses),
                    misses[0].file_path,
                    exc,
                )
                fresh = []
            for chunk, vector in zip(misses, fresh):
                self._repo.cache_embedding(chunk.hash, model, vector)
                vectors[chunk.id] = vector

        for chunk_id, vector in vectors.items():
            try:
                self._repo.insert_vector(chunk_id, vector)
            except RuntimeError as exc:
                logger.warning("No vector index to write to: %s", exc)
                return False
        return len(vectors) == len(chunks)

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    def full_sync(self, wait: bool = False) -> SyncResult:
        """Index every notebook file and drop records for vanished ones.

        Returns immediately with ``in_progress=True`` when another full sync
        or rebuild is already running, unless *wait* is set, in which case it
        runs once that one has finished.
        """
        if not self._sync_guard.acquire(blocking=wait):
            return SyncResult(errors=[SYNC_IN_PROGRESS], in_progress=True)
        try:
            return self._run_full_sync()
        finally:
            self._sync_guard.release()

    def rebuild(self, wait: bool = False) -> SyncResult:
        """Discard every derived row, then run a full sync."""
        if not self._sync_guard.acquire(blocking=wait):
            return SyncResult(errors=[SYNC_IN_PROGRESS], in_progress=True)
        try:
            logger.info("Rebuilding memory index from %s", self._root)
            with self._file_lock:
                self._repo.clear_all()
            return self._run_full_sync()
        finally:
            self._sync_guard.release()

    def _run_full_sync(self) -> SyncResult:
        started = time.monotonic()
        result = SyncResult()
        seen: set[str] = set()

        for path in self.scan():
            rel = self.relative_path(path)
            seen.add(rel)
            try:
                outcome = self._index_file(rel)
            except Exception as exc:
                logger.warning("Failed to sync %s: %s", rel, exc)
                result.errors.append(f"{rel}: {exc}")
                continue
            if outcome is SyncOutcome.ADDED:
                result.added += 1
            elif outcome is SyncOutcome.UPDATED:
                result.updated += 1
            elif outcome is SyncOutcome.REMOVED:
                result.removed += 1

        for record in self._repo.list_files():
            if record.path not in seen:
                with self._file_lock:
                    self._repo.remove_file(record.path)
                result.removed += 1

        self._repo.set_index_meta(last_sync=_now_iso())
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Sync finished: %d added, %d updated, %d removed, %d error(s) in %d ms",
            result.added,
            result.updated,
            result.removed,
            len(result.errors),
            result.duration_ms,
        )
        return result

    def scan(self) -> list[Path]:
        """All tracked markdown files under the root, sorted."""
        if not self._root.is_dir():
            return []
        return sorted(p for p in self._root.rglob("*.md") if p.is_file() and self.is_tracked(p))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def relative_path(self, path: str | Path) -> str:
        """Root-relative POSIX path for *path* (absolute or already relative)."""
        p = Path(path)
        if p.is_absolute():
            p = p.resolve().relative_to(self._root)
        return p.as_posix()

    def is_tracked(self, path: str | Path) -> bool:
        """True for ``.md`` files inside the root with no dot-prefixed component."""
        p = Path(path)
        if p.suffix != ".md":
            return False
        if p.is_absolute():
            try:
                p = p.resolve().relative_to(self._root)
            except ValueError:
                return False
        return not any(part.startswith(".") for part in p.parts)

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start_watching(self) -> None:
        """Watch the root recursively for markdown changes."""
        if self._observer is not None:
            return
        self._stopped = False
        self._root.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(_NotebookEventHandler(self), str(self._root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self._root)

    def stop_watching(self) -> None:
        """Stop the observer and cancel every pending debounced sync."""
        self._stopped = True
        with self._timers_lock:
            for timer, _token in self._timers.values():
                timer.cancel()
            self._timers.clear()
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)

    @property
    def watching(self) -> bool:
        return self._observer is not None

    def pending_paths(self) -> list[str]:
        """Paths with a debounced sync scheduled."""
        with self._timers_lock:
            return sorted(self._timers)

    def schedule_sync(self, path: str | Path) -> None:
        """(Re)start the debounce timer for *path*."""
        if self._stopped or not self.is_tracked(path):
            return
        rel = self.relative_path(path)
        token = object()
        timer = threading.Timer(self._debounce, self._fire, args=(rel, token))
        timer.daemon = True
        with self._timers_lock:
            previous = self._timers.pop(rel, None)
            if previous is not None:
                previous[0].cancel()
            self._timers[rel] = (timer, token)
        timer.start()

    def handle_deleted(self, path: str | Path) -> None:
        """Drop *path* from the index now, cancelling any pending sync for it."""
        if not self.is_tracked(path):
            return
        rel = self.relative_path(path)
        with self._timers_lock:
            pending = self._timers.pop(rel, None)
        if pending is not None:
            pending[0].cancel()
        self.remove_path(rel)

    def handle_moved(self, src: str | Path, dest: str | Path) -> None:
        self.handle_deleted(src)
        self.schedule_sync(dest)

    def handle_dir_deleted(self, path: str | Path) -> int:
        """Drop every indexed file under the directory *path*. Returns the count."""
        prefix = self._dir_prefix(path)
        if prefix is None:
            return 0
        with self._timers_lock:
            pending = [rel for rel in self._timers if rel.startswith(prefix)]
            timers = [self._timers.pop(rel)[0] for rel in pending]
        for timer in timers:
            timer.cancel()
        removed = 0
        for record in self._repo.list_files():
            if record.path.startswith(prefix) and self.remove_path(record.path):
                removed += 1
        if removed:
            logger.debug("Removed %d file(s) under %s from index", removed, prefix)
        return removed

    def handle_dir_moved(self, src: str | Path, dest: str | Path) -> None:
        self.handle_dir_deleted(src)
        dest_path = Path(dest)
        if self._dir_prefix(dest_path) is None or not dest_path.is_dir():
            return
        for path in sorted(dest_path.rglob("*.md")):
            if path.is_file():
                self.schedule_sync(path)

    def _dir_prefix(self, path: str | Path) -> str | None:
        """``"rel/dir/"`` for a tracked directory inside the root, else None."""
        try:
            rel = Path(path).resolve().relative_to(self._root)
        except ValueError:
            return None
        if not rel.parts or any(part.startswith(".") for part in rel.parts):
            return None
        return rel.as_posix() + "/"

    def _fire(self, rel: str, token: object) -> None:
        with self._timers_lock:
            current = self._timers.get(rel)
            if current is None or current[1] is not token:
                return
            del self._timers[rel]
        self.sync_file(rel)


class _NotebookEventHandler(FileSystemEventHandler):
    """Forwards watchdog events to the sync service."""

    def __init__(self, service: SyncService) -> None:
        super().__init__()
        self._service = service

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._service.schedule_sync(_fs_path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._service.schedule_sync(_fs_path(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._service.handle_dir_deleted(_fs_path(event.src_path))
        else:
            self._service.handle_deleted(_fs_path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        src, dest = _fs_path(event.src_path), _fs_path(event.dest_path)
        if event.is_directory:
            self._service.handle_dir_moved(src, dest)
        else:
            self._service.handle_moved(src, dest)


def _fs_path(raw: str | bytes) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
