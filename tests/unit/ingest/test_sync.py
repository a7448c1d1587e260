"""Tests for SyncService: full sync, per-file indexing, debounced watching."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest
from watchdog.events import DirDeletedEvent, DirMovedEvent

from notebrain.ingest.chunker import MarkdownChunker
from notebrain.ingest.sync import SYNC_IN_PROGRESS, SyncOutcome, SyncService, _NotebookEventHandler


def _service(notebook, repo, provider=None, **kwargs) -> SyncService:
    return SyncService(notebook, repo, lambda: provider, **kwargs)


def _ready_provider(repo, make_provider, **kwargs):
    provider = make_provider(**kwargs)
    provider.initialize()
    repo.reset_vector_index(provider.id, provider.model_name, provider.dimensions)
    return provider


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


# ------------------------------------------------------------------
# Full sync
# ------------------------------------------------------------------


def test_full_sync_indexes_every_file(repo, notebook):
    result = _service(notebook, repo).full_sync()

    assert (result.added, result.updated, result.removed) == (3, 0, 0)
    assert result.errors == []
    assert [f.path for f in repo.list_files()] == [
        "daily/2024-03-01.md",
        "reference/contacts.md",
        "reference/preferences.md",
    ]
    assert repo.count_chunks() == 3
    assert repo.get_index_meta().last_sync is not None


def test_full_sync_is_idempotent(repo, notebook):
    service = _service(notebook, repo)
    service.full_sync()
    ids_before = [c.id for c in repo.get_chunks_for_file("reference/contacts.md")]

    result = service.full_sync()

    assert (result.added, result.updated, result.removed) == (0, 0, 0)
    assert [c.id for c in repo.get_chunks_for_file("reference/contacts.md")] == ids_before


def test_full_sync_picks_up_changes(repo, notebook):
    service = _service(notebook, repo)
    service.full_sync()
    (notebook / "reference" / "contacts.md").write_text(
        "# Contacts\n\nBob Chen handles procurement.\n", encoding="utf-8"
    )

    result = service.full_sync()

    assert result.updated == 1
    assert repo.lexical_search("procurement") != []
    assert repo.lexical_search("falcon") == []


def test_full_sync_removes_deleted_files(repo, notebook):
    service = _service(notebook, repo)
    service.full_sync()
    (notebook / "reference" / "preferences.md").unlink()

    result = service.full_sync()

    assert result.removed == 1
    assert repo.get_file("reference/preferences.md") is None
    assert repo.count_chunks("reference/preferences.md") == 0


def test_full_sync_ignores_hidden_and_non_markdown(repo, notebook):
    (notebook / ".obsidian").mkdir()
    (notebook / ".obsidian" / "workspace.md").write_text("# hidden\n", encoding="utf-8")
    (notebook / ".draft.md").write_text("# draft\n", encoding="utf-8")
    (notebook / "notes.txt").write_text("plain text\n", encoding="utf-8")

    result = _service(notebook, repo).full_sync()

    assert result.added == 3
    assert all(not f.path.startswith(".") for f in repo.list_files())


def test_full_sync_missing_root_is_empty(repo, tmp_path):
    result = _service(tmp_path / "missing", repo).full_sync()
    assert (result.added, result.errors) == (0, [])


def test_full_sync_collects_per_file_errors(repo, notebook):
    chunker = MarkdownChunker()
    chunker.chunk = MagicMock(side_effect=ValueError("bad markdown"))

    result = _service(notebook, repo, chunker=chunker).full_sync()

    assert result.added == 0
    assert len(result.errors) == 3
    assert "reference/contacts.md: bad markdown" in result.errors


def test_full_sync_records_duration(repo, notebook):
    result = _service(notebook, repo).full_sync()
    assert result.duration_ms >= 0
    assert result.in_progress is False


def test_rebuild_reindexes_everything(repo, notebook):
    service = _service(notebook, repo)
    service.full_sync()
    old_ids = {c.id for c in repo.get_chunks_for_file("reference/contacts.md")}

    result = service.rebuild()

    assert result.added == 3
    new_ids = {c.id for c in repo.get_chunks_for_file("reference/contacts.md")}
    assert new_ids and new_ids.isdisjoint(old_ids)


def test_concurrent_full_sync_reports_in_progress(repo, notebook, make_provider):
    provider = _ready_provider(repo, make_provider)
    entered = threading.Event()
    release = threading.Event()
    original = provider.embed_batch

    def _blocking(texts):
        entered.set()
        release.wait(5)
        return original(texts)

    provider.embed_batch = _blocking
    service = _service(notebook, repo, provider)
    results = []
    worker = threading.Thread(target=lambda: results.append(service.full_sync()))
    worker.start()
    try:
        assert entered.wait(5)
        second = service.full_sync()
        rebuild = service.rebuild()
    finally:
        release.set()
        worker.join(5)

    assert second.in_progress is True
    assert second.errors == [SYNC_IN_PROGRESS]
    assert rebuild.in_progress is True
    assert results[0].added == 3


# ------------------------------------------------------------------
# Embeddings
# ------------------------------------------------------------------


def test_sync_with_provider_writes_vectors(repo, notebook, make_provider):
    provider = _ready_provider(repo, make_provider)

    _service(notebook, repo, provider).full_sync()

    assert repo.count_vectors() == repo.count_chunks() == 3
    assert all(f.indexed_with_embeddings for f in repo.list_files())


def test_sync_without_provider_writes_no_vectors(repo, notebook):
    _service(notebook, repo).full_sync()
    assert repo.count_vectors() == 0
    assert not any(f.indexed_with_embeddings for f in repo.list_files())


def test_provider_not_ready_is_treated_as_absent(repo, notebook, make_provider):
    provider = make_provider()
    _service(notebook, repo, provider).full_sync()
    assert provider.embedded_texts == 0
    assert repo.count_chunks() == 3


def test_unchanged_files_get_vectors_once_provider_is_ready(repo, notebook, make_provider):
    provider = make_provider()
    service = _service(notebook, repo, provider)
    service.full_sync()
    ids_before = [c.id for c in repo.get_chunks_for_file("reference/contacts.md")]

    provider.initialize()
    repo.reset_vector_index(provider.id, provider.model_name, provider.dimensions)
    result = service.full_sync()

    assert (result.added, result.updated, result.removed) == (0, 0, 0)
    assert repo.count_vectors() == 3
    assert all(f.indexed_with_embeddings for f in repo.list_files())
    assert [c.id for c in repo.get_chunks_for_file("reference/contacts.md")] == ids_before


def test_embedding_cache_reused_for_unchanged_chunks(repo, notebook, make_provider):
    provider = _ready_provider(repo, make_provider)
    path = notebook / "knowledge.md"
    path.write_text("# A\nalpha facts\n# B\nbeta facts\n", encoding="utf-8")
    service = _service(notebook, repo, provider)
    service.full_sync()
    embedded = provider.embedded_texts

    path.write_text("# A\nalpha facts\n# B\ngamma facts\n", encoding="utf-8")
    service.full_sync()

    # only the changed section is sent to the provider
    assert provider.embedded_texts == embedded + 1
    assert repo.count_vectors() == repo.count_chunks()


def test_embedding_failure_indexes_without_vectors(repo, notebook, make_provider):
    provider = _ready_provider(repo, make_provider)
    provider.fail_embed = True

    result = _service(notebook, repo, provider).full_sync()

    assert result.added == 3
    assert result.errors == []
    assert repo.count_chunks() == 3
    assert repo.count_vectors() == 0
    assert not any(f.indexed_with_embeddings for f in repo.list_files())


def test_failed_embeddings_backfilled_without_rechunking(repo, notebook, make_provider):
    provider = _ready_provider(repo, make_provider)
    provider.fail_embed = True
    service = _service(notebook, repo, provider)
    service.full_sync()
    ids_before = [c.id for c in repo.get_chunks_for_file("reference/contacts.md")]

    # still failing: nothing is re-chunked or reported as updated
    result = service.full_sync()
    assert (result.added, result.updated) == (0, 0)
    assert [c.id for c in repo.get_chunks_for_file("reference/contacts.md")] == ids_before

    provider.fail_embed = False
    result = service.full_sync()

    assert (result.added, result.updated) == (0, 0)
    assert repo.count_vectors() == 3
    assert [c.id for c in repo.get_chunks_for_file("reference/contacts.md")] == ids_before
    assert service.sync_file("reference/contacts.md") is SyncOutcome.UNCHANGED


def test_backfill_replaces_vectors_from_a_partial_run(repo, notebook, make_provider):
    provider = _ready_provider(repo, make_provider)
    path = notebook / "knowledge.md"
    path.write_text("# A\nalpha facts\n# B\nbeta facts\n", encoding="utf-8")
    service = _service(notebook, repo, provider)
    service.full_sync()
    repo.set_indexed_with_embeddings("knowledge.md", False)
    embedded = provider.embedded_texts

    assert service.sync_file("knowledge.md") is SyncOutcome.UNCHANGED

    # vectors come back from the cache; no rowid collision
    assert provider.embedded_texts == embedded
    assert repo.count_vectors() == repo.count_chunks()
    assert repo.get_file("knowledge.md").indexed_with_embeddings is True


# ------------------------------------------------------------------
# Single file
# ------------------------------------------------------------------


def test_sync_file_added_then_unchanged(repo, notebook):
    service = _service(notebook, repo)
    assert service.sync_file("reference/contacts.md") is SyncOutcome.ADDED
    assert service.sync_file("reference/contacts.md") is SyncOutcome.UNCHANGED


def test_sync_file_accepts_absolute_path(repo, notebook):
    service = _service(notebook, repo)
    assert service.sync_file(notebook / "reference" / "contacts.md") is SyncOutcome.ADDED
    assert repo.get_file("reference/contacts.md") is not None


def test_sync_file_missing_file(repo, notebook):
    service = _service(notebook, repo)
    assert service.sync_file("reference/nope.md") is SyncOutcome.UNCHANGED

    service.sync_file("reference/contacts.md")
    (notebook / "reference" / "contacts.md").unlink()
    assert service.sync_file("reference/contacts.md") is SyncOutcome.REMOVED
    assert repo.get_file("reference/contacts.md") is None


def test_sync_file_error_is_reported_not_raised(repo, notebook):
    chunker = MarkdownChunker()
    chunker.chunk = MagicMock(side_effect=RuntimeError("boom"))
    service = _service(notebook, repo, chunker=chunker)
    assert service.sync_file("reference/contacts.md") is SyncOutcome.ERROR
    assert repo.get_file("reference/contacts.md") is None


def test_sync_file_stores_line_ranges_and_headings(repo, notebook):
    _service(notebook, repo).sync_file("reference/contacts.md")
    chunk = repo.get_chunks_for_file("reference/contacts.md")[0]
    assert chunk.heading == "Contacts"
    assert chunk.start_line == 1


def test_remove_path(repo, notebook):
    service = _service(notebook, repo)
    service.sync_file("reference/contacts.md")
    assert service.remove_path("reference/contacts.md") is True
    assert service.remove_path("reference/contacts.md") is False


# ------------------------------------------------------------------
# Paths
# ------------------------------------------------------------------


def test_relative_path(repo, notebook):
    service = _service(notebook, repo)
    assert service.relative_path(notebook / "daily" / "x.md") == "daily/x.md"
    assert service.relative_path("daily/x.md") == "daily/x.md"


@pytest.mark.parametrize(
    "rel,tracked",
    [
        ("reference/contacts.md", True),
        ("daily/2024-03-01.md", True),
        ("notes.txt", False),
        (".draft.md", False),
        (".obsidian/workspace.md", False),
        ("lists/.tmp/x.md", False),
    ],
)
def test_is_tracked(repo, notebook, rel, tracked):
    assert _service(notebook, repo).is_tracked(rel) is tracked


def test_is_tracked_outside_root(repo, notebook, tmp_path):
    assert _service(notebook, repo).is_tracked(tmp_path / "elsewhere.md") is False


# ------------------------------------------------------------------
# Debounce + watching
# ------------------------------------------------------------------


def test_schedule_sync_debounces_to_one_sync(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.1)
    service.sync_file = MagicMock(wraps=service.sync_file)

    for _ in range(5):
        service.schedule_sync("reference/contacts.md")
    assert service.pending_paths() == ["reference/contacts.md"]

    assert _wait_for(lambda: repo.get_file("reference/contacts.md") is not None)
    time.sleep(0.2)
    assert service.sync_file.call_count == 1
    assert service.pending_paths() == []


def test_schedule_sync_ignores_untracked(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.05)
    service.schedule_sync("notes.txt")
    service.schedule_sync(".draft.md")
    assert service.pending_paths() == []


def test_stop_watching_cancels_pending_syncs(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.2)
    service.schedule_sync("reference/contacts.md")

    service.stop_watching()
    time.sleep(0.4)

    assert service.pending_paths() == []
    assert repo.get_file("reference/contacts.md") is None


def test_schedule_after_stop_is_ignored(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.05)
    service.stop_watching()
    service.schedule_sync("reference/contacts.md")
    assert service.pending_paths() == []


def test_handle_deleted_removes_immediately_and_cancels_pending(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.2)
    service.sync_file("reference/contacts.md")
    service.schedule_sync("reference/contacts.md")

    service.handle_deleted(notebook / "reference" / "contacts.md")

    assert service.pending_paths() == []
    assert repo.get_file("reference/contacts.md") is None


def test_handle_moved(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.05)
    service.full_sync()
    src = notebook / "reference" / "contacts.md"
    dest = notebook / "reference" / "people.md"
    src.rename(dest)

    service.handle_moved(src, dest)

    assert repo.get_file("reference/contacts.md") is None
    assert _wait_for(lambda: repo.get_file("reference/people.md") is not None)


def test_handle_dir_deleted_removes_files_under_prefix(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.2)
    service.full_sync()
    service.schedule_sync("reference/contacts.md")
    (notebook / "reference2").mkdir()
    (notebook / "reference2" / "more.md").write_text("# More\n\nkeep me\n", encoding="utf-8")
    service.sync_file("reference2/more.md")

    removed = service.handle_dir_deleted(notebook / "reference")

    assert removed == 2
    assert service.pending_paths() == []
    assert [f.path for f in repo.list_files()] == ["daily/2024-03-01.md", "reference2/more.md"]
    assert repo.lexical_search("falcon") == []


def test_handle_dir_deleted_ignores_paths_outside_root(repo, notebook, tmp_path):
    service = _service(notebook, repo)
    service.full_sync()
    assert service.handle_dir_deleted(tmp_path / "elsewhere") == 0
    assert service.handle_dir_deleted(notebook) == 0
    assert len(repo.list_files()) == 3


def test_dir_moved_out_of_root_drops_its_files(repo, notebook, tmp_path):
    service = _service(notebook, repo)
    service.full_sync()
    src = notebook / "reference"
    src.rename(tmp_path / "archive")

    _NotebookEventHandler(service).on_deleted(DirDeletedEvent(str(src)))

    assert [f.path for f in repo.list_files()] == ["daily/2024-03-01.md"]


def test_dir_moved_within_root_reindexes_under_new_name(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.05)
    service.full_sync()
    src = notebook / "reference"
    dest = notebook / "people"
    src.rename(dest)

    _NotebookEventHandler(service).on_moved(DirMovedEvent(str(src), str(dest)))

    assert repo.get_file("reference/contacts.md") is None
    assert _wait_for(lambda: repo.get_file("people/contacts.md") is not None)
    assert _wait_for(lambda: repo.get_file("people/preferences.md") is not None)


def test_watcher_indexes_new_file(repo, notebook):
    service = _service(notebook, repo, debounce_seconds=0.05)
    service.start_watching()
    try:
        assert service.watching
        (notebook / "reference" / "todos.md").write_text("# To Do\n\n- renew passport\n", encoding="utf-8")
        assert _wait_for(lambda: repo.get_file("reference/todos.md") is not None, timeout=10.0)
    finally:
        service.stop_watching()
    assert not service.watching
