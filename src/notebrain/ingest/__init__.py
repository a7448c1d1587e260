"""notebrain ingest pipeline — markdown chunker, notebook layout, sync service."""

from notebrain.ingest.chunker import ChunkResult, MarkdownChunker
from notebrain.ingest.notebook import create_starter_notebook, daily_note_path, init_notebook
from notebrain.ingest.sync import SyncOutcome, SyncResult, SyncService

__all__ = [
    "ChunkResult",
    "MarkdownChunker",
    "SyncOutcome",
    "SyncResult",
    "SyncService",
    "create_starter_notebook",
    "daily_note_path",
    "init_notebook",
]
