"""Domain models for the memory index database layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FileRecord:
    path: str  # relative to the notebook root, forward slashes
    hash: str  # SHA-256 of the raw file bytes
    mtime: str
    size: int
    indexed_at: str
    indexed_with_embeddings: bool = False


@dataclass
class Chunk:
    file_path: str
    heading: str | None
    start_line: int
    end_line: int
    text: str
    hash: str  # SHA-256 of the chunk text (embedding cache key)
    id: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class IndexMeta:
    """Index-wide settings the stored data was built with."""

    embeddings_provider: str | None = None
    embeddings_model: str | None = None
    dimensions: int | None = None
    chunk_max_chars: int | None = None
    chunk_overlap_chars: int | None = None
    last_sync: str | None = None


@dataclass
class IndexStatus:
    files_indexed: int
    total_chunks: int
    total_vectors: int
    cached_embeddings: int
    last_sync: str | None
    embeddings_ready: bool
    embeddings_provider: str | None
    embeddings_model: str | None
    dimensions: int | None
