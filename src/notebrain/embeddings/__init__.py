"""Embedding providers and the registry that tracks which one is active."""

from notebrain.embeddings.diagnostics import suggest_resolution
from notebrain.embeddings.local import LocalEmbeddingProvider
from notebrain.embeddings.ollama import OllamaEmbeddingProvider
from notebrain.embeddings.registry import ProviderRegistry
from notebrain.embeddings.types import (
    EmbeddingError,
    EmbeddingProvider,
    ProgressCallback,
    l2_normalize,
)

__all__ = [
    "EmbeddingError",
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "ProgressCallback",
    "ProviderRegistry",
    "l2_normalize",
    "suggest_resolution",
]
