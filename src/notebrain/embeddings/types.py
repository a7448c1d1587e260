"""Embedding provider contract shared by every backend."""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from notebrain.plugins.types import HealthResult

PLUGIN_TYPE = "embeddings"

ProgressCallback = Callable[[float], None]
"""Called with a percentage in [0, 100] while a provider initializes."""


class EmbeddingError(RuntimeError):
    """Raised when a provider cannot produce an embedding."""


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Capabilities the engine needs from an embedding backend.

    Providers are plain classes; nothing inherits from this Protocol. Every
    vector a provider returns is L2-normalized.
    """

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def type(self) -> str: ...

    @property
    def model_name(self) -> str: ...

    @property
    def health_check_interval(self) -> float | None: ...

    @property
    def dimensions(self) -> int | None:
        """Vector size, or None until the provider has been initialized."""
        ...

    def is_ready(self) -> bool: ...

    def needs_download(self) -> bool: ...

    def get_download_size(self) -> int | None:
        """Approximate download size in bytes, or None if unknown."""
        ...

    def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Make the provider ready. Idempotent."""
        ...

    def cleanup(self) -> None: ...

    def delete_model(self) -> None: ...

    def embed(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...

    def health_check(self) -> HealthResult: ...

    def configure(self, settings: dict[str, Any]) -> None: ...

    def get_settings(self) -> dict[str, Any]: ...


def l2_normalize(vector: list[float]) -> list[float]:
    """Scale *vector* to unit length. Zero vectors are returned unchanged."""
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return list(vector)
    return [v / norm for v in vector]
