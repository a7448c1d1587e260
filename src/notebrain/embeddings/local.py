"""LocalEmbeddingProvider — in-process sentence-transformers model.

No server and no API costs; the model is downloaded once into
``<agent_dir>/cache/models`` and loaded on ``initialize()``.
"""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import Any

from notebrain.embeddings.types import (
    PLUGIN_TYPE,
    EmbeddingError,
    ProgressCallback,
    l2_normalize,
)
from notebrain.plugins.types import HealthResult

try:
    from sentence_transformers import SentenceTransformer

    _HAS_SENTENCE_TRANSFORMERS = True
except ImportError:  # pragma: no cover
    SentenceTransformer = None  # type: ignore[assignment, misc]
    _HAS_SENTENCE_TRANSFORMERS = False

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# Approximate download sizes in bytes for models we know about.
_MODEL_SIZES = {
    "sentence-transformers/all-MiniLM-L6-v2": 91_000_000,
    "sentence-transformers/all-mpnet-base-v2": 438_000_000,
    "BAAI/bge-small-en-v1.5": 134_000_000,
}


class LocalEmbeddingProvider:
    """Embeddings from a sentence-transformers model running in this process.

    Args:
        models_dir: Cache directory for downloaded model files.
        model: Hugging Face model id. Bare names resolve under
            ``sentence-transformers/``.
    """

    id = "embeddings-local"
    name = "Local Embeddings"
    type = PLUGIN_TYPE
    health_check_interval: float | None = None

    def __init__(self, models_dir: Path, model: str = DEFAULT_MODEL) -> None:
        self._models_dir = Path(models_dir)
        self._model_name = _qualify(model)
        self._model: Any = None
        self._dimensions: int | None = None
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    @property
    def models_dir(self) -> Path:
        return self._models_dir

    def is_ready(self) -> bool:
        return self._model is not None

    def needs_download(self) -> bool:
        """True when the model files are not in the cache directory yet."""
        cache_name = "models--" + self._model_name.replace("/", "--")
        if not self._models_dir.is_dir():
            return True
        return not any(self._models_dir.glob(f"**/{cache_name}"))

    def get_download_size(self) -> int | None:
        if not self.needs_download():
            return None
        return _MODEL_SIZES.get(self._model_name)

    def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Download (if needed) and load the model, then detect dimensions.

        Raises:
            EmbeddingError: If sentence-transformers is missing or the model
                cannot be loaded.
        """
        with self._lock:
            if self._model is not None:
                return
            if not _HAS_SENTENCE_TRANSFORMERS:
                raise EmbeddingError(
                    "sentence-transformers is required for local embeddings. "
                    "Install it with: pip install notebrain[local]"
                )

            if on_progress:
                on_progress(0.0)
            self._models_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Loading local embedding model %s", self._model_name)
            try:
                model = SentenceTransformer(self._model_name, cache_folder=str(self._models_dir))
                probe = model.encode(["test"], normalize_embeddings=True)
            except Exception as exc:
                raise EmbeddingError(
                    f"Could not load local model '{self._model_name}': {exc}"
                ) from exc

            self._model = model
            self._dimensions = len(probe[0])
            if on_progress:
                on_progress(100.0)

    def cleanup(self) -> None:
        with self._lock:
            self._model = None
            self._dimensions = None

    def delete_model(self) -> None:
        """Unload the model and remove every cached model file."""
        self.cleanup()
        if self._models_dir.exists():
            shutil.rmtree(self._models_dir)

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        model = self._model
        if model is None:
            raise EmbeddingError("Local provider not initialized. Call initialize() first.")
        if not texts:
            return []
        try:
            result: Any = model.encode(texts, normalize_embeddings=True)
        except Exception as exc:
            raise EmbeddingError(f"Local embedding failed: {exc}") from exc
        return [l2_normalize([float(v) for v in row]) for row in result]

    def health_check(self) -> HealthResult:
        if not _HAS_SENTENCE_TRANSFORMERS:
            return HealthResult(
                healthy=False,
                message="sentence-transformers is not installed",
                resolution="Install it with: pip install notebrain[local]",
            )
        return HealthResult(healthy=True)

    def configure(self, settings: dict[str, Any]) -> None:
        """Apply ``model`` from *settings*. A new model needs ``initialize()`` again."""
        model = settings.get("model")
        if isinstance(model, str) and _qualify(model) != self._model_name:
            self.cleanup()
            self._model_name = _qualify(model)

    def get_settings(self) -> dict[str, Any]:
        return {"model": self._model_name}


def _qualify(model: str) -> str:
    return model if "/" in model else f"sentence-transformers/{model}"
