"""OllamaEmbeddingProvider — embeddings from an Ollama server.

Health is probed directly against the Ollama HTTP API (``GET /api/tags``);
embedding requests go through ``litellm.embedding()`` with the ``ollama/``
model prefix so timeouts and response parsing are handled in one place.
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.request
from collections.abc import Callable
from typing import Any

import litellm

from notebrain.embeddings.diagnostics import suggest_resolution
from notebrain.embeddings.types import (
    PLUGIN_TYPE,
    EmbeddingError,
    ProgressCallback,
    l2_normalize,
)
from notebrain.plugins.types import HealthResult

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:11434"
DEFAULT_MODEL = "nomic-embed-text"

_PROBE_TIMEOUT = 5  # seconds
_EMBED_TIMEOUT = 30
_BATCH_TIMEOUT = 60
_ATTEMPTS = 2  # first try + one retry


class OllamaEmbeddingProvider:
    """Embeddings served by Ollama.

    Args:
        host: Base URL of the Ollama server.
        model: Embedding model name as known to Ollama.
        on_degraded: Called with an unhealthy HealthResult when an embed call
            fails twice in a row, before EmbeddingError is raised.
    """

    id = "embeddings-ollama"
    name = "Ollama Embeddings"
    type = PLUGIN_TYPE
    health_check_interval: float | None = 30.0

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        model: str = DEFAULT_MODEL,
        on_degraded: Callable[[HealthResult], None] | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._model = model
        self._dimensions: int | None = None
        self._ready = False
        self._lock = threading.Lock()
        self.on_degraded = on_degraded

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def host(self) -> str:
        return self._host

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def is_ready(self) -> bool:
        """Whether initialize() succeeded. Reachability is the health monitor's job."""
        return self._ready

    def needs_download(self) -> bool:
        # Models are pulled with the ollama CLI, never by us.
        return False

    def get_download_size(self) -> int | None:
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Verify the server and model, then detect dimensionality.

        The test embedding is skipped when dimensionality is already known
        from an earlier successful initialization.

        Raises:
            EmbeddingError: If the server is unreachable, the model is missing,
                or the model does not produce embeddings.
        """
        with self._lock:
            if self._ready:
                return
            health = self.health_check()
            if not health.healthy:
                raise EmbeddingError(health.message or "Ollama health check failed")

            if self._dimensions is None:
                try:
                    probe = self._request(["test"], _EMBED_TIMEOUT)
                except Exception as exc:
                    raise EmbeddingError(
                        f"Model '{self._model}' does not support embeddings. "
                        "Use an embedding model like 'nomic-embed-text' or 'mxbai-embed-large'."
                    ) from exc
                if not probe or not probe[0]:
                    raise EmbeddingError(f"Model '{self._model}' returned an empty embedding.")
                self._dimensions = len(probe[0])

            self._ready = True
            if on_progress:
                on_progress(100.0)

    def cleanup(self) -> None:
        with self._lock:
            self._ready = False
            self._dimensions = None

    def delete_model(self) -> None:
        raise EmbeddingError(
            f"Ollama models are managed by the server. Run 'ollama rm {self._model}' there."
        )

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def embed(self, text: str) -> list[float]:
        return self._embed_with_retry([text], _EMBED_TIMEOUT)[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._embed_with_retry(texts, _BATCH_TIMEOUT)

    def _embed_with_retry(self, texts: list[str], timeout: int) -> list[list[float]]:
        if not self._ready:
            raise EmbeddingError("Ollama provider not initialized. Call initialize() first.")

        last_error: Exception | None = None
        for attempt in range(_ATTEMPTS):
            try:
                vectors = self._request(texts, timeout)
                if len(vectors) != len(texts):
                    raise EmbeddingError(
                        f"Ollama returned {len(vectors)} embeddings for {len(texts)} inputs"
                    )
                return vectors
            except Exception as exc:
                last_error = exc
                logger.debug("Ollama embed attempt %d failed: %s", attempt + 1, exc)

        message = f"Model '{self._model}' failed to produce embeddings: {last_error}"
        if self.on_degraded is not None:
            self.on_degraded(
                HealthResult(
                    healthy=False,
                    message=message,
                    resolution=suggest_resolution(str(last_error), self._model, self._host),
                )
            )
        raise EmbeddingError(message) from last_error

    def _request(self, texts: list[str], timeout: int) -> list[list[float]]:
        response = litellm.embedding(
            model=f"ollama/{self._model}",
            api_base=self._host,
            input=texts,
            timeout=timeout,
        )
        return [l2_normalize(item["embedding"]) for item in response.data]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health_check(self) -> HealthResult:
        """Reachability probe, then model-availability probe."""
        try:
            data = _get_json(f"{self._host}/api/tags", _PROBE_TIMEOUT)
        except urllib.error.HTTPError as exc:
            return HealthResult(
                healthy=False,
                message=f"Ollama server returned HTTP {exc.code}",
                resolution="Check that the Ollama server is running correctly.",
            )
        except (urllib.error.URLError, OSError) as exc:
            message = f"Cannot reach Ollama server at {self._host}"
            return HealthResult(
                healthy=False,
                message=message,
                resolution=suggest_resolution(f"{message}: {exc}", self._model, self._host),
            )
        except ValueError:
            return HealthResult(
                healthy=False,
                message="Failed to parse Ollama server response",
                resolution="Check that the Ollama server is running correctly.",
            )

        names = [m.get("name", "") for m in data.get("models", []) if isinstance(m, dict)]
        if not any(_matches_model(n, self._model) for n in names):
            message = f"Model '{self._model}' is not installed on the Ollama server"
            return HealthResult(
                healthy=False,
                message=message,
                resolution=suggest_resolution(f"{message} (not found)", self._model, self._host),
            )
        return HealthResult(healthy=True)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def configure(self, settings: dict[str, Any]) -> None:
        """Apply ``host``/``model``. Any change requires initialize() again."""
        host = settings.get("host")
        model = settings.get("model")
        with self._lock:
            if isinstance(host, str):
                self._host = host.rstrip("/")
            if isinstance(model, str):
                self._model = model
            self._ready = False
            self._dimensions = None

    def get_settings(self) -> dict[str, Any]:
        return {"host": self._host, "model": self._model}


def _matches_model(installed: str, wanted: str) -> bool:
    return installed == wanted or installed.startswith(wanted + ":")


def _get_json(url: str, timeout: float) -> dict[str, Any]:
    """GET *url* and decode the JSON body."""
    req = urllib.request.Request(url, method="GET", headers={"Accept": "application/json"})
    with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
        payload = json.loads(resp.read().decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object")
    return payload
