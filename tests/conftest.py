"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import math
import re

import pytest

from notebrain.db.connection import Database
from notebrain.db.repository import Repository
from notebrain.db.schema import initialize
from notebrain.embeddings.types import EmbeddingError
from notebrain.plugins.types import HealthResult

_WORD_RE = re.compile(r"\w+")


def _bag_of_words(text: str, dimensions: int) -> list[float]:
    """Deterministic hashed bag-of-words vector, L2-normalized."""
    vec = [0.0] * dimensions
    for word in _WORD_RE.findall(text.lower()):
        bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dimensions
        vec[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        vec[0] = 1.0
        return vec
    return [v / norm for v in vec]


class FakeEmbeddingProvider:
    """In-process embedding provider with switchable health and failures."""

    type = "embeddings"
    health_check_interval = None

    def __init__(
        self,
        provider_id: str = "embeddings-fake",
        model: str = "fake-embed",
        dimensions: int = 8,
        name: str | None = None,
    ) -> None:
        self.id = provider_id
        self.name = name or f"Fake Embeddings ({model})"
        self._model = model
        self._dims = dimensions
        self._ready = False
        self.healthy = True
        self.message = "Fake provider is down"
        self.fail_init = False
        self.fail_embed = False
        self.initialize_calls = 0
        self.embedded_texts = 0
        self.cleanup_calls = 0
        self.on_degraded = None

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int | None:
        return self._dims if self._ready else None

    def is_ready(self) -> bool:
        return self._ready

    def needs_download(self) -> bool:
        return False

    def get_download_size(self) -> int | None:
        return None

    def initialize(self, on_progress=None) -> None:
        self.initialize_calls += 1
        if self.fail_init:
            raise EmbeddingError("Fake provider could not start")
        self._ready = True
        if on_progress:
            on_progress(100.0)

    def cleanup(self) -> None:
        self.cleanup_calls += 1
        self._ready = False

    def delete_model(self) -> None:
        self.cleanup()

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not self._ready:
            raise EmbeddingError("Fake provider not initialized")
        if self.fail_embed:
            raise EmbeddingError("Fake provider failed to embed")
        self.embedded_texts += len(texts)
        return [_bag_of_words(t, self._dims) for t in texts]

    def health_check(self) -> HealthResult:
        if self.healthy:
            return HealthResult(healthy=True)
        return HealthResult(healthy=False, message=self.message, resolution="Restart the fake")

    def configure(self, settings: dict) -> None:
        if "model" in settings:
            self._model = settings["model"]

    def get_settings(self) -> dict:
        return {"model": self._model}


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "memory.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def make_provider():
    """Factory for FakeEmbeddingProvider instances."""
    return FakeEmbeddingProvider


@pytest.fixture
def notebook(tmp_path):
    """A small notebook tree: two reference files and one daily log."""
    root = tmp_path / "notebook"
    (root / "reference").mkdir(parents=True)
    (root / "daily").mkdir()
    (root / "reference" / "contacts.md").write_text(
        "# Contacts\n\nAlice Martin is the project lead for the Falcon launch.\n",
        encoding="utf-8",
    )
    (root / "reference" / "preferences.md").write_text(
        "# Preferences\n\nPrefers tea over coffee in the morning.\n",
        encoding="utf-8",
    )
    (root / "daily" / "2024-03-01.md").write_text(
        "# 2024-03-01\n\nDeployed the staging server and fixed the login bug.\n",
        encoding="utf-8",
    )
    return root
