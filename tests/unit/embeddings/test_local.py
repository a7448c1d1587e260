"""Tests for LocalEmbeddingProvider (sentence-transformers mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from notebrain.embeddings.local import DEFAULT_MODEL, LocalEmbeddingProvider
from notebrain.embeddings.types import EmbeddingError, EmbeddingProvider


def _fake_model(dims: int = 4) -> MagicMock:
    model = MagicMock()
    model.encode.side_effect = lambda texts, normalize_embeddings: [
        [1.0] + [0.0] * (dims - 1) for _ in texts
    ]
    return model


def _ready_provider(tmp_path, dims: int = 4) -> tuple[LocalEmbeddingProvider, MagicMock]:
    model = _fake_model(dims)
    provider = LocalEmbeddingProvider(tmp_path / "models")
    with patch("notebrain.embeddings.local.SentenceTransformer", return_value=model), patch(
        "notebrain.embeddings.local._HAS_SENTENCE_TRANSFORMERS", True
    ):
        provider.initialize()
    return provider, model


def test_satisfies_provider_protocol(tmp_path):
    assert isinstance(LocalEmbeddingProvider(tmp_path), EmbeddingProvider)


def test_identity_and_defaults(tmp_path):
    provider = LocalEmbeddingProvider(tmp_path)
    assert provider.id == "embeddings-local"
    assert provider.type == "embeddings"
    assert provider.model_name == DEFAULT_MODEL
    assert provider.dimensions is None
    assert provider.is_ready() is False


def test_bare_model_name_is_qualified(tmp_path):
    provider = LocalEmbeddingProvider(tmp_path, model="all-mpnet-base-v2")
    assert provider.model_name == "sentence-transformers/all-mpnet-base-v2"


def test_needs_download_until_cached(tmp_path):
    provider = LocalEmbeddingProvider(tmp_path / "models")
    assert provider.needs_download() is True
    assert provider.get_download_size() == 91_000_000

    (tmp_path / "models" / "models--sentence-transformers--all-MiniLM-L6-v2").mkdir(parents=True)
    assert provider.needs_download() is False
    assert provider.get_download_size() is None


def test_initialize_loads_model_and_detects_dimensions(tmp_path):
    model = _fake_model(384)
    progress = MagicMock()
    provider = LocalEmbeddingProvider(tmp_path / "models")
    with patch(
        "notebrain.embeddings.local.SentenceTransformer", return_value=model
    ) as st_cls, patch("notebrain.embeddings.local._HAS_SENTENCE_TRANSFORMERS", True):
        provider.initialize(progress)

    assert provider.is_ready()
    assert provider.dimensions == 384
    st_cls.assert_called_once_with(DEFAULT_MODEL, cache_folder=str(tmp_path / "models"))
    assert [c.args[0] for c in progress.call_args_list] == [0.0, 100.0]


def test_initialize_is_idempotent(tmp_path):
    provider, _ = _ready_provider(tmp_path)
    with patch("notebrain.embeddings.local.SentenceTransformer") as st_cls:
        provider.initialize()
    st_cls.assert_not_called()


def test_initialize_without_library_raises(tmp_path):
    with patch("notebrain.embeddings.local._HAS_SENTENCE_TRANSFORMERS", False):
        with pytest.raises(EmbeddingError, match="pip install"):
            LocalEmbeddingProvider(tmp_path).initialize()


def test_initialize_load_failure_raises(tmp_path):
    with patch(
        "notebrain.embeddings.local.SentenceTransformer", side_effect=OSError("no network")
    ), patch("notebrain.embeddings.local._HAS_SENTENCE_TRANSFORMERS", True):
        provider = LocalEmbeddingProvider(tmp_path)
        with pytest.raises(EmbeddingError, match="no network"):
            provider.initialize()
    assert provider.is_ready() is False


def test_embed_before_initialize_raises(tmp_path):
    with pytest.raises(EmbeddingError, match="not initialized"):
        LocalEmbeddingProvider(tmp_path).embed("hello")


def test_embed_batch(tmp_path):
    provider, model = _ready_provider(tmp_path)
    vectors = provider.embed_batch(["a", "b"])
    assert vectors == [[1.0, 0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]]
    model.encode.assert_called_with(["a", "b"], normalize_embeddings=True)


def test_embed_batch_empty(tmp_path):
    provider, _ = _ready_provider(tmp_path)
    assert provider.embed_batch([]) == []


def test_embed_failure_wrapped(tmp_path):
    provider, model = _ready_provider(tmp_path)
    model.encode.side_effect = RuntimeError("CUDA out of memory")
    with pytest.raises(EmbeddingError, match="CUDA"):
        provider.embed("hello")


def test_cleanup_and_delete_model(tmp_path):
    provider, _ = _ready_provider(tmp_path)
    (tmp_path / "models" / "blob").write_text("x")

    provider.delete_model()

    assert provider.is_ready() is False
    assert provider.dimensions is None
    assert not (tmp_path / "models").exists()


def test_health_check(tmp_path):
    provider = LocalEmbeddingProvider(tmp_path)
    with patch("notebrain.embeddings.local._HAS_SENTENCE_TRANSFORMERS", True):
        assert provider.health_check().healthy is True
    with patch("notebrain.embeddings.local._HAS_SENTENCE_TRANSFORMERS", False):
        health = provider.health_check()
    assert health.healthy is False
    assert "notebrain[local]" in health.resolution


def test_configure_new_model_unloads(tmp_path):
    provider, _ = _ready_provider(tmp_path)
    provider.configure({"model": "BAAI/bge-small-en-v1.5"})
    assert provider.is_ready() is False
    assert provider.get_settings() == {"model": "BAAI/bge-small-en-v1.5"}


def test_configure_same_model_keeps_loaded(tmp_path):
    provider, _ = _ready_provider(tmp_path)
    provider.configure({"model": "all-MiniLM-L6-v2"})
    assert provider.is_ready() is True
