"""Hybrid recall: BM25 (FTS5) + vector (sqlite-vec), fused via RRF.

Reciprocal Rank Fusion, per retrieval leg that ran::

    contribution(d) = 1 / (k + rank + 1)      rank 0-based, k = 60

The fused sum is divided by the best possible score (``legs / (k + 1)``) so
scores fall in (0, 1]: a chunk ranked first by every leg scores 1.0. That
keeps ``min_score`` meaningful whether or not the vector leg ran.

The vector leg is best effort. No active provider, a provider that is not
ready, or any failure while embedding the query falls back to lexical-only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from notebrain.db.repository import Repository, query_tokens
from notebrain.embeddings.registry import ProviderRegistry
from notebrain.embeddings.types import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 15
DEFAULT_MIN_SCORE = 0.25
DEFAULT_RRF_K = 60

SNIPPET_LENGTH = 200
_SNIPPET_LEAD = 30
_DAILY_PREFIX = "daily/"


@dataclass
class SearchResult:
    """One recalled chunk.

    Attributes:
        file_path: Notebook-relative path of the source file.
        heading: Section heading the chunk belongs to, if any.
        snippet: Up to 200 characters around the first query-word hit.
        score: Normalized fusion score in (0, 1].
        lines: 1-indexed inclusive (start, end) line range in the source file.
    """

    file_path: str
    heading: str | None
    snippet: str
    score: float
    lines: tuple[int, int]


@dataclass
class DegradedInfo:
    provider_name: str
    error: str
    resolution: str | None = None


@dataclass
class RecallResult:
    notebook: list[SearchResult] = field(default_factory=list)
    daily: list[SearchResult] = field(default_factory=list)
    degraded: DegradedInfo | None = None

    @property
    def total(self) -> int:
        return len(self.notebook) + len(self.daily)


class SearchService:
    """Recall chunks from the memory index.

    Args:
        repo: Open repository for the memory index.
        get_provider: Returns the active embedding provider, or None.
        registry: Consulted only to report degraded embeddings in results.
        rrf_k: RRF damping constant.
    """

    def __init__(
        self,
        repo: Repository,
        get_provider: Callable[[], EmbeddingProvider | None],
        registry: ProviderRegistry | None = None,
        rrf_k: int = DEFAULT_RRF_K,
    ) -> None:
        self._repo = repo
        self._get_provider = get_provider
        self._registry = registry
        self._rrf_k = rrf_k

    def recall(
        self,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> RecallResult:
        """Search the notebook and daily logs, grouped by kind."""
        result = RecallResult(degraded=self._degraded_info())
        if max_results < 1 or not query.strip():
            return result

        ranked = self.hybrid_search(query, max_results * 2)
        hits: list[SearchResult] = []
        for chunk_id, score in ranked:
            if score < min_score:
                continue
            chunk = self._repo.get_chunk(chunk_id)
            if chunk is None:
                continue
            hits.append(
                SearchResult(
                    file_path=chunk.file_path,
                    heading=chunk.heading,
                    snippet=extract_snippet(chunk.text, query),
                    score=score,
                    lines=(chunk.start_line, chunk.end_line),
                )
            )
            if len(hits) >= max_results:
                break

        for hit in hits:
            if hit.file_path.startswith(_DAILY_PREFIX):
                result.daily.append(hit)
            else:
                result.notebook.append(hit)
        return result

    def hybrid_search(self, query: str, limit: int) -> list[tuple[int, float]]:
        """Fused (chunk_id, score) pairs, best first, at most *limit* long."""
        scores: dict[int, float] = {}
        legs = 0

        lexical = self._repo.lexical_search(query, limit=limit)
        legs += 1
        self._accumulate(scores, [chunk_id for chunk_id, _ in lexical])

        provider = self._get_provider()
        if provider is not None and provider.is_ready():
            try:
                query_vector = provider.embed(query)
                vector = self._repo.vector_search(query_vector, limit=limit)
            except Exception as exc:
                logger.warning("Vector search failed, using lexical search only: %s", exc)
            else:
                legs += 1
                self._accumulate(scores, [chunk_id for chunk_id, _ in vector])

        best = legs / (self._rrf_k + 1)
        fused = [(chunk_id, score / best) for chunk_id, score in scores.items()]
        fused.sort(key=lambda item: (-item[1], item[0]))
        return fused[:limit]

    def is_semantic_search_available(self) -> bool:
        provider = self._get_provider()
        return provider is not None and provider.is_ready()

    def _accumulate(self, scores: dict[int, float], ranked_ids: list[int]) -> None:
        for rank, chunk_id in enumerate(ranked_ids):
            scores[chunk_id] = scores.get(chunk_id, 0.0) + 1.0 / (self._rrf_k + rank + 1)

    def _degraded_info(self) -> DegradedInfo | None:
        if self._registry is None:
            return None
        health = self._registry.degraded_health
        if health is None:
            return None
        intended = self._registry.intended_id
        provider = self._registry.get(intended) if intended else None
        return DegradedInfo(
            provider_name=provider.name if provider else (intended or "embeddings"),
            error=health.message or "Embedding provider unavailable",
            resolution=health.resolution,
        )


def extract_snippet(text: str, query: str, max_length: int = SNIPPET_LENGTH) -> str:
    """Window of *text* starting shortly before the first query-word hit.

    Falls back to the start of the chunk when no query word occurs. ``...``
    marks each truncated side.
    """
    lowered = text.lower()
    start = 0
    for word in query_tokens(query):
        index = lowered.find(word)
        if index != -1:
            start = max(0, index - _SNIPPET_LEAD)
            break

    snippet = text[start : start + max_length]
    if start > 0:
        snippet = "..." + snippet
    if start + max_length < len(text):
        snippet = snippet + "..."
    return snippet.strip()
