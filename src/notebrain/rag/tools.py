"""Agent-facing memory tools: recall, notebook_read and result formatting."""

from __future__ import annotations

import os
from pathlib import Path

from notebrain.rag.retriever import (
    DEFAULT_MAX_RESULTS,
    DEFAULT_MIN_SCORE,
    RecallResult,
    SearchService,
)


class PathTraversalError(ValueError):
    """Raised when a notebook path resolves outside the notebook root."""


def recall(
    search: SearchService,
    query: str,
    max_results: int = DEFAULT_MAX_RESULTS,
    min_score: float = DEFAULT_MIN_SCORE,
) -> RecallResult:
    """Search notebook and daily logs (hybrid when embeddings are available)."""
    return search.recall(query, max_results=max_results, min_score=min_score)


def resolve_notebook_path(root: Path, path: str) -> Path:
    """Map a notebook-relative *path* to an absolute path inside *root*.

    Pure string normalization; nothing on disk is touched.

    Raises:
        PathTraversalError: If *path* is absolute or escapes *root*.
    """
    if not path or os.path.isabs(path) or path.startswith(("/", "\\")):
        raise PathTraversalError(f"Invalid path: must be relative to the notebook: {path!r}")

    base = os.path.normpath(os.path.abspath(str(root)))
    target = os.path.normpath(os.path.join(base, path))
    if os.path.commonpath([base, target]) != base or target == base:
        raise PathTraversalError(f"Invalid path: must be within the notebook: {path!r}")
    return Path(target)


def notebook_read(
    root: Path,
    path: str,
    start_line: int | None = None,
    lines: int | None = None,
) -> str:
    """Read a notebook file, optionally a line range of it.

    Args:
        root: Notebook directory.
        path: Path relative to the notebook, e.g. ``"reference/contacts.md"``.
        start_line: 1-indexed first line to return.
        lines: Number of lines to return.

    Raises:
        PathTraversalError: If *path* leaves the notebook (checked before any
            file access).
        FileNotFoundError: If the file does not exist.
    """
    target = resolve_notebook_path(root, path)
    if not target.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    content = target.read_text(encoding="utf-8")
    if start_line is None and lines is None:
        return content

    all_lines = content.split("\n")
    start = max((start_line or 1) - 1, 0)
    count = lines if lines is not None else len(all_lines) - start
    return "\n".join(all_lines[start : start + max(count, 0)])


def format_recall_results(result: RecallResult) -> str:
    """Plain-text rendering of *result* for the agent."""
    out: list[str] = []

    if result.degraded is not None:
        out.append(
            f"NOTE: semantic search unavailable ({result.degraded.provider_name}: "
            f"{result.degraded.error}). Showing keyword matches only."
        )
        if result.degraded.resolution:
            out.append(f"  Fix: {result.degraded.resolution}")
        out.append("")

    if result.notebook:
        out.append(f"NOTEBOOK ({len(result.notebook)} results)")
        for hit in result.notebook:
            heading = f" > {hit.heading}" if hit.heading else ""
            out.append(f"  {hit.file_path}:{hit.lines[0]}{heading} [{hit.score:.2f}]")
            out.append(f'    "{hit.snippet}"')

    if result.daily:
        if result.notebook:
            out.append("")
        out.append(f"DAILY ({len(result.daily)} results)")
        for hit in result.daily:
            out.append(f"  {hit.file_path}:{hit.lines[0]} [{hit.score:.2f}]")
            out.append(f'    "{hit.snippet}"')

    if not result.notebook and not result.daily:
        out.append("No results found.")

    return "\n".join(out)
