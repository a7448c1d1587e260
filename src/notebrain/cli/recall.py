"""notebrain recall / read — query the memory index and read notebook files."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer

from notebrain.cli.context import console, load_cli_config, open_engine
from notebrain.cli.errors import err_file_not_found, err_path_traversal, warn_degraded
from notebrain.rag.tools import PathTraversalError, format_recall_results, notebook_read


def recall_cmd(
    query: Annotated[str, typer.Argument(help="What to search for.")],
    max_results: Annotated[
        int | None,
        typer.Option("--max-results", "-n", min=1, help="Maximum number of results."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", min=0.0, max=1.0, help="Drop results scoring below this."),
    ] = None,
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
) -> None:
    """Search the notebook and daily logs (keyword + semantic)."""
    cfg = load_cli_config(agent_dir)
    engine = open_engine(cfg)
    try:
        result = engine.recall(query, max_results=max_results, min_score=min_score)
    finally:
        engine.close()

    if result.degraded is not None:
        console.print(
            warn_degraded(
                result.degraded.provider_name,
                result.degraded.error,
                result.degraded.resolution,
            )
        )
        result = replace(result, degraded=None)
    console.print(format_recall_results(result), markup=False, highlight=False)


def read_cmd(
    path: Annotated[str, typer.Argument(help="Path relative to the notebook.")],
    start_line: Annotated[
        int | None,
        typer.Option("--start-line", min=1, help="First line to show (1-indexed)."),
    ] = None,
    lines: Annotated[
        int | None,
        typer.Option("--lines", min=0, help="Number of lines to show."),
    ] = None,
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
) -> None:
    """Print a notebook file, or a line range of it."""
    cfg = load_cli_config(agent_dir)
    try:
        content = notebook_read(cfg.notebook_dir, path, start_line=start_line, lines=lines)
    except PathTraversalError:
        console.print(err_path_traversal(path))
        raise typer.Exit(1)
    except FileNotFoundError:
        console.print(err_file_not_found(path))
        raise typer.Exit(1)
    console.print(content, markup=False, highlight=False, soft_wrap=True)
