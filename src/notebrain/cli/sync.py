"""notebrain sync — bring the memory index up to date with the notebook."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from notebrain.cli.context import console, load_cli_config, open_engine
from notebrain.cli.errors import (
    err_no_notebook,
    err_sync_in_progress,
    warn_degraded,
    warn_sync_errors,
)
from notebrain.ingest.sync import SyncResult


def sync_cmd(
    rebuild: Annotated[
        bool,
        typer.Option("--rebuild", help="Drop every chunk and vector, then re-index everything."),
    ] = False,
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
) -> None:
    """Index new and changed notebook files; drop deleted ones."""
    cfg = load_cli_config(agent_dir)
    if not cfg.notebook_dir.is_dir():
        console.print(err_no_notebook(str(cfg.notebook_dir)))
        raise typer.Exit(1)

    engine = open_engine(cfg)
    try:
        degraded = engine.registry.degraded_health
        if degraded is not None:
            console.print(
                warn_degraded(
                    engine.registry.intended_id or "embeddings",
                    degraded.message or "unavailable",
                    degraded.resolution,
                )
            )
        with console.status("Rebuilding index…" if rebuild else "Syncing notebook…"):
            result = engine.sync(rebuild=rebuild)
    finally:
        engine.close()

    if result.in_progress:
        console.print(err_sync_in_progress())
        raise typer.Exit(1)

    _print_result(result, rebuild)


def _print_result(result: SyncResult, rebuild: bool) -> None:
    table = Table(title="Rebuild" if rebuild else "Sync", show_header=False, expand=False)
    table.add_column("", style="bold")
    table.add_column("", justify="right")
    table.add_row("Added", str(result.added))
    table.add_row("Updated", str(result.updated))
    table.add_row("Removed", str(result.removed))
    table.add_row("Errors", str(len(result.errors)))
    table.add_row("Duration", f"{result.duration_ms} ms")
    console.print(table)

    if result.errors:
        console.print(warn_sync_errors(result.errors))
    else:
        console.print("[green]✓[/] Index up to date.")
