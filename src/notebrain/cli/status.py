"""notebrain status command.

Shows the memory index (files, chunks, vectors, cache, last sync), the
embedding provider state (active, intended, degraded) and every registered
provider.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from notebrain.cli.context import console, load_cli_config, open_engine
from notebrain.cli.errors import err_no_notebook
from notebrain.engine import EngineStatus


def status_cmd(
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
) -> None:
    """Show index statistics and embedding provider health."""
    cfg = load_cli_config(agent_dir)
    if not cfg.notebook_dir.is_dir():
        console.print(err_no_notebook(str(cfg.notebook_dir)))
        raise typer.Exit(1)

    engine = open_engine(cfg)
    try:
        status = engine.status()
    finally:
        engine.close()

    _show_index_panel(cfg.db_path, status)
    _show_embeddings_panel(status)
    _show_providers_table(status)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_index_panel(db_path: Path, status: EngineStatus) -> None:
    idx = status.index
    db_info = str(db_path)
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"

    lines = [
        f"Database:  {escape(db_info)}",
        f"Files: [bold]{idx.files_indexed}[/]  |  "
        f"Chunks: [bold]{idx.total_chunks:,}[/]  |  "
        f"Vectors: [bold]{idx.total_vectors:,}[/]  |  "
        f"Cached embeddings: [bold]{idx.cached_embeddings:,}[/]",
        f"Last sync: {idx.last_sync[:19].replace('T', ' ') if idx.last_sync else '[dim]never[/]'}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Memory Index[/]", expand=False))


def _show_embeddings_panel(status: EngineStatus) -> None:
    idx = status.index
    if status.degraded is not None:
        lines = [
            f"[yellow]Degraded[/] — intended provider: {status.intended_provider or '-'}",
            f"  {escape(status.degraded.message or 'unavailable')}",
        ]
        if status.degraded.resolution:
            lines.append(f"  Fix:  {escape(status.degraded.resolution)}")
        lines.append("  Search falls back to keyword matches.")
    elif status.active_provider:
        lines = [
            f"[green]Active[/]: {status.active_provider}",
            f"Model: {escape(idx.embeddings_model or '-')}  |  Dimensions: {idx.dimensions or '-'}",
        ]
    else:
        lines = [
            "[dim]No embedding provider configured — keyword search only.[/]",
            "  Set embeddings.active to 'local' or 'ollama' in notebrain.yaml.",
        ]
    console.print(Panel("\n".join(lines), title="[bold]Embeddings[/]", expand=False))


def _show_providers_table(status: EngineStatus) -> None:
    table = Table(title="Providers", expand=False)
    table.add_column("ID")
    table.add_column("Model")
    table.add_column("Ready", justify="center")
    table.add_column("Health")

    for p in status.providers:
        if p.health is None:
            health = "[dim]not checked[/]"
        elif p.health.health.healthy:
            health = "[green]healthy[/]"
        else:
            health = f"[red]unhealthy[/] {escape(p.health.health.message or '')}"
        table.add_row(
            p.id,
            escape(p.model),
            "[green]✓[/]" if p.ready else "[dim]–[/]",
            health,
        )
    console.print(table)
