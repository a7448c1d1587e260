"""Shared CLI plumbing: config loading and engine construction."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from notebrain.cli.errors import err_config, err_unknown_provider
from notebrain.config import ConfigError, NotebrainConfig, load_config
from notebrain.engine import MemoryEngine

console = Console()


def load_cli_config(agent_dir: Path | None) -> NotebrainConfig:
    """Load config, apply ``--agent-dir``, and exit 1 on config errors."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if agent_dir is not None:
        cfg.notebook.agent_dir = agent_dir.expanduser().resolve()
    return cfg


def open_engine(cfg: NotebrainConfig) -> MemoryEngine:
    """Open the engine, showing a progress bar while a model loads.

    Exits 1 when ``embeddings.active`` names a provider that does not exist.
    """
    engine = MemoryEngine(cfg)
    try:
        with Progress(
            TextColumn("[bold]Loading embedding model[/]"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("model", total=100)
            engine.open(on_progress=lambda pct: progress.update(task, completed=pct))
    except KeyError as exc:
        available = [p.id for p in engine.registry.list()]
        engine.close()
        console.print(err_unknown_provider(cfg.embeddings.active or "", available))
        raise typer.Exit(1) from exc
    return engine
