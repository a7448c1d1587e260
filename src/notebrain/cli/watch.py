"""notebrain watch — keep the index live while the notebook changes."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Annotated

import typer

from notebrain.cli.context import console, load_cli_config, open_engine
from notebrain.cli.errors import err_no_notebook, warn_sync_errors


def watch_cmd(
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
) -> None:
    """Sync once, then re-index files as they change (Ctrl+C to stop)."""
    cfg = load_cli_config(agent_dir)
    if not cfg.notebook_dir.is_dir():
        console.print(err_no_notebook(str(cfg.notebook_dir)))
        raise typer.Exit(1)

    # Show per-file sync activity unless --verbose already lowered the level.
    notebrain_logger = logging.getLogger("notebrain")
    if notebrain_logger.getEffectiveLevel() > logging.INFO:
        notebrain_logger.setLevel(logging.INFO)

    engine = open_engine(cfg)
    try:
        result = engine.sync()
        if result.errors:
            console.print(warn_sync_errors(result.errors))
        engine.start()
        console.print(
            f"[bold]Watching[/] {cfg.notebook_dir}  "
            f"[dim]({result.added} added, {result.updated} updated, {result.removed} removed)[/]"
        )
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/]")
    finally:
        engine.close()
