"""notebrain init — create the notebook, the memory index and the global config.

Creates (under the agent directory):
  notebook/{lists,reference,knowledge,daily}/   — the notebook folders
  notebook/reference/contacts.md, ...           — starter files (never overwritten)
  brain/memory.db                               — empty memory index with schema
  cache/models/                                 — local embedding model cache
  ~/.notebrain/config.yaml                      — global config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from notebrain.cli.context import console, load_cli_config
from notebrain.config import ensure_global_config
from notebrain.db.connection import Database
from notebrain.db.schema import initialize
from notebrain.ingest.notebook import create_starter_notebook, init_notebook


def init_cmd(
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
    starter: Annotated[
        bool,
        typer.Option("--starter/--no-starter", help="Write starter notebook files."),
    ] = True,
) -> None:
    """Initialize the notebook folders and the memory index."""
    cfg = load_cli_config(agent_dir)

    console.print(f"\n[bold]Creating notebook in {cfg.agent_dir} …[/]\n")

    if starter:
        written = create_starter_notebook(cfg.agent_dir)
    else:
        init_notebook(cfg.agent_dir)
        written = []
    console.print("  [green]✓[/] notebook/")
    for path in written:
        console.print(f"  [green]✓[/] {path.relative_to(cfg.agent_dir)}")

    db = Database(cfg.db_path)
    with db as conn:
        initialize(conn)
    console.print(f"  [green]✓[/] {cfg.db_path.relative_to(cfg.agent_dir)}")

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ Notebook initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. Edit the files under notebook/            (or let the agent write them)")
    console.print("  2. notebrain sync                            (build the index)")
    console.print("  3. notebrain recall \"what did I decide\"      (search it)")
