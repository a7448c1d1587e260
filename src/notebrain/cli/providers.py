"""notebrain providers — list embedding providers and, optionally, probe them."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from notebrain.cli.context import console, load_cli_config
from notebrain.engine import build_default_providers


def providers_cmd(
    check: Annotated[
        bool,
        typer.Option("--check", help="Run each provider's health check."),
    ] = False,
    agent_dir: Annotated[
        Path | None,
        typer.Option("--agent-dir", help="Agent directory. Defaults to notebook.agent_dir."),
    ] = None,
) -> None:
    """List the available embedding providers."""
    cfg = load_cli_config(agent_dir)
    active = cfg.embeddings.active

    table = Table(title="Embedding providers", expand=False)
    table.add_column("", justify="center")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Settings")
    table.add_column("Download")
    if check:
        table.add_column("Health")

    for provider in build_default_providers(cfg):
        settings = ", ".join(f"{k}={v}" for k, v in provider.get_settings().items())
        if provider.needs_download():
            size = provider.get_download_size()
            download = f"~{size / 1_000_000:.0f} MB" if size else "required"
        else:
            download = "[dim]–[/]"
        row = [
            "[green]●[/]" if provider.id == active else "",
            provider.id,
            provider.name,
            escape(settings),
            download,
        ]
        if check:
            health = provider.health_check()
            if health.healthy:
                row.append("[green]healthy[/]")
            else:
                fix = f"\n[dim]{escape(health.resolution)}[/]" if health.resolution else ""
                row.append(f"[red]{escape(health.message or 'unhealthy')}[/]{fix}")
        table.add_row(*row)

    console.print(table)
    if active is None:
        console.print(
            "[dim]No provider active. Set embeddings.active: local | ollama in notebrain.yaml.[/]"
        )
