"""notebrain CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import litellm
import typer
from rich.console import Console
from rich.logging import RichHandler

from notebrain.cli.init import init_cmd
from notebrain.cli.providers import providers_cmd
from notebrain.cli.recall import read_cmd, recall_cmd
from notebrain.cli.status import status_cmd
from notebrain.cli.sync import sync_cmd
from notebrain.cli.watch import watch_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("notebrain")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"notebrain {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Route log records through Rich on stderr. Libraries never do this themselves."""
    root = logging.getLogger()
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
                markup=False,
            )
        )
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)

    litellm.suppress_debug_info = True
    for noisy in ("LiteLLM", "httpx", "httpcore", "sentence_transformers", "watchdog"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


app = typer.Typer(
    name="notebrain",
    help=(
        "notebrain — markdown notebook memory with hybrid search.\n\n"
        "  notebrain sync     Index new and changed notebook files.\n"
        "  notebrain recall   Search notes by keyword and meaning."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """notebrain — markdown notebook memory with hybrid search."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("sync")(sync_cmd)
app.command("recall")(recall_cmd)
app.command("read")(read_cmd)
app.command("status")(status_cmd)
app.command("watch")(watch_cmd)
app.command("providers")(providers_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed notebrain version."""
    typer.echo(f"notebrain {_installed_version()}")


if __name__ == "__main__":
    app()
