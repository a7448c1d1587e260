"""notebrain rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from notebrain.cli.errors import err_file_not_found
    console.print(err_file_not_found("reference/contacts.md"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape


def err_config(message: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix notebrain.yaml or ~/.notebrain/config.yaml and try again."
    )


def err_no_notebook(notebook_dir: str) -> str:
    """Notebook directory does not exist yet."""
    return (
        f"[red]Error:[/] No notebook found at '{escape(notebook_dir)}'.\n"
        "  Run:  notebrain init"
    )


def err_path_traversal(path: str) -> str:
    """Read request leaves the notebook directory."""
    return (
        f"[red]Error:[/] Path is outside the notebook: '{escape(path)}'\n"
        "  Use a path relative to the notebook, e.g.  reference/contacts.md"
    )


def err_file_not_found(path: str) -> str:
    """Notebook file does not exist."""
    return (
        f"[red]Error:[/] File not found in notebook: '{escape(path)}'\n"
        "  Run:  notebrain recall <query>  to find the right file."
    )


def err_unknown_provider(provider_id: str, available: list[str]) -> str:
    """Provider id is not registered."""
    listed = ", ".join(available) if available else "(none)"
    return (
        f"[red]Error:[/] Unknown embedding provider '{escape(provider_id)}'.\n"
        f"  Available: {escape(listed)}\n"
        "  Run:  notebrain providers"
    )


def err_sync_in_progress() -> str:
    """Another sync holds the index."""
    return (
        "[yellow]Sync already in progress.[/]\n"
        "  Wait for it to finish, then run:  notebrain sync"
    )


def warn_degraded(provider_name: str, error: str, resolution: str | None) -> str:
    """Embeddings unavailable — keyword-only results."""
    lines = [
        f"[yellow]⚠[/]  Semantic search unavailable ({escape(provider_name)}): {escape(error)}",
        "  Showing keyword matches only.",
    ]
    if resolution:
        lines.append(f"  Fix:  {escape(resolution)}")
    return "\n".join(lines)


def warn_sync_errors(errors: list[str], limit: int = 10) -> str:
    """Some files could not be indexed."""
    shown = "\n".join(f"    {escape(e)}" for e in errors[:limit])
    more = f"\n    … and {len(errors) - limit} more" if len(errors) > limit else ""
    return (
        f"[yellow]⚠[/]  {len(errors)} file(s) could not be indexed:\n"
        f"{shown}{more}\n"
        "  Fix the files (or their permissions) and run:  notebrain sync"
    )
