"""Tests for notebrain sync and watch commands."""

from __future__ import annotations

import urllib.error
from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from notebrain.cli.main import app
from notebrain.db.connection import Database
from notebrain.db.repository import Repository

runner = CliRunner()


def _init(agent_dir: Path) -> None:
    result = runner.invoke(app, ["init", "--agent-dir", str(agent_dir)])
    assert result.exit_code == 0, result.output


def _count_chunks(agent_dir: Path) -> int:
    with Database(agent_dir / "brain" / "memory.db") as conn:
        return Repository(conn).count_chunks()


# ---------------------------------------------------------------------------
# notebrain sync
# ---------------------------------------------------------------------------


def test_sync_without_notebook_exits_one(agent_dir: Path) -> None:
    result = runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])
    assert result.exit_code == 1
    assert "No notebook found" in result.output


def test_sync_indexes_starter_notebook(agent_dir: Path) -> None:
    _init(agent_dir)

    result = runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 0, result.output
    assert "Added" in result.output
    assert "Index up to date" in result.output
    assert _count_chunks(agent_dir) >= 5


def test_sync_twice_adds_nothing(agent_dir: Path) -> None:
    _init(agent_dir)
    runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])
    before = _count_chunks(agent_dir)

    result = runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 0, result.output
    assert _count_chunks(agent_dir) == before


def test_sync_rebuild(agent_dir: Path) -> None:
    _init(agent_dir)
    runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])

    result = runner.invoke(app, ["sync", "--rebuild", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 0, result.output
    assert "Rebuild" in result.output


def test_sync_reports_file_errors(agent_dir: Path) -> None:
    _init(agent_dir)
    with patch(
        "notebrain.ingest.chunker.MarkdownChunker.chunk", side_effect=ValueError("bad markdown")
    ):
        result = runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 0, result.output
    assert "could not be indexed" in result.output
    assert "bad markdown" in result.output


def test_sync_unknown_provider_exits_one(agent_dir: Path, cli_env: Path) -> None:
    _init(agent_dir)
    (cli_env / "notebrain.yaml").write_text(
        "embeddings:\n  active: embeddings-custom\n", encoding="utf-8"
    )

    result = runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 1
    assert "Unknown embedding provider 'embeddings-custom'" in result.output
    assert "embeddings-local" in result.output


def test_sync_warns_when_provider_unavailable(agent_dir: Path, monkeypatch) -> None:
    _init(agent_dir)
    monkeypatch.setenv("NOTEBRAIN_EMBEDDINGS_PROVIDER", "ollama")
    with patch(
        "notebrain.embeddings.ollama._get_json",
        side_effect=urllib.error.URLError("Connection refused"),
    ):
        result = runner.invoke(app, ["sync", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 0, result.output
    assert "Semantic search unavailable" in result.output
    assert _count_chunks(agent_dir) >= 5


# ---------------------------------------------------------------------------
# notebrain watch
# ---------------------------------------------------------------------------


def test_watch_without_notebook_exits_one(agent_dir: Path) -> None:
    result = runner.invoke(app, ["watch", "--agent-dir", str(agent_dir)])
    assert result.exit_code == 1


def test_watch_syncs_then_stops_on_interrupt(agent_dir: Path) -> None:
    _init(agent_dir)
    with (
        patch("notebrain.cli.watch.time.sleep", side_effect=KeyboardInterrupt),
        patch(
            "notebrain.embeddings.ollama._get_json",
            side_effect=urllib.error.URLError("Connection refused"),
        ),
    ):
        result = runner.invoke(app, ["watch", "--agent-dir", str(agent_dir)])

    assert result.exit_code == 0, result.output
    assert "Watching" in result.output
    assert "5 added" in result.output
    assert "Stopped" in result.output
    assert _count_chunks(agent_dir) >= 5
