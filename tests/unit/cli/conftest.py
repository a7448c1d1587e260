"""CLI fixtures: isolate every command from the real home directory and env."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the global config at tmp_path and run from an empty working directory."""
    monkeypatch.setattr(
        "notebrain.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / ".notebrain" / "config.yaml"
    )
    for name in (
        "NOTEBRAIN_AGENT_DIR",
        "NOTEBRAIN_EMBEDDINGS_PROVIDER",
        "NOTEBRAIN_OLLAMA_HOST",
        "NOTEBRAIN_OLLAMA_MODEL",
    ):
        monkeypatch.delenv(name, raising=False)
    # wide enough that Rich never wraps table cells or paths
    monkeypatch.setenv("COLUMNS", "250")
    cwd = tmp_path / "cwd"
    cwd.mkdir()
    monkeypatch.chdir(cwd)
    return cwd


@pytest.fixture
def agent_dir(tmp_path: Path) -> Path:
    return tmp_path / "agent"
