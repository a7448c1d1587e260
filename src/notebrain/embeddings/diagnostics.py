"""Turn provider failure messages into operator-facing fixes."""

from __future__ import annotations

_CONNECTION_MARKERS = (
    "connection refused",
    "connecterror",
    "failed to establish",
    "cannot reach",
    "unreachable",
    "timed out",
    "timeout",
    "name or service not known",
    "urlopen error",
)


def suggest_resolution(message: str, model: str | None = None, host: str | None = None) -> str:
    """Return a one-line suggestion for the failure described by *message*."""
    text = message.lower()

    if any(marker in text for marker in _CONNECTION_MARKERS):
        where = f" at {host}" if host else ""
        return f"Make sure Ollama is running{where} (start it with 'ollama serve')."

    if "does not support embeddings" in text or "not an embedding model" in text:
        return (
            f"Model '{model}' cannot produce embeddings. Switch to an embedding model "
            "such as 'nomic-embed-text'."
            if model
            else "Switch to a model that supports embeddings, such as 'nomic-embed-text'."
        )

    if "not found" in text or "pull" in text:
        if model:
            return f"Download the model with 'ollama pull {model}'."
        return "Download the model with 'ollama pull <model>'."

    return "Check the embedding provider settings, or switch to the local provider."
