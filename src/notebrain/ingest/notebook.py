"""Notebook layout — folders, starter files, daily note paths.

Layout under the agent directory::

    notebook/
      lists/        todos, shopping, checklists
      reference/    contacts, preferences, standing orders
      knowledge/    learned facts
      daily/        YYYY-MM-DD.md
    brain/          memory.db
    cache/models/   downloaded embedding models
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

NOTEBOOK_FOLDERS = ("lists", "reference", "knowledge", "daily")

_STARTER_FILES: dict[str, str] = {
    "reference/contacts.md": (
        "# Contacts\n"
        "\n"
        "Add contact information here. The agent can search and update this file.\n"
        "\n"
        "## Example Contact\n"
        "\n"
        "- Name: Example Person\n"
        "- Email: example@email.com\n"
        "- Notes: This is an example contact\n"
    ),
    "reference/preferences.md": (
        "# Preferences\n"
        "\n"
        "Your preferences and how you like things done.\n"
        "\n"
        "## Communication\n"
        "\n"
        "- Preferred response style: Direct and concise\n"
        "\n"
        "## Schedule\n"
        "\n"
        "- Add your typical schedule and preferences here\n"
    ),
    "reference/standing-orders.md": (
        "# Standing Orders\n"
        "\n"
        "Rules and instructions the agent should always follow.\n"
        "\n"
        "## Notifications\n"
        "\n"
        "- Add rules about when and how to notify you\n"
    ),
    "lists/todos.md": (
        "# To Do\n"
        "\n"
        "- [ ] Set up your notebook preferences\n"
        "- [ ] Add your contacts\n"
    ),
    "knowledge/facts.md": (
        "# Facts\n"
        "\n"
        "Things the agent has learned that might be useful later.\n"
        "\n"
        "## Project Info\n"
        "\n"
        "- Add project-specific facts here\n"
    ),
}


def notebook_dir(agent_dir: Path) -> Path:
    return Path(agent_dir) / "notebook"


def init_notebook(agent_dir: Path) -> Path:
    """Create the notebook folders plus ``brain/`` and ``cache/models/``.

    Returns:
        The notebook directory.
    """
    agent_dir = Path(agent_dir)
    root = notebook_dir(agent_dir)
    for folder in NOTEBOOK_FOLDERS:
        (root / folder).mkdir(parents=True, exist_ok=True)
    (agent_dir / "brain").mkdir(parents=True, exist_ok=True)
    (agent_dir / "cache" / "models").mkdir(parents=True, exist_ok=True)
    return root


def create_starter_notebook(agent_dir: Path) -> list[Path]:
    """Initialize the notebook and write the starter files that are missing.

    Existing files are never overwritten.

    Returns:
        The files that were written.
    """
    root = init_notebook(agent_dir)
    written: list[Path] = []
    for rel, content in _STARTER_FILES.items():
        path = root / rel
        if path.exists():
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        written.append(path)
    return written


def daily_note_path(day: date | None = None) -> str:
    """Notebook-relative path of the daily note for *day* (default: today)."""
    day = day or date.today()
    return f"daily/{day.isoformat()}.md"
