"""
Pytest configuration and fixtures for Claude Story tests.

Provides temporary project directories, conversation stores and a builder
for Claude Code JSONL logs.
"""

import json
from pathlib import Path
from typing import Any, Callable, Generator, Optional

import pytest

from claude_story.db.connection import dispose_engines
from claude_story.db.store import ConversationStore


@pytest.fixture(autouse=True)
def _dispose_cached_engines() -> Generator[None, None, None]:
    """Drop cached engines so each test opens its stores fresh."""
    yield
    dispose_engines()


@pytest.fixture
def store(tmp_path: Path) -> ConversationStore:
    """Create an empty conversation store in a temporary directory."""
    return ConversationStore(tmp_path / "store" / "conversations.db")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a project working directory."""
    path = tmp_path / "projects" / "my-app"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def logs_root(tmp_path: Path) -> Path:
    """Create a Claude Code projects directory (the watch target)."""
    path = tmp_path / "claude" / "projects"
    path.mkdir(parents=True)
    return path


def build_entry(
    entry_type: str,
    content: Any,
    uuid: Optional[str],
    timestamp: Optional[str] = "2025-01-15T10:00:00Z",
    **extra: Any,
) -> dict[str, Any]:
    """Build one user/assistant log entry."""
    entry: dict[str, Any] = {
        "type": entry_type,
        "message": {"role": entry_type, "content": content},
    }
    if uuid is not None:
        entry["uuid"] = uuid
    if timestamp is not None:
        entry["timestamp"] = timestamp
    entry.update(extra)
    return entry


@pytest.fixture
def make_entry() -> Callable[..., dict[str, Any]]:
    """Return the log entry builder."""
    return build_entry


@pytest.fixture
def write_log() -> Callable[..., Path]:
    """
    Return a helper that writes entries as a JSONL log.

    Usage:
        path = write_log(logs_root / "proj" / "S1.jsonl", [entry, ...])
    """

    def _write(path: Path, entries: list[dict[str, Any]]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "".join(json.dumps(entry) + "\n" for entry in entries), encoding="utf-8"
        )
        return path

    return _write


@pytest.fixture
def sample_entries(project_dir: Path) -> list[dict[str, Any]]:
    """A session header followed by three messages."""
    return [
        {
            "type": "summary",
            "summary": "Fix login bug",
            "cwd": str(project_dir),
            "sessionId": "S1",
        },
        build_entry("user", "The login form rejects valid passwords", "u-1"),
        build_entry(
            "assistant",
            [{"type": "text", "text": "Let me look at auth.py"}],
            "a-1",
            "2025-01-15T10:00:05Z",
        ),
        build_entry("user", "Thanks, that fixed it", "u-2", "2025-01-15T10:01:00Z"),
    ]
