"""
Tests for configuration management.
"""

from pathlib import Path

import pytest

from claude_story.config import Settings


@pytest.fixture(autouse=True)
def clear_claude_story_env(monkeypatch):
    """Ensure CLAUDE_STORY_* overrides don't affect config unit tests."""
    for name in ["LOGS_ROOT", "STATE_DIR", "SETTLE_DELAY_SECONDS", "LOG_LEVEL"]:
        monkeypatch.delenv(f"CLAUDE_STORY_{name}", raising=False)
    yield


class TestSettings:
    """Tests for Settings configuration."""

    def test_default_paths(self):
        """Test default locations under the home directory."""
        settings = Settings()

        assert settings.logs_root == Path.home() / ".claude" / "projects"
        assert settings.state_dir == Path.home() / ".claude-story"
        assert settings.pid_file == Path.home() / ".claude-story" / "daemon.pid"
        assert settings.daemon_log_file == Path.home() / ".claude-story" / "daemon.log"

    def test_default_artifact_settings(self):
        """Test default per-project artifact names."""
        settings = Settings()

        assert settings.artifact_dir_name == ".claude-story"
        assert settings.database_filename == "conversations.db"
        assert settings.export_dir_name == "history"
        assert settings.default_title == "Claude Conversation"
        assert settings.slug_max_length == 50

    def test_default_watch_settings(self):
        """Test default watcher timing."""
        settings = Settings()

        assert settings.settle_delay_seconds == 0.2
        assert settings.log_extension == ".jsonl"

    def test_env_overrides(self, monkeypatch, tmp_path: Path):
        """Test that CLAUDE_STORY_* environment variables override defaults."""
        monkeypatch.setenv("CLAUDE_STORY_LOGS_ROOT", str(tmp_path / "logs"))
        monkeypatch.setenv("CLAUDE_STORY_STATE_DIR", str(tmp_path / "state"))
        monkeypatch.setenv("CLAUDE_STORY_SETTLE_DELAY_SECONDS", "1.5")

        settings = Settings()

        assert settings.logs_root == tmp_path / "logs"
        assert settings.pid_file == tmp_path / "state" / "daemon.pid"
        assert settings.settle_delay_seconds == 1.5
