"""
Claude Story Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables prefixed with CLAUDE_STORY_.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_claude_projects_dir() -> Path:
    """
    Get the directory where Claude Code writes its conversation logs.

    Returns:
        Path: ~/.claude/projects
    """
    return Path.home() / ".claude" / "projects"


def get_state_dir() -> Path:
    """
    Get the per-user state directory for the daemon.

    Holds the liveness record (PID file) and the daemon log.

    Returns:
        Path: ~/.claude-story
    """
    return Path.home() / ".claude-story"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLAUDE_STORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Source logs
    logs_root: Path = Field(default_factory=get_claude_projects_dir)
    log_extension: str = ".jsonl"

    # Per-project artifacts
    artifact_dir_name: str = ".claude-story"
    database_filename: str = "conversations.db"
    export_dir_name: str = "history"
    default_title: str = "Claude Conversation"
    slug_max_length: int = 50

    # Database
    db_busy_timeout: float = 30.0  # Seconds to wait for the SQLite writer lock

    # Watch daemon
    settle_delay_seconds: float = 0.2  # Wait after a change event before ingesting
    state_dir: Path = Field(default_factory=get_state_dir)

    # Logging
    log_level: str = "INFO"
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @property
    def pid_file(self) -> Path:
        """Liveness record of the running daemon."""
        return self.state_dir / "daemon.pid"

    @property
    def daemon_log_file(self) -> Path:
        """File receiving the detached daemon's stdout and stderr."""
        return self.state_dir / "daemon.log"


# Global settings instance
settings = Settings()
