"""Custom exceptions for Claude Story."""

from pathlib import Path


class ClaudeStoryError(Exception):
    """Base class for Claude Story errors."""


class DuplicateMessageError(ClaudeStoryError):
    """Raised when a message with an already stored uuid is inserted."""

    def __init__(self, message_uuid: str):
        self.message_uuid = message_uuid
        super().__init__(f"Message with uuid {message_uuid} has already been ingested")


class ArtifactDirectoryError(ClaudeStoryError):
    """Raised when a project's artifact directory cannot be created."""

    def __init__(self, directory: Path, reason: str):
        self.directory = directory
        self.reason = reason
        super().__init__(f"Cannot create artifact directory {directory}: {reason}")


class DaemonStartError(ClaudeStoryError):
    """Raised when the background daemon cannot be launched or recorded."""
