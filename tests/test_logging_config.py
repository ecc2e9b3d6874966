"""Tests for logging setup."""

import logging

import pytest

from claude_story.logging_config import setup_logging


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_info_to_stdout_warnings_to_stderr(self, restore_root_logger, capsys):
        """Test that records are split between stdout and stderr by level."""
        setup_logging(context="cli", level="INFO")
        logger = logging.getLogger("claude_story.test")

        logger.info("routine message")
        logger.warning("something odd")

        captured = capsys.readouterr()
        assert "routine message" in captured.out
        assert "something odd" not in captured.out
        assert "something odd" in captured.err
        assert "[claude_story.test] [WARNING]" in captured.err

    def test_repeated_setup_does_not_duplicate(self, restore_root_logger):
        """Test that calling setup twice keeps a single pair of handlers."""
        setup_logging(context="cli")
        setup_logging(context="daemon")

        assert len(restore_root_logger.handlers) == 2

    def test_level_applied(self, restore_root_logger):
        """Test that the requested level is set on the root logger."""
        setup_logging(context="cli", level="warning")

        assert restore_root_logger.level == logging.WARNING
