"""
Logging setup for Claude Story processes.

INFO/DEBUG records go to stdout and WARNING and above to stderr. The detached
daemon has both streams redirected into its log file, so this is also how the
daemon log gets written.
"""

import logging
import sys
from typing import Optional

from claude_story.config import settings

LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"


class _MaxLevelFilter(logging.Filter):
    """Pass only records below a level (keeps warnings off stdout)."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def setup_logging(context: str = "cli", level: Optional[str] = None) -> None:
    """
    Configure the root logger for a Claude Story process.

    Args:
        context: Process context ("cli" or "daemon"), recorded in the first log line
        level: Log level name; defaults to settings.log_level
    """
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    # Replace handlers so repeated calls (tests, re-exec) don't duplicate output
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    if settings.log_to_stdout:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
        root.addHandler(stdout_handler)

    if settings.log_to_stderr:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        stderr_handler.setLevel(logging.WARNING)
        root.addHandler(stderr_handler)

    # watchdog logs every inotify event at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (context={context})")
