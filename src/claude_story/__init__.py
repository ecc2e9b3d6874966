"""Claude Story - automatic Claude Code conversation history per project."""

__version__ = "1.2.0"
