"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from claude_story.db.repositories.base import BaseRepository
from claude_story.db.repositories.conversation import ConversationRepository
from claude_story.db.repositories.message import MessageRepository

__all__ = [
    "BaseRepository",
    "ConversationRepository",
    "MessageRepository",
]
