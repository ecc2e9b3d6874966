"""
Conversation repository.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from claude_story.db.repositories.base import BaseRepository
from claude_story.models.db import Conversation, utcnow


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation model."""

    def __init__(self, session: Session):
        super().__init__(Conversation, session)

    def get_with_messages(self, id: uuid.UUID) -> Optional[Conversation]:
        """
        Get a conversation with its messages loaded.

        Messages are ordered by source timestamp, then insertion order.

        Args:
            id: Conversation UUID

        Returns:
            Conversation with messages or None
        """
        return (
            self.session.query(Conversation)
            .options(selectinload(Conversation.messages))
            .filter(Conversation.id == id)
            .first()
        )

    def get_by_session_id(self, session_id: str) -> Optional[Conversation]:
        """
        Get conversation by its external session id.

        Args:
            session_id: Session ID from the source log

        Returns:
            Conversation or None
        """
        return (
            self.session.query(Conversation)
            .filter(Conversation.session_id == session_id)
            .first()
        )

    def get_active(self) -> Optional[Conversation]:
        """Get the currently active conversation, if any."""
        return (
            self.session.query(Conversation)
            .filter(Conversation.is_active.is_(True))
            .first()
        )

    def get_all(self) -> List[Conversation]:
        """Get all conversations, most recently updated first."""
        return (
            self.session.query(Conversation)
            .order_by(Conversation.updated_at.desc())
            .all()
        )

    def deactivate_all(self) -> int:
        """
        Mark every active conversation inactive.

        Returns:
            Number of rows deactivated
        """
        result = self.session.execute(
            update(Conversation)
            .where(Conversation.is_active.is_(True))
            .values(is_active=False)
        )
        return result.rowcount

    def touch(self, id: uuid.UUID, at: Optional[datetime] = None) -> None:
        """
        Advance a conversation's updated_at.

        Args:
            id: Conversation UUID
            at: Timestamp to set (defaults to now, UTC)
        """
        self.session.execute(
            update(Conversation)
            .where(Conversation.id == id)
            .values(updated_at=at or utcnow())
        )

    def set_export_path(self, id: uuid.UUID, export_path: str) -> None:
        """
        Record where a conversation was last exported.

        Args:
            id: Conversation UUID
            export_path: Path of the written export document
        """
        self.session.execute(
            update(Conversation)
            .where(Conversation.id == id)
            .values(export_path=export_path)
        )
