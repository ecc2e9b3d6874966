"""
Message repository.
"""

from sqlalchemy.orm import Session

from claude_story.db.repositories.base import BaseRepository
from claude_story.models.db import Message


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def exists_by_uuid(self, message_uuid: str) -> bool:
        """
        Check whether a message with the given source uuid is stored.

        Args:
            message_uuid: uuid of the source log entry

        Returns:
            True if present
        """
        return (
            self.session.query(Message.id)
            .filter(Message.uuid == message_uuid)
            .first()
            is not None
        )

