"""
Conversation store for one project.

Wraps the repositories in short transactions so callers (the ingestor, the
exporter, the CLI) never handle sessions directly. Returned ORM objects are
detached but fully loaded.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from claude_story.db.connection import db_session, get_session_factory
from claude_story.db.repositories import ConversationRepository, MessageRepository
from claude_story.exceptions import DuplicateMessageError
from claude_story.models.db import Conversation, MessageRole, to_storage_utc

logger = logging.getLogger(__name__)


class ConversationStore:
    """Durable conversations and messages of a single project."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._session_factory = get_session_factory(self.db_path)

    def start_conversation(self, title: str, session_id: str) -> uuid.UUID:
        """
        Start a new active conversation.

        Any currently active conversation is deactivated in the same
        transaction as the insert, so two rows are never active at once.

        Args:
            title: Display title
            session_id: External session id (unique)

        Returns:
            UUID of the new conversation

        Raises:
            IntegrityError: If a conversation with session_id already exists
        """
        with db_session(self._session_factory) as session:
            repo = ConversationRepository(session)
            deactivated = repo.deactivate_all()
            conversation = repo.create(
                title=title, session_id=session_id, is_active=True
            )
            conversation_id = conversation.id

        logger.debug(
            f"Started conversation {conversation_id} for session {session_id} "
            f"({deactivated} deactivated)"
        )
        return conversation_id

    def get_or_start_conversation(
        self, title: str, session_id: str
    ) -> Tuple[Conversation, bool]:
        """
        Reuse the conversation for session_id or start a new one.

        If another task creates the same session between the lookup and the
        insert, the unique constraint fails and the winner's row is returned.

        Returns:
            Tuple of (conversation, created)
        """
        existing = self.get_conversation_by_session_id(session_id)
        if existing is not None:
            return existing, False

        try:
            conversation_id = self.start_conversation(title, session_id)
        except IntegrityError:
            existing = self.get_conversation_by_session_id(session_id)
            if existing is None:
                raise
            logger.debug(f"Session {session_id} was created concurrently, reusing it")
            return existing, False

        conversation = self.get_conversation(conversation_id)
        assert conversation is not None
        return conversation, True

    def end_active_conversations(self) -> int:
        """
        Deactivate the active conversation, if any.

        Returns:
            Number of conversations deactivated
        """
        with db_session(self._session_factory) as session:
            return ConversationRepository(session).deactivate_all()

    def get_active_conversation(self) -> Optional[Conversation]:
        """Get the active conversation, if any."""
        with db_session(self._session_factory) as session:
            return ConversationRepository(session).get_active()

    def get_conversation_by_session_id(self, session_id: str) -> Optional[Conversation]:
        """Look up a conversation by its external session id."""
        with db_session(self._session_factory) as session:
            return ConversationRepository(session).get_by_session_id(session_id)

    def get_conversation(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        """
        Get a conversation with its messages.

        Messages are in ascending created_at order, ties broken by insertion
        order.
        """
        with db_session(self._session_factory) as session:
            return ConversationRepository(session).get_with_messages(conversation_id)

    def list_conversations(self) -> List[Conversation]:
        """All conversations, most recently updated first."""
        with db_session(self._session_factory) as session:
            return ConversationRepository(session).get_all()

    def message_exists(self, message_uuid: str) -> bool:
        """Check whether a source entry has already been ingested."""
        with db_session(self._session_factory) as session:
            return MessageRepository(session).exists_by_uuid(message_uuid)

    def add_message(
        self,
        conversation_id: uuid.UUID,
        role: MessageRole | str,
        content: str,
        created_at: datetime,
        message_uuid: str,
    ) -> int:
        """
        Insert a message and advance the conversation's updated_at.

        Args:
            conversation_id: Owning conversation
            role: "user" or "assistant"
            content: Normalized message text
            created_at: Timestamp of the source entry
            message_uuid: uuid of the source entry

        Returns:
            Store-assigned message id

        Raises:
            DuplicateMessageError: If message_uuid is already stored
        """
        try:
            with db_session(self._session_factory) as session:
                message = MessageRepository(session).create(
                    conversation_id=conversation_id,
                    role=MessageRole(role),
                    content=content,
                    created_at=to_storage_utc(created_at),
                    uuid=message_uuid,
                )
                ConversationRepository(session).touch(conversation_id)
                message_id = message.id
        except IntegrityError:
            # Another writer may have stored the same entry since the caller checked
            with db_session(self._session_factory) as session:
                duplicate = MessageRepository(session).exists_by_uuid(message_uuid)
            if duplicate:
                raise DuplicateMessageError(message_uuid) from None
            raise

        return message_id

    def set_export_path(self, conversation_id: uuid.UUID, export_path: str) -> None:
        """Record the location of a conversation's export document."""
        with db_session(self._session_factory) as session:
            ConversationRepository(session).set_export_path(conversation_id, export_path)

    def count_conversations(self) -> int:
        with db_session(self._session_factory) as session:
            return ConversationRepository(session).count()

    def count_messages(self) -> int:
        with db_session(self._session_factory) as session:
            return MessageRepository(session).count()
