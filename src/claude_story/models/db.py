"""
SQLAlchemy database models for Claude Story.

These models represent the per-project store of conversations ingested from
Claude Code logs.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to naive UTC for storage.

    Naive inputs are assumed to already be UTC.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class MessageRole(str, enum.Enum):
    """Role of the message author."""

    USER = "user"
    ASSISTANT = "assistant"


class Conversation(Base):
    """One Claude Code session, keyed by its external session id."""

    __tablename__ = "conversations"
    __table_args__ = (
        # At most one active conversation per store
        Index(
            "uq_conversations_single_active",
            "is_active",
            unique=True,
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    session_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    export_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="[Message.created_at, Message.id]",
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, session_id={self.session_id!r}, "
            f"title={self.title!r}, is_active={self.is_active})>"
        )


class Message(Base):
    """Individual user or assistant message within a conversation."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[MessageRole] = mapped_column(
        Enum(
            MessageRole,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Timestamp of the source log entry, not of ingestion
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    # Idempotency key: the log entry's uuid
    uuid: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, role={self.role.value!r}, "
            f"created_at={self.created_at}, uuid={self.uuid!r})>"
        )
