"""
Markdown export of stored conversations.

Every export re-renders the full message history and overwrites the same
file, so the document always mirrors the store.
"""

import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from claude_story.config import settings
from claude_story.db.store import ConversationStore
from claude_story.models.db import Conversation, MessageRole

logger = logging.getLogger(__name__)

HEADER = "<!-- Generated by Claude Story -->"
ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
}


def slugify(title: str, max_length: Optional[int] = None) -> str:
    """
    Convert a conversation title to a filename slug.

    Lower-cases, collapses runs of non-alphanumerics to "-", trims, and caps
    the length.

    Examples:
        >>> slugify("Fix the Parser: edge cases!")
        'fix-the-parser-edge-cases'
    """
    max_length = max_length or settings.slug_max_length
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or "conversation"


def export_filename(conversation: Conversation) -> str:
    """
    Deterministic export filename.

    Sortable UTC timestamp, title slug and the first 8 hex digits of the
    conversation id, so same-titled conversations started in the same second
    never share a file.
    """
    timestamp = conversation.created_at.strftime("%Y-%m-%dT%H-%M-%SZ")
    return f"{timestamp}-{slugify(conversation.title)}-{conversation.id.hex[:8]}.md"


def _heading_timestamp(created_at: datetime) -> str:
    return created_at.strftime("%Y-%m-%d %H:%M")


def render_markdown(conversation: Conversation) -> str:
    """
    Render a conversation and all of its messages as Markdown.

    Args:
        conversation: Conversation with messages loaded in chronological order

    Returns:
        The full document text
    """
    parts = [
        f"{HEADER}\n\n",
        f"# {conversation.title} ({_heading_timestamp(conversation.created_at)})\n\n",
    ]
    for message in conversation.messages:
        parts.append(f"_**{ROLE_LABELS[message.role]}**_\n\n")
        parts.append(f"{message.content}\n\n")
        parts.append("---\n\n")
    return "".join(parts)


class MarkdownExporter:
    """Writes a project's conversations to its history directory."""

    def __init__(self, store: ConversationStore, history_dir: Path):
        self.store = store
        self.history_dir = Path(history_dir)

    def export_to_markdown(self, conversation_id: uuid.UUID) -> Optional[str]:
        """
        Export one conversation, overwriting any previous export.

        Args:
            conversation_id: Conversation UUID

        Returns:
            Filename written, or None if the conversation does not exist
        """
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            logger.warning(f"Cannot export missing conversation {conversation_id}")
            return None

        filename = export_filename(conversation)
        export_path = self.history_dir / filename

        self.history_dir.mkdir(parents=True, exist_ok=True)
        export_path.write_text(render_markdown(conversation), encoding="utf-8")
        self.store.set_export_path(conversation_id, str(export_path))

        logger.debug(
            f"Exported conversation {conversation_id} "
            f"({len(conversation.messages)} messages) to {export_path}"
        )
        return filename
