"""
Ingestion of Claude Code conversation logs.

Each log is a JSONL file written by Claude Code for one session. Every run
re-reads the whole file; the unique message uuid makes repeated runs
harmless. An in-memory cache of each file's size and hash lets unchanged
files skip the re-parse entirely.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from dateutil import parser as date_parser

from claude_story.artifacts import ensure_artifact_dir
from claude_story.config import settings
from claude_story.db.store import ConversationStore
from claude_story.exceptions import DuplicateMessageError
from claude_story.export import MarkdownExporter
from claude_story.models.db import MessageRole, to_storage_utc
from claude_story.utils.hashing import calculate_content_hash

logger = logging.getLogger(__name__)

MESSAGE_TYPES = {MessageRole.USER.value, MessageRole.ASSISTANT.value}


class IngestStatus(str, Enum):
    """Outcome of ingesting one log file."""

    INGESTED = "ingested"  # Parsed; zero or more new messages stored
    UNCHANGED = "unchanged"  # Same content as the last successful run
    SKIPPED = "skipped"  # Empty, unreadable, or not attributable to a project
    FAILED = "failed"  # Error while processing; nothing propagated


@dataclass
class IngestResult:
    """Result of LogIngestor.ingest_file()."""

    file_path: Path
    status: IngestStatus
    conversation_id: Optional[uuid.UUID] = None
    new_messages: int = 0
    export_filename: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class LogRecord:
    """One parsed line of a conversation log."""

    line_number: int
    raw: str
    data: dict[str, Any]


@dataclass(frozen=True)
class FileState:
    """Fingerprint of the content last ingested from a file."""

    size: int
    content_hash: str


def parse_log_records(text: str) -> list[LogRecord]:
    """
    Split log text into records, one JSON object per non-blank line.

    Raises:
        ValueError: If a line is not a JSON object
    """
    records = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON on line {line_number}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Line {line_number} is not a JSON object")
        records.append(LogRecord(line_number=line_number, raw=line, data=data))
    return records


def extract_message_content(content: Any) -> str:
    """
    Normalize a message body to plain text.

    Content can be:
    - A string: returned verbatim
    - A list of typed fragments: text fragments joined by a blank line
    - Anything else (or a list without text): serialized as JSON, so no
      content is ever dropped

    Args:
        content: The entry's message.content value

    Returns:
        Message text
    """
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        text_parts = [
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        if text_parts:
            return "\n\n".join(text_parts)

    return json.dumps(content, ensure_ascii=False)


def parse_entry_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 entry timestamp to naive UTC.

    Returns:
        The timestamp, or None when missing or invalid
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    return to_storage_utc(parsed)


class LogIngestor:
    """
    Ingests one Claude Code log at a time into its project's store.

    Safe to call concurrently, including for the same file: duplicate
    inserts are detected by the message uuid and ignored.
    """

    def __init__(
        self,
        home_dir: Optional[Path] = None,
        artifact_dir_name: Optional[str] = None,
        default_title: Optional[str] = None,
    ):
        self.home_dir = Path(home_dir) if home_dir else Path.home()
        self.artifact_dir_name = artifact_dir_name or settings.artifact_dir_name
        self.default_title = default_title or settings.default_title

        # file path -> state of the last successful run
        self._file_states: dict[str, FileState] = {}
        self._file_states_lock = Lock()

    def ingest_file(self, file_path: Path | str, force: bool = False) -> IngestResult:
        """
        Ingest the full current content of one log file.

        Never raises: failures are logged with the file path and reported in
        the result, so one bad log cannot stop the others.

        Args:
            file_path: Path to a .jsonl conversation log
            force: Re-parse even if the content is unchanged since the last run

        Returns:
            IngestResult describing what happened
        """
        file_path = Path(file_path)
        try:
            return self._ingest(file_path, force)
        except Exception as e:
            self._forget_file_state(file_path)
            error_msg = f"{type(e).__name__}: {e}"
            logger.error(f"✗ Failed to process {file_path}: {error_msg}", exc_info=True)
            return IngestResult(
                file_path=file_path, status=IngestStatus.FAILED, reason=error_msg
            )

    def _ingest(self, file_path: Path, force: bool) -> IngestResult:
        try:
            content = file_path.read_bytes()
            file_mtime = file_path.stat().st_mtime
        except OSError as e:
            logger.warning(f"Cannot read {file_path}: {e}")
            self._forget_file_state(file_path)
            return self._skipped(file_path, f"unreadable: {e}")

        state = FileState(size=len(content), content_hash=calculate_content_hash(content))
        if not force and self._get_file_state(file_path) == state:
            logger.debug(f"Skipped {file_path.name} (no changes detected)")
            return IngestResult(file_path=file_path, status=IngestStatus.UNCHANGED)

        result = self._ingest_records(
            file_path, parse_log_records(content.decode("utf-8")), file_mtime
        )
        if result.status == IngestStatus.INGESTED:
            self._remember_file_state(file_path, state)
        else:
            self._forget_file_state(file_path)
        return result

    def _ingest_records(
        self, file_path: Path, records: list[LogRecord], file_mtime: float
    ) -> IngestResult:
        if not records:
            return self._skipped(file_path, "empty log")

        working_dir = next(
            (r.data["cwd"] for r in records if r.data.get("cwd")), None
        )
        if not working_dir:
            return self._skipped(file_path, "no working directory")

        project_dir = Path(working_dir)
        if project_dir == self.home_dir:
            return self._skipped(file_path, "working directory is the home directory")
        if not project_dir.is_dir():
            return self._skipped(file_path, f"project directory {project_dir} is gone")

        artifacts = ensure_artifact_dir(project_dir, self.artifact_dir_name)
        store = ConversationStore(artifacts.database_path)

        first = records[0].data
        session_id = first.get("sessionId") or file_path.stem
        title = self.default_title
        if first.get("type") == "summary" and first.get("summary"):
            title = first["summary"]

        conversation, created = store.get_or_start_conversation(title, session_id)
        if created:
            logger.info(f"New conversation for session {session_id} in {project_dir}")

        fallback_time = datetime.fromtimestamp(file_mtime, tz=timezone.utc)
        new_messages = 0
        for record in records:
            if self._store_message(store, conversation.id, record, fallback_time):
                new_messages += 1

        export_filename = None
        if new_messages:
            exporter = MarkdownExporter(store, artifacts.history_dir)
            export_filename = exporter.export_to_markdown(conversation.id)
            logger.info(
                f"📄 Updated conversation: {conversation.title} (+{new_messages} messages)"
            )

        return IngestResult(
            file_path=file_path,
            status=IngestStatus.INGESTED,
            conversation_id=conversation.id,
            new_messages=new_messages,
            export_filename=export_filename,
        )

    def _store_message(
        self,
        store: ConversationStore,
        conversation_id: uuid.UUID,
        record: LogRecord,
        fallback_time: datetime,
    ) -> bool:
        """Insert one user/assistant record; return True if it was new."""
        data = record.data
        entry_type = data.get("type")
        if entry_type not in MESSAGE_TYPES:
            return False

        message_uuid = data.get("uuid") or f"sha256:{calculate_content_hash(record.raw)}"
        if store.message_exists(message_uuid):
            return False

        message = data.get("message")
        body = message.get("content") if isinstance(message, dict) else message
        created_at = parse_entry_timestamp(data.get("timestamp")) or fallback_time

        try:
            store.add_message(
                conversation_id,
                MessageRole(entry_type),
                extract_message_content(body),
                created_at,
                message_uuid,
            )
        except DuplicateMessageError:
            # A concurrent run of the same file got there first
            return False
        return True

    def _skipped(self, file_path: Path, reason: str) -> IngestResult:
        logger.debug(f"Skipped {file_path.name}: {reason}")
        return IngestResult(file_path=file_path, status=IngestStatus.SKIPPED, reason=reason)

    def _get_file_state(self, file_path: Path) -> Optional[FileState]:
        with self._file_states_lock:
            return self._file_states.get(str(file_path))

    def _remember_file_state(self, file_path: Path, state: FileState) -> None:
        with self._file_states_lock:
            self._file_states[str(file_path)] = state

    def _forget_file_state(self, file_path: Path) -> None:
        with self._file_states_lock:
            self._file_states.pop(str(file_path), None)
