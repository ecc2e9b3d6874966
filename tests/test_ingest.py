"""Tests for ingesting Claude Code conversation logs."""

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from claude_story.artifacts import artifact_paths
from claude_story.db.store import ConversationStore
from claude_story.ingest import (
    IngestStatus,
    LogIngestor,
    extract_message_content,
    parse_entry_timestamp,
    parse_log_records,
)
from claude_story.utils.hashing import calculate_content_hash


def open_store(project_dir: Path) -> ConversationStore:
    return ConversationStore(artifact_paths(project_dir).database_path)


class TestParseLogRecords:
    """Tests for splitting JSONL text into records."""

    def test_skips_blank_lines(self):
        """Test that blank lines are ignored and line numbers kept."""
        records = parse_log_records('{"a": 1}\n\n   \n{"b": 2}\n')

        assert [r.data for r in records] == [{"a": 1}, {"b": 2}]
        assert [r.line_number for r in records] == [1, 4]

    def test_malformed_line_raises(self):
        """Test that invalid JSON reports the line number."""
        with pytest.raises(ValueError, match="line 2"):
            parse_log_records('{"a": 1}\n{not json\n')

    def test_non_object_line_raises(self):
        """Test that a JSON value other than an object is rejected."""
        with pytest.raises(ValueError, match="not a JSON object"):
            parse_log_records("[1, 2]\n")


class TestExtractMessageContent:
    """Tests for normalizing message bodies."""

    def test_string_verbatim(self):
        """Test that strings pass through unchanged."""
        assert extract_message_content("  hello\n") == "  hello\n"

    def test_text_fragments_joined(self):
        """Test that text fragments are joined by a blank line."""
        content = [
            {"type": "text", "text": "First"},
            {"type": "tool_use", "name": "Read", "input": {}},
            {"type": "text", "text": "Second"},
        ]

        assert extract_message_content(content) == "First\n\nSecond"

    def test_list_without_text_serialized(self):
        """Test that a list with no text fragments is kept as JSON."""
        content = [{"type": "tool_result", "content": "ok"}]

        assert json.loads(extract_message_content(content)) == content

    def test_other_shapes_serialized(self):
        """Test that non-string, non-list content is kept as JSON."""
        assert extract_message_content({"k": "v"}) == '{"k": "v"}'
        assert extract_message_content(None) == "null"

    def test_non_ascii_preserved(self):
        """Test that serialized content keeps non-ASCII characters readable."""
        assert extract_message_content({"text": "café"}) == '{"text": "café"}'


class TestParseEntryTimestamp:
    """Tests for entry timestamps."""

    def test_zulu_timestamp(self):
        """Test that Z timestamps become naive UTC."""
        assert parse_entry_timestamp("2025-01-15T10:00:00.123Z") == datetime(
            2025, 1, 15, 10, 0, 0, 123000
        )

    def test_offset_converted(self):
        """Test that offsets are converted to UTC."""
        assert parse_entry_timestamp("2025-01-15T12:00:00+02:00") == datetime(
            2025, 1, 15, 10, 0
        )

    @pytest.mark.parametrize("value", [None, "", "not a date", 12345])
    def test_invalid_returns_none(self, value):
        """Test that missing or invalid values return None."""
        assert parse_entry_timestamp(value) is None


class TestIngestFile:
    """Tests for LogIngestor.ingest_file()."""

    def test_first_ingestion(
        self, tmp_path: Path, project_dir: Path, sample_entries, write_log
    ):
        """Test that a log creates one conversation, its messages and an export."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)

        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.INGESTED
        assert result.new_messages == 3
        store = open_store(project_dir)
        assert store.count_conversations() == 1
        assert store.count_messages() == 3

        conversation = store.get_conversation_by_session_id("S1")
        assert conversation.id == result.conversation_id
        assert conversation.title == "Fix login bug"

        history = artifact_paths(project_dir).history_dir
        exports = list(history.iterdir())
        assert [p.name for p in exports] == [result.export_filename]
        document = exports[0].read_text(encoding="utf-8")
        assert "The login form rejects valid passwords" in document
        assert "Let me look at auth.py" in document
        assert store.get_conversation(conversation.id).export_path == str(exports[0])

    def test_reingestion_is_idempotent(
        self, tmp_path: Path, project_dir: Path, sample_entries, write_log
    ):
        """Test that ingesting identical content twice changes nothing."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        LogIngestor().ingest_file(log)
        history = artifact_paths(project_dir).history_dir
        export = next(history.iterdir())
        before = export.read_text(encoding="utf-8")

        # A fresh ingestor has no cache, so this is a full re-parse
        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.INGESTED
        assert result.new_messages == 0
        assert result.export_filename is None
        store = open_store(project_dir)
        assert store.count_conversations() == 1
        assert store.count_messages() == 3
        assert export.read_text(encoding="utf-8") == before

    def test_appended_messages_ingested(
        self, tmp_path: Path, project_dir: Path, sample_entries, write_log, make_entry
    ):
        """Test that only new entries are inserted after the log grows."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        ingestor = LogIngestor()
        ingestor.ingest_file(log)

        write_log(
            log,
            sample_entries
            + [make_entry("assistant", "Glad to help", "a-2", "2025-01-15T10:02:00Z")],
        )
        result = ingestor.ingest_file(log)

        assert result.new_messages == 1
        store = open_store(project_dir)
        messages = store.get_conversation(result.conversation_id).messages
        assert [m.uuid for m in messages] == ["u-1", "a-1", "u-2", "a-2"]

    def test_session_id_falls_back_to_filename(
        self, tmp_path: Path, project_dir: Path, write_log, make_entry
    ):
        """Test that a log without sessionId uses the file stem."""
        log = write_log(
            tmp_path / "logs" / "abc-123.jsonl",
            [make_entry("user", "hi", "u-1", cwd=str(project_dir))],
        )

        result = LogIngestor().ingest_file(log)

        conversation = open_store(project_dir).get_conversation(result.conversation_id)
        assert conversation.session_id == "abc-123"
        assert conversation.title == "Claude Conversation"

    def test_cwd_taken_from_first_record_that_has_it(
        self, tmp_path: Path, project_dir: Path, write_log, make_entry
    ):
        """Test that the working directory may appear after the first record."""
        log = write_log(
            tmp_path / "logs" / "S2.jsonl",
            [
                {"type": "system", "sessionId": "S2"},
                make_entry("user", "hi", "u-1", cwd=str(project_dir)),
            ],
        )

        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.INGESTED
        assert open_store(project_dir).count_messages() == 1

    def test_non_message_records_ignored(
        self, tmp_path: Path, project_dir: Path, sample_entries, write_log
    ):
        """Test that records other than user/assistant are not stored."""
        entries = sample_entries + [
            {"type": "system", "uuid": "sys-1", "message": {"content": "x"}}
        ]
        log = write_log(tmp_path / "logs" / "S1.jsonl", entries)

        result = LogIngestor().ingest_file(log)

        assert result.new_messages == 3
        assert open_store(project_dir).message_exists("sys-1") is False

    def test_missing_uuid_uses_line_hash(
        self, tmp_path: Path, project_dir: Path, write_log, make_entry
    ):
        """Test that entries without a uuid are keyed by their line hash."""
        entry = make_entry("user", "no uuid here", None, cwd=str(project_dir))
        log = write_log(tmp_path / "logs" / "S3.jsonl", [entry])
        ingestor = LogIngestor()

        ingestor.ingest_file(log)
        second = ingestor.ingest_file(log, force=True)

        store = open_store(project_dir)
        expected_key = f"sha256:{calculate_content_hash(json.dumps(entry))}"
        assert store.message_exists(expected_key)
        assert second.new_messages == 0
        assert store.count_messages() == 1

    def test_missing_timestamp_uses_file_mtime(
        self, tmp_path: Path, project_dir: Path, write_log, make_entry
    ):
        """Test that entries without a timestamp fall back to the file time."""
        log = write_log(
            tmp_path / "logs" / "S4.jsonl",
            [make_entry("user", "hi", "u-1", timestamp=None, cwd=str(project_dir))],
        )
        mtime = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc).timestamp()
        os.utime(log, (mtime, mtime))

        result = LogIngestor().ingest_file(log)

        message = open_store(project_dir).get_conversation(
            result.conversation_id
        ).messages[0]
        assert message.created_at == datetime(2024, 6, 1, 12, 0)

    def test_same_title_conversations_get_separate_exports(
        self, tmp_path: Path, project_dir: Path, write_log, make_entry
    ):
        """Test that two untitled sessions in one project export to two files."""
        ingestor = LogIngestor()
        results = []
        for session_id in ["A", "B"]:
            log = write_log(
                tmp_path / "logs" / f"{session_id}.jsonl",
                [
                    make_entry(
                        "user",
                        f"message from session {session_id}",
                        f"u-{session_id}",
                        cwd=str(project_dir),
                        sessionId=session_id,
                    )
                ],
            )
            results.append(ingestor.ingest_file(log))

        history = artifact_paths(project_dir).history_dir
        assert len(list(history.iterdir())) == 2
        assert results[0].export_filename != results[1].export_filename

        store = open_store(project_dir)
        for session_id, result in zip(["A", "B"], results):
            conversation = store.get_conversation(result.conversation_id)
            assert conversation.title == "Claude Conversation"
            document = Path(conversation.export_path).read_text(encoding="utf-8")
            assert f"message from session {session_id}" in document
            other = "B" if session_id == "A" else "A"
            assert f"message from session {other}" not in document


class TestConcurrentIngestion:
    """Tests for several runs ingesting the same log at once."""

    def test_entry_stored_since_check_is_not_new(
        self, tmp_path: Path, project_dir: Path, sample_entries, write_log
    ):
        """Test that entries inserted after the existence check are skipped."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        LogIngestor().ingest_file(log)

        # Every existence check misses, as if another run stored the
        # entries between the check and the insert
        with patch.object(ConversationStore, "message_exists", return_value=False):
            result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.INGESTED
        assert result.new_messages == 0
        assert result.export_filename is None
        store = open_store(project_dir)
        assert store.count_conversations() == 1
        assert store.count_messages() == 3

    def test_simultaneous_runs_store_each_entry_once(
        self, tmp_path: Path, project_dir: Path, sample_entries, write_log
    ):
        """Test that parallel ingestion of one log creates no duplicates."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        ingestor = LogIngestor()
        barrier = threading.Barrier(4)
        results = []

        def worker():
            barrier.wait()
            results.append(ingestor.ingest_file(log, force=True))

        with patch.object(ConversationStore, "message_exists", return_value=False):
            threads = [threading.Thread(target=worker) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=30)

        assert [r.status for r in results] == [IngestStatus.INGESTED] * 4
        assert sum(r.new_messages for r in results) == 3
        assert len({r.conversation_id for r in results}) == 1
        store = open_store(project_dir)
        assert store.count_conversations() == 1
        assert store.count_messages() == 3


class TestIngestSkips:
    """Tests for logs that are not ingested."""

    def test_empty_log_skipped(self, tmp_path: Path):
        """Test that an empty file is a no-op."""
        log = tmp_path / "empty.jsonl"
        log.write_text("\n\n")

        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.SKIPPED

    def test_missing_file_skipped(self, tmp_path: Path):
        """Test that a vanished file is a no-op."""
        result = LogIngestor().ingest_file(tmp_path / "gone.jsonl")

        assert result.status == IngestStatus.SKIPPED

    def test_no_cwd_skipped(self, tmp_path: Path, write_log, make_entry):
        """Test that a log without a working directory is skipped."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", [make_entry("user", "hi", "u-1")])

        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.SKIPPED
        assert "working directory" in result.reason

    def test_home_directory_skipped(self, tmp_path: Path, write_log, make_entry):
        """Test that sessions started in the home directory are skipped."""
        home = tmp_path / "home"
        home.mkdir()
        log = write_log(
            tmp_path / "logs" / "S1.jsonl",
            [make_entry("user", "hi", "u-1", cwd=str(home))],
        )

        result = LogIngestor(home_dir=home).ingest_file(log)

        assert result.status == IngestStatus.SKIPPED
        assert not (home / ".claude-story").exists()

    def test_missing_project_directory_not_recreated(
        self, tmp_path: Path, write_log, make_entry
    ):
        """Test that a deleted project directory is not recreated."""
        gone = tmp_path / "deleted-project"
        log = write_log(
            tmp_path / "logs" / "S1.jsonl",
            [make_entry("user", "hi", "u-1", cwd=str(gone))],
        )

        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.SKIPPED
        assert not gone.exists()

    def test_malformed_log_fails_without_raising(
        self, tmp_path: Path, project_dir: Path
    ):
        """Test that a malformed log is reported as failed."""
        log = tmp_path / "logs" / "bad.jsonl"
        log.parent.mkdir()
        log.write_text(f'{{"cwd": "{project_dir}", "type": "user"}}\n{{broken\n')

        result = LogIngestor().ingest_file(log)

        assert result.status == IngestStatus.FAILED
        assert "Malformed JSON" in result.reason


class TestFileStateCache:
    """Tests for skipping unchanged logs."""

    def test_unchanged_file_not_reparsed(
        self, tmp_path: Path, sample_entries, write_log
    ):
        """Test that identical content is skipped by the same ingestor."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        ingestor = LogIngestor()
        ingestor.ingest_file(log)

        with patch("claude_story.ingest.parse_log_records") as mock_parse:
            result = ingestor.ingest_file(log)

        assert result.status == IngestStatus.UNCHANGED
        mock_parse.assert_not_called()

    def test_force_bypasses_cache(self, tmp_path: Path, sample_entries, write_log):
        """Test that force=True re-parses unchanged content."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        ingestor = LogIngestor()
        ingestor.ingest_file(log)

        result = ingestor.ingest_file(log, force=True)

        assert result.status == IngestStatus.INGESTED
        assert result.new_messages == 0

    def test_failure_invalidates_cache(
        self, tmp_path: Path, sample_entries, write_log
    ):
        """Test that a failed run forgets the file so the next run re-parses."""
        log = write_log(tmp_path / "logs" / "S1.jsonl", sample_entries)
        ingestor = LogIngestor()
        ingestor.ingest_file(log)

        with patch.object(ingestor, "_ingest_records", side_effect=RuntimeError("boom")):
            failed = ingestor.ingest_file(log, force=True)
        retried = ingestor.ingest_file(log)

        assert failed.status == IngestStatus.FAILED
        assert retried.status == IngestStatus.INGESTED

    def test_skipped_file_reevaluated(
        self, tmp_path: Path, project_dir: Path, write_log, make_entry
    ):
        """Test that a skipped log is retried once its project appears."""
        later_project = tmp_path / "later"
        log = write_log(
            tmp_path / "logs" / "S1.jsonl",
            [make_entry("user", "hi", "u-1", cwd=str(later_project))],
        )
        ingestor = LogIngestor()
        assert ingestor.ingest_file(log).status == IngestStatus.SKIPPED

        later_project.mkdir()

        assert ingestor.ingest_file(log).status == IngestStatus.INGESTED
