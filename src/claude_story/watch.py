"""
Directory watching daemon for automatic log ingestion.

Scans the Claude Code projects directory for conversation logs (.jsonl
files) at startup, then watches it recursively and re-ingests each log a
short settle delay after every change notification.
"""

import logging
import platform
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Event, Timer
from typing import Any, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

# Use PollingObserver on macOS to avoid fsevents C extension crashes during
# rapid observer start/stop cycles
if platform.system() == "Darwin":  # macOS
    from watchdog.observers.polling import PollingObserver as Observer
else:
    from watchdog.observers import Observer

from claude_story.config import settings
from claude_story.ingest import IngestResult, IngestStatus, LogIngestor

logger = logging.getLogger(__name__)


@dataclass
class WatcherStats:
    """Statistics for the watch daemon."""

    started_at: datetime = field(default_factory=datetime.now)
    files_ingested: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    last_activity: Optional[datetime] = None

    def record(self, result: IngestResult) -> None:
        """Count one ingestion outcome."""
        if result.status == IngestStatus.INGESTED:
            self.files_ingested += 1
        elif result.status == IngestStatus.UNCHANGED:
            self.files_unchanged += 1
        elif result.status == IngestStatus.SKIPPED:
            self.files_skipped += 1
        else:
            self.files_failed += 1
        self.last_activity = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        """Convert stats to dictionary for serialization."""
        return {
            "started_at": self.started_at.isoformat(),
            "files_ingested": self.files_ingested,
            "files_unchanged": self.files_unchanged,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "last_activity": (
                self.last_activity.isoformat() if self.last_activity else None
            ),
        }


def discover_conversation_logs(
    logs_root: Path, log_extension: Optional[str] = None
) -> list[Path]:
    """
    List conversation logs under the logs root.

    Looks one level deep: every project subdirectory, then every log file in
    it, both in sorted order.

    Args:
        logs_root: Claude Code projects directory
        log_extension: Log file suffix (defaults to settings)

    Returns:
        Log file paths in discovery order (empty if the root is missing)
    """
    log_extension = log_extension or settings.log_extension
    if not logs_root.is_dir():
        return []

    logs = []
    for project_dir in sorted(p for p in logs_root.iterdir() if p.is_dir()):
        try:
            entries = sorted(project_dir.iterdir())
        except OSError as e:
            logger.warning(f"Cannot list {project_dir}: {e}")
            continue
        logs.extend(
            f for f in entries if f.is_file() and f.name.endswith(log_extension)
        )
    return logs


class ConversationLogHandler(FileSystemEventHandler):
    """
    Watchdog event handler for conversation logs.

    Each notification schedules its own ingestion after the settle delay.
    Notifications are not coalesced; redundant runs are absorbed by the
    ingestor's idempotency.
    """

    def __init__(
        self,
        ingestor: LogIngestor,
        settle_delay: Optional[float] = None,
        log_extension: Optional[str] = None,
        stats: Optional[WatcherStats] = None,
        stats_lock: Optional[threading.Lock] = None,
    ):
        super().__init__()
        self.ingestor = ingestor
        self.settle_delay = (
            settings.settle_delay_seconds if settle_delay is None else settle_delay
        )
        self.log_extension = log_extension or settings.log_extension
        self.stats = stats or WatcherStats()
        self._stats_lock = stats_lock or threading.Lock()

        # Timers scheduled but not yet finished, cancelled on shutdown
        self._pending: set[Timer] = set()
        self._pending_lock = threading.Lock()

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation events."""
        if not event.is_directory:
            self._handle_file_event(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification events."""
        if not event.is_directory:
            self._handle_file_event(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move/rename events (the destination is what changed)."""
        if not event.is_directory:
            self._handle_file_event(str(event.dest_path))

    def _handle_file_event(self, path: str) -> None:
        if path.endswith(self.log_extension):
            self.schedule(Path(path))

    def schedule(self, file_path: Path) -> Timer:
        """
        Schedule ingestion of a log after the settle delay.

        Args:
            file_path: Log that changed

        Returns:
            The started timer
        """
        timer = Timer(self.settle_delay, self._process_file, args=(file_path,))
        timer.daemon = True
        with self._pending_lock:
            self._pending.add(timer)
        timer.start()
        logger.debug(f"Scheduled ingestion of {file_path.name} in {self.settle_delay}s")
        return timer

    def _process_file(self, file_path: Path) -> None:
        """Ingest a single log (runs on the timer's thread)."""
        try:
            if not file_path.exists():
                logger.debug(f"File no longer exists: {file_path.name}")
                return

            result = self.ingestor.ingest_file(file_path)
            with self._stats_lock:
                self.stats.record(result)
        except Exception as e:
            logger.error(f"Error handling change to {file_path}: {e}", exc_info=True)
        finally:
            with self._pending_lock:
                self._pending.discard(threading.current_thread())

    def pending_count(self) -> int:
        """Number of scheduled ingestions that have not finished."""
        with self._pending_lock:
            return len(self._pending)

    def cancel_pending(self) -> None:
        """Cancel ingestions that have not started yet."""
        with self._pending_lock:
            pending = list(self._pending)
            self._pending.clear()
        for timer in pending:
            timer.cancel()


class WatcherDaemon:
    """
    Main watch daemon controller.

    Runs the startup scan, then manages the watchdog observer until stopped.
    """

    def __init__(
        self,
        logs_root: Optional[Path] = None,
        ingestor: Optional[LogIngestor] = None,
        settle_delay: Optional[float] = None,
        log_extension: Optional[str] = None,
    ):
        self.logs_root = Path(logs_root) if logs_root else settings.logs_root
        self.ingestor = ingestor or LogIngestor()
        self.log_extension = log_extension or settings.log_extension
        self._stats_lock = threading.Lock()  # Protects stats from concurrent updates

        self.stats = WatcherStats()
        self.event_handler = ConversationLogHandler(
            ingestor=self.ingestor,
            settle_delay=settle_delay,
            log_extension=self.log_extension,
            stats=self.stats,
            stats_lock=self._stats_lock,
        )

        # Created in start(); the root may not exist yet at construction time
        self.observer: Optional[Any] = None

        self.shutdown_event = Event()

    def start(self, blocking: bool = True) -> bool:
        """
        Start the watch daemon.

        Args:
            blocking: If True, blocks until stop() is called. If False,
                returns once the observer is running.

        Returns:
            False if the logs root does not exist (nothing to watch yet),
            True otherwise
        """
        if not self.logs_root.is_dir():
            logger.warning(
                f"Claude projects directory not found: {self.logs_root}. "
                "Make sure Claude Code is installed."
            )
            return False

        logger.info(f"Starting watch daemon for directory: {self.logs_root}")

        self.scan_existing()

        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(self.logs_root), recursive=True)
        self.observer.start()
        logger.info("✓ Observer started")
        logger.info(
            f"✅ Monitoring conversations; exports are written to "
            f"{settings.artifact_dir_name}/ in each project"
        )

        if blocking:
            try:
                while not self.shutdown_event.is_set():
                    self.shutdown_event.wait(timeout=1)
            except KeyboardInterrupt:
                self.stop()
        else:
            logger.info("Daemon started in non-blocking mode")

        return True

    def scan_existing(self) -> int:
        """
        Ingest every existing log once, synchronously, in discovery order.

        Returns:
            Number of log files visited
        """
        logs = discover_conversation_logs(self.logs_root, self.log_extension)
        logger.info(f"Scanning {len(logs)} conversation logs in {self.logs_root}...")

        for file_path in logs:
            result = self.ingestor.ingest_file(file_path)
            with self._stats_lock:
                self.stats.record(result)

        with self._stats_lock:
            logger.info(
                f"Startup scan complete: {self.stats.files_ingested} ingested, "
                f"{self.stats.files_skipped} skipped, {self.stats.files_failed} failed"
            )
        return len(logs)

    def stop(self) -> None:
        """Stop the watch daemon gracefully."""
        logger.info("Stopping watch daemon...")
        self.shutdown_event.set()
        self.event_handler.cancel_pending()

        if self.observer is not None:
            try:
                self.observer.stop()
                self.observer.join(timeout=3)
                if self.observer.is_alive():
                    logger.warning("Observer thread did not stop cleanly")
                else:
                    logger.info("✓ Observer stopped")
            except Exception as e:
                logger.error(f"Error stopping observer: {e}", exc_info=True)

        logger.info("✓ Watch daemon stopped")

    def get_stats_snapshot(self) -> dict[str, Any]:
        """Get current statistics snapshot (thread-safe)."""
        with self._stats_lock:
            snapshot = self.stats.to_dict()
        snapshot["pending_ingestions"] = self.event_handler.pending_count()
        return snapshot
