"""
Background daemon lifecycle.

Separate `claude-story start/stop/status` invocations coordinate one
detached watcher process through a PID file (the liveness record) and a
signal-0 probe of the recorded process:

    STOPPED --start (child spawned, pid recorded)--> STARTING
    STARTING --next probe finds the process alive--> RUNNING
    STARTING --process died before the probe--> STOPPED
    RUNNING --stop (SIGTERM, record removed)--> STOPPED
    RUNNING --process died--> STOPPED (stale record removed on next probe)

There is no lock: two simultaneous `start` calls can both spawn a process
before either sees the other's record. A future hardening could replace the
plain record with an exclusive-creation lock file.
"""

import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from claude_story.config import settings
from claude_story.exceptions import DaemonStartError
from claude_story.ingest import LogIngestor
from claude_story.watch import WatcherDaemon

logger = logging.getLogger(__name__)

DAEMON_COMMAND = [sys.executable, "-m", "claude_story.cli", "daemon"]


class DaemonState(str, Enum):
    """Lifecycle state of the background daemon."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


@dataclass
class DaemonStatus:
    """Result of probing the liveness record."""

    state: DaemonState
    pid: Optional[int] = None

    @property
    def running(self) -> bool:
        return self.state == DaemonState.RUNNING


def is_process_running(pid: int) -> bool:
    """
    Check if a process with the given PID exists.

    Sends signal 0, which performs the permission and existence checks
    without delivering anything.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    except OSError:
        return False
    return True


class PidFile:
    """The liveness record: a file holding the daemon's process id."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[int]:
        """Read the recorded PID, or None if absent or unparsable."""
        if not self.path.exists():
            return None
        try:
            return int(self.path.read_text().strip())
        except (ValueError, OSError):
            return None

    def write(self, pid: int) -> None:
        """
        Record a PID.

        Raises:
            OSError: If the record cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid))

    def remove(self) -> None:
        """Remove the record if present."""
        self.path.unlink(missing_ok=True)

    def remove_if_owned(self, pid: int) -> bool:
        """
        Remove the record only if it still names the given PID.

        Returns:
            True if the record was removed
        """
        if self.read() != pid:
            return False
        self.remove()
        return True


class DaemonController:
    """
    Start, stop and query the detached watcher process.

    Each CLI invocation builds its own controller; all shared state lives in
    the PID file.
    """

    def __init__(
        self,
        pid_file: Optional[Path] = None,
        log_file: Optional[Path] = None,
        command: Optional[list[str]] = None,
    ):
        self.pid_file = PidFile(pid_file or settings.pid_file)
        self.log_file = Path(log_file or settings.daemon_log_file)
        self.command = command or DAEMON_COMMAND

    def status(self) -> DaemonStatus:
        """
        Probe the liveness record.

        A record naming a process that no longer exists (or holding garbage)
        is removed, and the daemon is reported stopped.
        """
        pid = self.pid_file.read()
        if pid is None:
            if self.pid_file.path.exists():
                logger.info(f"Removing unreadable PID file {self.pid_file.path}")
                self.pid_file.remove()
            return DaemonStatus(state=DaemonState.STOPPED)

        if is_process_running(pid):
            return DaemonStatus(state=DaemonState.RUNNING, pid=pid)

        logger.info(f"Removing stale PID file (process {pid} is gone)")
        self.pid_file.remove()
        return DaemonStatus(state=DaemonState.STOPPED)

    def start(self) -> DaemonStatus:
        """
        Launch the daemon unless it is already running.

        The process is detached into its own session with stdout/stderr
        appended to the daemon log, and this call returns as soon as its PID
        is recorded. A freshly launched daemon is reported as STARTING until
        a later status() probe sees it alive.

        Returns:
            STARTING status of the new daemon, or the RUNNING status of the
            existing one

        Raises:
            DaemonStartError: If the process cannot be spawned or its PID
                cannot be recorded
        """
        current = self.status()
        if current.running:
            logger.info(f"Daemon is already running (PID {current.pid})")
            return current

        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a") as log_handle:
                process = subprocess.Popen(
                    self.command,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=log_handle,
                    cwd=str(Path.home()),
                    close_fds=True,
                    start_new_session=True,  # Survives the launching shell
                )
        except OSError as e:
            raise DaemonStartError(f"Cannot launch daemon: {e}") from e

        try:
            self.pid_file.write(process.pid)
        except OSError as e:
            process.terminate()
            raise DaemonStartError(
                f"Cannot write PID file {self.pid_file.path}: {e}"
            ) from e

        logger.info(f"Started daemon with PID {process.pid}")
        return DaemonStatus(state=DaemonState.STARTING, pid=process.pid)

    def stop(self) -> bool:
        """
        Send SIGTERM to the recorded daemon and remove the record.

        The record is removed even when the signal cannot be delivered.

        Returns:
            True if a running daemon was signalled
        """
        pid = self.pid_file.read()
        if pid is None:
            self.pid_file.remove()
            return False

        delivered = False
        try:
            os.kill(pid, signal.SIGTERM)
            delivered = True
            logger.info(f"Sent SIGTERM to daemon (PID {pid})")
        except ProcessLookupError:
            logger.info(f"Daemon process {pid} was already gone")
        except OSError as e:
            logger.warning(f"Failed to signal daemon process {pid}: {e}")
        finally:
            self.pid_file.remove()

        return delivered


def run_daemon(
    logs_root: Optional[Path] = None,
    pid_file: Optional[Path] = None,
    ingestor: Optional[LogIngestor] = None,
) -> int:
    """
    Entry point of the detached daemon process.

    Records its own PID, runs the watcher until SIGTERM/SIGINT, and removes
    the record on the way out (if it still names this process).

    Returns:
        Process exit code: 0 on clean shutdown, 1 on fatal startup error
    """
    pid = os.getpid()
    record = PidFile(pid_file or settings.pid_file)

    logger.info(f"🤖 Claude Story daemon starting (PID: {pid})")

    try:
        record.write(pid)
    except OSError as e:
        logger.error(f"Cannot write PID file {record.path}: {e}")
        return 1

    daemon = WatcherDaemon(logs_root=logs_root, ingestor=ingestor)

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"Process received signal {signum}, shutting down...")
        daemon.stop()
        record.remove_if_owned(pid)
        logger.info(f"Final stats: {daemon.get_stats_snapshot()}")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if not daemon.start(blocking=True):
            logger.info("Nothing to watch yet, daemon exiting")
    except Exception as e:
        logger.error(f"Daemon process crashed: {e}", exc_info=True)
        return 1
    finally:
        record.remove_if_owned(pid)

    return 0
