"""
Daemon scheduler for periodic contact mirroring.

Provides a DaemonScheduler class that manages:
- Sync passes at a fixed interval (wall-clock based)
- Expedited passes requested with SIGUSR1 or request_sync()
- Graceful shutdown on SIGTERM/SIGINT
- PID file management for daemon control
"""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from contact_mirror.utils.paths import PID_FILE_NAME, resolve_config_dir

logger = logging.getLogger(__name__)

# Signal asking a running daemon for an expedited pass (absent on Windows)
EXPEDITE_SIGNAL = getattr(signal, "SIGUSR1", None)


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when attempting to start a daemon that is already running."""

    pass


def default_pid_file() -> Path:
    return resolve_config_dir() / PID_FILE_NAME


@dataclass
class DaemonStats:
    """Uptime and sync cycle counters of a running daemon."""

    started_at: datetime = field(default_factory=datetime.now)
    sync_count: int = 0
    sync_success_count: int = 0
    sync_error_count: int = 0
    expedited_count: int = 0
    last_sync_at: datetime | None = None
    last_sync_success: bool = False
    last_error: str | None = None


class PIDFileManager:
    """
    Manages the PID file of the daemon process.

    Used both by the daemon itself (create/remove) and by the CLI to find
    and signal a running daemon.
    """

    def __init__(self, pid_file: Path | None = None):
        self.pid_file = pid_file or default_pid_file()

    def create(self) -> None:
        """
        Write the current process ID, replacing a stale PID file.

        Raises:
            PIDFileError: If the PID file cannot be created.
            DaemonAlreadyRunningError: If a daemon is already running.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self.is_process_running(existing_pid):
                raise DaemonAlreadyRunningError(
                    f"Daemon already running with PID {existing_pid}"
                )
            logger.warning(
                f"Removing stale PID file (process {existing_pid} not running)"
            )
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            pid = os.getpid()
            self.pid_file.write_text(str(pid))
            logger.debug(f"Created PID file: {self.pid_file} (PID: {pid})")
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e

    def read(self) -> int | None:
        """
        Read the PID from the PID file.

        Returns:
            The stored PID, or None if the file doesn't exist.

        Raises:
            PIDFileError: If the file exists but cannot be read or parsed.
        """
        if not self.pid_file.exists():
            return None

        try:
            content = self.pid_file.read_text().strip()
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e
        try:
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e

    def remove(self) -> None:
        """Remove the PID file if present."""
        if not self.pid_file.exists():
            return
        try:
            self.pid_file.unlink()
            logger.debug(f"Removed PID file: {self.pid_file}")
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e

    @staticmethod
    def is_process_running(pid: int) -> bool:
        try:
            # Signal 0 only checks that the process exists
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else
            return True

    def running_pid(self) -> int | None:
        """PID of the live daemon, or None if none is running."""
        pid = self.read()
        if pid is not None and self.is_process_running(pid):
            return pid
        return None


class DaemonScheduler:
    """
    Periodic sync scheduler.

    The sync callback receives ``expedited`` (True when the pass was
    requested ahead of schedule) and returns True on success.

    Usage:
        scheduler = DaemonScheduler(interval=parse_interval("6h"))
        scheduler.set_sync_callback(lambda expedited: run_all(expedited))
        scheduler.run()  # blocks until SIGTERM/SIGINT

    Attributes:
        interval: Seconds between scheduled passes
        stats: Daemon statistics
    """

    def __init__(
        self,
        interval: int = 6 * 3600,
        pid_file: Path | None = None,
        run_immediately: bool = True,
    ):
        """
        Initialize the daemon scheduler.

        Args:
            interval: Sync interval in seconds (default: 6 hours)
            pid_file: Path to PID file (default: <config dir>/daemon.pid)
            run_immediately: Run a pass on start before the first wait
        """
        self.interval = interval
        self.run_immediately = run_immediately
        self._pid_manager = PIDFileManager(pid_file)
        self._sync_callback: Callable[[bool], bool] | None = None
        self._running = False
        self._shutdown_requested = False
        self._expedite_requested = False
        self._original_handlers: dict[int, object] = {}
        self.stats = DaemonStats()

    @property
    def pid_file(self) -> Path:
        return self._pid_manager.pid_file

    def set_sync_callback(self, callback: Callable[[bool], bool]) -> None:
        """Set the function run for each pass; it returns True on success."""
        self._sync_callback = callback

    def _setup_signal_handlers(self) -> None:
        handled = [signal.SIGTERM, signal.SIGINT]
        if EXPEDITE_SIGNAL is not None:
            handled.append(EXPEDITE_SIGNAL)
        for signum in handled:
            self._original_handlers[signum] = signal.signal(
                signum, self._signal_handler
            )
        logger.debug("Signal handlers installed")

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._original_handlers.clear()
        logger.debug("Signal handlers restored")

    def _signal_handler(self, signum: int, frame: object) -> None:
        signal_name = signal.Signals(signum).name
        if EXPEDITE_SIGNAL is not None and signum == EXPEDITE_SIGNAL:
            logger.info(f"Received {signal_name}, scheduling expedited sync")
            self._expedite_requested = True
            return
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self._shutdown_requested = True

    def request_sync(self) -> None:
        """
        Ask for an expedited pass ahead of schedule.

        The current wait ends within a second; the interval restarts after
        the expedited pass.
        """
        self._expedite_requested = True

    def _run_sync(self, expedited: bool = False) -> bool:
        """
        Execute the sync callback and update statistics.

        Exceptions from the callback are logged and counted; the daemon keeps
        running.
        """
        if self._sync_callback is None:
            logger.warning("No sync callback configured, skipping sync")
            return False

        self.stats.sync_count += 1
        if expedited:
            self.stats.expedited_count += 1
        self.stats.last_sync_at = datetime.now()

        try:
            logger.info(
                f"Starting sync (cycle #{self.stats.sync_count}"
                + (", expedited)" if expedited else ")")
            )
            success = self._sync_callback(expedited)
        except Exception as e:
            self.stats.sync_error_count += 1
            self.stats.last_sync_success = False
            self.stats.last_error = str(e)
            logger.error(f"Sync failed with exception: {e}")
            return False

        self.stats.last_sync_success = success
        if success:
            self.stats.sync_success_count += 1
            self.stats.last_error = None
            logger.info("Sync completed successfully")
        else:
            self.stats.sync_error_count += 1
            logger.warning("Sync completed with errors")
        return success

    def _sleep_interruptible(self, seconds: int) -> bool:
        """
        Wait up to ``seconds``, waking early for shutdown or an expedite request.

        Uses wall-clock time so a pass that came due while the machine was
        suspended runs right after wake.

        Returns:
            False if shutdown was requested, True otherwise.
        """
        end_time = time.time() + seconds
        while time.time() < end_time:
            if self._shutdown_requested or self._expedite_requested:
                break
            remaining = end_time - time.time()
            sleep_time = min(1.0, max(0.0, remaining))
            if sleep_time > 0:
                time.sleep(sleep_time)
        return not self._shutdown_requested

    def run(self) -> None:
        """
        Run the scheduler until a shutdown signal is received.

        Raises:
            DaemonAlreadyRunningError: If another daemon is already running.
            PIDFileError: If the PID file cannot be written.
        """
        logger.info(f"Starting daemon scheduler (interval: {self.interval}s)")

        self._pid_manager.create()
        logger.info(f"Daemon started (PID: {os.getpid()}, PID file: {self.pid_file})")

        self._setup_signal_handlers()
        self._running = True
        self._shutdown_requested = False
        self._expedite_requested = False
        self.stats = DaemonStats()

        try:
            if self.run_immediately:
                self._run_sync()

            while not self._shutdown_requested:
                logger.debug(f"Sleeping for {self.interval} seconds until next sync")
                if not self._sleep_interruptible(self.interval):
                    break
                expedited = self._expedite_requested
                self._expedite_requested = False
                self._run_sync(expedited=expedited)
        finally:
            self._running = False
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info("Daemon scheduler stopped")

    def stop(self) -> None:
        """Request shutdown; safe to call from the sync callback."""
        logger.info("Stop requested")
        self._shutdown_requested = True

    def is_running(self) -> bool:
        return self._running

    @classmethod
    def get_running_pid(cls, pid_file: Path | None = None) -> int | None:
        """PID of the running daemon, or None."""
        return PIDFileManager(pid_file).running_pid()

    @classmethod
    def _signal_running_daemon(cls, signum: int, pid_file: Path | None) -> bool:
        pid = cls.get_running_pid(pid_file)
        if pid is None:
            logger.info("No running daemon found")
            return False

        signal_name = signal.Signals(signum).name
        try:
            os.kill(pid, signum)
        except ProcessLookupError:
            logger.warning(f"Daemon process {pid} not found")
            return False
        except PermissionError:
            logger.error(f"Permission denied sending {signal_name} to PID {pid}")
            return False
        logger.info(f"Sent {signal_name} to daemon (PID: {pid})")
        return True

    @classmethod
    def stop_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Send SIGTERM to the running daemon.

        Returns:
            True if the signal was sent, False if no daemon is running.
        """
        return cls._signal_running_daemon(signal.SIGTERM, pid_file)

    @classmethod
    def trigger_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Ask the running daemon for an expedited pass.

        Returns:
            True if the request was sent, False if no daemon is running.

        Raises:
            DaemonError: If the platform has no SIGUSR1.
        """
        if EXPEDITE_SIGNAL is None:
            raise DaemonError("Expedited sync requests are not supported here")
        return cls._signal_running_daemon(EXPEDITE_SIGNAL, pid_file)


__all__ = [
    "DaemonScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "EXPEDITE_SIGNAL",
    "default_pid_file",
]
