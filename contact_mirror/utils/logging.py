"""
Logging configuration module for contact_mirror.

Provides centralized logging configuration with support for:
- Console and daily file logging under the data directory
- Log levels from environment variables
- Verbose mode for detailed output
- Colored console output when the terminal supports it
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from contact_mirror.utils.paths import LOG_DIR_NAME, resolve_config_dir

# Root logger name for the package
LOGGER_NAME = "contact_mirror"

# Log file names: contact_mirror_YYYYMMDD.log
LOG_FILE_PREFIX = "contact_mirror_"

# Simplified format for console
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Verbose format, also used for files
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)

# Daemon format: timestamps matter when output goes to a service journal
DAEMON_FORMAT = "%(asctime)s %(levelname)s: %(message)s"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Environment variable names
ENV_LOG_LEVEL = "CONTACT_MIRROR_LOG_LEVEL"
ENV_DEBUG = "CONTACT_MIRROR_DEBUG"
ENV_LOG_FILE = "CONTACT_MIRROR_LOG_FILE"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Directory of the active file handler, used by cleanup_old_logs
_configured_log_dir: Optional[Path] = None


class ColoredFormatter(logging.Formatter):
    """
    A logging formatter that adds ANSI color codes to the level name.

    Colors are only applied when stderr is a terminal that supports them.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        if not hasattr(sys.stderr, "isatty") or not sys.stderr.isatty():
            return False
        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def parse_log_level(value: str, default: int = logging.INFO) -> int:
    """Convert a level name such as 'debug' or 'WARN' to a logging constant."""
    return _LEVELS.get(value.strip().upper(), default)


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    CONTACT_MIRROR_DEBUG takes precedence over CONTACT_MIRROR_LOG_LEVEL.

    Returns:
        Logging level constant (e.g., logging.DEBUG, logging.INFO)
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return parse_log_level(os.environ.get(ENV_LOG_LEVEL, "INFO"))


def default_log_file_name(day: Optional[datetime] = None) -> str:
    day = day or datetime.now()
    return f"{LOG_FILE_PREFIX}{day.strftime('%Y%m%d')}.log"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Get the log file path from the environment or the log directory.

    Setting CONTACT_MIRROR_LOG_FILE to 'none' or 'disabled' turns file
    logging off.

    Returns:
        Path to the log file, or None if file logging is disabled
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file).expanduser()

    if log_dir is None:
        log_dir = resolve_config_dir() / LOG_DIR_NAME
    return log_dir / default_log_file_name()


def _console_handler(level: int, fmt: str, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    formatter_class = ColoredFormatter if use_colors else logging.Formatter
    handler.setFormatter(formatter_class(fmt, DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    """Daily file handler; files always capture debug output."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
    daemon: bool = False,
) -> logging.Logger:
    """
    Configure the contact_mirror package logger.

    Replaces any handlers from an earlier call, so the CLI can reconfigure
    logging when the daemon starts.

    Args:
        level: Logging level. If None, determined from environment variables.
        verbose: If True, log at DEBUG with the verbose console format.
        log_dir: Directory for daily log files.
        log_file: Explicit log file path (overrides log_dir).
        enable_file_logging: If False, only log to the console.
        use_colors: Use colored console output when supported.
        daemon: Use the timestamped console format of the daemon.

    Returns:
        The contact_mirror package logger

    Example:
        setup_logging(verbose=True)
        setup_logging(log_dir=Path('~/.contact-mirror/logs').expanduser())
    """
    global _configured_log_dir

    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    if verbose:
        console_format = VERBOSE_FORMAT
    elif daemon:
        console_format = DAEMON_FORMAT
    else:
        console_format = CONSOLE_FORMAT

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(_console_handler(level, console_format, use_colors))

    _configured_log_dir = None
    file_path = None
    if enable_file_logging:
        file_path = log_file or get_log_file_path(log_dir)
    if file_path is not None:
        try:
            logger.addHandler(_file_handler(file_path))
        except OSError as e:
            logger.warning(f"Could not create log file {file_path}: {e}")
        else:
            _configured_log_dir = file_path.parent
            logger.debug(f"Log file: {file_path}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete old contact_mirror_*.log files, keeping the most recent ones.

    Args:
        log_dir: Directory containing log files. If None, uses the directory
                 configured by setup_logging().
        keep_count: Number of files to keep. 0 disables cleanup.

    Returns:
        Number of files deleted.
    """
    if keep_count <= 0:
        return 0

    logs_dir = log_dir or _configured_log_dir
    if logs_dir is None or not logs_dir.exists():
        return 0

    logs = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted_count = 0
    for old_log in logs[keep_count:]:
        try:
            old_log.unlink()
            deleted_count += 1
        except OSError as e:
            logging.getLogger(LOGGER_NAME).debug(f"Could not delete {old_log}: {e}")
    return deleted_count


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the contact_mirror hierarchy.

    Names outside the package are prefixed with 'contact_mirror.'.
    """
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """Change the console logging level at runtime."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        # File handlers stay at DEBUG
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


__all__ = [
    "setup_logging",
    "get_logger",
    "set_log_level",
    "cleanup_old_logs",
    "ColoredFormatter",
    "parse_log_level",
    "get_log_level_from_env",
    "get_log_file_path",
    "default_log_file_name",
    "LOGGER_NAME",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DAEMON_FORMAT",
    "DATE_FORMAT",
]
