"""
Unit tests for the logging configuration module.
"""

import logging
import os
from datetime import datetime
from unittest.mock import patch

import pytest

from contact_mirror.utils.logging import (
    LOGGER_NAME,
    ColoredFormatter,
    cleanup_old_logs,
    default_log_file_name,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    parse_log_level,
    set_log_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CONTACT_MIRROR_LOG_LEVEL",
        "CONTACT_MIRROR_DEBUG",
        "CONTACT_MIRROR_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestLogLevels:
    """Tests for level parsing and environment lookup."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("debug", logging.DEBUG),
            (" WARN ", logging.WARNING),
            ("error", logging.ERROR),
            ("bogus", logging.INFO),
        ],
    )
    def test_parse_log_level(self, value, expected):
        """Test level names, including the fallback."""
        assert parse_log_level(value) == expected

    def test_default_is_info(self):
        """Test that no environment means INFO."""
        assert get_log_level_from_env() == logging.INFO

    def test_env_level(self, monkeypatch):
        """Test CONTACT_MIRROR_LOG_LEVEL."""
        monkeypatch.setenv("CONTACT_MIRROR_LOG_LEVEL", "warning")
        assert get_log_level_from_env() == logging.WARNING

    def test_debug_flag_wins(self, monkeypatch):
        """Test that CONTACT_MIRROR_DEBUG overrides the level."""
        monkeypatch.setenv("CONTACT_MIRROR_LOG_LEVEL", "error")
        monkeypatch.setenv("CONTACT_MIRROR_DEBUG", "true")
        assert get_log_level_from_env() == logging.DEBUG


class TestLogFilePath:
    """Tests for log file path resolution."""

    def test_daily_file_name(self):
        """Test the dated file name."""
        assert default_log_file_name(datetime(2024, 3, 9)) == (
            "contact_mirror_20240309.log"
        )

    def test_in_log_dir(self, tmp_path):
        """Test that the file lives in the given directory."""
        path = get_log_file_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("contact_mirror_")

    def test_default_under_config_dir(self, tmp_path, monkeypatch):
        """Test the default logs directory under the data directory."""
        monkeypatch.setenv("CONTACT_MIRROR_CONFIG_DIR", str(tmp_path))
        assert get_log_file_path().parent == tmp_path.resolve() / "logs"

    @pytest.mark.parametrize("value", ["none", "DISABLED", ""])
    def test_disabled_by_env(self, monkeypatch, value):
        """Test that the environment can disable file logging."""
        monkeypatch.setenv("CONTACT_MIRROR_LOG_FILE", value)
        assert get_log_file_path() is None

    def test_explicit_env_file(self, tmp_path, monkeypatch):
        """Test an explicit file from the environment."""
        monkeypatch.setenv("CONTACT_MIRROR_LOG_FILE", str(tmp_path / "x.log"))
        assert get_log_file_path() == tmp_path / "x.log"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self):
        """Test that disabling file logging leaves one console handler."""
        logger = setup_logging(enable_file_logging=False)

        assert logger.name == LOGGER_NAME
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO
        assert not logger.propagate

    def test_verbose_sets_debug(self):
        """Test that verbose mode logs at DEBUG."""
        logger = setup_logging(verbose=True, enable_file_logging=False)
        assert logger.level == logging.DEBUG

    def test_file_handler_writes(self, tmp_path):
        """Test that records reach the daily log file."""
        logger = setup_logging(log_dir=tmp_path, use_colors=False)
        get_logger("sync").debug("hello file")
        for handler in logger.handlers:
            handler.flush()

        (log_file,) = tmp_path.glob("contact_mirror_*.log")
        assert "hello file" in log_file.read_text()

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        """Test that calling setup twice does not duplicate handlers."""
        setup_logging(log_dir=tmp_path)
        logger = setup_logging(log_dir=tmp_path)
        assert len(logger.handlers) == 2

    def test_set_log_level_keeps_file_at_debug(self, tmp_path):
        """Test that runtime level changes spare the file handler."""
        logger = setup_logging(log_dir=tmp_path)

        set_log_level(logging.ERROR)

        levels = {type(h).__name__: h.level for h in logger.handlers}
        assert levels["FileHandler"] == logging.DEBUG
        assert levels["StreamHandler"] == logging.ERROR


class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def test_no_colors_without_tty(self):
        """Test that colors are off when stderr is not a terminal."""
        with patch("sys.stderr.isatty", return_value=False):
            formatter = ColoredFormatter("%(levelname)s")
        assert not formatter.use_colors

    def test_colors_level_name_only(self, monkeypatch):
        """Test that only the level name is colored, on a copy of the record."""
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm")
        with patch("sys.stderr.isatty", return_value=True):
            formatter = ColoredFormatter("%(levelname)s: %(message)s")
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "msg", None, None)

        output = formatter.format(record)

        assert output == "\033[31mERROR\033[0m: msg"
        assert record.levelname == "ERROR"


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs."""

    def test_keeps_newest(self, tmp_path):
        """Test that only the newest files are kept."""
        for day in range(5):
            path = tmp_path / f"contact_mirror_2024010{day}.log"
            path.write_text("x")
            os.utime(path, (1000 + day, 1000 + day))
        (tmp_path / "other.log").write_text("x")

        deleted = cleanup_old_logs(tmp_path, keep_count=2)

        assert deleted == 3
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == [
            "contact_mirror_20240103.log",
            "contact_mirror_20240104.log",
            "other.log",
        ]

    def test_zero_keeps_all(self, tmp_path):
        """Test that keep_count 0 disables cleanup."""
        (tmp_path / "contact_mirror_20240101.log").write_text("x")
        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_dir(self, tmp_path):
        """Test that a missing directory is ignored."""
        assert cleanup_old_logs(tmp_path / "nope") == 0


class TestGetLogger:
    """Tests for get_logger."""

    def test_prefixes_outside_names(self):
        """Test that names are placed under the package logger."""
        assert get_logger("daemon").name == "contact_mirror.daemon"
        assert get_logger("contact_mirror.cli").name == "contact_mirror.cli"
