"""Tests for logger.py -- setup_logging(), resolve_level() and JsonFormatter.

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from minicpan.logger import JsonFormatter, resolve_level, setup_logging

# ---------------------------------------------------------------------------
# resolve_level tests
# ---------------------------------------------------------------------------


class TestResolveLevel:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("debug", logging.DEBUG),
            ("info", logging.INFO),
            ("warn", logging.WARNING),
            ("warning", logging.WARNING),
            ("error", logging.ERROR),
            ("fatal", logging.CRITICAL),
            ("critical", logging.CRITICAL),
            (" WARN ", logging.WARNING),
        ],
    )
    def test_known_names(self, name, expected):
        assert resolve_level(name) == expected

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="unknown logging level: chatty"):
            resolve_level("chatty")


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("minicpan.logger.logging.basicConfig")
    def test_logs_to_stderr(self, mock_basic):
        """Passes StreamHandler(stderr) to basicConfig."""
        setup_logging()

        mock_basic.assert_called_once()
        kwargs = mock_basic.call_args[1]
        handlers = kwargs["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr
        assert kwargs["force"] is True

    @patch("minicpan.logger.logging.basicConfig")
    def test_default_level_is_info(self, mock_basic):
        setup_logging()

        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("minicpan.logger.logging.basicConfig")
    def test_fatal_only_shows_critical(self, mock_basic):
        """-qq maps to "fatal", which hides per-file warnings."""
        setup_logging(level="fatal")

        assert mock_basic.call_args[1]["level"] == logging.CRITICAL

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            setup_logging(level="loud")

    @patch("minicpan.logger.logging.basicConfig")
    def test_log_file_adds_file_handler(self, mock_basic, tmp_path):
        """log_file creates both stderr and file handlers."""
        log_file = str(tmp_path / "minicpan.log")
        setup_logging(log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [
            h for h in handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename == log_file
        for h in file_handlers:
            h.close()

    @patch("minicpan.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic, tmp_path):
        """debug_format='json' sets JsonFormatter on every handler."""
        setup_logging(
            log_file=str(tmp_path / "minicpan.log"), debug_format="json"
        )

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)
        for h in handlers:
            if isinstance(h, logging.FileHandler):
                h.close()

    @patch("minicpan.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic):
        """Non-DEBUG levels silence urllib3/requests loggers."""
        setup_logging(level="info")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def _record(self, msg, args=(), exc_info=None, level=logging.INFO):
        return logging.LogRecord(
            name="minicpan.mirror.engine",
            level=level,
            pathname="engine.py",
            lineno=1,
            msg=msg,
            args=args,
            exc_info=exc_info,
        )

    def test_basic_output(self):
        """Formatted output is valid JSON with required keys."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")

        data = json.loads(
            formatter.format(self._record("%s ... updated", ("RECENT",)))
        )

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "minicpan.mirror.engine"
        assert data["msg"] == "RECENT ... updated"

    def test_includes_exception(self):
        """Exception info is included in 'exc' key."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")

        try:
            raise OSError("disk full")
        except OSError:
            exc_info = sys.exc_info()

        output = formatter.format(
            self._record("write failed", exc_info=exc_info, level=logging.ERROR)
        )
        data = json.loads(output)

        assert "OSError" in data["exc"]
        assert "disk full" in data["exc"]
        assert "\n" not in output
