"""Tests for the logger factory and the timing decorator."""

import logging

from pbrtapi.utils.logger import SUCCESS, RichLogger
from pbrtapi.utils.timing import _short_repr, timeit


class TestRichLogger:
    def test_loggers_are_cached(self):
        assert RichLogger.get_logger("pbrtapi.tests") is RichLogger.get_logger("pbrtapi.tests")

    def test_success_level_goes_to_file(self, tmp_path):
        log_file = str(tmp_path / "run.log")
        logger = RichLogger.get_logger("pbrtapi.tests.file")
        RichLogger.add_file_handler(log_file, logger)
        handler = RichLogger._file_handlers.pop(log_file)
        try:
            logger.success("model converted")
            handler.flush()
        finally:
            logger.removeHandler(handler)
            handler.close()
        content = (tmp_path / "run.log").read_text()
        assert "SUCCESS - model converted" in content

    def test_set_level(self):
        logger = RichLogger.get_logger("pbrtapi.tests.level")
        RichLogger.set_level("warning")
        try:
            assert logger.level == logging.WARNING
        finally:
            RichLogger.set_level("info")
        assert SUCCESS > logging.INFO


class TestTimeit:
    def test_wraps_and_returns(self):
        @timeit(log_level="info", with_args=True)
        def add(a, b):
            """Add two numbers."""
            return a + b

        assert add(2, 3) == 5
        assert add.__name__ == "add"
        assert add.__doc__ == "Add two numbers."

    def test_short_repr(self):
        assert _short_repr("x" * 10) == repr("x" * 10)
        assert _short_repr("x" * 100).endswith("...")
        assert len(_short_repr("x" * 100)) == 63
