"""
Tests for logger setup.
"""
import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler

import pytest

from refill_guard.logger import setup_logger


@pytest.fixture
def logger_name(request):
    name = f"refill_guard_test.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def file_handlers(logger):
    return [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]


class TestSetupLogger:
    """Test handler wiring."""

    def test_console_handler_only_by_default(self, logger_name):
        """Test that only a console handler is attached without a log file."""
        logger = setup_logger(logging.INFO, name=logger_name)

        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0], RotatingFileHandler)

    def test_file_handler_writes(self, logger_name):
        """Test that records reach the rotating log file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = os.path.join(temp_dir, "logs", "refill.log")

            logger = setup_logger(logging.INFO, log_path, name=logger_name)
            logger.info("Refill received")
            for handler in logger.handlers:
                handler.flush()

            assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
            with open(log_path, encoding="utf-8") as f:
                assert "Refill received" in f.read()

            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

    def test_repeated_setup_does_not_duplicate_handlers(self, logger_name):
        """Test that a second call reuses the console handler."""
        setup_logger(logging.WARNING, name=logger_name)
        logger = setup_logger(logging.DEBUG, name=logger_name)

        assert len(logger.handlers) == 1
        assert logger.handlers[0].level == logging.DEBUG

    def test_log_file_added_on_later_call(self, logger_name):
        """Test that a log file passed after the first setup is still attached."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = os.path.join(temp_dir, "refill.log")

            setup_logger(logging.INFO, name=logger_name)
            logger = setup_logger(logging.INFO, log_path, name=logger_name)
            logger.info("Dose logged")
            for handler in logger.handlers:
                handler.flush()

            assert len(logger.handlers) == 2
            assert len(file_handlers(logger)) == 1
            with open(log_path, encoding="utf-8") as f:
                assert "Dose logged" in f.read()

            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

    def test_same_log_file_not_added_twice(self, logger_name):
        """Test that repeating the same log file keeps one file handler."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = os.path.join(temp_dir, "refill.log")

            setup_logger(logging.INFO, log_path, name=logger_name)
            logger = setup_logger(logging.DEBUG, log_path, name=logger_name)

            assert len(file_handlers(logger)) == 1
            assert file_handlers(logger)[0].level == logging.DEBUG

            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
