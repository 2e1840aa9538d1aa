"""Tests for logging setup."""

import logging
import os

import pytest

from warden.common.logger import get_logger, setup_logger


@pytest.fixture
def logger_name(request):
    name = f"warden.test.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class TestSetupLogger:
    """Test setup_logger."""

    def test_console_handler(self, logger_name):
        """Test default console logging."""
        logger = setup_logger(logger_name, level="DEBUG")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)

    def test_no_duplicate_handlers(self, logger_name):
        """Test repeated setup does not stack handlers."""
        setup_logger(logger_name)
        logger = setup_logger(logger_name)
        assert len(logger.handlers) == 1

    def test_file_handler(self, logger_name, tmp_path):
        """Test rotating file output when log_dir is set."""
        logger = setup_logger(logger_name, log_dir=str(tmp_path), console_logging=False)
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        log_file = tmp_path / f"{logger_name}.log"
        assert os.path.exists(log_file)
        assert "hello" in log_file.read_text()

    def test_invalid_level(self, logger_name):
        """Test that unknown levels are rejected."""
        with pytest.raises(ValueError):
            setup_logger(logger_name, level="VERBOSE")


class TestGetLogger:
    """Test get_logger naming."""

    def test_prefixes_component_names(self):
        """Test component names are placed under warden."""
        assert get_logger("resolver").name == "warden.resolver"

    def test_keeps_prefixed_names(self):
        """Test already-prefixed names are unchanged."""
        assert get_logger("warden.cache").name == "warden.cache"
        assert get_logger("warden").name == "warden"
