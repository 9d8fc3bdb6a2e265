"""Tests for logging utilities."""

import logging

import pytest

from common.logger import failure, get_logger, setup_logging, success


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging() so later tests keep pytest's capture handler."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestGetLogger:
    """Tests for get_logger function."""

    def test_returns_logger_instance(self):
        logger = get_logger("test.bookshelf")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.bookshelf"

    def test_default_level_is_info(self, monkeypatch):
        """Test that the level defaults to INFO without LOG_LEVEL."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        logger = get_logger("test.default")
        assert logger.level == logging.INFO

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        logger = get_logger("test.from_env")
        assert logger.level == logging.WARNING

    def test_custom_level(self):
        logger = get_logger("test.custom", level="DEBUG")
        assert logger.level == logging.DEBUG

    def test_reuses_existing_logger(self):
        """Test that get_logger does not add duplicate handlers."""
        logger1 = get_logger("test.reuse")
        logger2 = get_logger("test.reuse")
        assert logger1 is logger2
        assert len(logger2.handlers) == 1

    def test_logging_output(self, caplog):
        """Test that messages reach pytest's capture through propagation."""
        logger = get_logger("test.output")

        with caplog.at_level(logging.INFO):
            logger.info("Cloning https://example.org/a.git")

        assert "Cloning https://example.org/a.git" in caplog.text


class TestSetupLogging:
    def test_package_loggers_propagate_to_root(self, restore_root_logger):
        logger = get_logger("bookshelf.test_setup")

        setup_logging(level="DEBUG")

        assert logger.handlers == []
        assert logger.propagate is True
        assert logger.level == logging.DEBUG
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1

    def test_log_file(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "bookshelf.log"

        setup_logging(level="INFO", log_file=str(log_file))
        get_logger("bookshelf.test_file").warning("Ignoring unknown key 'colour'")
        for handler in restore_root_logger.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "WARNING" in content
        assert "Ignoring unknown key 'colour'" in content


def test_success_and_failure_lines(capsys):
    success("Built Alpha")
    failure("Beta failed")

    err = capsys.readouterr().err
    assert "✓ Built Alpha" in err
    assert "✗ Beta failed" in err
