"""
Tests for observability — logging setup from StackConfig.
"""

import logging

import pytest

from stackplane.core.config import StackConfig
from stackplane.core.observability.logging_config import (
    console_level,
    parse_level,
    setup_logging,
)


@pytest.fixture
def root_logger():
    """Restore the root logger after a test reconfigures it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("urllib3").setLevel(logging.NOTSET)


@pytest.fixture
def make_config(tmp_path):
    def _make(**kwargs):
        return StackConfig(state_root=tmp_path, **kwargs)
    return _make


class TestParseLevel:
    @pytest.mark.parametrize("name,expected", [
        ("DEBUG", logging.DEBUG),
        ("info", logging.INFO),
        ("Error", logging.ERROR),
        ("warn", logging.WARNING),
        (None, logging.WARNING),
        ("", logging.WARNING),
        ("chatty", logging.WARNING),
    ])
    def test_levels(self, name, expected):
        assert parse_level(name) == expected


class TestConsoleLevel:
    def test_default(self, make_config):
        assert console_level(make_config()) == logging.WARNING

    def test_from_config(self, make_config):
        assert console_level(make_config(log_level="info")) == logging.INFO

    def test_override_wins(self, make_config):
        assert console_level(make_config(log_level="info"), "ERROR") == logging.ERROR


class TestSetupLogging:
    def test_console_only(self, root_logger, make_config):
        setup_logging(make_config(log_level="INFO"))
        assert root_logger.level == logging.INFO
        [handler] = root_logger.handlers
        assert isinstance(handler, logging.StreamHandler)
        assert handler.level == logging.INFO

    def test_override(self, root_logger, make_config):
        setup_logging(make_config(log_level="INFO"), level_override="ERROR")
        assert root_logger.level == logging.ERROR

    def test_file_handler(self, root_logger, make_config, tmp_path):
        log_file = tmp_path / "stackplane.log"
        config = make_config(log_file=str(log_file), log_file_level="DEBUG")
        setup_logging(config)
        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 2

        logging.getLogger("stackplane.test").debug("written to file only")
        for handler in root_logger.handlers:
            handler.flush()
        assert "written to file only" in log_file.read_text()

    def test_file_level_follows_console(self, root_logger, make_config, tmp_path):
        config = make_config(log_level="ERROR", log_file=str(tmp_path / "sp.log"))
        setup_logging(config)
        assert [h.level for h in root_logger.handlers] == [logging.ERROR, logging.ERROR]

    def test_quiet_third_party(self, root_logger, make_config):
        setup_logging(make_config(log_level="INFO"))
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_debug_keeps_third_party(self, root_logger, make_config):
        setup_logging(make_config(log_level="DEBUG"))
        assert logging.getLogger("urllib3").level == logging.NOTSET

    def test_repeat_setup_closes_previous_file(self, root_logger, make_config, tmp_path):
        setup_logging(make_config(log_file=str(tmp_path / "first.log")))
        [_, first_file] = root_logger.handlers
        setup_logging(make_config(log_level="ERROR"))
        assert len(root_logger.handlers) == 1
        assert root_logger.level == logging.ERROR
        assert first_file.stream is None
