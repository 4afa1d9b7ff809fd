"""Tests for logging setup."""

import io
import logging

import pytest

from reelscribe.utils.logger import DEPENDENCY_LOGGERS, TqdmConsoleHandler, setup_logger


@pytest.fixture
def restore_dependency_levels():
    yield
    for name in DEPENDENCY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def test_console_handler_writes_formatted_line():
    stream = io.StringIO()
    handler = TqdmConsoleHandler(stream)
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    record = logging.LogRecord("reelscribe", logging.INFO, __file__, 1, "字幕 %s", ("ready",), None)

    handler.emit(record)

    assert stream.getvalue() == "INFO 字幕 ready\n"


def test_file_output_is_utf8(tmp_path, restore_dependency_levels):
    log_file = tmp_path / "logs" / "run.log"
    log = setup_logger("reelscribe.test_file", "INFO", str(log_file))
    log.info("こんにちは")
    for handler in log.handlers:
        handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "こんにちは" in content
    assert "test_logger.py:" in content


def test_repeated_setup_replaces_handlers(restore_dependency_levels):
    setup_logger("reelscribe.test_repeat", "INFO")
    log = setup_logger("reelscribe.test_repeat", "WARNING")
    assert len(log.handlers) == 1
    assert log.level == logging.WARNING


@pytest.mark.parametrize("level, expected", [
    ("INFO", logging.WARNING),
    ("WARNING", logging.WARNING),
    ("DEBUG", logging.DEBUG),
])
def test_dependency_loggers_follow_app_level(level, expected, restore_dependency_levels):
    setup_logger("reelscribe.test_deps", level)
    assert {logging.getLogger(name).level for name in DEPENDENCY_LOGGERS} == {expected}


def test_unknown_level_falls_back_to_info(restore_dependency_levels):
    assert setup_logger("reelscribe.test_level", "chatty").level == logging.INFO
