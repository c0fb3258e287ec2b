"""Tests for logger setup and terminal coloring."""

from __future__ import annotations

import logging
import sys

import pytest

from rostercheck.core.logging_config import ColoredFormatter, get_logger, setup_logging


class FakeTerminal:
    def __init__(self):
        self.lines = []

    def isatty(self):
        return True

    def write(self, text):
        self.lines.append(text)

    def flush(self):
        pass


@pytest.fixture
def fresh_logger():
    names = []

    def make(name):
        names.append(name)
        return name

    yield make
    for name in names:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_setup_is_idempotent(fresh_logger):
    name = fresh_logger("rostercheck_test.script")

    logger = setup_logging(name, level="debug")
    again = setup_logging(name, level="ERROR")

    assert again is logger
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert not logger.propagate


def test_file_lines_stay_uncolored_on_a_terminal(fresh_logger, monkeypatch, tmp_path):
    terminal = FakeTerminal()
    monkeypatch.setattr(sys, "stdout", terminal)
    log_file = tmp_path / "checkin.log"
    logger = setup_logging(fresh_logger("rostercheck_test.file"), level="INFO", log_file=str(log_file))

    logger.warning("Deep engine on cpu")
    for handler in logger.handlers:
        handler.flush()

    line = log_file.read_text()
    assert "WARNING" in line
    assert "Deep engine on cpu" in line
    assert "\033[" not in line
    assert any("\033[" in text for text in terminal.lines)


def test_colored_formatter_leaves_record_untouched(monkeypatch):
    monkeypatch.setattr(sys, "stdout", FakeTerminal())
    record = logging.LogRecord("rostercheck.assets", logging.ERROR, __file__, 1, "boom", None, None)

    text = ColoredFormatter("%(levelname)s %(name)s %(message)s").format(record)

    assert "\033[31m" in text
    assert record.levelname == "ERROR"
    assert record.name == "rostercheck.assets"


def test_package_loggers_share_root_handlers():
    logger = get_logger("rostercheck.services.orchestrator")

    assert logger.handlers == []
    assert get_logger("rostercheck") is logging.getLogger("rostercheck")
