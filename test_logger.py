#!/usr/bin/env python3
"""
Tests for the logging setup.

Each test reconfigures the shared "legal_scanner" logger, so a fixture puts
the default configuration back afterwards.
"""

import io
import logging
import sys

import pytest

from legal_scanner.logger import (
    LOG_LEVEL_ENV_VAR,
    get_module_logger,
    resolve_level,
    setup_logger,
)


@pytest.fixture(autouse=True)
def restore_default_logging(monkeypatch):
    monkeypatch.delenv(LOG_LEVEL_ENV_VAR, raising=False)
    yield
    setup_logger(level=logging.INFO)


def test_module_loggers_write_through_package_handler():
    stream = io.StringIO()
    setup_logger(level=logging.INFO, stream=stream)

    get_module_logger("cache").info("Cache hit for https://example.com/terms")

    line = stream.getvalue().strip()
    assert " - legal_scanner.cache - INFO - Cache hit for https://example.com/terms" in line


def test_repeated_setup_replaces_handlers():
    first, second = io.StringIO(), io.StringIO()

    setup_logger(stream=first)
    logger = setup_logger(level="debug", stream=second)
    get_module_logger("scanner").debug("Scan found 2 candidates")

    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert first.getvalue() == ""
    assert "Scan found 2 candidates" in second.getvalue()


def test_records_below_level_are_dropped():
    stream = io.StringIO()
    setup_logger(level=logging.WARNING, stream=stream)

    get_module_logger("retry").info("Attempt 1 failed")
    get_module_logger("retry").warning("Attempt 2 failed")

    assert "Attempt 1" not in stream.getvalue()
    assert "Attempt 2" in stream.getvalue()


def test_console_output_defaults_to_stderr():
    logger = setup_logger()

    assert logger.handlers[0].stream is sys.stderr


def test_log_file_handler_is_added_and_later_closed(tmp_path):
    log_file = tmp_path / "scanner.log"

    logger = setup_logger(log_file=str(log_file), stream=io.StringIO())
    get_module_logger("service").error("Document fetch failed: HTTP 404")
    file_handler = next(h for h in logger.handlers if isinstance(h, logging.FileHandler))

    setup_logger(stream=io.StringIO())

    assert "Document fetch failed: HTTP 404" in log_file.read_text(encoding="utf-8")
    assert file_handler not in logger.handlers
    assert file_handler.stream is None


@pytest.mark.parametrize("value, expected", [
    ("debug", logging.DEBUG),
    (" Warning ", logging.WARNING),
    (logging.ERROR, logging.ERROR),
    ("chatty", logging.INFO),
])
def test_resolve_level(value, expected):
    assert resolve_level(value) == expected


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "ERROR")

    assert resolve_level() == logging.ERROR
    assert setup_logger(stream=io.StringIO()).level == logging.ERROR
