"""Unit tests for logging setup and the JSON extras formatter."""

from __future__ import annotations

import json
import logging

import pytest

from keyword_selection.core.logging import JSONExtrasFormatter, setup_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="keyword_selection.services.slice_selection.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Selected keyword terms for cycle",
        args=(),
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


def test_formatter_appends_extras_as_json() -> None:
    formatter = JSONExtrasFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    line = formatter.format(_record(collection_coverage_key="atx", selected_terms=3))

    prefix, _, payload = line.partition(" {")
    assert "| INFO     | keyword_selection.services.slice_selection.service |" in prefix
    assert json.loads("{" + payload) == {"collection_coverage_key": "atx", "selected_terms": 3}


def test_formatter_omits_empty_extras() -> None:
    line = JSONExtrasFormatter().format(_record())

    assert line.endswith("Selected keyword terms for cycle")


@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger("keyword_selection")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    logger.handlers = []
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_setup_logging_is_idempotent(restore_package_logger: logging.Logger) -> None:
    setup_logging("debug")
    setup_logging("warning")

    assert len(restore_package_logger.handlers) == 1
    assert restore_package_logger.level == logging.WARNING
    assert restore_package_logger.propagate is False
    assert isinstance(restore_package_logger.handlers[0].formatter, JSONExtrasFormatter)


def test_setup_logging_defaults_unknown_level_names_to_info(
    restore_package_logger: logging.Logger,
) -> None:
    setup_logging("chatty")

    assert restore_package_logger.level == logging.INFO
