from __future__ import annotations

import logging
from io import StringIO

import pytest

import cutoff_portal.logging.init as log_init
from cutoff_portal.logging.init import LabeledFormatter, get_logger, log_summary, reset_logging, setup_logging


@pytest.fixture(autouse=True)
def _fresh_logger():
    reset_logging()
    yield
    reset_logging()


def _capture(logger: logging.Logger) -> StringIO:
    buf = StringIO()
    logger.handlers[0].setStream(buf)
    return buf


def test_setup_logging_configures_app_logger():
    logger = setup_logging()
    assert logger.name == "cutoff_portal"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_idempotent():
    logger1 = setup_logging()
    logger2 = setup_logging()
    assert logger1 is logger2
    assert len(logger1.handlers) == 1
    assert get_logger() is logger1


def test_labeled_prefixes():
    logger = setup_logging()
    buf = _capture(logger)
    logger.info("info message")
    logger.warning("warning message")
    logger.error("error message")
    log_summary("files=1 success=1")

    assert buf.getvalue().splitlines() == [
        "INFO info message",
        "WARN warning message",
        "ERROR error message",
        "SUMMARY files=1 success=1",
    ]
    assert logging.getLevelName(log_init.SUMMARY_LEVEL) == "SUMMARY"


def test_module_loggers_share_the_handler():
    logger = setup_logging()
    buf = _capture(logger)
    logging.getLogger("cutoff_portal.excel.extractor").warning("x.xlsx: no ranks")
    logging.getLogger("cutoff_portal.excel.extractor").debug("hidden at INFO")
    assert buf.getvalue().splitlines() == ["WARN x.xlsx: no ranks"]


def test_reset_logging_rebuilds_handler():
    first = setup_logging()
    handler = first.handlers[0]
    reset_logging()
    second = setup_logging()
    # same named logger, new handler
    assert second is first
    assert second.handlers[0] is not handler
    assert len(second.handlers) == 1
