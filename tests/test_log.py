"""Tests for logging setup."""

import logging

import pytest

from dev_journal.log import configure_logging


@pytest.fixture
def journal_logger():
    logger = logging.getLogger("dev_journal")
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield logger
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]
    logger.propagate = saved[2]


def test_configures_stderr_handler_once(journal_logger):
    configure_logging("DEBUG")
    configure_logging("DEBUG")

    handlers = [h for h in journal_logger.handlers if getattr(h, "_dev_journal", False)]
    assert len(handlers) == 1
    assert journal_logger.level == logging.DEBUG
    assert journal_logger.propagate is False


def test_unknown_level_falls_back_to_info(journal_logger):
    configure_logging("chatty")
    assert journal_logger.level == logging.INFO
