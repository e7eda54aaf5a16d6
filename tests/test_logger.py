"""Tests for wildcheck.utils.logger."""

from __future__ import annotations

import logging

import pytest

from wildcheck.utils.logger import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    configure_logging()


def _file_handlers() -> list:
    root = logging.getLogger("wildcheck")
    return [h for h in root.handlers if isinstance(h, logging.FileHandler)]


def test_get_logger_namespaces_names() -> None:
    assert get_logger("wildcheck.core.pool").name == "wildcheck.core.pool"
    assert get_logger("helpers").name == "wildcheck.helpers"


def test_verbose_forces_debug() -> None:
    configure_logging(level=logging.WARNING, verbose=True)
    assert logging.getLogger("wildcheck").level == logging.DEBUG


def test_log_file_receives_records(tmp_path) -> None:
    log_file = tmp_path / "logs" / "run.log"
    configure_logging(level=logging.INFO, log_file=str(log_file))
    get_logger("wildcheck.engine").info("Classified %d names", 3)
    configure_logging()
    assert "Classified 3 names" in log_file.read_text(encoding="utf-8")


def test_reconfigure_closes_previous_file_handler(tmp_path) -> None:
    configure_logging(log_file=str(tmp_path / "first.log"))
    (first,) = _file_handlers()

    configure_logging(log_file=str(tmp_path / "second.log"))
    (second,) = _file_handlers()

    assert second is not first
    assert first.stream is None
    assert len(logging.getLogger("wildcheck").handlers) == 2
