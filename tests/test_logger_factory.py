from __future__ import annotations

import logging
from pathlib import Path

from ibadah.logging_utils import LoggerFactory


def test_logger_factory_writes_to_rotating_file(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "ibadah.log"
    logger = LoggerFactory.create("test_ibadah_logger", log_file=log_path, level="DEBUG")
    logger.debug("dispatch sweep started")

    for handler in logger.handlers:
        handler.flush()

    assert log_path.exists()
    assert "dispatch sweep started" in log_path.read_text(encoding="utf-8")

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_logger_factory_configures_once() -> None:
    first = LoggerFactory.create("test_ibadah_once")
    second = LoggerFactory.create("test_ibadah_once", level=logging.ERROR)

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.INFO

    for handler in list(second.handlers):
        second.removeHandler(handler)
