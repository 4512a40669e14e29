from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from papertrader.config import LogConfig
from papertrader.logging_setup import setup_logging


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_json_file_only(restore_root, tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "engine.log"
    setup_logging(LogConfig(level="INFO", json=True, file=str(log_file), console=False))

    assert [type(h) for h in restore_root.handlers] == [RotatingFileHandler]

    logging.getLogger("engine").info("Order filled", extra={"symbol": "ITC", "qty": 10})
    restore_root.handlers[0].flush()

    record = json.loads(log_file.read_text().splitlines()[-1])
    assert record["logger"] == "engine"
    assert record["level"] == "INFO"
    assert record["app"] == "papertrader"
    assert record["message"] == "Order filled"
    assert record["symbol"] == "ITC"
    assert record["qty"] == 10


def test_text_logs_with_console(restore_root, tmp_path: Path) -> None:
    log_file = tmp_path / "engine.log"
    setup_logging(LogConfig(level="warning", json=False, file=str(log_file)))

    assert len(restore_root.handlers) == 2
    assert restore_root.level == logging.WARNING

    logging.getLogger("risk").info("below threshold")
    logging.getLogger("risk").warning("Order rejected")
    for h in restore_root.handlers:
        h.flush()

    text = log_file.read_text()
    assert "WARNING risk: Order rejected" in text
    assert "below threshold" not in text


def test_setup_replaces_previous_handlers(restore_root, tmp_path: Path) -> None:
    cfg = LogConfig(file=str(tmp_path / "engine.log"), console=False)
    setup_logging(cfg)
    setup_logging(cfg)
    assert len(restore_root.handlers) == 1
