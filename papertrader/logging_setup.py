from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from papertrader.config import LogConfig

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _formatter(cfg: LogConfig) -> logging.Formatter:
    if not cfg.json_logs:
        return logging.Formatter(TEXT_FORMAT)
    # Engine events carry their payload in ``extra``; JSON keeps those fields queryable.
    return jsonlogger.JsonFormatter(
        fmt=JSON_FORMAT,
        rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
        static_fields={"app": "papertrader"},
    )


def setup_logging(cfg: LogConfig) -> None:
    """Route every logger through a rotating file and, unless disabled, the console.

    Safe to call once per CLI command: existing root handlers are replaced.
    """
    level = getattr(logging, cfg.level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    formatter = _formatter(cfg)
    Path(cfg.file).parent.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [
        RotatingFileHandler(cfg.file, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8")
    ]
    if cfg.console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
