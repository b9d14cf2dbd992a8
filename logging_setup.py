#!/usr/bin/env python3
from __future__ import annotations

import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

from config import _env, _env_bool, _env_int

# Chatty client libraries; their INFO/DEBUG output drowns the request log.
_QUIET_LOGGERS = ("pymongo", "httpx", "httpcore")


def _level_from_str(level: str) -> int:
    s = str(level or "").strip().upper()
    if not s:
        return logging.INFO
    if s.isdigit():
        return int(s)
    num = logging.getLevelName(s)
    return num if isinstance(num, int) else logging.INFO


def _log_path(app_name: str) -> Path:
    log_file = _env("LOG_FILE").strip()
    if log_file:
        return Path(log_file).expanduser()
    return Path(_env("LOG_DIR", "logs")).expanduser() / f"{app_name}.log"


def _file_handler(path: Path, formatter: logging.Formatter, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = RotatingFileHandler(
        filename=str(path),
        maxBytes=max(0, _env_int("LOG_MAX_BYTES", 5 * 1024 * 1024)),
        backupCount=max(0, _env_int("LOG_BACKUP_COUNT", 5)),
        encoding="utf-8",
        delay=True,
    )
    fh.setLevel(level)
    fh.setFormatter(formatter)
    return fh


def _stream_handler(formatter: logging.Formatter, level: int) -> logging.Handler:
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    return sh


def setup_logging(app_name: str, debug_default: bool = False) -> logging.Logger:
    """Configure the root logger for one dashboard process.

    Environment variables:
      LOG_DIR=logs
      LOG_FILE=            (overrides LOG_DIR/{app_name}.log)
      LOG_LEVEL=INFO|DEBUG|...
      LOG_TO_STDOUT=1
      LOG_TO_FILE=1
      LOG_MAX_BYTES=5242880
      LOG_BACKUP_COUNT=5
      LOG_UTC=0
      LOG_FORMAT='[%(asctime)s] %(levelname)s %(name)s: %(message)s'
      LOG_DATEFMT='%Y-%m-%dT%H:%M:%S'

    Handlers go on the root logger so uvicorn (run with log_config=None) logs
    through them as well. Calling this again replaces the previous handlers.
    """
    level = _env("LOG_LEVEL").strip() or ("DEBUG" if debug_default else "INFO")
    level_num = _level_from_str(level)

    formatter = logging.Formatter(
        fmt=_env("LOG_FORMAT", "[%(asctime)s] %(levelname)s %(name)s: %(message)s"),
        datefmt=_env("LOG_DATEFMT", "%Y-%m-%dT%H:%M:%S"),
    )
    if _env_bool("LOG_UTC", False):
        formatter.converter = time.gmtime

    root = logging.getLogger()
    root.setLevel(level_num)
    for h in list(root.handlers):
        root.removeHandler(h)

    handlers: List[logging.Handler] = []
    if _env_bool("LOG_TO_FILE", True):
        try:
            handlers.append(_file_handler(_log_path(app_name), formatter, level_num))
        except OSError:
            # Unwritable log dir: keep going with stdout only.
            pass
    if _env_bool("LOG_TO_STDOUT", True) or not handlers:
        handlers.append(_stream_handler(formatter, level_num))

    for h in handlers:
        root.addHandler(h)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level_num, logging.WARNING))

    logging.captureWarnings(True)
    return logging.getLogger(app_name)
