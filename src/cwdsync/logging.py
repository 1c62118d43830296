"""Logging setup shared by the CLI and embedding applications."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path
from typing import TextIO

LOGGER_NAME = "cwdsync"
LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEFAULT_LOG_PATH = Path("~/.config/cwdsync/logs/cwdsync.log")
_FALLBACK_LOG_PATH = Path(".cwdsync/logs/cwdsync.log")
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"
# `watch` shares the terminal with the shell, so console lines stay short.
_CONSOLE_FORMAT = "cwdsync %(levelname)s %(message)s"


def resolve_level(level: str) -> int:
    return LOG_LEVELS.get(level.strip().upper(), py_logging.INFO)


def _absolute(path: Path) -> Path:
    return path if path.is_absolute() else path.resolve()


def default_log_path() -> Path:
    try:
        return _absolute(DEFAULT_LOG_PATH.expanduser())
    except RuntimeError:
        return _absolute(_FALLBACK_LOG_PATH)


def _file_handler(log_file: str | Path) -> py_logging.Handler | None:
    try:
        path = Path(log_file).expanduser()
    except RuntimeError:
        path = Path(log_file)
    path = _absolute(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(path, encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(py_logging.Formatter(_FILE_FORMAT))
    return handler


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Route ``cwdsync.*`` records to ``stream`` at ``level`` and, if given, to a DEBUG log file."""
    console_level = resolve_level(level)

    logger = py_logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(py_logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    file_handler = _file_handler(log_file) if log_file else None
    if file_handler is not None:
        logger.addHandler(file_handler)
        logger.setLevel(py_logging.DEBUG)
    else:
        logger.setLevel(console_level)

    logger.propagate = False
    return logger
