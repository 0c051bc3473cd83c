"""Logging setup for alto-agent.

Every module logs through ``get_logger(__name__)``; the loggers are children
of ``alto_agent`` and inherit whatever ``setup_logger`` installed there.
The terminal only shows warnings (info with ``--verbose``) so log lines do not
tear through streamed model output; the rotating file keeps the full record.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

__all__ = ["setup_logger", "get_logger", "PACKAGE_LOGGER"]

PACKAGE_LOGGER = "alto_agent"
DEFAULT_LOG_FILE = Path("~/.alto/logs/alto.log").expanduser()
CONSOLE_FORMAT = "[%(levelname).1s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

# HTTP stack loggers that are chatty at INFO/DEBUG.
QUIET_LOGGERS = ("urllib3", "requests", "charset_normalizer")

LogTarget = Union[str, Path, bool, None]


def setup_logger(verbose: bool = False, log_file: LogTarget = None,
                 name: str = PACKAGE_LOGGER) -> logging.Logger:
    """Install console and file handlers on the package logger.

    ``log_file``: ``None``/``True`` selects ``~/.alto/logs/alto.log``,
    ``False`` turns file logging off, anything else is a path.
    Calling it again replaces the previous handlers.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    detail = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(detail)
    logger.propagate = False
    logger.addHandler(_console_handler(logging.INFO if verbose else logging.WARNING))

    path = _log_path(log_file)
    if path is not None:
        logger.addHandler(_file_handler(path, detail))

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES,
                                  backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _log_path(log_file: LogTarget) -> Path | None:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return DEFAULT_LOG_FILE
    return Path(log_file).expanduser()
