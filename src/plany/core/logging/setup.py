from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .json_formatter import JSONFormatter

ROOT_LOGGER = "plany"
_HANDLER_TAG = "_plany_json_logging"
_CHATTY_LIBRARIES = ("httpx", "httpcore", "apscheduler")


def _level(name: str, default: str) -> int:
    return getattr(logging, os.getenv(name, default).strip().upper(), logging.INFO)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _tagged(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(JSONFormatter())
    setattr(handler, _HANDLER_TAG, True)
    return handler


def _has_handler(logger: logging.Logger, predicate) -> bool:
    return any(getattr(handler, _HANDLER_TAG, False) and predicate(handler) for handler in logger.handlers)


def configure_logging(state_dir: Path) -> logging.Logger:
    """Configure the ``plany`` logger tree. Safe to call more than once."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_level("PLANY_LOG_LEVEL", "INFO"))
    logger.propagate = False

    if not _has_handler(logger, lambda handler: not isinstance(handler, RotatingFileHandler)):
        logger.addHandler(_tagged(logging.StreamHandler(stream=sys.stdout)))

    if os.getenv("PLANY_LOG_TO_FILE", "on").strip().casefold() == "on":
        log_dir = Path(os.getenv("PLANY_LOG_DIR") or state_dir / "logs").expanduser()
        log_path = log_dir / "plany.log"

        def same_file(handler: logging.Handler) -> bool:
            return isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_path

        if not _has_handler(logger, same_file):
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.addHandler(
                _tagged(
                    RotatingFileHandler(
                        filename=log_path,
                        maxBytes=_env_int("PLANY_LOG_MAX_BYTES", 5_000_000),
                        backupCount=_env_int("PLANY_LOG_BACKUP_COUNT", 5),
                        encoding="utf-8",
                    )
                )
            )

    library_level = _level("PLANY_LOG_LIBRARY_LEVEL", "WARNING")
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    return logger
