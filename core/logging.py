"""Shared logging helpers."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Optional

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_FILE_HANDLERS: Dict[str, logging.Handler] = {}


def setup_logging(level: int = logging.INFO, *, fmt: Optional[str] = None) -> None:
    """Ensure root logger is configured once."""
    global _CONFIGURED
    if not _CONFIGURED:
        logging.basicConfig(level=level, format=fmt or _DEFAULT_FORMAT)
        _CONFIGURED = True


def get_logger(name: str, *, level: int = logging.INFO) -> logging.Logger:
    """Return configured logger for a module."""
    setup_logging(level=level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def attach_file_handler(
    path_template: str,
    *,
    logger_name: str = "services",
    level: int = logging.INFO,
) -> Optional[Path]:
    """Append records of ``logger_name`` to a file.

    ``path_template`` is expanded with :func:`time.strftime`, so a template like
    ``logs/auth-%Y-%m-%d.log`` yields one file per day. Attaching the same
    resolved path twice is a no-op.
    """

    if not path_template:
        return None
    path = Path(time.strftime(path_template)).expanduser()
    key = f"{logger_name}:{path}"
    if key in _FILE_HANDLERS:
        return path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).warning("Failed to open log file %s: %s", path, exc)
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
    logging.getLogger(logger_name).addHandler(handler)
    _FILE_HANDLERS[key] = handler
    return path


def detach_file_handlers() -> None:
    """Close and remove every handler added by :func:`attach_file_handler`."""
    for key, handler in list(_FILE_HANDLERS.items()):
        logger_name = key.split(":", 1)[0]
        logging.getLogger(logger_name).removeHandler(handler)
        handler.close()
        _FILE_HANDLERS.pop(key, None)


__all__ = ["attach_file_handler", "detach_file_handlers", "get_logger", "setup_logging"]
