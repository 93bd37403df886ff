"""Logging setup for the Media Share server and its uvicorn host."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# uvicorn runs with ``log_config=None`` so its records reach the root handlers.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_INSTALLED_ATTRIBUTE = "_mediashare_handler"


def get_log_file_path(cache_root: Path) -> Path:
    return cache_root / "mediashare.log"


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _INSTALLED_ATTRIBUTE, True)
    return handler


def configure_logging(
    level: int = logging.INFO,
    *,
    log_file: Optional[Path] = None,
    console: bool = True,
) -> logging.Logger:
    """Install console and file handlers on the root logger.

    Handlers installed by an earlier call are replaced, so restarting the
    server inside one process does not duplicate every line. Access logs are
    only kept at ``DEBUG`` level.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _INSTALLED_ATTRIBUTE, False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(_mark(handler))
    root.setLevel(level)

    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True
    logging.getLogger("uvicorn.access").setLevel(
        logging.INFO if level <= logging.DEBUG else logging.WARNING
    )
    return root


__all__ = ["DEFAULT_LOG_FORMAT", "configure_logging", "get_log_file_path"]
