"""Logging helper shared by decoders, caches and renderers."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER_NAME = "tiff_visualizer"


class _ImageFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "image"):
            record.image = "-"
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for console output.

    Parameters
    ----------
    name : str
        Module name, typically ``__name__``.
    """
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        base.setLevel(logging.WARNING)
        handler = logging.StreamHandler()
        handler.setLevel(logging.WARNING)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(module)s image=%(image)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        handler.addFilter(_ImageFilter())
        base.addHandler(handler)
        base.propagate = False
    if name.startswith(f"{_LOGGER_NAME}."):
        name = name[len(_LOGGER_NAME) + 1 :]
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def set_level(level: int) -> None:
    """Update log level for the package logger and all of its handlers."""
    base = logging.getLogger(_LOGGER_NAME)
    base.setLevel(level)
    for handler in base.handlers:
        handler.setLevel(level)


def attach_handler(handler: Optional[logging.Handler]) -> None:
    """Attach an extra handler (e.g. a host application's log view)."""
    if handler is None:
        return
    base = logging.getLogger(_LOGGER_NAME)
    if handler not in base.handlers:
        handler.addFilter(_ImageFilter())
        base.addHandler(handler)
