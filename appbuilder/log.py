"""Console logging for the package."""

from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "appbuilder"

_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[90m",
    logging.INFO: "\x1b[34m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[31m",
}

_initialized = False


class _ConsoleFormatter(logging.Formatter):
    """Renders ``level message key=value ...``; fields come from ``extra={"fields": {...}}``."""

    def __init__(self, colored: bool) -> None:
        super().__init__()
        self._colored = colored

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname.lower()
        if self._colored:
            level = f"{_LEVEL_COLORS.get(record.levelno, '')}{level}{_RESET}"
        fields = getattr(record, "fields", None) or {}
        text = f"  {level} {record.getMessage()}"
        text += "".join(f" {key}={value}" for key, value in fields.items())
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def is_colored() -> bool:
    """Whether log output should carry colour codes."""
    force_color = os.environ.get("FORCE_COLOR")
    if force_color is not None and force_color in ("1", "true", ""):
        return True
    if force_color in ("0", "false") or os.environ.get("TERM") == "dumb":
        return False
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


def init_logger() -> logging.Logger:
    """Configure the package logger to write to standard error."""
    global _initialized
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    debug = os.environ.get("DEBUG")
    logger.setLevel(logging.DEBUG if debug is not None and debug != "false" else logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_ConsoleFormatter(is_colored()))
    logger.addHandler(handler)
    logger.propagate = False
    _initialized = True
    return logger


def get_logger() -> logging.Logger:
    """The package logger, configured on first use."""
    if not _initialized:
        return init_logger()
    return logging.getLogger(LOGGER_NAME)


def is_debug_enabled() -> bool:
    """Whether debug messages are written; false before configuration."""
    if not _initialized:
        return False
    return logging.getLogger(LOGGER_NAME).isEnabledFor(logging.DEBUG)