"""
Logging helpers for flowtest.

Every module logs to the console through a colored formatter. Loggers are
cached by name so repeated ``get_logger`` calls never stack handlers.

Usage:
    from shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Provisioning workflows")
"""

import logging
import sys
from typing import Dict, Union

_loggers: Dict[str, logging.Logger] = {}
_level: int = logging.INFO


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name for terminals."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, *args, use_color: bool = True, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        if self.use_color and original in self.COLORS:
            record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers may share the record
            record.levelname = original


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def get_logger(name: str) -> logging.Logger:
    """
    Get a console logger for ``name``.

    Args:
        name: Logger name (typically ``__name__``)

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(_level)
    logger.propagate = False
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ColoredFormatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            use_color=sys.stderr.isatty(),
        )
    )
    logger.addHandler(handler)

    _loggers[name] = logger
    return logger


def set_log_level(level: Union[int, str]) -> int:
    """Apply ``level`` to every flowtest logger, including ones created later."""
    global _level
    _level = _coerce_level(level)
    for logger in _loggers.values():
        logger.setLevel(_level)
    return _level


__all__ = ["ColoredFormatter", "get_logger", "set_log_level"]
