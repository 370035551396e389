"""
Logging for the legal scanner.

Everything logs through children of the "legal_scanner" logger.  Output goes
to stderr: the CLI scripts print their JSON results on stdout and the two
streams must not mix.  The level comes from the caller, else from
LEGAL_SCANNER_LOG_LEVEL, else INFO.
"""

import logging
import os
import sys
from typing import Optional, TextIO, Union

PACKAGE_LOGGER = "legal_scanner"
LOG_LEVEL_ENV_VAR = "LEGAL_SCANNER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks handlers installed here so reconfiguring replaces only those
_OWNED = "_legal_scanner_handler"


def resolve_level(level: Union[int, str, None] = None) -> int:
    """
    Turn a level name or number into a logging level.

    None reads LEGAL_SCANNER_LOG_LEVEL; unknown names fall back to INFO.
    """
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV_VAR, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _own(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    setattr(handler, _OWNED, True)
    return handler


def setup_logger(
    level: Union[int, str, None] = None,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Configure the package logger and return it.

    Safe to call repeatedly (the CLIs call it again to apply -v): handlers
    from an earlier call are closed and replaced, never stacked.

    Args:
        level: Level number or name (default: LEGAL_SCANNER_LOG_LEVEL, else INFO)
        log_file: Also append to this file (UTF-8)
        stream: Console stream (default: sys.stderr at call time)

    Returns:
        The "legal_scanner" logger
    """
    level = resolve_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)

    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.addHandler(_own(logging.StreamHandler(stream or sys.stderr), level))
    if log_file:
        logger.addHandler(_own(logging.FileHandler(log_file, encoding="utf-8"), level))

    return logger


logger = setup_logger()


def get_module_logger(module_name: str) -> logging.Logger:
    """Child logger such as "legal_scanner.cache"; records go to the package handlers."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{module_name}")
