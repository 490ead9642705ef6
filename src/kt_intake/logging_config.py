"""
KT Intake Logging Configuration

Handlers for the ``kt_intake`` package logger. Modules log through
``logging.getLogger(__name__)``; the CLI calls ``setup_logging`` once.
"""

import os
import logging
import sys
from pathlib import Path
from typing import Optional


ROOT_LOGGER = "kt_intake"

CONSOLE_FORMAT = "%(message)s"
DEBUG_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"


def debug_mode() -> bool:
    """True when ``KT_INTAKE_DEBUG`` asks for verbose output."""
    return os.environ.get("KT_INTAKE_DEBUG", "").lower() in ("1", "true", "yes")


def _console_handler(level: int, debug: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(DEBUG_CONSOLE_FORMAT if debug else CONSOLE_FORMAT))
    return handler


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    log_file: Optional[Path] = None,
    quiet: bool = False
) -> logging.Logger:
    """Attach console and file handlers to the package logger.

    Args:
        level: Console level (default: DEBUG if KT_INTAKE_DEBUG, else WARNING)
        log_file: Optional log file; it always receives DEBUG records
        quiet: If True, no console handler is added

    Returns:
        The ``kt_intake`` logger
    """
    debug = debug_mode()
    if level is None:
        level = logging.DEBUG if debug else logging.WARNING

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else level)

    # Replace handlers from an earlier call
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if not quiet:
        logger.addHandler(_console_handler(level, debug))
    if log_file:
        logger.addHandler(_file_handler(log_file))

    return logger


# Listed by `kt-intake config show`
ENV_VARS = {
    "KT_INTAKE_DEBUG": {
        "description": "Enable debug mode with verbose logging",
        "values": ["1", "true", "yes"],
        "default": "false"
    },
    "KT_INTAKE_HOME": {
        "description": "Override the directory holding config.yaml, .env and the store",
        "default": "~/.kt-intake"
    },
}
