"""Logging for Marginalia.

Everything logs under the ``marginalia`` logger. ``setup_logging`` hangs two
handlers off it: a rich console handler (level chosen by the CLI) and a
rotating ``marginalia.log`` in DATA_DIR that always records DEBUG.
Third-party loggers keep propagating to the root logger untouched, apart
from a few that are too chatty below WARNING.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

ROOT_LOGGER_NAME = "marginalia"
LOG_FILENAME = "marginalia.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

NOISY_LOGGERS = ("PIL", "ebooklib", "sqlalchemy")

_console_handler: Optional[RichHandler] = None


def _get_data_dir() -> Path:
    """DATA_DIR as config.py resolves it, read at call time."""
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    return Path(__file__).resolve().parents[1]


def _file_handler(log_file: Path) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def _rich_handler() -> RichHandler:
    # Tables go to stdout, logs to stderr
    console = Console(theme=Theme({"logging.level.info": "bold cyan"}), stderr=True)
    return RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """Attach the console and file handlers to the ``marginalia`` logger.

    Calling it again only changes the console level, so ``scan -v`` after an
    earlier setup still gets DEBUG output.

    Args:
        log_level: Console level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Override for the log file, defaults to DATA_DIR/marginalia.log
    """
    global _console_handler

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    if _console_handler is not None:
        _console_handler.setLevel(numeric_level)
        return logger

    _console_handler = _rich_handler()
    _console_handler.setLevel(numeric_level)

    logger.setLevel(logging.DEBUG)
    logger.addHandler(_file_handler(log_file or _get_data_dir() / LOG_FILENAME))
    logger.addHandler(_console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def reset_logging() -> None:
    """Detach and close the handlers installed by setup_logging."""
    global _console_handler

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _console_handler = None


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the ``marginalia`` hierarchy.

    Module names already start with ``marginalia.``; anything else is nested
    under it so setup_logging's handlers still apply.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
