"""
Logging for Copy Trader.

All module loggers hang off the ``copytrader`` package logger, which owns
the handlers: a console stream with level-coloured tags when attached to a
terminal, and a size-rotated file under ``logs/``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "copytrader"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILENAME = "copytrader.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

_RESET = "\033[0m"
_LEVEL_COLORS = {
    "DEBUG": "\033[90m",
    "INFO": "\033[92m",
    "WARNING": "\033[93m",
    "ERROR": "\033[91m",
    "CRITICAL": "\033[1;91m",
}


class ConsoleFormatter(logging.Formatter):
    """Shortens module names and colours the level tag on terminals."""

    def __init__(self, use_color: bool):
        super().__init__(LOG_FORMAT, DATE_FORMAT)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        record = logging.makeLogRecord(record.__dict__)
        if record.name.startswith(PACKAGE_LOGGER + "."):
            record.name = record.name[len(PACKAGE_LOGGER) + 1:]
        if self._use_color and record.levelname in _LEVEL_COLORS:
            record.levelname = f"{_LEVEL_COLORS[record.levelname]}{record.levelname}{_RESET}"
        return super().format(record)


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        return getattr(logging, level.strip().upper(), logging.INFO)
    return level


def _default_log_file() -> Path:
    log_dir = os.getenv("LOG_DIR")
    directory = Path(log_dir) if log_dir else Path.cwd() / "logs"
    return directory / LOG_FILENAME


def setup_logger(
    name: str = PACKAGE_LOGGER,
    level: int | str | None = None,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """
    Configure the package logger and return the logger for ``name``.

    Handlers are attached once; later calls only adjust the level. Set
    ``LOG_FILE=off`` to disable the file handler.

    Args:
        name: Logger name, typically the module's ``__name__``
        level: Log level. Defaults to the LOG_LEVEL env var or INFO
        log_file: Log file path. Defaults to ``$LOG_DIR/copytrader.log``
            or ``./logs/copytrader.log``

    Example:
        >>> logger = setup_logger("copytrader.sync.controller", level="DEBUG")
        >>> logger.info("Sync loop started")
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    resolved_level = _resolve_level(level)

    if not package_logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
        package_logger.addHandler(console)

        if os.getenv("LOG_FILE", "").lower() != "off":
            path = Path(log_file) if log_file else _default_log_file()
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=MAX_LOG_BYTES,
                backupCount=LOG_BACKUPS,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            package_logger.addHandler(file_handler)

        package_logger.propagate = False
        package_logger.setLevel(resolved_level)
    elif level is not None:
        package_logger.setLevel(resolved_level)

    return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger under the ``copytrader`` package logger.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Fetched 3 positions")
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        return setup_logger(name)
    return logging.getLogger(name)


def set_level(level: int | str) -> None:
    """Change the level of every copytrader logger."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(_resolve_level(level))
