"""
Logging configuration for the editor automation service.

Everything logs through module loggers (``logging.getLogger(__name__)``) that
propagate to the root logger; setup_logging() gives the root a coloured
console handler plus a rotating activity log and a rotating error log.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_LOG_DIR = os.getenv("LOG_DIR", "./logs")

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Third-party loggers that drown the pipeline's own messages
QUIET_LOGGERS = ("asyncio", "urllib3", "multipart")

_configured = False


class ColoredFormatter(logging.Formatter):
    """Console formatter that tints the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def format(self, record):
        # the same record is later formatted by the file handlers
        tinted = logging.makeLogRecord(record.__dict__)
        code = self.LEVEL_COLORS.get(record.levelno)
        if code:
            tinted.levelname = f"\033[{code}m{record.levelname}\033[0m"
        return super().format(tinted)


def _rotating(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(name: str = "cutout_automation", log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure the root logger once and return the logger called `name`.

    Writes <log_dir>/<name>.log (everything) and <log_dir>/<name>_errors.log
    (ERROR and above). Calling it again only returns the named logger.
    """
    global _configured
    if _configured:
        return logging.getLogger(name)

    directory = Path(log_dir or DEFAULT_LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    for handler in (
        console,
        _rotating(directory / f"{name}.log", logging.DEBUG),
        _rotating(directory / f"{name}_errors.log", logging.ERROR),
    ):
        root.addHandler(handler)

    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(logging.WARNING)

    _configured = True
    return logging.getLogger(name)
