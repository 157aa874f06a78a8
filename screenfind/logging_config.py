"""Logging setup for scripts and applications embedding the finder."""
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LEVEL_ENV = "SCREENFIND_LOG_LEVEL"
MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3


def setup_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``screenfind`` logger hierarchy.

    Installs a console handler and, when ``log_file`` is given, a rotating
    file handler. The level defaults to ``SCREENFIND_LOG_LEVEL`` or INFO.
    Calling again replaces the handlers installed by the previous call.
    """
    if level is None:
        level = os.getenv(LEVEL_ENV, "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger("screenfind")
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    return root
