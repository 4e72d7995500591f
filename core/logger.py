"""
Logging for the device registry.

One named logger, ``device_registry``, shared by routers, services and
middleware. Lifecycle transitions log at INFO on success, WARNING on a
rejected transition and ERROR (with traceback) when the database or storage
fails. Output goes to stdout and, unless ``LOG_FILE`` is empty, to a rotating
file.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def resolve_level(level: Union[int, str, None]) -> int:
    """Accept a logging constant or a name such as ``"debug"``; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    if config.DEBUG and level is None:
        return logging.DEBUG
    value = logging.getLevelName(str(level or config.LOG_LEVEL).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(
    name: str = "device_registry",
    log_file: Optional[Path] = None,
    level: Union[int, str, None] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None
) -> logging.Logger:
    """
    Configure ``name`` with a stdout handler and an optional rotating file handler.

    Args:
        name: Logger name
        log_file: Rotating log file; None logs to the console only
        level: Level constant or name (default: ``LOG_LEVEL``, DEBUG when ``DEBUG`` is set)
        max_bytes: Rotation size (default: ``LOG_MAX_BYTES``)
        backup_count: Rotated files kept (default: ``LOG_BACKUP_COUNT``)
    """
    level = resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Re-running setup replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes if max_bytes is not None else config.LOG_MAX_BYTES,
            backupCount=backup_count if backup_count is not None else config.LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = setup_logger(log_file=Path(config.LOG_FILE) if config.LOG_FILE else None)
