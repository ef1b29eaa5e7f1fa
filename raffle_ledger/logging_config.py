"""
Logging setup for the raffle ledger
Console output on stderr, an optional rotating ledger log file, and quieter
third-party loggers
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from .config import LOG_LEVEL

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)-8s %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)-8s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Libraries that log every statement or request at INFO
NOISY_LOGGERS = ('sqlalchemy.engine', 'urllib3', 'werkzeug')


def _file_handler(log_file, level):
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding='utf-8',
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_logging(app_name='raffle_ledger', log_level=None, log_file=None, stream=None):
    """
    Configure the package logger

    Every module logs through logging.getLogger(__name__), so configuring
    `raffle_ledger` covers the registry, escrow transfers, oracle traffic
    and the sweep at once.

    Args:
        app_name: Logger to configure
        log_level: Level name (defaults to LOG_LEVEL)
        log_file: Path of a rotating log file, or None for console only
        stream: Console stream (defaults to stderr; stdout carries command output)

    Returns:
        logging.Logger: The configured logger
    """
    numeric_level = getattr(logging, str(log_level or LOG_LEVEL).upper(), logging.INFO)

    logger = logging.getLogger(app_name)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(console_handler)

    if log_file:
        try:
            logger.addHandler(_file_handler(log_file, numeric_level))
            logger.info(f"📝 Ledger log file: {log_file}")
        except OSError as e:
            logger.error(f"Failed to open ledger log file {log_file}: {e}")

    if numeric_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.propagate = False
    return logger
