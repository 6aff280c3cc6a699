"""
Logging setup for the match_sync CLI.

Level and log file come from Config (MATCH_SYNC_LOG_LEVEL,
MATCH_SYNC_LOG_FILE). Every module logs through
``logging.getLogger(__name__)`` under the ``match_sync`` logger.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from ..config import Config, config as default_config

PACKAGE_LOGGER = 'match_sync'

# HTTP client libraries log every request at INFO
NOISY_LOGGERS = ('httpx', 'httpcore', 'urllib3')


def setup_logging(cfg: Optional[Config] = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the match_sync logger from a Config.

    Args:
        cfg: Config to read LOG_LEVEL, LOG_FILE and rotation settings from
        verbose: Force DEBUG regardless of LOG_LEVEL

    Returns:
        Configured package logger
    """
    cfg = cfg or default_config
    level = 'DEBUG' if verbose else cfg.LOG_LEVEL

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if cfg.LOG_FILE:
        log_path = Path(cfg.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=cfg.LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=cfg.LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger
