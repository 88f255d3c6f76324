# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for the migrator.

Every module logs through ``logging.getLogger("flowmigrate.<component>")``;
``setup_logging`` attaches console and rotating file handlers to the
``flowmigrate`` root logger once per process.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "flowmigrate"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str) -> int:
    """Convert string level to logging constant"""
    return LEVELS.get(level.upper(), logging.INFO)


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    console_output: bool = True,
    file_output: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the ``flowmigrate`` logger hierarchy.

    Args:
        level: Log level; falls back to FLOWMIGRATE_LOG_LEVEL, then INFO
        log_dir: Directory for ``flowmigrate.log``
        console_output: Log to stderr
        file_output: Rotating file log; disabled by FLOWMIGRATE_NO_FILE_LOGS=true

    Returns:
        The configured root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)

    # Clear any existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_level = _parse_level(level or os.getenv("FLOWMIGRATE_LOG_LEVEL", "INFO"))
    logger.setLevel(logging.DEBUG)

    if file_output is None:
        file_output = os.getenv("FLOWMIGRATE_NO_FILE_LOGS", "false").lower() != "true"

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter(
                fmt="[%(asctime)s] [%(name)s:%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        console_handler.setLevel(log_level)
        logger.addHandler(console_handler)

    if file_output:
        if log_dir is None:
            log_dir = Path.home() / ".flowmigrate" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        # Rotate after 10MB, keep 5 backup files
        file_handler = RotatingFileHandler(
            log_dir / f"{ROOT_LOGGER}.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Child logger of the ``flowmigrate`` hierarchy"""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
