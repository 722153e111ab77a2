"""
Logging configuration for Firm Match.

Every module logs through a child of the ``firm_match`` logger so one
call to ``setup_logging`` configures the matching pipeline, the
verification layer, and the glue scripts together.
"""

import logging
import sys
from pathlib import Path

from config.settings import settings

ROOT_LOGGER_NAME = "firm_match"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _log_dir() -> Path:
    if settings.LOG_DIR:
        return Path(settings.LOG_DIR)
    return settings.project_root / "logs"


def setup_logging(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Set up logging configuration.

    Console output goes to stdout; a per-logger file under the log
    directory is added unless LOG_TO_FILE is disabled.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))
    # Scripts may also call basicConfig; keep records off the root handlers
    logger.propagate = False

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.LOG_TO_FILE:
        log_dir = _log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(module: str) -> logging.Logger:
    """Return a child of the package logger, e.g. ``firm_match.matching.pipeline``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module}")


# Default logger
logger = setup_logging()
