"""
LabDash Webhooks - Central Logging Configuration

Three sinks:
    LOG_FILE        everything at LOG_LEVEL, rotated
    LOG_ERROR_FILE  ERROR and above only, rotated, for failed webhooks
    stdout          short lines at INFO (or the caller's console_level)
"""
import logging
import logging.handlers
import sys
from pathlib import Path

from . import config

DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

# Noisy at INFO, or duplicated by the request middleware
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "multipart")


def _rotating_handler(relative_path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    path = Path(config.BASE_DIR) / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=config.LOG_MAX_BYTES,
        backupCount=config.LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def configure_logging(console_level: int = logging.INFO) -> None:
    """Replace the root handlers. Safe to call again on reload."""
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    detailed = logging.Formatter(fmt=DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(fmt='%(levelname)s: %(message)s'))
    console_handler.setLevel(console_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(_rotating_handler(config.LOG_FILE, level, detailed))
    root_logger.addHandler(_rotating_handler(config.LOG_ERROR_FILE, logging.ERROR, detailed))
    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn.access").handlers = []
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"✅ Logging initialized. Writing to: {Path(config.BASE_DIR) / config.LOG_FILE}")
