"""
Logging for sleepfeed.

Two streams share one stdout handler:

- "sleepfeed.*" application loggers (get_logger), plain text.
- "sleepfeed.requests", one JSON object per API request (log_request).
  It is switched on and off by Settings.enable_request_logging; the level
  of each line follows the response status.

configure_logging() is called by the application factory and may be called
again (tests build many apps); the handler is installed only once.
"""
import json
import logging
import sys
from typing import Any, Dict

ROOT_LOGGER_NAME = "sleepfeed"
REQUEST_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.requests"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(ROOT_LOGGER_NAME)
# Prevent propagation to root logger (avoid duplicate logs)
logger.propagate = False

request_logger = logging.getLogger(REQUEST_LOGGER_NAME)


def configure_logging(level: str = "INFO", request_logging: bool = True) -> logging.Logger:
    """Install the stdout handler (once), apply `level` and toggle request lines."""
    if not any(getattr(h, "_sleepfeed_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._sleepfeed_handler = True
        logger.addHandler(handler)

    logger.setLevel(level.upper())
    request_logger.disabled = not request_logging
    return logger


def log_request(entry: Dict[str, Any]) -> None:
    """
    Emit one request entry as a JSON line.

    5xx and raised requests log at ERROR, other 4xx at WARNING, the rest at INFO.
    """
    status = entry.get("status") or 0
    if status >= 500 or entry.get("error"):
        level = logging.ERROR
    elif status >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    request_logger.log(level, json.dumps(entry, default=str))


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional name for the logger (will be appended to 'sleepfeed')

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logger
