"""
Central logging configuration for wallcal.

Quiets chatty third-party loggers, sets the wallcal level from the debug
flag and stamps every record with the request correlation ID.
"""

import logging
import os
from typing import Optional

from ..api.middleware.correlation_id import get_request_id


class CorrelationIdFilter(logging.Filter):
    """Add the request correlation ID to every log record as ``request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


# Third-party loggers and the level they are held at
NOISY_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
    "paho": logging.WARNING,
}


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> int:
    """Configure wallcal and third-party log levels.

    Args:
        debug_mode: Enable DEBUG for wallcal modules
        force_debug: Override debug mode (None to honour WALLCAL_DEBUG)

    Returns:
        The root log level that was applied

    Environment Variables:
        WALLCAL_DEBUG: '1', 'true', 'yes' or 'on' forces debug logging
        WALLCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("WALLCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")
    env_log_level = os.getenv("WALLCAL_LOG_LEVEL", "").strip().upper()

    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or env_debug

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    for handler in root_logger.handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger("wallcal").setLevel(logging.DEBUG if final_debug else logging.INFO)

    logging.getLogger(__name__).debug(
        "Logging configured: root=%s debug=%s", logging.getLevelName(root_level), final_debug
    )
    return root_level
