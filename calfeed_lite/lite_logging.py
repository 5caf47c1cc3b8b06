"""
Central logging configuration for calfeed_lite.

Suppresses verbose debug logs from third-party libraries while keeping the
package's own parser and expansion diagnostics available.
"""

import logging
import os
from typing import Optional

# Third-party loggers that are noisy at DEBUG
_NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "charset_normalizer": logging.WARNING,
}

_PACKAGE_LOGGERS = [
    "calfeed_lite",
    "calfeed_lite.lite_parser",
    "calfeed_lite.lite_rrule_expander",
    "calfeed_lite.lite_fetcher",
    "calfeed_lite.fetch_orchestrator",
    "calfeed_lite.calendar_service",
]


def configure_lite_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for calfeed_lite.

    Args:
        debug_mode: Whether to enable debug logging for calfeed_lite modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        CALFEED_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CALFEED_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("CALFEED_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("CALFEED_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Only add a plain handler if __init__._init_logging has not installed one
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s - %(name)s - %(message)s")
        )
        root_logger.addHandler(handler)

    logger_config = dict(_NOISY_LOGGERS)
    package_level = logging.DEBUG if final_debug else logging.INFO
    for module in _PACKAGE_LOGGERS:
        logger_config[module] = package_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for calfeed_lite modules")
    else:
        root_logger.debug("Production logging configuration applied")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ["calfeed_lite", "httpx", "asyncio"]:
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
