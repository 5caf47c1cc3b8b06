"""calfeed_lite - calendar feed parsing, recurrence expansion and day views.

Importing the package root pulls in nothing heavy. Only lite_fetcher (and the
service and CLI built on it) needs httpx.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Installs a colorized formatter on the root logger when no handler is
    present yet, so early startup messages are visible. Callers may adjust the
    level later (e.g. from config).

    The CALFEED_DEBUG environment variable (truthy values: "1", "true", "yes",
    "on") forces DEBUG verbosity to surface parser and expansion logs during
    troubleshooting without changing code.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("CALFEED_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message
        # Only the level is colorized; it is left-aligned to 7 chars.
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )
