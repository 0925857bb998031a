import logging
import os
import sys
from typing import Optional

LIBRARY_LOGGER = "proofbuild"

def get_logger(name: str) -> logging.Logger:
    """
    Returns a configured logger with the given name.
    Avoids duplicate handlers and respects PROOFBUILD_LOG_LEVEL.

    Loggers below "proofbuild." carry no handler of their own; they inherit
    the level and the stderr handler of the library logger.
    """
    logger = logging.getLogger(name)

    if name.startswith(LIBRARY_LOGGER + "."):
        get_logger(LIBRARY_LOGGER)
        logger.propagate = True
        return logger

    if not logger.handlers:
        # Get log level from environment variable
        log_level_str = os.getenv("PROOFBUILD_LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, log_level_str, logging.INFO))

        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%SZ"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # Ensure the logger doesn't propagate to a root logger that might have different settings
    logger.propagate = False

    return logger

def set_level(level: Optional[int]) -> None:
    """Overrides the library log level (CLI -v / -q)."""
    if level is None:
        return
    get_logger(LIBRARY_LOGGER).setLevel(level)

# Default library logger
logger = get_logger(LIBRARY_LOGGER)
