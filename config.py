"""Runtime settings for the SEO change monitor."""
import os
import sys

from loguru import logger

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///seo_monitor.db")

FETCH_TIMEOUT = int(os.environ.get("FETCH_TIMEOUT", "30"))  # seconds
MAX_WORKERS = int(os.environ.get("MAX_WORKERS", "4"))
STUCK_RUN_HOURS = int(os.environ.get("STUCK_RUN_HOURS", "1"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE")

FREQUENCIES = ("Daily", "Weekly", "Monthly")


def setup_logging():
    """Configure loguru stderr logging, plus a rotating file when LOG_FILE is set."""
    logger.remove()
    logger.add(sys.stderr, level=LOG_LEVEL, format="{time:HH:mm:ss} | {level: <8} | {message}")
    if LOG_FILE:
        logger.add(
            LOG_FILE,
            rotation="5 MB",
            retention=5,
            level=LOG_LEVEL,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )
