"""
Core package: settings, logging, security helpers and service errors.
Importing it configures logging for the whole process.
"""

from .config import settings
from .logging import get_logger, get_context_logger, setup_logging

setup_logging()

logger = get_logger(__name__)
logger.info(f"Core ready ({settings.APP_NAME} {settings.VERSION})")

__all__ = [
    "settings",
    "get_logger",
    "get_context_logger",
    "setup_logging",
]
