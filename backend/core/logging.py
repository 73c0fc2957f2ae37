"""
Logging configuration for the EngagePerfect backend.

Console output is human-readable; the optional file output is one JSON object
per line. Context attached with get_context_logger (user, partner, invoice,
request ids) ends up both in the message prefix and as JSON fields.
"""

import logging
import sys
import time
import os
import re
from typing import Dict, Any
import traceback
import json

from backend.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

FORCE_DEBUG = os.getenv('FORCE_DEBUG', 'False').lower() == 'true'

LOG_DIR = os.path.join(os.getcwd(), "logs")

# OpenAI keys and bearer tokens must never reach the logs
SECRET_PATTERNS = [
    (re.compile(r"sk-[A-Za-z0-9_\-]{8,}"), "sk-***"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9_\-\.=]+", re.IGNORECASE), r"\1***"),
]

# Chatty third-party loggers kept at WARNING unless debugging
QUIET_LOGGERS = ["sqlalchemy.engine", "httpx", "httpcore", "openai", "alembic.runtime.migration"]

def mask_secrets(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text

class SecretMaskingFilter(logging.Filter):
    """Rewrites the formatted message of every record with secrets masked"""
    def filter(self, record):
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True

class JsonFormatter(logging.Formatter):
    """
    One JSON object per record
    """
    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        return json.dumps(log_data, default=str, ensure_ascii=False)

def setup_logging(force_debug: bool = False):
    """
    Configure the root logger once per process

    Args:
        force_debug: Force DEBUG level regardless of settings
    """
    debug = force_debug or FORCE_DEBUG or settings.DEBUG
    effective_log_level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(effective_log_level)

    masking = SecretMaskingFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(effective_log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    console_handler.addFilter(masking)
    root_logger.addHandler(console_handler)

    if settings.LOG_TO_FILE:
        os.makedirs(LOG_DIR, exist_ok=True)
        log_file = os.path.join(LOG_DIR, f"engageperfect_{time.strftime('%Y%m%d')}.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(effective_log_level)
        file_handler.setFormatter(JsonFormatter())
        file_handler.addFilter(masking)
        root_logger.addHandler(file_handler)

    # uvicorn logs through its own handlers
    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        for handler in logging.getLogger(logger_name).handlers:
            logging.getLogger(logger_name).removeHandler(handler)
        logging.getLogger(logger_name).propagate = False

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.DEBUG if debug else logging.WARNING)

    root_logger.info(
        f"Logging system initialized. Application: {settings.APP_NAME}, "
        f"Version: {settings.VERSION}, Level: {logging.getLevelName(effective_log_level)}, "
        f"Environment: {'Production' if settings.PRODUCTION else 'Development'}"
    )

    if debug:
        root_logger.info("🔍 DEBUG MODE ENABLED - All debug logs will be visible")

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

class LoggerAdapter(logging.LoggerAdapter):
    """
    Prefixes messages with ``[key=value ...]`` and attaches the context to the record
    """
    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {})["context"] = dict(self.extra)
        prefix = " ".join(f"{k}={v}" for k, v in self.extra.items() if v is not None)
        return (f"[{prefix}] {msg}" if prefix else msg), kwargs

def get_context_logger(name: str, context: Dict[str, Any]) -> LoggerAdapter:
    """
    Logger that tags every line with ``context``

    Args:
        name: Logger name, usually ``__name__``
        context: Ids to attach, e.g. {"partner": ..., "invoice": ...}

    Returns:
        LoggerAdapter instance
    """
    return LoggerAdapter(get_logger(name), context)
