"""
Turning exceptions into API errors.

Every error body has the shape ``{"detail": ..., "code": ...}``. Service errors
bring their own status and payload; database outages become 503 so callers
retry; anything else is a 500 with a code derived from the exception type.
"""

import re
import traceback
from typing import Dict, Any, Optional
from fastapi import HTTPException, status
from sqlalchemy.exc import OperationalError

from backend.core.exceptions import ServiceError
from backend.core.logging import get_logger

logger = get_logger(__name__)

BUILTIN_ERROR_CODES = [
    (ValueError, "invalid_value"),
    (TypeError, "invalid_type"),
    (KeyError, "missing_key"),
    (TimeoutError, "timeout"),
    (ConnectionError, "connection_error"),
]

def handle_exception(
    exception: Exception,
    log_message: str = "Request failed",
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    detail: Optional[str] = None
) -> HTTPException:
    """
    Convert ``exception`` into the HTTPException an endpoint should raise

    Args:
        exception: What the endpoint caught
        log_message: Prefix for the log line
        status_code: Status for unexpected errors
        detail: Client message for unexpected errors

    Returns:
        HTTPException whose detail is a dict with a "code"
    """
    if isinstance(exception, HTTPException):
        return exception

    if isinstance(exception, ServiceError):
        logger.warning(f"⚠️ {log_message}: [{exception.code}] {exception.message}")
        return HTTPException(status_code=exception.status_code, detail=exception.to_dict())

    if isinstance(exception, OperationalError):
        logger.error(f"❌ {log_message}: database unavailable ({exception.orig})")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"detail": "Database temporarily unavailable, retry the request", "code": "database_unavailable"}
        )

    log_exception(exception, log_message)
    return HTTPException(
        status_code=status_code,
        detail={"detail": detail or "An internal server error occurred", "code": get_error_code(exception)}
    )

def log_exception(exception: Exception, message: str = "Request failed") -> None:
    trace = "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
    logger.error(f"❌ {message}: {str(exception)}\n{trace}")

def format_exception_for_client(
    exception: Exception,
    include_traceback: bool = False
) -> Dict[str, Any]:
    """Error body for the catch-all handler; tracebacks only when debugging"""
    if isinstance(exception, ServiceError):
        body = exception.to_dict()
    else:
        body = {"detail": "An internal server error occurred", "code": get_error_code(exception)}

    if include_traceback and exception.__traceback__:
        body["traceback"] = traceback.format_tb(exception.__traceback__)

    return body

def get_error_code(exception: Exception) -> str:
    """
    Stable error code: the service code, ``http_<status>``, a builtin mapping,
    or the exception class name in snake_case
    """
    if isinstance(exception, ServiceError):
        return exception.code

    if isinstance(exception, HTTPException):
        return f"http_{exception.status_code}"

    for exc_type, code in BUILTIN_ERROR_CODES:
        if isinstance(exception, exc_type):
            return code

    return re.sub(r"(?<!^)(?=[A-Z])", "_", exception.__class__.__name__).lower()
