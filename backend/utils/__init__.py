"""
Utility module for the EngagePerfect backend.
Contains helper functions and utilities used across the application.
"""

from .error_handling import (
    handle_exception,
    log_exception,
    format_exception_for_client,
    get_error_code
)
from .validators import (
    validate_email,
    validate_referral_code,
    validate_commission_rate,
    validate_currency
)
from .helpers import (
    generate_request_id,
    normalize_code,
    truncate_string,
    extract_utm_params
)

# Export all utility functions
__all__ = [
    # Error handling
    "handle_exception",
    "log_exception",
    "format_exception_for_client",
    "get_error_code",

    # Validators
    "validate_email",
    "validate_referral_code",
    "validate_commission_rate",
    "validate_currency",

    # Helper functions
    "generate_request_id",
    "normalize_code",
    "truncate_string",
    "extract_utm_params"
]
