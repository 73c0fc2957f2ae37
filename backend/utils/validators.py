"""
Validation utilities for the EngagePerfect backend.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, Tuple, Optional, Union

from backend.core.logging import get_logger

logger = get_logger(__name__)

REFERRAL_CODE_PATTERN = re.compile(r'^[A-Z0-9]{3,20}$')
CURRENCY_PATTERN = re.compile(r'^[a-z]{3}$')

def validate_email(email: str) -> Tuple[bool, Optional[str]]:
    """
    Validate email format

    Args:
        email: Email to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not email or not email.strip():
        return False, "Email is required"

    email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

    if not re.match(email_pattern, email.strip()):
        return False, "Invalid email format"

    if len(email) > 320:  # RFC 3696
        return False, "Email is too long"

    return True, None

def validate_referral_code(code: str) -> Tuple[bool, Optional[str]]:
    """
    Validate the format of a partner-chosen referral code (already upper-cased)
    """
    if not code:
        return False, "Referral code is required"

    if not REFERRAL_CODE_PATTERN.match(code):
        return False, "Referral code must be 3-20 uppercase letters or digits"

    return True, None

def validate_commission_rate(
    rate: Union[float, str, Decimal],
    allowed_rates: Iterable[str]
) -> Tuple[bool, Optional[str]]:
    """
    Check that a commission rate is one of the allowed fractions

    Args:
        rate: Candidate rate, e.g. 0.6
        allowed_rates: Allowed rates as decimal strings

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError):
        return False, "Commission rate must be a number"

    allowed = {Decimal(r) for r in allowed_rates}
    if value not in allowed:
        options = ", ".join(str(r) for r in sorted(allowed))
        return False, f"Commission rate must be one of: {options}"

    return True, None

def validate_currency(currency: str) -> Tuple[bool, Optional[str]]:
    """ISO 4217 code, lower-case"""
    if not currency or not CURRENCY_PATTERN.match(currency):
        return False, "Currency must be a three letter ISO code"
    return True, None
