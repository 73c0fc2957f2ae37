"""
Helper functions for the EngagePerfect backend.
"""

import time
from typing import Dict, Any, Optional

from backend.core.logging import get_logger

logger = get_logger(__name__)

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

def generate_request_id(user_id: str, *parts: str) -> str:
    """Default id for a generation request: user, parts and a millisecond timestamp"""
    pieces = [user_id] + [p for p in parts if p] + [str(int(time.time() * 1000))]
    return "_".join(pieces)

def normalize_code(code: Optional[str]) -> str:
    """Referral codes are compared upper-case without surrounding whitespace"""
    return (code or "").strip().upper()

def email_local_part(email: str) -> str:
    return email.split("@", 1)[0] if email else ""

def truncate_string(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length

    Args:
        text: String to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix

def extract_utm_params(query_params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Pick the UTM parameters out of a query dict

    Args:
        query_params: Query parameters captured on the landing page

    Returns:
        Only the utm_* keys with non-empty values
    """
    if not query_params:
        return {}
    return {
        key: str(query_params[key])
        for key in UTM_KEYS
        if query_params.get(key)
    }
