"""
Authentication and webhook signing.

Users authenticate with HS256 bearer tokens whose ``sub`` is the user id.
The billing processor signs invoice webhooks with HMAC-SHA256 over the raw
body; the signature header may carry a ``sha256=`` prefix.
"""

import hashlib
import hmac
import jwt
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Union, Any
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings
from .logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer()

SIGNATURE_PREFIX = "sha256="

def _unauthorized(reason: str) -> HTTPException:
    logger.warning(f"❌ Rejected token: {reason}")
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=reason,
        headers={"WWW-Authenticate": "Bearer"}
    )

def create_jwt_token(
    user_id: Union[str, uuid.UUID],
    expires_delta_minutes: int = settings.ACCESS_TOKEN_EXPIRE_MINUTES
) -> str:
    """
    Issue an access token for ``user_id``

    Args:
        user_id: Subject of the token
        expires_delta_minutes: Lifetime in minutes

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expires_delta_minutes),
        "type": "access_token"
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

def decode_jwt_token(token: str) -> Dict[str, Any]:
    """
    Validate ``token`` and return its subject and expiry

    Raises:
        HTTPException: 401 when the token is expired, malformed or has no subject
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")

    if not claims.get("sub"):
        raise _unauthorized("Invalid token: missing user ID")

    return {"sub": claims["sub"], "exp": claims.get("exp")}

async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> str:
    """Dependency resolving the bearer token to a user id"""
    if not credentials or not credentials.credentials:
        raise _unauthorized("No authentication credentials provided")

    return decode_jwt_token(credentials.credentials)["sub"]

def sign_webhook_payload(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of a raw webhook body"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

def verify_webhook_signature(payload: bytes, received_signature: str, secret: str) -> bool:
    """
    Check a billing webhook signature in constant time

    An empty secret rejects everything, so an unconfigured deployment never
    records commissions from unsigned requests.
    """
    if not secret or not received_signature:
        return False

    received = received_signature.strip().lower()
    if received.startswith(SIGNATURE_PREFIX):
        received = received[len(SIGNATURE_PREFIX):]

    if hmac.compare_digest(sign_webhook_payload(payload, secret), received):
        return True

    logger.warning("❌ Webhook signature mismatch")
    return False
