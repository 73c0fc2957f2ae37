"""
Request dependencies: the signed-in user, their partner account, admin gate.
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.core.security import get_current_user_id
from backend.core.logging import get_logger
from backend.core.config import settings
from backend.db.session import get_db
from backend.models.partner import Partner
from backend.models.user import User
from backend.services.partner_service import PartnerService

logger = get_logger(__name__)

async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> User:
    """
    Load the token's user

    Raises:
        HTTPException: 404 for an unknown user, 403 for a disabled one
    """
    user = db.query(User).filter(User.id == user_id).first()

    if user is None:
        logger.warning(f"Token for unknown user: {user_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if not user.is_active:
        logger.warning(f"Disabled user presented a token: {user_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled")

    return user

async def get_current_partner(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Partner:
    """Partner account of the signed-in user; NotFoundError when there is none"""
    return await PartnerService.get_partner_by_user(db, current_user.id)

def is_admin(user: User) -> bool:
    return bool(user.is_admin) or user.email.lower() in settings.admin_emails

async def check_admin_access(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Admin gate for partner lifecycle and payout endpoints. A user is an admin
    when flagged in the database or listed in ADMIN_EMAILS.
    """
    if not is_admin(current_user):
        logger.warning(f"Admin endpoint refused for user: {current_user.id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")

    return current_user
