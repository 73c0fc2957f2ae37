# backend/services/usage_service.py
"""
Generation quota of a user.

A user may generate while ``requests_used < requests_limit`` or while they
hold purchased flexy requests.
"""

from sqlalchemy.orm import Session

from backend.core.exceptions import QuotaExceededError
from backend.core.logging import get_logger
from backend.models.user import User

logger = get_logger(__name__)

FLEXY_PLAN = "flexy"
REQUEST_COST = 1


class UsageService:
    """Quota checks and charging for generation requests"""

    @staticmethod
    def has_quota(user: User) -> bool:
        return user.requests_used < user.requests_limit or (user.flexy_requests or 0) > 0

    @staticmethod
    def check_quota(user: User) -> None:
        """
        Raises:
            QuotaExceededError: No plan or flexy requests left
        """
        if not UsageService.has_quota(user):
            logger.warning(f"⚠️ User {user.id} has no generation requests left")
            raise QuotaExceededError(
                "You have reached your generation limit. Upgrade your plan to continue.",
                {"requests_used": user.requests_used, "requests_limit": user.requests_limit},
            )

    @staticmethod
    def charge(db: Session, user: User, cost: int = REQUEST_COST) -> User:
        """
        Charge one successful generation.

        Flexy plan users spend flexy requests first; everyone else spends plan
        requests first and flexy requests once the plan is used up.
        """
        flexy = user.flexy_requests or 0
        if user.plan_type == FLEXY_PLAN and flexy > 0:
            user.flexy_requests = max(flexy - cost, 0)
        elif user.requests_used < user.requests_limit:
            user.requests_used = user.requests_used + cost
        else:
            user.flexy_requests = max(flexy - cost, 0)

        db.commit()
        db.refresh(user)
        logger.info(f"Charged user {user.id}: {user.requests_remaining} requests remaining")
        return user
