# backend/api/referrals.py
"""
Referral API endpoints for the EngagePerfect backend.
Signup-time attribution and public referral code checks.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.core.logging import get_logger
from backend.core.dependencies import get_current_user
from backend.db.session import get_db
from backend.models.user import User
from backend.schemas.partner import (
    AttributionRequest, AttributionResponse, ValidateCodeRequest, ValidateCodeResponse
)
from backend.services.referral_attribution_service import ReferralAttributionService
from backend.services.referral_code_service import ReferralCodeService
from backend.services.referral_customer_service import CustomerProfile
from backend.utils.error_handling import handle_exception
from backend.utils.helpers import extract_utm_params

# Initialize logger
logger = get_logger(__name__)

# Create router
router = APIRouter()

@router.post("/attribute", response_model=AttributionResponse)
async def attribute_signup(
    data: AttributionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Attribute the newly registered user to the partner owning the referral code.

    Called by the signup flow. Invalid codes and inactive partners are
    reported in the result body, never as HTTP errors, so signup can carry on.

    Args:
        data: Code and landing page data captured during signup
        current_user: The user that just signed up
        db: Database session dependency

    Returns:
        AttributionResponse
    """
    try:
        result = await ReferralAttributionService.attribute(
            db,
            referral_code=data.referral_code,
            customer_uid=current_user.id,
            profile=CustomerProfile(email=current_user.email, display_name=current_user.display_name),
            metadata=data.metadata,
            source=data.source,
            utm=extract_utm_params(data.landing_params),
            currency=data.currency
        )
        return result.to_dict()
    except Exception as e:
        raise handle_exception(e, "Failed to attribute signup")

@router.post("/validate", response_model=ValidateCodeResponse)
async def validate_code(
    data: ValidateCodeRequest,
    db: Session = Depends(get_db)
):
    """
    Check a referral code, e.g. to show "Referred by ..." on the signup page.
    """
    try:
        result = await ReferralCodeService.validate(db, data.code)
        return result.to_dict()
    except Exception as e:
        raise handle_exception(e, "Failed to validate referral code")
