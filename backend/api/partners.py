"""
Partner program endpoints.

``/me`` routes serve the signed-in partner (dashboard, customers, commissions,
codes); the remaining routes are the admin lifecycle: approve, reject,
suspend, reactivate, terminate and rate changes.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from backend.core.logging import get_logger
from backend.core.dependencies import get_current_user, get_current_partner, check_admin_access
from backend.core.exceptions import PartnerStateError
from backend.db.session import get_db
from backend.models.user import User
from backend.models.partner import Partner, PartnerStatus
from backend.schemas.partner import (
    PartnerRegisterRequest, PartnerApproveRequest, PartnerStatusRequest, CommissionRateRequest,
    PartnerResponse, PartnerListResponse, PartnerApproveResponse, PartnerCodeCreateRequest,
    PartnerCodeResponse, ReferralCustomerListResponse, LedgerEntryListResponse
)
from backend.services.partner_service import PartnerService
from backend.services.referral_code_service import ReferralCodeService
from backend.services.referral_customer_service import ReferralCustomerService
from backend.services.commission_ledger_service import CommissionLedgerService
from backend.utils.error_handling import handle_exception

logger = get_logger(__name__)

router = APIRouter()

# --- signed-in partner ---

@router.post("/register", response_model=PartnerResponse, status_code=status.HTTP_201_CREATED)
async def register_partner(
    data: PartnerRegisterRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Apply to the partner program; the application starts as pending"""
    try:
        return await PartnerService.register_partner(
            db,
            email=data.email,
            display_name=data.display_name,
            user_id=current_user.id,
            website=data.website,
            description=data.description
        )
    except Exception as e:
        raise handle_exception(e, "Partner application failed")

@router.get("/me")
async def get_my_dashboard(
    start_date: Optional[datetime] = Query(None, description="Commission summary from"),
    end_date: Optional[datetime] = Query(None, description="Commission summary until"),
    partner: Partner = Depends(get_current_partner),
    db: Session = Depends(get_db)
):
    """
    Partner dashboard: profile, stats, codes, recent customers and the
    commission summary for the optional date range.
    """
    try:
        return await PartnerService.get_dashboard(db, partner, start_date, end_date)
    except Exception as e:
        raise handle_exception(e, "Dashboard failed")

@router.get("/me/customers", response_model=ReferralCustomerListResponse)
async def get_my_customers(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    partner: Partner = Depends(get_current_partner),
    db: Session = Depends(get_db)
):
    try:
        return await ReferralCustomerService.list_customers(db, partner.id, skip, limit)
    except Exception as e:
        raise handle_exception(e, "Listing referred customers failed")

@router.get("/me/commissions", response_model=LedgerEntryListResponse)
async def get_my_commissions(
    status_filter: Optional[str] = Query(None, alias="status", description="accrued, paid or reversed"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    partner: Partner = Depends(get_current_partner),
    db: Session = Depends(get_db)
):
    try:
        return await CommissionLedgerService.list_entries(db, partner.id, status_filter, skip, limit)
    except Exception as e:
        raise handle_exception(e, "Listing commissions failed")

@router.get("/me/codes", response_model=List[PartnerCodeResponse])
async def get_my_codes(
    partner: Partner = Depends(get_current_partner),
    db: Session = Depends(get_db)
):
    try:
        return await ReferralCodeService.list_codes(db, partner.id)
    except Exception as e:
        raise handle_exception(e, "Listing referral codes failed")

@router.post("/me/codes", response_model=PartnerCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_my_code(
    data: PartnerCodeCreateRequest,
    partner: Partner = Depends(get_current_partner),
    db: Session = Depends(get_db)
):
    """Extra referral code; only active partners may create one"""
    try:
        if partner.status != PartnerStatus.ACTIVE.value:
            raise PartnerStateError(f"A {partner.status} partner cannot create referral codes")
        return await ReferralCodeService.create_partner_code(
            db,
            partner.id,
            code=data.code,
            max_uses=data.max_uses,
            expires_at=data.expires_at,
            description=data.description
        )
    except Exception as e:
        raise handle_exception(e, "Creating referral code failed")

@router.delete("/me/codes/{code_id}", response_model=PartnerCodeResponse)
async def deactivate_my_code(
    code_id: str,
    partner: Partner = Depends(get_current_partner),
    db: Session = Depends(get_db)
):
    try:
        return await ReferralCodeService.deactivate_code(db, code_id, partner_id=partner.id)
    except Exception as e:
        raise handle_exception(e, "Deactivating referral code failed")

# --- admin ---

@router.get("/", response_model=PartnerListResponse)
async def list_partners(
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    """
    List partners (admin only).
    """
    try:
        return await PartnerService.list_partners(db, status_filter, skip, limit)
    except Exception as e:
        raise handle_exception(e, "Failed to list partners")

@router.post("/{partner_id}/approve", response_model=PartnerApproveResponse)
async def approve_partner(
    partner_id: str,
    data: PartnerApproveRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    """
    Approve a pending partner and issue its first referral code (admin only).
    """
    try:
        partner, code = await PartnerService.approve_partner(
            db, partner_id, commission_rate=data.commission_rate, code=data.code
        )
        logger.info(f"Partner {partner_id} approved by {current_user.email}")
        return {"partner": partner, "code": code}
    except Exception as e:
        raise handle_exception(e, "Failed to approve partner")

@router.post("/{partner_id}/reject", response_model=PartnerResponse)
async def reject_partner(
    partner_id: str,
    data: PartnerStatusRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    try:
        return await PartnerService.reject_partner(db, partner_id, data.reason)
    except Exception as e:
        raise handle_exception(e, "Failed to reject partner")

@router.post("/{partner_id}/suspend", response_model=PartnerResponse)
async def suspend_partner(
    partner_id: str,
    data: PartnerStatusRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    try:
        return await PartnerService.suspend_partner(db, partner_id, data.reason)
    except Exception as e:
        raise handle_exception(e, "Failed to suspend partner")

@router.post("/{partner_id}/reactivate", response_model=PartnerResponse)
async def reactivate_partner(
    partner_id: str,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    try:
        return await PartnerService.reactivate_partner(db, partner_id)
    except Exception as e:
        raise handle_exception(e, "Failed to reactivate partner")

@router.post("/{partner_id}/terminate", response_model=PartnerResponse)
async def terminate_partner(
    partner_id: str,
    data: PartnerStatusRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    try:
        return await PartnerService.terminate_partner(db, partner_id, data.reason)
    except Exception as e:
        raise handle_exception(e, "Failed to terminate partner")

@router.put("/{partner_id}/commission-rate", response_model=PartnerResponse)
async def set_commission_rate(
    partner_id: str,
    data: CommissionRateRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    """
    Change a partner's commission rate (admin only). Existing ledger entries keep their rate.
    """
    try:
        return await PartnerService.set_commission_rate(db, partner_id, data.commission_rate)
    except Exception as e:
        raise handle_exception(e, "Failed to change commission rate")
