# backend/services/partner_service.py
"""
Partner service: registration, admin lifecycle actions, commission rate
changes and the partner dashboard.

Lifecycle:
    pending -> active | rejected | terminated
    active -> suspended | terminated
    suspended -> active | terminated
Partners are never deleted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from backend.core.config import settings
from backend.core.exceptions import (
    NotFoundError, PartnerExistsError, PartnerStateError, ValidationError
)
from backend.core.logging import get_logger
from backend.models.base import utcnow
from backend.models.partner import Partner, PartnerCode, PartnerStatus
from backend.services.commission_ledger_service import CommissionLedgerService
from backend.services.referral_code_service import ReferralCodeService
from backend.services.referral_customer_service import ReferralCustomerService
from backend.utils.validators import validate_commission_rate, validate_email

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    PartnerStatus.PENDING.value: {
        PartnerStatus.ACTIVE.value, PartnerStatus.REJECTED.value, PartnerStatus.TERMINATED.value
    },
    PartnerStatus.ACTIVE.value: {PartnerStatus.SUSPENDED.value, PartnerStatus.TERMINATED.value},
    PartnerStatus.SUSPENDED.value: {PartnerStatus.ACTIVE.value, PartnerStatus.TERMINATED.value},
    PartnerStatus.REJECTED.value: set(),
    PartnerStatus.TERMINATED.value: set(),
}


class PartnerService:
    """Partner program administration"""

    @staticmethod
    def _check_rate(rate: Union[float, str, Decimal]) -> Decimal:
        is_valid, error = validate_commission_rate(rate, settings.allowed_commission_rates)
        if not is_valid:
            raise ValidationError(error)
        return Decimal(str(rate))

    @staticmethod
    async def get_partner(db: Session, partner_id: str) -> Partner:
        partner = db.query(Partner).filter(Partner.id == partner_id).first()
        if not partner:
            raise NotFoundError(f"Partner {partner_id} not found")
        return partner

    @staticmethod
    async def get_partner_by_user(db: Session, user_id: str) -> Partner:
        partner = db.query(Partner).filter(Partner.user_id == user_id).first()
        if not partner:
            raise NotFoundError("No partner account for this user")
        return partner

    @staticmethod
    async def list_partners(
        db: Session, status: Optional[str] = None, skip: int = 0, limit: int = 50
    ) -> Dict[str, Any]:
        query = db.query(Partner)
        if status:
            query = query.filter(Partner.status == status)
        total = query.count()
        partners = query.order_by(Partner.created_at.desc()).offset(skip).limit(limit).all()
        return {"total": total, "partners": partners}

    @staticmethod
    async def register_partner(
        db: Session,
        email: str,
        display_name: str,
        user_id: Optional[str] = None,
        website: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Partner:
        """
        Register a partner application (status pending).

        Raises:
            ValidationError: Bad email or name
            PartnerExistsError: Email or user already registered
        """
        is_valid, error = validate_email(email)
        if not is_valid:
            raise ValidationError(error)
        if not display_name or not display_name.strip():
            raise ValidationError("Display name is required")

        email = email.strip().lower()
        if db.query(Partner.id).filter(Partner.email == email).first():
            raise PartnerExistsError(f"A partner is already registered with {email}")
        if user_id and db.query(Partner.id).filter(Partner.user_id == user_id).first():
            raise PartnerExistsError("This user already has a partner account")

        partner = Partner(
            user_id=user_id,
            email=email,
            display_name=display_name.strip(),
            website=website,
            description=description,
            commission_rate=Decimal(str(settings.DEFAULT_COMMISSION_RATE)),
            status=PartnerStatus.PENDING.value,
        )
        db.add(partner)
        db.commit()
        db.refresh(partner)

        logger.info(f"✅ Partner application registered: {email} ({partner.id})")
        return partner

    @staticmethod
    def _transition(db: Session, partner: Partner, target: str, reason: Optional[str] = None) -> None:
        current = partner.status
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise PartnerStateError(
                f"Cannot change partner status from {current} to {target}",
                {"partner_id": partner.id, "status": current, "requested": target},
            )
        partner.status = target
        partner.status_reason = reason
        logger.info(f"Partner {partner.id}: {current} -> {target}")

    @staticmethod
    async def approve_partner(
        db: Session,
        partner_id: str,
        commission_rate: Optional[Union[float, str, Decimal]] = None,
        code: Optional[str] = None,
    ) -> Tuple[Partner, PartnerCode]:
        """
        Approve a pending partner and issue its first referral code.

        Args:
            db: Database session
            partner_id: Partner to approve
            commission_rate: Rate to grant, default rate when omitted
            code: Custom code, generated from the partner's name when omitted

        Returns:
            (partner, code)
        """
        partner = await PartnerService.get_partner(db, partner_id)
        rate = PartnerService._check_rate(
            commission_rate if commission_rate is not None else partner.commission_rate
        )

        PartnerService._transition(db, partner, PartnerStatus.ACTIVE.value)
        partner.commission_rate = rate
        partner.approved_at = utcnow()

        try:
            partner_code = await ReferralCodeService.create_partner_code(
                db,
                partner.id,
                code=code,
                description=f"Default code for {partner.display_name}",
                commit=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(partner)
        db.refresh(partner_code)
        logger.info(f"✅ Partner {partner.id} approved with code {partner_code.code} at rate {rate}")
        return partner, partner_code

    @staticmethod
    async def _change_status(db: Session, partner_id: str, target: str, reason: Optional[str]) -> Partner:
        partner = await PartnerService.get_partner(db, partner_id)
        PartnerService._transition(db, partner, target, reason)
        db.commit()
        db.refresh(partner)
        return partner

    @staticmethod
    async def reject_partner(db: Session, partner_id: str, reason: Optional[str] = None) -> Partner:
        return await PartnerService._change_status(db, partner_id, PartnerStatus.REJECTED.value, reason)

    @staticmethod
    async def suspend_partner(db: Session, partner_id: str, reason: Optional[str] = None) -> Partner:
        return await PartnerService._change_status(db, partner_id, PartnerStatus.SUSPENDED.value, reason)

    @staticmethod
    async def reactivate_partner(db: Session, partner_id: str) -> Partner:
        return await PartnerService._change_status(db, partner_id, PartnerStatus.ACTIVE.value, None)

    @staticmethod
    async def terminate_partner(db: Session, partner_id: str, reason: Optional[str] = None) -> Partner:
        return await PartnerService._change_status(db, partner_id, PartnerStatus.TERMINATED.value, reason)

    @staticmethod
    async def set_commission_rate(
        db: Session, partner_id: str, commission_rate: Union[float, str, Decimal]
    ) -> Partner:
        """
        Change a partner's rate. Entries already accrued keep the rate they
        were accrued with.
        """
        rate = PartnerService._check_rate(commission_rate)
        partner = await PartnerService.get_partner(db, partner_id)
        if partner.status in (PartnerStatus.REJECTED.value, PartnerStatus.TERMINATED.value):
            raise PartnerStateError(f"Cannot change the rate of a {partner.status} partner")

        previous = partner.commission_rate
        partner.commission_rate = rate
        db.commit()
        db.refresh(partner)

        logger.info(f"Partner {partner.id} commission rate {previous} -> {rate}")
        return partner

    @staticmethod
    async def get_dashboard(
        db: Session,
        partner: Partner,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Everything the partner dashboard shows, in one dict"""
        codes: List[PartnerCode] = await ReferralCodeService.list_codes(db, partner.id)
        customers = await ReferralCustomerService.get_partner_customer_stats(db, partner.id)
        commissions = await CommissionLedgerService.get_commission_summary(
            db, partner.id, start_date, end_date
        )

        return {
            "partner": partner.to_dict(),
            "stats": {
                "total_referrals": partner.total_referrals,
                "total_conversions": partner.total_conversions,
                "conversion_rate": round(partner.total_conversions / partner.total_referrals * 100, 2)
                if partner.total_referrals else 0,
                "total_commission_earned": partner.total_commission_earned,
                "total_commission_paid": partner.total_commission_paid,
                "pending_payout": partner.total_commission_earned - partner.total_commission_paid,
                "last_calculated": partner.last_calculated,
            },
            "codes": [c.to_dict() for c in codes],
            "customers": customers,
            "commissions": commissions,
        }
