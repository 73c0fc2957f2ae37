# backend/services/referral_code_service.py
"""
Referral code service: validation of codes at signup time and management of
the codes owned by a partner.

Validation is read-only and never raises for an unusable code; it returns an
InvalidCode value with a reason the caller can log.
"""

import enum
import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from backend.core.config import settings
from backend.core.exceptions import DuplicateCodeError, NotFoundError, ValidationError
from backend.core.logging import get_logger
from backend.models.base import as_utc, utcnow
from backend.models.partner import Partner, PartnerCode, PartnerStatus
from backend.utils.helpers import normalize_code
from backend.utils.validators import validate_referral_code

logger = get_logger(__name__)

CODE_MAX_GENERATION_ATTEMPTS = 10


class InvalidCodeReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    PARTNER_INACTIVE = "partner_inactive"


@dataclass
class PartnerInfo:
    """Owner of a valid code, as seen at ``checked_at``"""
    partner_id: str
    partner_name: str
    commission_rate: Decimal
    active: bool
    code: str
    code_id: str
    checked_at: datetime = field(default_factory=utcnow)

    valid = True

    def is_fresh(self, max_age_seconds: Optional[int] = None, now: Optional[datetime] = None) -> bool:
        """
        True while the check is younger than ``max_age_seconds``.

        For callers that cache a validation, such as a signup page holding the
        /api/referrals/validate answer between landing and account creation.
        Attribution itself never relies on it and always validates again.
        """
        if max_age_seconds is None:
            max_age_seconds = settings.REFERRAL_CODE_MAX_AGE_SECONDS
        now = now or utcnow()
        return (now - as_utc(self.checked_at)).total_seconds() <= max_age_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": True,
            "partner_id": self.partner_id,
            "partner_name": self.partner_name,
            "commission_rate": float(self.commission_rate),
            "active": self.active,
            "code": self.code,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class InvalidCode:
    reason: InvalidCodeReason
    code: str

    valid = False

    @property
    def message(self) -> str:
        return {
            InvalidCodeReason.NOT_FOUND: "Referral code not found",
            InvalidCodeReason.INACTIVE: "Referral code is inactive",
            InvalidCodeReason.EXPIRED: "Referral code has expired",
            InvalidCodeReason.EXHAUSTED: "Referral code usage limit reached",
            InvalidCodeReason.PARTNER_INACTIVE: "Partner is not active",
        }[self.reason]

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": False, "reason": self.reason.value, "message": self.message, "code": self.code}


ValidationResult = Union[PartnerInfo, InvalidCode]


class ReferralCodeService:
    """Lookup and management of partner referral codes"""

    @staticmethod
    async def validate(db: Session, code: str, now: Optional[datetime] = None) -> ValidationResult:
        """
        Check whether ``code`` can attribute a signup right now.

        Args:
            db: Database session
            code: Raw code from a URL parameter or manual entry
            now: Reference time (defaults to current UTC time)

        Returns:
            PartnerInfo for a usable code, InvalidCode otherwise

        Raises:
            ValidationError: If the code is empty
        """
        normalized = normalize_code(code)
        if not normalized:
            raise ValidationError("Referral code is required")

        now = now or utcnow()

        partner_code = db.query(PartnerCode).filter(PartnerCode.code == normalized).first()
        if not partner_code:
            logger.info(f"❌ Referral code not found: {normalized}")
            return InvalidCode(InvalidCodeReason.NOT_FOUND, normalized)

        if not partner_code.active:
            logger.info(f"❌ Referral code inactive: {normalized}")
            return InvalidCode(InvalidCodeReason.INACTIVE, normalized)

        expires_at = as_utc(partner_code.expires_at)
        if expires_at is not None and now > expires_at:
            logger.info(f"❌ Referral code expired: {normalized}")
            return InvalidCode(InvalidCodeReason.EXPIRED, normalized)

        if partner_code.max_uses is not None and partner_code.uses >= partner_code.max_uses:
            logger.info(f"❌ Referral code exhausted: {normalized} ({partner_code.uses}/{partner_code.max_uses})")
            return InvalidCode(InvalidCodeReason.EXHAUSTED, normalized)

        partner = db.query(Partner).filter(Partner.id == partner_code.partner_id).first()
        if not partner or partner.status != PartnerStatus.ACTIVE.value:
            logger.info(f"❌ Partner for code {normalized} is not active")
            return InvalidCode(InvalidCodeReason.PARTNER_INACTIVE, normalized)

        return PartnerInfo(
            partner_id=partner.id,
            partner_name=partner.display_name,
            commission_rate=Decimal(str(partner.commission_rate)),
            active=True,
            code=partner_code.code,
            code_id=partner_code.id,
            checked_at=now,
        )

    @staticmethod
    def generate_unique_code(db: Session, partner_name: str) -> str:
        """
        Build an unused code from the partner's name: up to 8 letters/digits of
        the name, then a random 4 character suffix on collision.
        """
        base_code = re.sub(r"[^A-Z0-9]", "", (partner_name or "").upper())[:8]
        if len(base_code) < 3:
            base_code = (base_code + "REF")[:8]

        alphabet = string.ascii_uppercase + string.digits
        code = base_code
        for _ in range(CODE_MAX_GENERATION_ATTEMPTS):
            if not db.query(PartnerCode.id).filter(PartnerCode.code == code).first():
                return code
            suffix = "".join(secrets.choice(alphabet) for _ in range(4))
            code = f"{base_code}{suffix}"

        code = "P" + secrets.token_hex(6).upper()
        logger.warning(f"⚠️ Falling back to random referral code {code} for {partner_name}")
        return code

    @staticmethod
    async def create_partner_code(
        db: Session,
        partner_id: str,
        code: Optional[str] = None,
        max_uses: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> PartnerCode:
        """
        Create a referral code for a partner.

        Args:
            db: Database session
            partner_id: Owning partner
            code: Custom code; generated from the partner's name when omitted
            max_uses: Optional usage cap
            expires_at: Optional expiry
            description: Free text shown in the dashboard
            commit: Commit the session (False when part of a larger transaction)

        Raises:
            NotFoundError: Unknown partner
            ValidationError: Bad code format or limits
            DuplicateCodeError: Code already taken
        """
        partner = db.query(Partner).filter(Partner.id == partner_id).first()
        if not partner:
            raise NotFoundError(f"Partner {partner_id} not found")

        if max_uses is not None and max_uses < 1:
            raise ValidationError("max_uses must be at least 1")
        if expires_at is not None and as_utc(expires_at) <= utcnow():
            raise ValidationError("expires_at must be in the future")

        if code:
            normalized = normalize_code(code)
            is_valid, error = validate_referral_code(normalized)
            if not is_valid:
                raise ValidationError(error)
            if db.query(PartnerCode.id).filter(PartnerCode.code == normalized).first():
                raise DuplicateCodeError(f"Referral code {normalized} is already taken")
        else:
            normalized = ReferralCodeService.generate_unique_code(db, partner.display_name)

        partner_code = PartnerCode(
            code=normalized,
            partner_id=partner.id,
            active=True,
            uses=0,
            max_uses=max_uses,
            expires_at=expires_at,
            description=description or f"Code for {partner.display_name}",
        )
        db.add(partner_code)

        if commit:
            db.commit()
            db.refresh(partner_code)
        else:
            db.flush()

        logger.info(f"✅ Referral code {normalized} created for partner {partner.id}")
        return partner_code

    @staticmethod
    async def deactivate_code(db: Session, code_id: str, partner_id: Optional[str] = None) -> PartnerCode:
        """Switch a code off; ``partner_id`` restricts the lookup to that owner"""
        query = db.query(PartnerCode).filter(PartnerCode.id == code_id)
        if partner_id:
            query = query.filter(PartnerCode.partner_id == partner_id)
        partner_code = query.first()
        if not partner_code:
            raise NotFoundError(f"Referral code {code_id} not found")

        partner_code.active = False
        db.commit()
        db.refresh(partner_code)

        logger.info(f"Referral code {partner_code.code} deactivated")
        return partner_code

    @staticmethod
    async def list_codes(db: Session, partner_id: str) -> List[PartnerCode]:
        return (
            db.query(PartnerCode)
            .filter(PartnerCode.partner_id == partner_id)
            .order_by(PartnerCode.created_at.desc())
            .all()
        )
