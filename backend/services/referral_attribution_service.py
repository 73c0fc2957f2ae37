# backend/services/referral_attribution_service.py
"""
Referral attribution at signup.

attribute() validates the code, creates the customer record (idempotent,
atomic with the partner's referral counter) and, the first time only, records
the Referral event and counts a use of the code. A customer already
attributed through a code that has since expired, run out or been switched
off still gets already_exists, so signup retries stay idempotent.

Attribution is best-effort tracking: apart from invalid input it never raises,
so the signup flow can log the result and carry on.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.config import settings
from backend.core.exceptions import ValidationError
from backend.core.logging import get_context_logger
from backend.models.base import utcnow
from backend.models.partner import PartnerCode, Referral, ReferralCustomer, ReferralSource
from backend.services.referral_code_service import (
    InvalidCode, InvalidCodeReason, PartnerInfo, ReferralCodeService
)
from backend.services.referral_customer_service import (
    CustomerProfile, CustomerRecordResult, CustomerRecordStatus, ReferralCustomerService
)
from backend.utils.helpers import normalize_code

# Codes that stopped attributing after they were used
STALE_CODE_REASONS = (InvalidCodeReason.EXHAUSTED, InvalidCodeReason.EXPIRED, InvalidCodeReason.INACTIVE)


class AttributionStatus(str, enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    NO_CODE = "no_code"
    INVALID_CODE = "invalid_code"
    PARTNER_INVALID = "partner_invalid"
    ERROR = "error"


@dataclass
class AttributionResult:
    status: AttributionStatus
    partner_id: Optional[str] = None
    customer_record_id: Optional[str] = None
    referral_id: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """The customer is attributed to a partner (now or by an earlier call)"""
        return self.status in (AttributionStatus.CREATED, AttributionStatus.ALREADY_EXISTS)

    @property
    def partial(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "partner_id": self.partner_id,
            "customer_record_id": self.customer_record_id,
            "referral_id": self.referral_id,
            "reason": self.reason,
            "attempts": self.attempts,
            "partial": self.partial,
            "warnings": self.warnings,
        }


class ReferralAttributionService:
    """Signup-time attribution of a customer to a partner"""

    @staticmethod
    async def attribute(
        db: Session,
        referral_code: Optional[str],
        customer_uid: str,
        profile: CustomerProfile,
        metadata: Optional[Dict[str, Any]] = None,
        source: str = ReferralSource.LINK.value,
        utm: Optional[Dict[str, str]] = None,
        currency: Optional[str] = None,
    ) -> AttributionResult:
        """
        Attribute a newly registered customer to the partner owning ``referral_code``.

        Args:
            db: Database session
            referral_code: Code captured during signup, may be None
            customer_uid: The new user's uid
            profile: Customer email and display name
            metadata: Extra data kept on the customer record and the referral
            source: How the code reached the customer
            utm: UTM parameters from the landing page
            currency: Billing currency of the customer

        Returns:
            AttributionResult

        Raises:
            ValidationError: Missing customer_uid or email, unknown source
        """
        code = normalize_code(referral_code)
        log = get_context_logger(__name__, {"customer": customer_uid, "code": code or "-"})

        if not code:
            return AttributionResult(AttributionStatus.NO_CODE, reason="No referral code present")

        # Input problems are the caller's to fix, so they are raised
        if not customer_uid or not str(customer_uid).strip():
            raise ValidationError("customer_uid is required")
        if profile is None or not profile.email or not profile.email.strip():
            raise ValidationError("Customer email is required")
        try:
            source = ReferralSource(source).value
        except ValueError:
            raise ValidationError(f"Unknown referral source: {source}")

        # Always validated at attribution time, never taken from a cached check
        validation = await ReferralCodeService.validate(db, code)
        if isinstance(validation, InvalidCode):
            # A retried signup stays idempotent after the code ran out or was switched off
            existing = ReferralAttributionService._existing_record(db, validation, customer_uid)
            if existing is not None:
                log.info(f"Customer already attributed, code now {validation.reason.value}")
                return AttributionResult(
                    AttributionStatus.ALREADY_EXISTS,
                    partner_id=existing.partner_id,
                    customer_record_id=existing.id,
                    referral_id=existing.referral_id,
                )
            log.warning(f"⚠️ Attribution skipped: {validation.message}")
            return AttributionResult(
                AttributionStatus.INVALID_CODE,
                reason=validation.reason.value,
            )

        info: PartnerInfo = validation
        record_metadata = dict(metadata or {})
        record_metadata.update({"code": info.code, "source": source})

        max_attempts = max(settings.ATTRIBUTION_MAX_RETRIES, 1)
        result: Optional[CustomerRecordResult] = None
        attempts = 0
        while attempts < max_attempts:
            attempts += 1
            result = await ReferralCustomerService.create_customer_record(
                db, info.partner_id, customer_uid, profile, record_metadata
            )
            if result.status != CustomerRecordStatus.ERROR or not result.retryable:
                break
            log.warning(f"⚠️ Customer record attempt {attempts}/{max_attempts} failed: {result.message}")

        if result.status == CustomerRecordStatus.ALREADY_EXISTS:
            log.info("Customer already attributed")
            return AttributionResult(
                AttributionStatus.ALREADY_EXISTS,
                partner_id=info.partner_id,
                customer_record_id=result.record.id,
                referral_id=result.record.referral_id,
                attempts=attempts,
            )

        if result.status == CustomerRecordStatus.PARTNER_INVALID:
            log.warning(f"⚠️ Attribution skipped: {result.message}")
            return AttributionResult(
                AttributionStatus.PARTNER_INVALID,
                partner_id=info.partner_id,
                reason=result.message,
                attempts=attempts,
            )

        if result.status == CustomerRecordStatus.ERROR:
            log.warning(f"⚠️ Attribution gave up after {attempts} attempts: {result.message}")
            return AttributionResult(
                AttributionStatus.ERROR,
                partner_id=info.partner_id,
                reason=result.message,
                attempts=attempts,
            )

        attribution = AttributionResult(
            AttributionStatus.CREATED,
            partner_id=info.partner_id,
            customer_record_id=result.record.id,
            attempts=attempts,
        )

        try:
            referral = ReferralAttributionService._record_referral(
                db, info, customer_uid, result.record.id, source, utm,
                record_metadata, currency or settings.DEFAULT_CURRENCY, log,
            )
            attribution.referral_id = referral.id
        except SQLAlchemyError as e:
            # Customer record is kept
            db.rollback()
            log.warning(f"⚠️ Partial attribution: customer record kept, referral not recorded: {str(e)}")
            attribution.warnings.append("referral_record_failed")

        log.info(f"✅ Customer attributed to partner {info.partner_id}")
        return attribution

    @staticmethod
    def _existing_record(db: Session, invalid: InvalidCode, customer_uid: str) -> Optional[ReferralCustomer]:
        """Record made through this code's partner while the code was still usable"""
        if invalid.reason not in STALE_CODE_REASONS:
            return None
        partner_code = db.query(PartnerCode).filter(PartnerCode.code == invalid.code).first()
        if partner_code is None:
            return None
        return db.query(ReferralCustomer).filter(
            ReferralCustomer.partner_id == partner_code.partner_id,
            ReferralCustomer.customer_uid == customer_uid
        ).first()

    @staticmethod
    def _record_referral(
        db: Session,
        info: PartnerInfo,
        customer_uid: str,
        customer_record_id: str,
        source: str,
        utm: Optional[Dict[str, str]],
        metadata: Dict[str, Any],
        currency: str,
        log: logging.LoggerAdapter,
    ) -> Referral:
        """Create the Referral event, link it to the record and count the code use"""
        now = utcnow()
        referral = Referral(
            partner_id=info.partner_id,
            partner_code=info.code,
            customer_uid=customer_uid,
            source=source,
            currency=currency,
            utm=utm or None,
            extra_data=metadata,
            created_at=now,
        )
        db.add(referral)
        db.flush()

        db.query(ReferralCustomer).filter(ReferralCustomer.id == customer_record_id).update(
            {ReferralCustomer.referral_id: referral.id}, synchronize_session=False
        )
        # The cap is checked again here: validation ran outside this transaction
        counted = db.query(PartnerCode).filter(
            PartnerCode.id == info.code_id,
            or_(PartnerCode.max_uses.is_(None), PartnerCode.uses < PartnerCode.max_uses)
        ).update(
            {PartnerCode.uses: PartnerCode.uses + 1, PartnerCode.last_used_at: now},
            synchronize_session=False
        )
        if not counted:
            log.warning(f"⚠️ Code {info.code} reached its usage limit concurrently, use not counted")
        db.commit()
        db.refresh(referral)
        return referral
