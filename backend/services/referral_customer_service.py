# backend/services/referral_customer_service.py
"""
Referral customer records: the dashboard-facing projection of a referral.

There is at most one record per (partner_id, customer_uid). create_customer_record
is safe to call any number of times for the same pair; concurrent callers are
serialized by the partner row lock where the database supports it, and the
unique constraint catches whatever slips through.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.exceptions import ValidationError
from backend.core.logging import get_context_logger, get_logger
from backend.models.base import utcnow
from backend.models.partner import (
    Partner, PartnerStatus, ReferralCustomer, ReferralCustomerStatus
)
from backend.utils.helpers import email_local_part

logger = get_logger(__name__)

RECENT_CUSTOMERS_LIMIT = 10


class CustomerRecordStatus(str, enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    PARTNER_INVALID = "partner_invalid"
    ERROR = "error"


@dataclass
class CustomerProfile:
    email: str
    display_name: Optional[str] = None


@dataclass
class CustomerRecordResult:
    status: CustomerRecordStatus
    record: Optional[ReferralCustomer] = None
    message: Optional[str] = None
    retryable: bool = False

    @property
    def success(self) -> bool:
        return self.status in (CustomerRecordStatus.CREATED, CustomerRecordStatus.ALREADY_EXISTS)


class ReferralCustomerService:
    """Creates and maintains referral customer records"""

    @staticmethod
    def _find_record(db: Session, partner_id: str, customer_uid: str) -> Optional[ReferralCustomer]:
        return db.query(ReferralCustomer).filter(
            ReferralCustomer.partner_id == partner_id,
            ReferralCustomer.customer_uid == customer_uid
        ).first()

    @staticmethod
    def validate_input(partner_id: str, customer_uid: str, profile: CustomerProfile) -> None:
        if not partner_id or not str(partner_id).strip():
            raise ValidationError("partner_id is required")
        if not customer_uid or not str(customer_uid).strip():
            raise ValidationError("customer_uid is required")
        if profile is None or not profile.email or not profile.email.strip():
            raise ValidationError("Customer email is required")

    @staticmethod
    async def create_customer_record(
        db: Session,
        partner_id: str,
        customer_uid: str,
        profile: CustomerProfile,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CustomerRecordResult:
        """
        Create the customer record for (partner_id, customer_uid) and bump the
        partner's referral counter, atomically.

        Args:
            db: Database session
            partner_id: Partner the customer is attributed to
            customer_uid: The new user's uid
            profile: Customer email and display name
            metadata: Extra attribution data stored on the record

        Returns:
            CustomerRecordResult. ``error`` results with ``retryable=True`` are
            ambiguous (timeout, lock conflict); repeat the same call.

        Raises:
            ValidationError: Missing partner_id, customer_uid or email
        """
        ReferralCustomerService.validate_input(partner_id, customer_uid, profile)
        log = get_context_logger(__name__, {"partner": partner_id, "customer": customer_uid})

        try:
            existing = ReferralCustomerService._find_record(db, partner_id, customer_uid)
            if existing:
                log.info("Customer record already exists")
                return CustomerRecordResult(CustomerRecordStatus.ALREADY_EXISTS, record=existing)

            # Row lock on the partner serializes concurrent attributions to it
            partner = (
                db.query(Partner)
                .filter(Partner.id == partner_id)
                .with_for_update()
                .first()
            )
            if not partner:
                db.rollback()
                log.warning("❌ Partner not found")
                return CustomerRecordResult(CustomerRecordStatus.PARTNER_INVALID, message="Partner not found")
            if partner.status != PartnerStatus.ACTIVE.value:
                db.rollback()
                log.warning(f"❌ Partner is {partner.status}")
                return CustomerRecordResult(
                    CustomerRecordStatus.PARTNER_INVALID,
                    message=f"Partner is {partner.status}"
                )

            # Re-check under the lock
            existing = ReferralCustomerService._find_record(db, partner_id, customer_uid)
            if existing:
                db.rollback()
                log.info("Customer record created concurrently")
                return CustomerRecordResult(CustomerRecordStatus.ALREADY_EXISTS, record=existing)

            now = utcnow()
            email = profile.email.strip()
            record = ReferralCustomer(
                partner_id=partner_id,
                customer_uid=customer_uid,
                display_name=profile.display_name or email_local_part(email),
                email=email,
                status=ReferralCustomerStatus.ACTIVE.value,
                total_spent=0,
                extra_data=metadata or {},
                joined_at=now,
                last_activity_at=now,
            )
            db.add(record)

            db.query(Partner).filter(Partner.id == partner_id).update(
                {
                    Partner.total_referrals: Partner.total_referrals + 1,
                    Partner.last_calculated: now,
                },
                synchronize_session=False
            )

            db.commit()
            db.refresh(record)

            log.info(f"✅ Customer record created: {record.id}")
            return CustomerRecordResult(CustomerRecordStatus.CREATED, record=record)

        except IntegrityError:
            # Another transaction inserted the same pair first
            db.rollback()
            existing = ReferralCustomerService._find_record(db, partner_id, customer_uid)
            if existing:
                log.info("Customer record inserted by a concurrent request")
                return CustomerRecordResult(CustomerRecordStatus.ALREADY_EXISTS, record=existing)
            log.error("❌ Integrity error without an existing record")
            return CustomerRecordResult(
                CustomerRecordStatus.ERROR, message="Conflicting write", retryable=True
            )

        except OperationalError as e:
            db.rollback()
            log.warning(f"⚠️ Transaction failed, outcome unknown: {str(e)}")
            return CustomerRecordResult(
                CustomerRecordStatus.ERROR, message="Database timeout or conflict", retryable=True
            )

        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"❌ Failed to create customer record: {str(e)}")
            return CustomerRecordResult(CustomerRecordStatus.ERROR, message=str(e))

    @staticmethod
    async def update_customer_activity(
        db: Session,
        customer_uid: str,
        status: Optional[str] = None,
        amount_spent: Optional[int] = None,
        activity_at: Optional[datetime] = None,
    ) -> int:
        """
        Update every record of a customer (one per partner that referred them).

        Args:
            db: Database session
            customer_uid: Customer uid
            status: New status (active, inactive, churned)
            amount_spent: Minor units to add to total_spent
            activity_at: Activity time, defaults to now

        Returns:
            Number of records updated
        """
        if not customer_uid:
            raise ValidationError("customer_uid is required")
        if status is not None and status not in {s.value for s in ReferralCustomerStatus}:
            raise ValidationError(f"Unknown customer status: {status}")
        if amount_spent is not None and amount_spent < 0:
            raise ValidationError("amount_spent cannot be negative")

        values: Dict[Any, Any] = {ReferralCustomer.last_activity_at: activity_at or utcnow()}
        if status is not None:
            values[ReferralCustomer.status] = status
        if amount_spent:
            values[ReferralCustomer.total_spent] = ReferralCustomer.total_spent + amount_spent

        updated = db.query(ReferralCustomer).filter(
            ReferralCustomer.customer_uid == customer_uid
        ).update(values, synchronize_session=False)
        db.commit()

        logger.info(f"Updated {updated} referral customer records for {customer_uid}")
        return updated

    @staticmethod
    async def list_customers(
        db: Session, partner_id: str, skip: int = 0, limit: int = 50
    ) -> Dict[str, Any]:
        query = db.query(ReferralCustomer).filter(ReferralCustomer.partner_id == partner_id)
        total = query.count()
        customers = query.order_by(ReferralCustomer.joined_at.desc()).offset(skip).limit(limit).all()
        return {"total": total, "customers": customers}

    @staticmethod
    async def get_partner_customer_stats(db: Session, partner_id: str) -> Dict[str, Any]:
        """
        Dashboard statistics for a partner's referred customers
        """
        rows = (
            db.query(
                ReferralCustomer.status,
                func.count(ReferralCustomer.id),
                func.coalesce(func.sum(ReferralCustomer.total_spent), 0),
            )
            .filter(ReferralCustomer.partner_id == partner_id)
            .group_by(ReferralCustomer.status)
            .all()
        )

        by_status = {s.value: 0 for s in ReferralCustomerStatus}
        total_customers = 0
        total_spent = 0
        for status, count, spent in rows:
            by_status[status] = count
            total_customers += count
            total_spent += int(spent or 0)

        recent: List[ReferralCustomer] = (
            db.query(ReferralCustomer)
            .filter(ReferralCustomer.partner_id == partner_id)
            .order_by(ReferralCustomer.joined_at.desc())
            .limit(RECENT_CUSTOMERS_LIMIT)
            .all()
        )

        return {
            "total_customers": total_customers,
            "active_customers": by_status[ReferralCustomerStatus.ACTIVE.value],
            "inactive_customers": by_status[ReferralCustomerStatus.INACTIVE.value],
            "churned_customers": by_status[ReferralCustomerStatus.CHURNED.value],
            "total_spent": total_spent,
            "average_spent": round(total_spent / total_customers, 2) if total_customers else 0,
            "recent_customers": [c.to_dict() for c in recent],
        }
