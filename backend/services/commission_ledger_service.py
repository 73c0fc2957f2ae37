# backend/services/commission_ledger_service.py
"""
Commission ledger: one entry per (partner, billing invoice).

Amounts are integer minor units. The commission is
``gross_amount * commission_rate`` rounded half-up to the nearest minor unit,
with the partner's rate frozen into the entry at accrual time.

Entries move accrued -> paid or accrued -> reversed; paid and reversed are
terminal.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.exceptions import (
    DuplicateInvoiceError, LedgerEntryTerminalError, NotFoundError, ValidationError
)
from backend.core.logging import get_context_logger, get_logger
from backend.models.base import as_utc, utcnow
from backend.models.partner import (
    CommissionLedgerEntry, LedgerStatus, Partner, PartnerStatus, Referral, ReferralCustomer
)
from backend.utils.validators import validate_currency

logger = get_logger(__name__)

RECENT_ENTRIES_LIMIT = 10


def compute_commission(gross_amount: int, commission_rate: Union[Decimal, float, str]) -> int:
    """
    Commission in minor units, rounded half-up.

    >>> compute_commission(999, "0.6")
    599
    >>> compute_commission(5, "0.5")
    3
    """
    amount = Decimal(int(gross_amount)) * Decimal(str(commission_rate))
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CommissionLedgerService:
    """Accrual and settlement of partner commissions"""

    @staticmethod
    def _find_by_invoice(db: Session, partner_id: str, invoice_id: str) -> Optional[CommissionLedgerEntry]:
        return db.query(CommissionLedgerEntry).filter(
            CommissionLedgerEntry.partner_id == partner_id,
            CommissionLedgerEntry.invoice_id == invoice_id
        ).first()

    @staticmethod
    def _apply_customer_spend(
        db: Session, partner_id: str, customer_uid: str, amount: int, now: datetime
    ) -> int:
        """Add a paid invoice to the partner's customer record; part of the accrual transaction"""
        return db.query(ReferralCustomer).filter(
            ReferralCustomer.partner_id == partner_id,
            ReferralCustomer.customer_uid == customer_uid
        ).update(
            {
                ReferralCustomer.total_spent: ReferralCustomer.total_spent + amount,
                ReferralCustomer.last_activity_at: now,
            },
            synchronize_session=False
        )

    @staticmethod
    async def accrue_commission(
        db: Session,
        partner_id: str,
        referral_id: Optional[str],
        invoice_id: str,
        subscription_id: Optional[str],
        gross_amount: int,
        currency: str,
        period_start: datetime,
        period_end: datetime,
    ) -> CommissionLedgerEntry:
        """
        Record the commission earned on one paid invoice.

        Args:
            db: Database session
            partner_id: Partner earning the commission
            referral_id: Referral the invoice belongs to
            invoice_id: Payment processor invoice id
            subscription_id: Payment processor subscription id
            gross_amount: Invoice amount in minor units, > 0
            currency: ISO currency code
            period_start: Start of the billed period
            period_end: End of the billed period, after period_start

        Returns:
            The new CommissionLedgerEntry

        Raises:
            ValidationError: Bad amount, period or ids
            NotFoundError: Unknown partner or referral
            DuplicateInvoiceError: The invoice was already accrued for this partner
        """
        if not partner_id or not invoice_id:
            raise ValidationError("partner_id and invoice_id are required")
        if isinstance(gross_amount, bool) or not isinstance(gross_amount, int):
            raise ValidationError("gross_amount must be an integer amount of minor units")
        if gross_amount <= 0:
            raise ValidationError("gross_amount must be greater than zero")
        if period_start is None or period_end is None or as_utc(period_start) >= as_utc(period_end):
            raise ValidationError("period_start must be before period_end")
        currency = (currency or "").lower()
        is_valid, error = validate_currency(currency)
        if not is_valid:
            raise ValidationError(error)

        log = get_context_logger(__name__, {"partner": partner_id, "invoice": invoice_id})

        existing = CommissionLedgerService._find_by_invoice(db, partner_id, invoice_id)
        if existing:
            log.warning(f"⚠️ Duplicate invoice, entry {existing.id} already recorded")
            raise DuplicateInvoiceError(partner_id, invoice_id, existing.id)

        partner = db.query(Partner).filter(Partner.id == partner_id).with_for_update().first()
        if not partner:
            db.rollback()
            raise NotFoundError(f"Partner {partner_id} not found")
        if partner.status != PartnerStatus.ACTIVE.value:
            log.warning(f"⚠️ Accruing commission for a {partner.status} partner")

        referral = None
        if referral_id:
            referral = db.query(Referral).filter(Referral.id == referral_id).first()
            if not referral or referral.partner_id != partner_id:
                db.rollback()
                raise NotFoundError(f"Referral {referral_id} not found for partner {partner_id}")

        now = utcnow()
        rate = Decimal(str(partner.commission_rate))
        commission_amount = compute_commission(gross_amount, rate)

        entry = CommissionLedgerEntry(
            partner_id=partner_id,
            referral_id=referral_id,
            invoice_id=invoice_id,
            subscription_id=subscription_id,
            gross_amount=gross_amount,
            commission_rate=rate,
            commission_amount=commission_amount,
            currency=currency,
            period_start=period_start,
            period_end=period_end,
            status=LedgerStatus.ACCRUED.value,
            accrued_at=now,
        )
        db.add(entry)

        partner_updates: Dict[Any, Any] = {
            Partner.total_commission_earned: Partner.total_commission_earned + commission_amount,
            Partner.last_calculated: now,
        }

        # First paid invoice converts the referral
        if referral is not None and referral.converted_at is None:
            referral.converted_at = now
            if not referral.processor_subscription_id:
                referral.processor_subscription_id = subscription_id
            if referral.subscription_started_at is None:
                referral.subscription_started_at = period_start
            partner_updates[Partner.total_conversions] = Partner.total_conversions + 1

        try:
            db.query(Partner).filter(Partner.id == partner_id).update(
                partner_updates, synchronize_session=False
            )
            # Spend lands with the entry, so a redelivered invoice never needs it again
            if referral is not None:
                CommissionLedgerService._apply_customer_spend(
                    db, partner_id, referral.customer_uid, gross_amount, now
                )
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = CommissionLedgerService._find_by_invoice(db, partner_id, invoice_id)
            if existing:
                raise DuplicateInvoiceError(partner_id, invoice_id, existing.id)
            raise
        except SQLAlchemyError:
            db.rollback()
            raise

        db.refresh(entry)
        log.info(
            f"✅ Commission accrued: {commission_amount} {currency} "
            f"({gross_amount} x {rate}) entry {entry.id}"
        )
        return entry

    @staticmethod
    async def find_referral(
        db: Session,
        customer_uid: Optional[str] = None,
        processor_customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Optional[Referral]:
        """
        Referral an invoice belongs to, matched by our uid first, then by the
        processor's customer and subscription ids. The earliest referral wins.
        """
        for column, value in (
            (Referral.customer_uid, customer_uid),
            (Referral.processor_customer_id, processor_customer_id),
            (Referral.processor_subscription_id, subscription_id),
        ):
            if not value:
                continue
            referral = (
                db.query(Referral)
                .filter(column == value)
                .order_by(Referral.created_at.asc())
                .first()
            )
            if referral:
                if processor_customer_id and not referral.processor_customer_id:
                    referral.processor_customer_id = processor_customer_id
                return referral
        return None

    @staticmethod
    def _get_for_update(db: Session, entry_id: str) -> CommissionLedgerEntry:
        entry = (
            db.query(CommissionLedgerEntry)
            .filter(CommissionLedgerEntry.id == entry_id)
            .with_for_update()
            .first()
        )
        if not entry:
            db.rollback()
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        return entry

    @staticmethod
    async def mark_paid(
        db: Session,
        entry_id: str,
        payment_transaction_id: str,
        paid_at: Optional[datetime] = None,
    ) -> CommissionLedgerEntry:
        """
        Settle an accrued entry.

        Raises:
            ValidationError: Missing payment transaction id
            NotFoundError: Unknown entry
            LedgerEntryTerminalError: Entry is already paid or reversed
        """
        if not payment_transaction_id or not payment_transaction_id.strip():
            raise ValidationError("payment_transaction_id is required")

        entry = CommissionLedgerService._get_for_update(db, entry_id)
        if entry.status != LedgerStatus.ACCRUED.value:
            db.rollback()
            logger.warning(f"❌ Rejected paid transition for {entry.status} entry {entry_id}")
            raise LedgerEntryTerminalError(entry_id, entry.status, LedgerStatus.PAID.value)

        now = paid_at or utcnow()
        entry.status = LedgerStatus.PAID.value
        entry.paid_at = now
        entry.payment_transaction_id = payment_transaction_id.strip()

        db.query(Partner).filter(Partner.id == entry.partner_id).update(
            {
                Partner.total_commission_paid: Partner.total_commission_paid + entry.commission_amount,
                Partner.last_calculated: now,
            },
            synchronize_session=False
        )
        db.commit()
        db.refresh(entry)

        logger.info(f"✅ Ledger entry {entry_id} paid ({entry.payment_transaction_id})")
        return entry

    @staticmethod
    async def reverse(db: Session, entry_id: str, reason: str) -> CommissionLedgerEntry:
        """
        Reverse an accrued entry (refund, chargeback).

        Raises:
            ValidationError: Missing reason
            NotFoundError: Unknown entry
            LedgerEntryTerminalError: Entry is already paid or reversed
        """
        if not reason or not reason.strip():
            raise ValidationError("A reversal reason is required")

        entry = CommissionLedgerService._get_for_update(db, entry_id)
        if entry.status != LedgerStatus.ACCRUED.value:
            db.rollback()
            logger.warning(f"❌ Rejected reversal of {entry.status} entry {entry_id}")
            raise LedgerEntryTerminalError(entry_id, entry.status, LedgerStatus.REVERSED.value)

        now = utcnow()
        entry.status = LedgerStatus.REVERSED.value
        entry.reversed_at = now
        entry.reversal_reason = reason.strip()

        db.query(Partner).filter(Partner.id == entry.partner_id).update(
            {
                Partner.total_commission_earned: Partner.total_commission_earned - entry.commission_amount,
                Partner.last_calculated: now,
            },
            synchronize_session=False
        )
        db.commit()
        db.refresh(entry)

        logger.info(f"Ledger entry {entry_id} reversed: {entry.reversal_reason}")
        return entry

    @staticmethod
    async def get_entry(db: Session, entry_id: str) -> CommissionLedgerEntry:
        entry = db.query(CommissionLedgerEntry).filter(CommissionLedgerEntry.id == entry_id).first()
        if not entry:
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        return entry

    @staticmethod
    async def list_entries(
        db: Session,
        partner_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        query = db.query(CommissionLedgerEntry).filter(CommissionLedgerEntry.partner_id == partner_id)
        if status:
            query = query.filter(CommissionLedgerEntry.status == status)
        total = query.count()
        entries = query.order_by(CommissionLedgerEntry.accrued_at.desc()).offset(skip).limit(limit).all()
        return {"total": total, "entries": entries}

    @staticmethod
    async def get_commission_summary(
        db: Session,
        partner_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Totals of a partner's ledger, optionally restricted to entries accrued
        between ``start_date`` and ``end_date``.
        """
        filters = [CommissionLedgerEntry.partner_id == partner_id]
        if start_date is not None:
            filters.append(CommissionLedgerEntry.accrued_at >= start_date)
        if end_date is not None:
            filters.append(CommissionLedgerEntry.accrued_at <= end_date)

        rows = (
            db.query(
                CommissionLedgerEntry.status,
                func.count(CommissionLedgerEntry.id),
                func.coalesce(func.sum(CommissionLedgerEntry.commission_amount), 0),
            )
            .filter(*filters)
            .group_by(CommissionLedgerEntry.status)
            .all()
        )
        counts = {s.value: 0 for s in LedgerStatus}
        amounts = {s.value: 0 for s in LedgerStatus}
        for status, count, amount in rows:
            counts[status] = count
            amounts[status] = int(amount or 0)

        recent: List[CommissionLedgerEntry] = (
            db.query(CommissionLedgerEntry)
            .filter(*filters)
            .order_by(CommissionLedgerEntry.accrued_at.desc())
            .limit(RECENT_ENTRIES_LIMIT)
            .all()
        )

        total_earned = amounts[LedgerStatus.ACCRUED.value] + amounts[LedgerStatus.PAID.value]
        return {
            "total_entries": sum(counts.values()),
            "entries_by_status": counts,
            "total_earned": total_earned,
            "total_paid": amounts[LedgerStatus.PAID.value],
            "total_reversed": amounts[LedgerStatus.REVERSED.value],
            "pending_amount": amounts[LedgerStatus.ACCRUED.value],
            "recent_entries": [e.to_dict() for e in recent],
        }
