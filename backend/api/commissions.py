# backend/api/commissions.py
"""
Commission API endpoints for the EngagePerfect backend.
Billing webhook (accrual) and admin settlement of ledger entries.
"""

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from backend.core.config import settings
from backend.core.logging import get_logger
from backend.core.dependencies import check_admin_access
from backend.core.exceptions import DuplicateInvoiceError, ValidationError, WebhookSignatureError
from backend.core.security import verify_webhook_signature
from backend.db.session import get_db
from backend.models.user import User
from backend.schemas.partner import (
    InvoicePaidWebhook, InvoicePaidResponse, MarkPaidRequest, ReverseRequest,
    LedgerEntryResponse, LedgerEntryListResponse
)
from backend.services.commission_ledger_service import CommissionLedgerService
from backend.utils.error_handling import handle_exception

# Initialize logger
logger = get_logger(__name__)

# Create router
router = APIRouter()

SIGNATURE_HEADER = "X-Webhook-Signature"

@router.post("/webhook/invoice-paid", response_model=InvoicePaidResponse)
async def invoice_paid_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    db: Session = Depends(get_db)
):
    """
    Billing processor notification that an invoice was paid.

    The raw body is authenticated with an HMAC-SHA256 signature. A redelivered
    invoice is acknowledged as a duplicate (HTTP 200) so the processor stops
    retrying it. The ledger entry, partner totals and the customer's spend are
    written in one transaction, so a failed delivery leaves nothing behind and
    the redelivery records all of it.
    """
    try:
        body = await request.body()
        if not verify_webhook_signature(body, x_webhook_signature or "", settings.BILLING_WEBHOOK_SECRET):
            logger.warning("❌ Invoice webhook rejected: bad signature")
            raise WebhookSignatureError()

        try:
            payload = InvoicePaidWebhook.model_validate_json(body)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid webhook payload",
                {"errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]}
            ) from e

        logger.info(f"📥 Invoice paid: {payload.invoice_id} ({payload.amount_paid} {payload.currency})")

        if payload.amount_paid <= 0:
            return {"recorded": False, "reason": "zero_amount"}

        referral = await CommissionLedgerService.find_referral(
            db,
            customer_uid=payload.customer_uid,
            processor_customer_id=payload.processor_customer_id,
            subscription_id=payload.subscription_id
        )
        if not referral:
            logger.info(f"Invoice {payload.invoice_id} is not from a referred customer")
            return {"recorded": False, "reason": "not_referred"}

        try:
            entry = await CommissionLedgerService.accrue_commission(
                db,
                partner_id=referral.partner_id,
                referral_id=referral.id,
                invoice_id=payload.invoice_id,
                subscription_id=payload.subscription_id,
                gross_amount=payload.amount_paid,
                currency=payload.currency,
                period_start=payload.period_start,
                period_end=payload.period_end
            )
        except DuplicateInvoiceError as e:
            logger.info(f"Invoice {payload.invoice_id} already recorded, acknowledging redelivery")
            return {"recorded": False, "duplicate": True, "entry_id": e.existing_entry_id}

        return {"recorded": True, "entry_id": entry.id}
    except Exception as e:
        raise handle_exception(e, "Failed to process invoice webhook")

# ============================================================================
# ADMIN
# ============================================================================

@router.get("/partners/{partner_id}", response_model=LedgerEntryListResponse)
async def list_partner_entries(
    partner_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    try:
        return await CommissionLedgerService.list_entries(db, partner_id, status_filter, skip, limit)
    except Exception as e:
        raise handle_exception(e, "Failed to list ledger entries")

@router.get("/partners/{partner_id}/summary")
async def get_partner_summary(
    partner_id: str,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    try:
        return await CommissionLedgerService.get_commission_summary(db, partner_id, start_date, end_date)
    except Exception as e:
        raise handle_exception(e, "Failed to load commission summary")

@router.post("/{entry_id}/pay", response_model=LedgerEntryResponse)
async def mark_entry_paid(
    entry_id: str,
    data: MarkPaidRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    """
    Record the payout of an accrued entry (admin only).
    """
    try:
        return await CommissionLedgerService.mark_paid(
            db, entry_id, data.payment_transaction_id, paid_at=data.paid_at
        )
    except Exception as e:
        raise handle_exception(e, "Failed to mark ledger entry paid")

@router.post("/{entry_id}/reverse", response_model=LedgerEntryResponse)
async def reverse_entry(
    entry_id: str,
    data: ReverseRequest,
    current_user: User = Depends(check_admin_access),
    db: Session = Depends(get_db)
):
    """
    Reverse an accrued entry after a refund or chargeback (admin only).
    """
    try:
        return await CommissionLedgerService.reverse(db, entry_id, data.reason)
    except Exception as e:
        raise handle_exception(e, "Failed to reverse ledger entry")
