# backend/models/partner.py
"""
Partner program models: partners, their referral codes, referral events,
the dashboard-facing referral customer records and the commission ledger.

All money columns hold integer minor units (cents).
"""

import enum
from sqlalchemy import (
    Column, String, Boolean, Numeric, DateTime, ForeignKey, Text, Integer,
    BigInteger, JSON, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, BaseModel, generate_uuid, utcnow


class PartnerStatus(str, enum.Enum):
    """Partner lifecycle"""
    PENDING = "pending"         # Registered, waiting for approval
    ACTIVE = "active"           # Approved, codes are usable
    SUSPENDED = "suspended"     # Temporarily disabled, can be reactivated
    REJECTED = "rejected"
    TERMINATED = "terminated"


class ReferralSource(str, enum.Enum):
    LINK = "link"
    MANUAL = "manual"
    PROMOTION_CODE = "promotion_code"
    WIDGET = "widget"


class ReferralCustomerStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CHURNED = "churned"


class LedgerStatus(str, enum.Enum):
    ACCRUED = "accrued"
    PAID = "paid"           # terminal
    REVERSED = "reversed"   # terminal


class Partner(Base, BaseModel):
    """
    Registered affiliate. Never deleted, only status-transitioned.
    """
    __tablename__ = "partners"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(128), ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    website = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)

    commission_rate = Column(Numeric(5, 4), nullable=False, default=0.6)
    status = Column(String(20), nullable=False, default=PartnerStatus.PENDING.value, index=True)
    status_reason = Column(Text, nullable=True)

    # Cumulative stats
    total_referrals = Column(Integer, nullable=False, default=0)
    total_conversions = Column(Integer, nullable=False, default=0)
    total_commission_earned = Column(BigInteger, nullable=False, default=0)
    total_commission_paid = Column(BigInteger, nullable=False, default=0)
    last_calculated = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    codes = relationship("PartnerCode", back_populates="partner", order_by="PartnerCode.created_at")

    def __repr__(self):
        return f"<Partner {self.email} ({self.status})>"


class PartnerCode(Base, BaseModel):
    """
    Referral code bound to exactly one partner.
    Expiry and usage cap are checked at read time.
    """
    __tablename__ = "partner_codes"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    code = Column(String(20), unique=True, nullable=False, index=True)
    partner_id = Column(String(36), ForeignKey("partners.id"), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    uses = Column(Integer, nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    description = Column(Text, nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    partner = relationship("Partner", back_populates="codes")

    def __repr__(self):
        return f"<PartnerCode {self.code} uses={self.uses}>"


class Referral(Base, BaseModel):
    """
    Source-of-truth event of one code-driven signup.
    """
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("partner_id", "customer_uid", name="uq_referrals_partner_customer"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    partner_id = Column(String(36), ForeignKey("partners.id"), nullable=False, index=True)
    partner_code = Column(String(20), nullable=False)
    customer_uid = Column(String(128), nullable=False, index=True)

    # Payment processor ids, filled by the billing integration
    processor_customer_id = Column(String(255), nullable=True)
    processor_subscription_id = Column(String(255), nullable=True)

    source = Column(String(20), nullable=False, default=ReferralSource.LINK.value)
    currency = Column(String(3), nullable=False, default="usd")
    utm = Column(JSON, nullable=True)
    extra_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    subscription_started_at = Column(DateTime(timezone=True), nullable=True)
    converted_at = Column(DateTime(timezone=True), nullable=True)


class ReferralCustomer(Base, BaseModel):
    """
    Dashboard projection of a Referral. One row per (partner, customer).
    """
    __tablename__ = "referral_customers"
    __table_args__ = (
        UniqueConstraint("partner_id", "customer_uid", name="uq_referral_customers_partner_customer"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    partner_id = Column(String(36), ForeignKey("partners.id"), nullable=False, index=True)
    customer_uid = Column(String(128), nullable=False, index=True)
    referral_id = Column(String(36), ForeignKey("referrals.id"), nullable=True)

    display_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=ReferralCustomerStatus.ACTIVE.value)
    total_spent = Column(BigInteger, nullable=False, default=0)
    extra_data = Column(JSON, nullable=True)

    joined_at = Column(DateTime(timezone=True), default=utcnow)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)


class CommissionLedgerEntry(Base, BaseModel):
    """
    One commission accrual tied to one billing invoice.
    Immutable except for status transitions and their timestamp/reason fields.
    """
    __tablename__ = "commission_ledger_entries"
    __table_args__ = (
        UniqueConstraint("partner_id", "invoice_id", name="uq_ledger_partner_invoice"),
        CheckConstraint("gross_amount > 0", name="ck_ledger_gross_positive"),
        Index("ix_ledger_partner_status", "partner_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    partner_id = Column(String(36), ForeignKey("partners.id"), nullable=False, index=True)
    referral_id = Column(String(36), ForeignKey("referrals.id"), nullable=True, index=True)
    invoice_id = Column(String(255), nullable=False)
    subscription_id = Column(String(255), nullable=True)

    gross_amount = Column(BigInteger, nullable=False)
    commission_rate = Column(Numeric(5, 4), nullable=False)
    commission_amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=LedgerStatus.ACCRUED.value)
    accrued_at = Column(DateTime(timezone=True), default=utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_transaction_id = Column(String(255), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversal_reason = Column(Text, nullable=True)

    def __repr__(self):
        return f"<CommissionLedgerEntry {self.commission_amount} {self.currency} ({self.status})>"
