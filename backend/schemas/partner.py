"""
Partner program schemas for the EngagePerfect backend.
Defines schemas for partners, referral codes, attribution and the commission ledger.
"""

from pydantic import BaseModel, EmailStr, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

# ============================================================================
# PARTNERS
# ============================================================================

class PartnerRegisterRequest(BaseModel):
    """Schema for a partner application"""
    email: EmailStr = Field(..., description="Partner contact email")
    display_name: str = Field(..., min_length=1, max_length=255, description="Public partner name")
    website: Optional[str] = Field(None, max_length=500, description="Partner website")
    description: Optional[str] = Field(None, description="How the partner will promote the product")

class PartnerApproveRequest(BaseModel):
    """Schema for approving a partner"""
    commission_rate: Optional[Decimal] = Field(None, description="Commission rate, default rate when omitted")
    code: Optional[str] = Field(None, description="Custom referral code, generated when omitted")

class PartnerStatusRequest(BaseModel):
    """Schema for reject / suspend / terminate"""
    reason: Optional[str] = Field(None, description="Reason shown to the partner")

class CommissionRateRequest(BaseModel):
    """Schema for changing a partner's commission rate"""
    commission_rate: Decimal = Field(..., description="New commission rate")

class PartnerResponse(BaseModel):
    """Schema for partner response"""
    id: str = Field(..., description="Partner ID")
    user_id: Optional[str] = Field(None, description="Linked user ID")
    email: str = Field(..., description="Partner email")
    display_name: str = Field(..., description="Partner name")
    website: Optional[str] = None
    commission_rate: Decimal = Field(..., description="Current commission rate")
    status: str = Field(..., description="pending, active, suspended, rejected or terminated")
    status_reason: Optional[str] = None
    total_referrals: int = 0
    total_conversions: int = 0
    total_commission_earned: int = Field(0, description="Minor units")
    total_commission_paid: int = Field(0, description="Minor units")
    last_calculated: Optional[datetime] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PartnerListResponse(BaseModel):
    """Schema for a page of partners"""
    total: int
    partners: List[PartnerResponse]

# ============================================================================
# REFERRAL CODES
# ============================================================================

class PartnerCodeCreateRequest(BaseModel):
    """Schema for creating an additional referral code"""
    code: Optional[str] = Field(None, description="Custom code, generated when omitted")
    max_uses: Optional[int] = Field(None, gt=0, description="Usage cap")
    expires_at: Optional[datetime] = Field(None, description="Expiry time")
    description: Optional[str] = Field(None, description="Internal note")

class PartnerCodeResponse(BaseModel):
    """Schema for referral code response"""
    id: str
    code: str
    partner_id: str
    active: bool
    uses: int
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None
    description: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PartnerApproveResponse(BaseModel):
    """Schema for the result of an approval"""
    partner: PartnerResponse
    code: PartnerCodeResponse

class ValidateCodeRequest(BaseModel):
    """Schema for checking a referral code"""
    code: str = Field(..., description="Referral code")

class ValidateCodeResponse(BaseModel):
    """Schema for the result of a code check"""
    valid: bool
    code: str
    reason: Optional[str] = Field(None, description="Why the code is invalid")
    message: Optional[str] = None
    partner_id: Optional[str] = None
    partner_name: Optional[str] = None
    commission_rate: Optional[float] = None
    checked_at: Optional[datetime] = None

# ============================================================================
# ATTRIBUTION
# ============================================================================

class AttributionRequest(BaseModel):
    """Schema for signup-time attribution"""
    referral_code: Optional[str] = Field(None, description="Code captured during signup")
    source: str = Field("link", description="link, manual, promotion_code or widget")
    currency: Optional[str] = Field(None, description="Billing currency")
    landing_params: Optional[Dict[str, Any]] = Field(None, description="Query parameters of the landing page")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Extra attribution data")

class AttributionResponse(BaseModel):
    """Schema for the attribution result"""
    success: bool
    status: str
    partner_id: Optional[str] = None
    customer_record_id: Optional[str] = None
    referral_id: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    partial: bool = False
    warnings: List[str] = []

class ReferralCustomerResponse(BaseModel):
    """Schema for a referred customer on the dashboard"""
    id: str
    customer_uid: str
    display_name: Optional[str] = None
    email: str
    status: str
    total_spent: int = Field(0, description="Minor units")
    joined_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReferralCustomerListResponse(BaseModel):
    total: int
    customers: List[ReferralCustomerResponse]

# ============================================================================
# COMMISSION LEDGER
# ============================================================================

class InvoicePaidWebhook(BaseModel):
    """Schema for the billing processor's invoice-paid event"""
    invoice_id: str = Field(..., min_length=1, description="Processor invoice ID")
    subscription_id: Optional[str] = Field(None, description="Processor subscription ID")
    customer_uid: Optional[str] = Field(None, description="Our user uid, when the processor knows it")
    processor_customer_id: Optional[str] = Field(None, description="Processor customer ID")
    amount_paid: int = Field(..., description="Amount paid in minor units")
    currency: str = Field(..., description="ISO currency code")
    period_start: datetime = Field(..., description="Start of the billed period")
    period_end: datetime = Field(..., description="End of the billed period")

    @validator('currency')
    def lower_currency(cls, v):
        """Currencies are stored lower-case"""
        return v.strip().lower()

class InvoicePaidResponse(BaseModel):
    """Schema for the webhook acknowledgement"""
    received: bool = True
    recorded: bool
    duplicate: bool = False
    entry_id: Optional[str] = None
    reason: Optional[str] = None

class MarkPaidRequest(BaseModel):
    """Schema for settling a ledger entry"""
    payment_transaction_id: str = Field(..., min_length=1, description="Payout transaction ID")
    paid_at: Optional[datetime] = Field(None, description="Payout time, now when omitted")

class ReverseRequest(BaseModel):
    """Schema for reversing a ledger entry"""
    reason: str = Field(..., min_length=1, description="Refund, chargeback, ...")

class LedgerEntryResponse(BaseModel):
    """Schema for commission ledger entry response"""
    id: str
    partner_id: str
    referral_id: Optional[str] = None
    invoice_id: str
    subscription_id: Optional[str] = None
    gross_amount: int
    commission_rate: Decimal
    commission_amount: int
    currency: str
    period_start: datetime
    period_end: datetime
    status: str
    accrued_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payment_transaction_id: Optional[str] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None

    class Config:
        from_attributes = True

class LedgerEntryListResponse(BaseModel):
    total: int
    entries: List[LedgerEntryResponse]
