"""
Pydantic schema models for the EngagePerfect backend.
These schemas are used for request/response validation and documentation.
"""

from .partner import (
    PartnerRegisterRequest, PartnerApproveRequest, PartnerStatusRequest,
    CommissionRateRequest, PartnerResponse, PartnerListResponse, PartnerApproveResponse,
    PartnerCodeCreateRequest, PartnerCodeResponse, ValidateCodeRequest, ValidateCodeResponse,
    AttributionRequest, AttributionResponse, ReferralCustomerResponse,
    ReferralCustomerListResponse, InvoicePaidWebhook, InvoicePaidResponse,
    MarkPaidRequest, ReverseRequest, LedgerEntryResponse, LedgerEntryListResponse
)
from .generation import (
    CaptionRequest, CaptionResponse, ContentIdeasRequest, ContentIdeasResponse
)

# Export all schemas
__all__ = [
    # Partner schemas
    "PartnerRegisterRequest", "PartnerApproveRequest", "PartnerStatusRequest",
    "CommissionRateRequest", "PartnerResponse", "PartnerListResponse", "PartnerApproveResponse",

    # Referral code schemas
    "PartnerCodeCreateRequest", "PartnerCodeResponse", "ValidateCodeRequest", "ValidateCodeResponse",

    # Attribution schemas
    "AttributionRequest", "AttributionResponse", "ReferralCustomerResponse",
    "ReferralCustomerListResponse",

    # Ledger schemas
    "InvoicePaidWebhook", "InvoicePaidResponse", "MarkPaidRequest", "ReverseRequest",
    "LedgerEntryResponse", "LedgerEntryListResponse",

    # Generation schemas
    "CaptionRequest", "CaptionResponse", "ContentIdeasRequest", "ContentIdeasResponse"
]
