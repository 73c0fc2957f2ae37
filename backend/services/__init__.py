"""
Service module for the EngagePerfect backend.
Contains business logic services that act as intermediaries between API endpoints and data models.
"""

from .referral_code_service import ReferralCodeService
from .referral_customer_service import ReferralCustomerService
from .referral_attribution_service import ReferralAttributionService
from .commission_ledger_service import CommissionLedgerService, compute_commission
from .partner_service import PartnerService
from .usage_service import UsageService
from .openai_client import OpenAIGenerationClient, map_openai_error
from .caption_service import CaptionService
from .content_ideas_service import ContentIdeasService

# Export services
__all__ = [
    "ReferralCodeService",
    "ReferralCustomerService",
    "ReferralAttributionService",
    "CommissionLedgerService",
    "compute_commission",
    "PartnerService",
    "UsageService",
    "OpenAIGenerationClient",
    "map_openai_error",
    "CaptionService",
    "ContentIdeasService",
]
