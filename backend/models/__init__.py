"""
Database models module for the EngagePerfect backend.
This module contains SQLAlchemy ORM models that represent database tables.
"""

from .base import Base, create_tables
from .user import User
from .partner import (
    Partner,
    PartnerCode,
    Referral,
    ReferralCustomer,
    CommissionLedgerEntry,
    PartnerStatus,
    ReferralSource,
    ReferralCustomerStatus,
    LedgerStatus,
)
from .generation import GenerationLog

# Export specific models
__all__ = [
    "Base",
    "create_tables",
    "User",
    "Partner",
    "PartnerCode",
    "Referral",
    "ReferralCustomer",
    "CommissionLedgerEntry",
    "PartnerStatus",
    "ReferralSource",
    "ReferralCustomerStatus",
    "LedgerStatus",
    "GenerationLog",
]
