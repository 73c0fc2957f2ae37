# backend/api/__init__.py
"""
API module for the EngagePerfect backend.
Contains FastAPI route definitions for all endpoints.
"""

from . import healthcheck, partners, referrals, commissions, generation

__all__ = [
    "healthcheck",
    "partners",
    "referrals",
    "commissions",
    "generation"
]
