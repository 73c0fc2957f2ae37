"""
User model for the EngagePerfect backend.
Represents an account with its generation quota.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Integer

from .base import Base, BaseModel, generate_uuid, utcnow

class User(Base, BaseModel):
    """
    Application user. ``id`` is the auth provider's uid.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Generation quota
    plan_type = Column(String(50), default="free", nullable=False)
    requests_used = Column(Integer, default=0, nullable=False)
    requests_limit = Column(Integer, default=5, nullable=False)
    flexy_requests = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def requests_remaining(self) -> int:
        """Plan requests left plus purchased flexy requests"""
        return max(self.requests_limit - self.requests_used, 0) + (self.flexy_requests or 0)
