"""
Pytest configuration and shared fixtures.

Every test gets a fresh in-memory sqlite database. Environment overrides are
applied before the backend package is imported so settings pick them up.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_TO_FILE"] = "False"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["BILLING_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["OPENAI_API_KEY"] = ""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.core.security import create_jwt_token
from backend.models.base import create_tables
from backend.models.partner import Partner, PartnerCode, PartnerStatus
from backend.models.user import User
from backend.utils.error_recovery import ErrorRecoverySystem


@pytest.fixture
def engine():
    """In-memory sqlite shared by every session of a test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fixed_now():
    """Fixed datetime for deterministic tests"""
    return datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_user(db):
    """Factory for users"""
    def _make(
        email: str = "user@example.com",
        display_name: Optional[str] = "Test User",
        **kwargs
    ) -> User:
        user = User(email=email, display_name=display_name, **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_partner(db):
    """Factory for partners, with one referral code unless ``code`` is None"""
    def _make(
        email: str = "partner@example.com",
        display_name: str = "Acme Media",
        status: str = PartnerStatus.ACTIVE.value,
        commission_rate: str = "0.6",
        code: Optional[str] = "ACME",
        user_id: Optional[str] = None,
        max_uses: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> Partner:
        partner = Partner(
            email=email,
            display_name=display_name,
            status=status,
            commission_rate=Decimal(commission_rate),
            user_id=user_id,
        )
        db.add(partner)
        db.flush()
        if code:
            db.add(PartnerCode(
                code=code,
                partner_id=partner.id,
                active=True,
                uses=0,
                max_uses=max_uses,
                expires_at=expires_at,
            ))
        db.commit()
        db.refresh(partner)
        return partner
    return _make


@pytest.fixture
def period(fixed_now):
    """A monthly billing period"""
    return fixed_now, fixed_now + timedelta(days=30)


@pytest.fixture
def recovery():
    """Error recovery with no jitter and no real sleeping"""
    return ErrorRecoverySystem(
        base_delay_ms=1000,
        max_delay_ms=30000,
        rand=lambda: 0.0,
        sleep=AsyncMock(),
    )


@pytest.fixture
def generation_client():
    """Mock OpenAI client; set ``complete.return_value`` or ``side_effect`` per test"""
    client = MagicMock()
    client.complete = AsyncMock()
    return client


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_jwt_token(user.id)}"}
    return _headers


@pytest.fixture
def client(session_factory, generation_client):
    """FastAPI TestClient bound to the test database and the mock OpenAI client"""
    from fastapi.testclient import TestClient

    from app import app
    from backend.api.generation import get_generation_client
    from backend.db.session import get_db

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_client] = lambda: generation_client

    yield TestClient(app)

    app.dependency_overrides.clear()
