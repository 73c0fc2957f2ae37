# backend/models/base.py

"""
Base module for SQLAlchemy models:
- declarative base class `Base`
- `BaseModel` mixin with to_dict()
- create_tables() used at application startup
"""

import uuid
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Declarative base class
Base = declarative_base()

def generate_uuid() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read from the database to an aware UTC value.
    sqlite drops tzinfo, so naive values are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

class BaseModel:
    """
    Mixin for SQLAlchemy models, adds to_dict().
    """
    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for col in self.__table__.columns:
            value = getattr(self, col.name)
            if isinstance(value, datetime):
                value = as_utc(value).isoformat()
            elif isinstance(value, Decimal):
                value = float(value)
            result[col.name] = value
        return result

def create_tables(engine):
    """
    Create all tables declared on Base
    """
    # Register every model on Base.metadata
    import backend.models  # noqa: F401

    logger.info("🚀 Starting database initialization...")
    Base.metadata.create_all(bind=engine)

    existing_tables = inspect(engine).get_table_names()
    logger.info(f"📋 Existing tables: {existing_tables}")
    logger.info("✅ All model tables created successfully")
