"""
Database package initialization.
Exposes the engine, the session factory and the FastAPI session dependency.
"""

from backend.db.session import get_db, SessionLocal, engine
from backend.models.base import Base

__all__ = ["get_db", "SessionLocal", "engine", "Base"]
