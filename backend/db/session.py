# backend/db/session.py

import os
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session

from backend.core.config import settings
from backend.core.logging import get_logger

logger = get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", settings.DATABASE_URL)
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is not set")

def build_connect_args(database_url: str, timeout_seconds: int) -> Dict[str, Any]:
    """
    Driver arguments bounding every statement by ``timeout_seconds``.

    sqlite waits at most ``timeout`` seconds for a lock; PostgreSQL gets both a
    connect timeout and a server side statement timeout.
    """
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": timeout_seconds}
    if database_url.startswith("postgresql"):
        return {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    return {}

def create_db_engine(database_url: str = DATABASE_URL) -> Engine:
    options: Dict[str, Any] = {
        "pool_pre_ping": True,
        "connect_args": build_connect_args(database_url, settings.DB_TIMEOUT_SECONDS),
    }
    if not database_url.startswith("sqlite"):
        options["pool_timeout"] = settings.DB_TIMEOUT_SECONDS
    return create_engine(database_url, **options)

engine = create_db_engine(DATABASE_URL)
logger.info(f"Database engine created for {make_url(DATABASE_URL).render_as_string(hide_password=True)}")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session. Whatever the endpoint left uncommitted when it
    raised is rolled back before the session returns to the pool.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
