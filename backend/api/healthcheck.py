"""
Liveness and readiness endpoints.
"""

from fastapi import APIRouter, Depends
from datetime import datetime, timezone
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.logging import get_logger
from backend.core.config import settings
from backend.db.session import get_db

logger = get_logger(__name__)

router = APIRouter()

def _service_info() -> dict:
    return {
        "version": settings.VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": "production" if settings.PRODUCTION else "development"
    }

@router.get("/healthcheck", tags=["Health"])
async def healthcheck():
    """Liveness: the process is up"""
    return {"status": "ok", **_service_info()}

@router.get("/status", tags=["Health"])
async def service_status(db: Session = Depends(get_db)):
    """
    Readiness: database reachable, plus which integrations are configured.
    A database failure degrades the status instead of failing the request.
    """
    database = "ok"
    try:
        db.execute(text("SELECT 1")).scalar()
    except SQLAlchemyError as e:
        database = f"error: {str(e)}"
        logger.error(f"❌ Readiness check: database unreachable: {str(e)}")

    return {
        "status": "ok" if database == "ok" else "degraded",
        **_service_info(),
        "database": database,
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "webhook_configured": bool(settings.BILLING_WEBHOOK_SECRET)
    }
