"""
Entry point for running EngagePerfect with uvicorn (development) or
gunicorn (``gunicorn -c gunicorn_config.py main:application``).
"""
import uvicorn
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

load_dotenv()

from backend.core.config import settings
from backend.core.logging import get_logger
from backend.db.session import engine

logger = get_logger("engageperfect")

def check_database_connection() -> bool:
    """Make sure the database answers before the server starts taking signups"""
    logger.info(f"🔗 Checking database connection ({engine.url.get_backend_name()})...")
    try:
        with engine.connect() as connection:
            value = connection.execute(text("SELECT 1 AS test")).scalar()
    except SQLAlchemyError as e:
        logger.error(f"❌ Database connection error: {str(e)}")
        return False

    if value != 1:
        logger.error("❌ Database connection test failed")
        return False

    logger.info("✅ Database connection OK")
    return True

from app import app

# Gunicorn entry point
application = app

if __name__ == "__main__":
    logger.info(f"🚀 Starting {settings.APP_NAME} on port {settings.PORT}, debug={settings.DEBUG}")

    if not check_database_connection():
        logger.warning("⚠️ Starting anyway: attribution and webhooks will fail until the database is reachable")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG,
        timeout_keep_alive=120,
    )
