"""
EngagePerfect FastAPI application.

Wires the partner program routers (partners, referrals, commissions), the
generation endpoints, error handlers that give every error body a "code",
request tracking and startup migrations.
"""
import os
import gc
import time
import uuid
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.core.config import settings
from backend.core.exceptions import ServiceError
from backend.core.logging import setup_logging, get_logger, get_context_logger
from backend.api import healthcheck, partners, referrals, commissions, generation
from backend.models.base import create_tables
from backend.db.session import engine
from backend.utils.error_handling import format_exception_for_client

from alembic.config import Config as AlembicConfig
from alembic import command as alembic_command

try:
    import psutil
    PSUTIL_AVAILABLE = True
except ImportError:
    PSUTIL_AVAILABLE = False

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ALEMBIC_INI = os.path.join(BASE_DIR, "alembic.ini")

# Requests that skip tracking: load balancer probes and the billing webhook
UNTRACKED_PATHS = {"/health", "/healthcheck", "/api/commissions/webhook/invoice-paid"}

MEMORY_WARNING_MB = 500
SLOW_REQUEST_SECONDS = 5.0

setup_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="EngagePerfect",
    description="Partner program, referral attribution and AI content generation API",
    version=settings.VERSION,
    docs_url=None if settings.PRODUCTION else "/api/docs",
    redoc_url=None if settings.PRODUCTION else "/api/redoc"
)

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # Service errors converted by handle_exception already carry a code
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        body = exc.detail
    else:
        body = {"detail": exc.detail, "code": f"http_{exc.status_code}"}
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(body),
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    body = {"detail": "Validation error", "code": "validation_error", "details": exc.errors()}
    return JSONResponse(status_code=422, content=jsonable_encoder(body))

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}", exc_info=True)
    if settings.DEBUG:
        body = format_exception_for_client(exc, include_traceback=True)
    else:
        body = {"detail": "Internal server error", "code": "internal_error"}
    return JSONResponse(status_code=500, content=body)

cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")] if isinstance(settings.CORS_ORIGINS, str) else settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)

@app.middleware("http")
async def track_request(request: Request, call_next):
    """Tags each request with an X-Request-ID and logs slow or memory-heavy ones"""
    if request.url.path in UNTRACKED_PATHS:
        return await call_next(request)

    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    log = get_context_logger(__name__, {"request": request_id})
    started = time.monotonic()

    response = await call_next(request)

    elapsed = time.monotonic() - started
    if elapsed > SLOW_REQUEST_SECONDS:
        log.warning(f"🐢 Slow request {request.method} {request.url.path}: {elapsed:.1f}s")

    if PSUTIL_AVAILABLE:
        rss_mb = psutil.Process().memory_info().rss / 1024 / 1024
        if rss_mb > MEMORY_WARNING_MB:
            log.warning(f"High memory usage after {request.url.path}: {rss_mb:.2f} MB")
            gc.collect()

    response.headers["X-Request-ID"] = request_id
    return response

if not PSUTIL_AVAILABLE:
    logger.warning("psutil not available - memory monitoring disabled")

app.include_router(healthcheck.router, tags=["Health"])
app.include_router(partners.router, prefix="/api/partners", tags=["Partners"])
app.include_router(referrals.router, prefix="/api/referrals", tags=["Referrals"])
app.include_router(commissions.router, prefix="/api/commissions", tags=["Commissions"])
app.include_router(generation.router, prefix="/api/generation", tags=["Generation"])

def run_migrations():
    """Upgrade the schema to the latest alembic revision"""
    if not os.path.exists(ALEMBIC_INI):
        logger.warning(f"No alembic.ini next to the app ({ALEMBIC_INI}), skipping migrations")
        return

    try:
        alembic_command.upgrade(AlembicConfig(ALEMBIC_INI), "head")
        logger.info("✅ Partner program schema is up to date")
    except Exception as e:
        logger.error(f"❌ Migration failed: {str(e)}")
        # Production keeps serving on the previous schema
        if not settings.PRODUCTION:
            raise

@app.on_event("startup")
async def on_startup():
    logger.info(f"🚀 Starting {settings.APP_NAME} {settings.VERSION}")
    try:
        run_migrations()
        create_tables(engine)
    except Exception as e:
        logger.error(f"❌ Startup error: {str(e)}", exc_info=True)
        if not settings.PRODUCTION:
            raise

    logger.info(f"🤝 Invoice webhook: {settings.HOST_URL or ''}/api/commissions/webhook/invoice-paid")
    if not settings.BILLING_WEBHOOK_SECRET:
        logger.warning("⚠️ BILLING_WEBHOOK_SECRET is not set, invoice webhooks will be rejected")
    if not settings.OPENAI_API_KEY:
        logger.warning("⚠️ OPENAI_API_KEY is not set, generation endpoints will return 503")

@app.get("/health")
async def health():
    return {"status": "healthy", "service": "engageperfect"}

@app.on_event("shutdown")
async def on_shutdown():
    engine.dispose()
    logger.info("🛑 EngagePerfect stopped")
