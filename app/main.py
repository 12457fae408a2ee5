"""
Voice Agent Admin - Main FastAPI Application

Entry point for the back-office API. Mounts all module routers.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app import __version__
from app.core.config import settings
from app.core.database import init_db, close_db
from app.core.middleware import (
    configure_error_handlers,
    configure_rate_limiting,
    add_security_headers,
)
from app.modules.auth.routes import router as auth_router
from app.modules.security.routes import router as security_router
from app.modules.audit.routes import router as audit_router
from app.api.webhooks import router as webhook_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.

    Runs on startup and shutdown.
    """
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")

    # Initialize Sentry error monitoring
    from app.core.sentry import init_sentry
    init_sentry()

    # Initialize database (only in development - use Alembic in production)
    if settings.is_development:
        await init_db()

    yield

    logger.info("Shutting down...")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Back-office API for the voice-agent platform: admin auth, IP allowlists, webhook security, abuse detection and audit logging",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if settings.CORS_ORIGINS else [settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate Limiting - protect login from brute force
limiter = configure_rate_limiting(app)

# Security Headers - applied to all responses
add_security_headers(app)

# {"error": ...} bodies for every failure
configure_error_handlers(app)

# Mount routers
app.include_router(auth_router)
app.include_router(security_router)
app.include_router(audit_router)
app.include_router(webhook_router, prefix="/webhooks", tags=["webhooks"])


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns metrics for:
    - Database connectivity
    - Redis (Celery broker, rate limit storage)
    - Webhook activity
    - Open abuse alerts

    Status codes:
    - healthy: All systems operational
    - degraded: Some warnings but functional
    - unhealthy: Critical components down
    """
    from app.core.health import get_health_metrics

    metrics = await get_health_metrics()

    return {
        "service": settings.APP_NAME,
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        **metrics,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
