"""FastAPI application entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from sqlalchemy import text

from gitpulse.api.v1 import sync
from gitpulse.config import settings
from gitpulse.observability.logging import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("Starting GitPulse", version=settings.app_version)

    from gitpulse.models.database import get_session, init_db
    await init_db()
    logger.info("Database initialized")

    from gitpulse.classification.classifier import file_classifier
    async with get_session() as session:
        await file_classifier.load(session)

    yield

    # Shutdown
    logger.info("Shutting down GitPulse")
    from gitpulse.integrations.bitbucket.client import bitbucket_client
    await bitbucket_client.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Bitbucket commit and pull request analytics ingestion",
    lifespan=lifespan,
)

# Include routers
app.include_router(sync.router, prefix=f"{settings.api_prefix}/sync", tags=["Sync"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint for Kubernetes."""
    checks = {}

    try:
        from gitpulse.models.database import get_session
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)}"

    from gitpulse.integrations.bitbucket.client import bitbucket_client
    wait = bitbucket_client.rate_limit.wait_time()
    checks["bitbucket_rate_limit"] = "ok" if wait is None else f"paused for {wait.total_seconds():.0f}s"

    all_ok = all(v == "ok" for v in checks.values())

    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
    }
