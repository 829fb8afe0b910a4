"""
GoPilot Dismissal FastAPI Application

Real-time school dismissal queue for office, teachers and parents.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from gopilot.config import settings
from gopilot.core.database import close_db, engine
from gopilot.dismissal.exceptions import (
    DismissalError,
    InvalidRequestError,
    InvalidTransitionError,
    NoEligibleStudentsError,
    NotFoundError,
    PermissionDeniedError,
    SessionPausedError,
)

logger = logging.getLogger(__name__)

# Domain error -> HTTP status
ERROR_STATUS: dict[type[DismissalError], int] = {
    NotFoundError: 404,
    InvalidTransitionError: 409,
    SessionPausedError: 409,
    NoEligibleStudentsError: 400,
    PermissionDeniedError: 403,
    InvalidRequestError: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events.

    Startup:
    - Verify database connection

    Shutdown:
    - Close database connections
    """
    logger.info("🚀 GoPilot Dismissal starting...")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Database connection verified")
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        raise

    logger.info("✅ GoPilot Dismissal ready!")

    yield

    logger.info("🛑 GoPilot Dismissal shutting down...")
    await close_db()
    logger.info("✅ Shutdown complete")


async def dismissal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate domain errors raised by the dismissal services."""
    status_code = 400
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    content: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, InvalidTransitionError):
        content.update(
            entry_id=str(exc.entry_id), current=exc.current, transition=exc.transition
        )
    if status_code in (403, 409):
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="GoPilot Dismissal",
        description="Real-time school dismissal queue",
        version="0.1.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_local else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DismissalError, dismissal_error_handler)

    # Health check endpoints
    @app.get("/", tags=["Health"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": "GoPilot Dismissal",
            "status": "operational",
            "version": "0.1.0",
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/health", tags=["Health"], response_model=None)
    async def health_check() -> JSONResponse:
        """Health check endpoint for load balancers.

        Returns:
            - status: healthy/unhealthy
            - checks: Individual health checks
        """
        checks: dict[str, dict[str, Any]] = {}

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = {"status": "healthy"}
        except Exception as e:
            checks["database"] = {"status": "unhealthy", "error": str(e)}

        all_healthy = all(check["status"] == "healthy" for check in checks.values())
        status_code = 200 if all_healthy else 503

        return JSONResponse(
            status_code=status_code,
            content={
                "status": "healthy" if all_healthy else "unhealthy",
                "environment": settings.ENVIRONMENT,
                "checks": checks,
            },
        )

    @app.get("/health/ready", tags=["Health"], response_model=None)
    async def readiness_check() -> dict[str, str] | JSONResponse:
        """Readiness check for Kubernetes.

        Returns 200 when app is ready to serve traffic.
        """
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ready"}
        except Exception:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready"},
            )

    @app.get("/health/live", tags=["Health"])
    async def liveness_check() -> dict[str, str]:
        """Liveness check for Kubernetes."""
        return {"status": "alive"}

    # Register API routers
    from gopilot.api.v1 import dismissal, zones
    from gopilot.realtime import websocket

    app.include_router(dismissal.router, prefix="/api/v1/dismissal", tags=["Dismissal"])
    app.include_router(zones.router, prefix="/api/v1/dismissal/zones", tags=["Pickup Zones"])
    app.include_router(websocket.router, tags=["Realtime"])

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gopilot.main:app",
        host="0.0.0.0",  # nosec B104 - Intentional for containerized deployment
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
