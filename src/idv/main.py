"""
Identity Verification API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database and Redis connections
- CORS middleware
- API routing and error envelopes
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from idv.api import api_router
from idv.core.config import settings
from idv.core.database import close_db, init_db, ping_db
from idv.core.logging_config import configure_logging
from idv.core.redis import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Opens the database engine and Redis client on startup and releases them
    on shutdown. Outside production a failed connection is logged and the
    API still starts (rate limiting then falls back to memory).
    """
    configure_logging()
    logger.info(f"Starting identity verification API in {settings.python_env} mode...")

    # Initialize Redis
    try:
        await init_redis()
        logger.info("Redis connected")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Database
    try:
        await init_db()
        logger.info("Database connected")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        if settings.is_production:
            raise

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down identity verification API...")
    await close_redis()
    await close_db()
    logger.info("Cleanup complete")


app = FastAPI(
    title="Identity Verification API",
    description="Identity verification application review service",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Error Envelopes
# ============================================


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    _request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Flatten structured HTTPException details into the error envelope.

    Also covers routing errors (unknown path, wrong method) raised by Starlette.
    """
    if isinstance(exc.detail, dict):
        content = {"success": False, **exc.detail}
    else:
        content = {
            "success": False,
            "error": HTTPStatus(exc.status_code).name,
            "message": str(exc.detail),
        }
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request body/query validation failures as VALIDATION_ERROR (400)."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "VALIDATION_ERROR",
            "message": message,
            "details": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in errors
            ],
        },
    )


# ============================================
# Health Endpoints
# ============================================


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Identity Verification API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> JSONResponse:
    """Readiness check endpoint. Fails with 503 while the database is unreachable."""
    if await ping_db():
        return JSONResponse(content={"status": "ready"})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unavailable", "database": "unreachable"},
    )
