from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from school_crm.config import settings
from school_crm.api.v1.router import api_router
from school_crm.database import init_db, async_session_factory, engine
from school_crm.services.commission.exceptions import (
    BrokerConflictError,
    BrokerValidationError,
    CommissionDataIntegrityError,
    CommissionError,
    CommissionNotFoundError,
    CommissionTransactionError,
    PaymentNotCompletedError,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - In DEBUG, create missing tables directly (production runs Alembic)
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.DEBUG:
        await init_db()

    yield

    # Shutdown
    await engine.dispose()
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Brokers", "description": "Broker/agent hierarchy, statistics and per-broker rules"},
    {"name": "Commission Rules", "description": "Commission rule maintenance"},
    {"name": "Commissions", "description": "Commission calculation preview, recording and ledger queries"},
    {"name": "Health", "description": "Service health"},
]

FULL_API_DESCRIPTION = """
Hierarchical broker commission engine for the School CRM.

A completed fee payment by a referred student pays commission to every
broker in the referring broker's chain, according to each broker's
highest-priority matching rule.

All endpoints under /api/v1 require the **X-Tenant-ID** header and the
`commission` feature enabled for the school.

- **API Docs**: /docs (Swagger UI)
- **ReDoc**: /redoc (Alternative docs)
- **Health Check**: /health
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add tenant middleware for multi-tenant support
from school_crm.middleware.tenant import tenant_middleware  # noqa: E402
app.middleware("http")(tenant_middleware)

# Include API router
app.include_router(api_router)


def _error_response(request: Request, status_code: int, message, exc: Exception) -> JSONResponse:
    error_detail = {
        "error": message,
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG and status_code >= 500:
        error_detail["traceback"] = traceback.format_exc()

    response = JSONResponse(status_code=status_code, content=error_detail)

    # Add CORS headers if origin is allowed
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "*"

    return response


def commission_error_status(exc: CommissionError) -> int:
    """HTTP status for a commission engine error."""
    if isinstance(exc, CommissionNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (CommissionDataIntegrityError, PaymentNotCompletedError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, BrokerConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, BrokerValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, CommissionTransactionError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(CommissionError)
async def commission_exception_handler(request: Request, exc: CommissionError):
    """Translate commission engine errors into JSON error bodies."""
    status_code = commission_error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(request, status_code, str(exc), exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(request, exc.status_code, exc.detail, exc)


# Global exception handler for anything unexpected
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return error information as JSON."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), exc)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
