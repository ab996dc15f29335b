"""
Tenant middleware for multi-tenant request handling
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

from school_crm.config import settings
from school_crm.core.tenant_context import (
    NoTenantContextError,
    TenantInactiveError,
    TenantNotFoundError,
    get_tenant_by_id,
    parse_tenant_id,
)

logger = logging.getLogger(__name__)


# Public routes skip the tenant check
PUBLIC_ROUTES = [
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/",
]

PUBLIC_PREFIXES = [
    "/static",
    "/docs/",
]


def _error(request: Request, status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "type": error_type,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


async def tenant_middleware(request: Request, call_next):
    """
    Middleware to inject tenant context into request

    This middleware:
    1. Reads the tenant id from the X-Tenant-ID header
    2. Loads the active tenant
    3. Injects it into request.state

    Public routes (health check, docs, etc.) skip tenant check.
    """
    path = request.url.path
    if path in PUBLIC_ROUTES or any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES):
        return await call_next(request)

    # CORS preflight carries no tenant header
    if request.method == "OPTIONS":
        return await call_next(request)

    try:
        tenant_id = parse_tenant_id(request.headers.get(settings.TENANT_HEADER))
    except NoTenantContextError as e:
        logger.warning(f"Rejected {request.method} {path}: {e}")
        return _error(
            request,
            status.HTTP_400_BAD_REQUEST,
            f"Tenant context required. Include {settings.TENANT_HEADER} header.",
            type(e).__name__,
        )

    from school_crm.database import async_session_factory

    async with async_session_factory() as db:
        try:
            tenant = await get_tenant_by_id(db, tenant_id)
        except TenantNotFoundError as e:
            logger.warning(str(e))
            return _error(request, status.HTTP_404_NOT_FOUND, str(e), type(e).__name__)
        except TenantInactiveError as e:
            logger.warning(str(e))
            return _error(request, status.HTTP_403_FORBIDDEN, str(e), type(e).__name__)

    request.state.tenant = tenant
    request.state.tenant_id = str(tenant.id)

    logger.debug(f"Request for tenant: {tenant.name} ({tenant.subdomain})")

    return await call_next(request)
