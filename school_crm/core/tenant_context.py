"""
Tenant Context for the Multi-Tenant School CRM

Every broker, rule, student, payment and commission row carries a tenant id,
and every query the commission engine runs is filtered by it. The tenant of a
request is resolved once by the tenant middleware (from the X-Tenant-ID
header) and read back here.

Usage Examples:

    # In an endpoint:
    @router.get("/brokers")
    async def list_brokers(tenant: Tenant = Depends(require_tenant_context)):
        ...

    # Outside a request:
    async with async_session_factory() as db:
        tenant = await get_tenant_by_id(db, tenant_id)
"""

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Request, HTTPException, status

from school_crm.models.tenant import Tenant

logger = logging.getLogger(__name__)


class TenantNotFoundError(Exception):
    """Raised when tenant cannot be found."""
    pass


class TenantInactiveError(Exception):
    """Raised when tenant is not active."""
    pass


class NoTenantContextError(Exception):
    """Raised when code requires tenant context but none is provided."""
    pass


def parse_tenant_id(raw: Optional[str]) -> uuid.UUID:
    """
    Parse a tenant id from a header value.

    Raises:
        NoTenantContextError: If the value is missing or not a UUID
    """
    if not raw:
        raise NoTenantContextError("No tenant id supplied")
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        raise NoTenantContextError(f"Invalid tenant id: {raw}")


async def get_tenant_by_id(
    db: AsyncSession,
    tenant_id: Union[str, uuid.UUID],
    verify_active: bool = True,
) -> Tenant:
    """
    Fetch a tenant by ID.

    Raises:
        TenantNotFoundError: If tenant doesn't exist
        TenantInactiveError: If tenant is not active and verify_active=True
    """
    if not isinstance(tenant_id, uuid.UUID):
        tenant_id = parse_tenant_id(str(tenant_id))

    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()

    if tenant is None:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")

    if verify_active and tenant.status != "active":
        raise TenantInactiveError(
            f"Tenant {tenant.subdomain} is not active (status: {tenant.status})"
        )

    return tenant


def get_tenant_from_request(request: Request) -> Tenant:
    """
    Extract the tenant from a FastAPI request.

    The tenant middleware should have already set it on request.state.

    Raises:
        NoTenantContextError: If no tenant context in request
    """
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise NoTenantContextError(
            "No tenant context found in request. "
            "Ensure tenant middleware is configured."
        )
    return tenant


def require_tenant_context(request: Request) -> Tenant:
    """
    FastAPI dependency to require tenant context.

    Raises:
        HTTPException: If no tenant context
    """
    try:
        return get_tenant_from_request(request)
    except NoTenantContextError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant context required. Include X-Tenant-ID header."
        )
