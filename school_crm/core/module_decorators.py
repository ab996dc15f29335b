"""
Module access control for the Multi-Tenant School CRM

Each tenant enables product modules through its settings:

    {"features": {"commission": true}}

require_module() builds a FastAPI dependency that refuses requests for
tenants without the module. Results are cached per tenant with a TTL.
"""
from datetime import datetime, timezone
import logging

from fastapi import Depends, HTTPException, status

from school_crm.core.tenant_context import require_tenant_context
from school_crm.models.tenant import Tenant

logger = logging.getLogger(__name__)

# Cache for module access checks
# Format: {cache_key: (has_access, cache_time)}
_module_access_cache = {}

# Maximum cache entries before cleanup (prevents unbounded growth)
_MAX_CACHE_ENTRIES = 10000

# Cache TTL in seconds
_CACHE_TTL_SECONDS = 300  # 5 minutes


def _cleanup_expired_cache_entries():
    """Remove expired entries from the module access cache."""
    now = datetime.now(timezone.utc)
    expired_keys = [
        key for key, (_, cache_time) in _module_access_cache.items()
        if (now - cache_time).total_seconds() >= _CACHE_TTL_SECONDS
    ]
    for key in expired_keys:
        del _module_access_cache[key]

    if expired_keys:
        logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")


def check_module_access(tenant: Tenant, module_code: str) -> bool:
    """True if the tenant has the module enabled and is active."""
    return tenant.status == "active" and tenant.has_feature(module_code)


def require_module(module_code: str):
    """
    Dependency factory checking that the tenant has a module enabled

    Usage:
        router = APIRouter(dependencies=[Depends(require_module("commission"))])

    Raises:
        HTTPException 400: If tenant context not found
        HTTPException 403: If module not enabled for tenant
    """
    async def dependency(tenant: Tenant = Depends(require_tenant_context)) -> Tenant:
        cache_key = f"{tenant.id}:{module_code}"
        now = datetime.now(timezone.utc)

        cached = _module_access_cache.get(cache_key)
        if cached is not None and (now - cached[1]).total_seconds() < _CACHE_TTL_SECONDS:
            has_access = cached[0]
        else:
            if len(_module_access_cache) > _MAX_CACHE_ENTRIES:
                _cleanup_expired_cache_entries()
            has_access = check_module_access(tenant, module_code)
            _module_access_cache[cache_key] = (has_access, now)

        if not has_access:
            logger.warning(
                f"Module access denied: Tenant {tenant.name} "
                f"attempted to access module '{module_code}'"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Module '{module_code}' is not enabled for this school."
            )

        logger.debug(f"Module access granted: {tenant.name} -> {module_code}")
        return tenant

    return dependency


def clear_module_access_cache():
    """Clear the module access cache (useful for testing or after settings changes)"""
    _module_access_cache.clear()
    logger.info("Module access cache cleared")
