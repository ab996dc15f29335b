from fastapi import APIRouter

from school_crm.api.v1.endpoints import (
    # Broker hierarchy
    brokers,
    # Commission rules
    commission_rules,
    # Commission engine
    commissions,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Brokers ====================
api_router.include_router(
    brokers.router,
    prefix="/brokers",
    tags=["Brokers"]
)

# ==================== Commission Rules ====================
api_router.include_router(
    commission_rules.router,
    prefix="/commission-rules",
    tags=["Commission Rules"]
)

# ==================== Commissions ====================
api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"]
)
