"""API endpoints for the broker hierarchy."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from school_crm.api.deps import DB, CommissionTenant
from school_crm.schemas.broker import (
    BrokerCreate, BrokerUpdate, BrokerResponse, BrokerListResponse,
    BrokerHierarchyResponse, BrokerAncestorsResponse, BrokerStatsResponse,
)
from school_crm.schemas.commission import (
    CommissionRuleCreate, CommissionRuleResponse, CommissionRuleListResponse,
)
from school_crm.services.broker_service import BrokerService
from school_crm.services.commission_rule_service import CommissionRuleService

router = APIRouter()


# ==================== Brokers ====================

@router.get("", response_model=BrokerListResponse)
async def list_brokers(
    db: DB,
    tenant: CommissionTenant,
    is_active: Optional[bool] = Query(None),
):
    """List all brokers of the school, top brokers first."""
    brokers, total = await BrokerService(db).list_brokers(tenant.id, is_active=is_active)
    return BrokerListResponse(
        items=[BrokerResponse.model_validate(b) for b in brokers],
        total=total,
    )


@router.post("", response_model=BrokerResponse, status_code=status.HTTP_201_CREATED)
async def create_broker(
    broker_in: BrokerCreate,
    db: DB,
    tenant: CommissionTenant,
):
    """Create a broker. Its level is derived from the parent broker."""
    broker = await BrokerService(db).create_broker(tenant.id, broker_in)
    return BrokerResponse.model_validate(broker)


@router.get("/{broker_id}", response_model=BrokerResponse)
async def get_broker(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Get broker by ID."""
    broker = await BrokerService(db).get_broker(broker_id, tenant.id)
    return BrokerResponse.model_validate(broker)


@router.patch("/{broker_id}", response_model=BrokerResponse)
async def update_broker(
    broker_id: UUID,
    broker_in: BrokerUpdate,
    db: DB,
    tenant: CommissionTenant,
):
    """Update a broker's name, code, active flag or metadata."""
    broker = await BrokerService(db).update_broker(broker_id, tenant.id, broker_in)
    return BrokerResponse.model_validate(broker)


@router.delete("/{broker_id}", response_model=BrokerResponse)
async def deactivate_broker(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Deactivate a broker (soft delete)."""
    broker = await BrokerService(db).deactivate_broker(broker_id, tenant.id)
    return BrokerResponse.model_validate(broker)


# ==================== Hierarchy ====================

@router.get("/{broker_id}/hierarchy", response_model=BrokerHierarchyResponse)
async def get_broker_hierarchy(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Broker with its parent and all descendants."""
    hierarchy = await BrokerService(db).get_hierarchy(broker_id, tenant.id)
    parent = hierarchy["parent"]
    return BrokerHierarchyResponse(
        broker=BrokerResponse.model_validate(hierarchy["broker"]),
        parent=BrokerResponse.model_validate(parent) if parent else None,
        descendants=[BrokerResponse.model_validate(b) for b in hierarchy["descendants"]],
    )


@router.get("/{broker_id}/ancestors", response_model=BrokerAncestorsResponse)
async def get_broker_ancestors(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Ancestor chain from the broker up to the top broker."""
    chain = await BrokerService(db).list_ancestors(broker_id, tenant.id)
    return BrokerAncestorsResponse(
        broker_id=broker_id,
        chain=[BrokerResponse.model_validate(b) for b in chain],
        depth=len(chain),
    )


@router.get("/{broker_id}/stats", response_model=BrokerStatsResponse)
async def get_broker_stats(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Students referred and commission totals."""
    stats = await BrokerService(db).get_broker_stats(broker_id, tenant.id)
    return BrokerStatsResponse(**stats)


# ==================== Rules ====================

@router.get("/{broker_id}/rules", response_model=CommissionRuleListResponse)
async def list_broker_rules(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
    is_active: Optional[bool] = Query(None),
):
    """List a broker's commission rules, highest priority first."""
    rules, total = await CommissionRuleService(db).list_for_broker(
        broker_id, tenant.id, is_active=is_active
    )
    return CommissionRuleListResponse(
        items=[CommissionRuleResponse.model_validate(r) for r in rules],
        total=total,
    )


@router.post(
    "/{broker_id}/rules",
    response_model=CommissionRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_broker_rule(
    broker_id: UUID,
    rule_in: CommissionRuleCreate,
    db: DB,
    tenant: CommissionTenant,
):
    """Create a commission rule for a broker."""
    rule = await CommissionRuleService(db).create_rule(broker_id, tenant.id, rule_in)
    return CommissionRuleResponse.model_validate(rule)
