"""API endpoints for individual commission rules."""
from uuid import UUID

from fastapi import APIRouter

from school_crm.api.deps import DB, CommissionTenant
from school_crm.schemas.commission import CommissionRuleUpdate, CommissionRuleResponse
from school_crm.services.commission_rule_service import CommissionRuleService

router = APIRouter()


@router.get("/{rule_id}", response_model=CommissionRuleResponse)
async def get_commission_rule(
    rule_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Get commission rule by ID."""
    rule = await CommissionRuleService(db).get_rule(rule_id, tenant.id)
    return CommissionRuleResponse.model_validate(rule)


@router.patch("/{rule_id}", response_model=CommissionRuleResponse)
async def update_commission_rule(
    rule_id: UUID,
    rule_in: CommissionRuleUpdate,
    db: DB,
    tenant: CommissionTenant,
):
    """Update a commission rule."""
    rule = await CommissionRuleService(db).update_rule(rule_id, tenant.id, rule_in)
    return CommissionRuleResponse.model_validate(rule)


@router.delete("/{rule_id}", response_model=CommissionRuleResponse)
async def deactivate_commission_rule(
    rule_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """Deactivate a commission rule. Rules are kept for existing commission records."""
    rule = await CommissionRuleService(db).deactivate_rule(rule_id, tenant.id)
    return CommissionRuleResponse.model_validate(rule)
