"""API endpoints for commission calculation and the commission ledger."""
from dataclasses import asdict
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from school_crm.api.deps import DB, CommissionTenant
from school_crm.config import settings
from school_crm.core.enum_utils import VALID_COMMISSION_STATUSES, normalize_to_uppercase
from school_crm.schemas.commission import (
    CommissionLineItemResponse, CommissionCalculationResponse,
    CommissionResponse, CommissionCommitResponse, CommissionListResponse,
    BrokerCommissionResponse,
)
from school_crm.services.broker_service import BrokerService
from school_crm.services.commission import (
    CommissionCalculator,
    CommissionLedger,
    total_commission,
)

router = APIRouter()


@router.post("/calculate/{payment_id}", response_model=CommissionCalculationResponse)
async def calculate_commissions(
    payment_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """
    Preview the commissions a payment generates.

    Nothing is recorded. An empty list means the student was not referred or
    no broker in the chain has a matching rule.
    """
    items = await CommissionCalculator(db).calculate(payment_id, tenant.id)
    return CommissionCalculationResponse(
        payment_id=payment_id,
        calculations=[CommissionLineItemResponse(**asdict(item)) for item in items],
        total_commission=total_commission(items),
    )


@router.post("/create/{payment_id}", response_model=CommissionCommitResponse)
async def create_commissions(
    payment_id: UUID,
    db: DB,
    tenant: CommissionTenant,
):
    """
    Calculate and record the commissions of a payment.

    Safe to repeat: brokers that already have a record for the payment are
    skipped and reported in duplicate_count.
    """
    items = await CommissionCalculator(db).calculate(payment_id, tenant.id)
    result = await CommissionLedger(db).commit(payment_id, tenant.id, items)
    return CommissionCommitResponse(
        payment_id=payment_id,
        commissions=[CommissionResponse.model_validate(c) for c in result.commissions],
        created_count=result.created_count,
        duplicate_count=result.duplicate_count,
    )


@router.get("/broker/{broker_id}", response_model=CommissionListResponse)
async def list_broker_commissions(
    broker_id: UUID,
    db: DB,
    tenant: CommissionTenant,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(settings.COMMISSION_LIST_LIMIT, ge=1, le=settings.COMMISSION_LIST_LIMIT),
):
    """A broker's commissions, newest first, each with its payment, fee and student."""
    if status_filter is not None:
        status_filter = normalize_to_uppercase(status_filter)
        if status_filter not in VALID_COMMISSION_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid status '{status_filter}'. Expected one of: "
                       f"{', '.join(sorted(VALID_COMMISSION_STATUSES))}"
            )

    await BrokerService(db).get_broker(broker_id, tenant.id)
    commissions = await CommissionLedger(db).list_for_broker(
        broker_id, tenant.id, status=status_filter, limit=limit
    )
    return CommissionListResponse(
        items=[BrokerCommissionResponse.model_validate(c) for c in commissions],
        total=len(commissions),
    )
