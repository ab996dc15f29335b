"""Pydantic schemas for Brokers and the broker hierarchy."""
from datetime import datetime
from typing import Optional, List
from uuid import UUID
from pydantic import AliasChoices, BaseModel, Field, field_validator

from school_crm.schemas.base import (
    BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema, DecimalStr,
)
from school_crm.core.enum_utils import normalize_to_uppercase


# ==================== Broker Schemas ====================

class BrokerBase(BaseModel):
    """Base schema for Broker."""
    name: str = Field(..., min_length=2, max_length=200)
    code: str = Field(..., min_length=2, max_length=30, description="Unique per tenant e.g., BRK-001")

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        return normalize_to_uppercase(v)


class BrokerCreate(BrokerBase, BaseCreateSchema):
    """Schema for creating a Broker. Level is derived from the parent."""
    parent_broker_id: Optional[UUID] = None
    is_active: bool = True
    metadata: dict = Field(default_factory=dict)


class BrokerUpdate(BaseUpdateSchema):
    """Schema for updating a Broker. The parent cannot be changed."""
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    code: Optional[str] = Field(None, min_length=2, max_length=30)
    is_active: Optional[bool] = None
    metadata: Optional[dict] = None

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        if v is None:
            return v
        return normalize_to_uppercase(v)


class BrokerResponse(BaseResponseSchema):
    """Response schema for Broker."""
    id: UUID
    tenant_id: UUID
    name: str
    code: str
    parent_broker_id: Optional[UUID] = None
    level: int
    is_active: bool
    metadata: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("broker_metadata", "metadata"),
    )
    created_at: datetime
    updated_at: datetime


class BrokerListResponse(BaseModel):
    """Response for listing brokers."""
    items: List[BrokerResponse]
    total: int


# ==================== Hierarchy Schemas ====================

class BrokerHierarchyResponse(BaseModel):
    """A broker with its parent and every broker below it."""
    broker: BrokerResponse
    parent: Optional[BrokerResponse] = None
    descendants: List[BrokerResponse]


class BrokerAncestorsResponse(BaseModel):
    """Ancestor chain, the broker itself first and the root last."""
    broker_id: UUID
    chain: List[BrokerResponse]
    depth: int


class BrokerStatsResponse(BaseModel):
    """Referral and commission totals for one broker."""
    broker_id: UUID
    total_students: int
    total_commissions: int
    total_commission_amount: DecimalStr
    pending_commission_amount: DecimalStr
    paid_commission_amount: DecimalStr
    sub_broker_count: int
