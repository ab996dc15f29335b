"""Pydantic schemas for Commission Rules and Commission records."""
from datetime import datetime, date
from typing import Any, Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator,
)

from school_crm.schemas.base import (
    BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema, DecimalStr,
)
from school_crm.core.enum_utils import normalize_code_list


# ==================== Rule Conditions ====================

class RuleConditions(BaseModel):
    """
    Eligibility conditions of a commission rule.

    Every field is optional; an absent field places no constraint. Present
    fields are AND-ed. Amount bounds and the date range are inclusive.

    camelCase keys (minAmount, feeType, studentGrade, dateRange) are accepted
    for rules imported from older exports.
    """
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    min_amount: Optional[Decimal] = Field(
        None, ge=0, validation_alias=AliasChoices("min_amount", "minAmount")
    )
    max_amount: Optional[Decimal] = Field(
        None, ge=0, validation_alias=AliasChoices("max_amount", "maxAmount")
    )
    fee_types: Optional[List[str]] = Field(
        None, validation_alias=AliasChoices("fee_types", "feeType", "feeTypes")
    )
    grade_levels: Optional[List[str]] = Field(
        None, validation_alias=AliasChoices("grade_levels", "studentGrade", "gradeLevels")
    )
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode="before")
    @classmethod
    def flatten_date_range(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("dateRange"), dict):
            data = dict(data)
            date_range = data.pop("dateRange")
            data.setdefault("date_from", date_range.get("from"))
            data.setdefault("date_to", date_range.get("to"))
        return data

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def date_part_only(cls, v):
        # Stored ranges may carry a timestamp; only the calendar day matters
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        if isinstance(v, datetime):
            return v.date()
        return v

    @field_validator("fee_types", "grade_levels", mode="before")
    @classmethod
    def normalize_codes(cls, v):
        if isinstance(v, str):
            v = [v]
        return normalize_code_list(v)

    @model_validator(mode="after")
    def check_ranges(self) -> "RuleConditions":
        if self.min_amount is not None and self.max_amount is not None:
            if self.min_amount > self.max_amount:
                raise ValueError("min_amount cannot be greater than max_amount")
        if self.date_from is not None and self.date_to is not None:
            if self.date_from > self.date_to:
                raise ValueError("date_from cannot be after date_to")
        return self

    @classmethod
    def from_storage(cls, data: Optional[dict]) -> "RuleConditions":
        return cls.model_validate(data or {})

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class RuleConditionsInput(RuleConditions):
    """Conditions as accepted from the API; empty code lists are rejected."""

    @field_validator("fee_types", "grade_levels")
    @classmethod
    def non_empty(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError("must contain at least one value or be omitted")
        return v


# ==================== CommissionRule Schemas ====================

class CommissionRuleCreate(BaseCreateSchema):
    """Schema for creating a CommissionRule. broker_id comes from the URL path."""
    name: str = Field(..., min_length=2, max_length=200)
    percentage: Decimal = Field(..., gt=0, le=100, max_digits=7, decimal_places=4)
    conditions: RuleConditionsInput = Field(default_factory=RuleConditionsInput)
    priority: int = 0
    is_active: bool = True


class CommissionRuleUpdate(BaseUpdateSchema):
    """Schema for updating CommissionRule."""
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    percentage: Optional[Decimal] = Field(None, gt=0, le=100, max_digits=7, decimal_places=4)
    conditions: Optional[RuleConditionsInput] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class CommissionRuleResponse(BaseResponseSchema):
    """Response schema for CommissionRule."""
    id: UUID
    tenant_id: UUID
    broker_id: UUID
    name: str
    level: int
    percentage: DecimalStr
    conditions: dict
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CommissionRuleListResponse(BaseModel):
    """Response for listing a broker's rules."""
    items: List[CommissionRuleResponse]
    total: int


# ==================== Calculation Schemas ====================

class CommissionLineItemResponse(BaseResponseSchema):
    """One broker's calculated (not yet persisted) commission."""
    broker_id: UUID
    broker_name: str
    level: int
    rule_id: Optional[UUID] = None
    rule_name: Optional[str] = None
    percentage: DecimalStr
    base_amount: DecimalStr
    commission_amount: DecimalStr


class CommissionCalculationResponse(BaseModel):
    """Preview of the commissions a payment would generate."""
    payment_id: UUID
    calculations: List[CommissionLineItemResponse]
    total_commission: DecimalStr


# ==================== Commission Schemas ====================

class CommissionResponse(BaseResponseSchema):
    """Response schema for a persisted Commission."""
    id: UUID
    tenant_id: UUID
    broker_id: UUID
    payment_id: UUID
    rule_id: Optional[UUID] = None
    percentage: DecimalStr
    base_amount: DecimalStr
    amount: DecimalStr
    status: str
    metadata: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("commission_metadata", "metadata"),
    )
    created_at: datetime


class CommissionFeeSummary(BaseResponseSchema):
    id: UUID
    fee_type: str
    academic_year: Optional[str] = None


class CommissionStudentSummary(BaseResponseSchema):
    id: UUID
    first_name: str
    last_name: str
    enrollment_number: str
    grade_level: Optional[str] = None


class CommissionPaymentSummary(BaseResponseSchema):
    """The payment a commission was earned on, with its fee and student."""
    id: UUID
    amount: DecimalStr
    status: str
    paid_at: datetime
    fee: CommissionFeeSummary
    student: CommissionStudentSummary


class BrokerCommissionResponse(CommissionResponse):
    """Commission record as listed for a broker."""
    payment: CommissionPaymentSummary


class CommissionCommitResponse(BaseModel):
    """Result of recording a payment's commissions."""
    payment_id: UUID
    commissions: List[CommissionResponse]
    created_count: int
    duplicate_count: int


class CommissionListResponse(BaseModel):
    """Response for listing commissions."""
    items: List[BrokerCommissionResponse]
    total: int

