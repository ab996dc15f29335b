"""Commission rule and commission record models.

Supports:
- Per-broker commission rules with priority and eligibility conditions
- Immutable commission records, one per (payment, broker)
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_crm.database import Base
from school_crm.db_types import JSONType, MoneyType, PercentageType, UUIDType
from school_crm.core.enum_utils import enum_comment

if TYPE_CHECKING:
    from school_crm.models.broker import Broker
    from school_crm.models.student import Payment


class CommissionStatus(str, Enum):
    """Commission record status.

    PENDING -> APPROVED -> PAID, with REJECTED reachable from PENDING or
    APPROVED. Records are always created as PENDING.
    """
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


class CommissionRule(Base):
    """
    Commission rule bound to one broker.

    conditions example:
        {"min_amount": "10000", "fee_types": ["TUITION"]}
    Absent keys are unconstrained.
    """
    __tablename__ = "commission_rules"
    __table_args__ = (
        Index("ix_commission_rules_broker_active", "broker_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    broker_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("brokers.id", ondelete="RESTRICT"),
        nullable=False
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Broker level when the rule was created (informational)"
    )
    percentage: Mapped[Decimal] = mapped_column(
        PercentageType,
        nullable=False,
        comment="Commission %, 0 < percentage <= 100"
    )
    conditions: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    broker: Mapped["Broker"] = relationship("Broker", back_populates="rules")

    def __repr__(self) -> str:
        return f"<CommissionRule(name={self.name}, pct={self.percentage}%, priority={self.priority})>"


class Commission(Base):
    """
    Commission earned by one broker for one payment.

    broker/rule details are snapshotted into commission_metadata so later
    edits to the broker or rule never alter historical records.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint("payment_id", "broker_id", name="uq_commission_payment_broker"),
        Index("ix_commissions_broker_status", "broker_id", "status"),
        Index("ix_commissions_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    broker_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("brokers.id", ondelete="RESTRICT"),
        nullable=False
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("commission_rules.id", ondelete="RESTRICT"),
        nullable=True,
        comment="NULL means no rule matched; treated as a data integrity signal"
    )

    # Calculation
    percentage: Mapped[Decimal] = mapped_column(PercentageType, nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Payment amount at calculation time"
    )
    amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="base_amount * percentage / 100, ROUND_HALF_UP to minor unit"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=CommissionStatus.PENDING.value,
        nullable=False,
        comment=enum_comment(CommissionStatus)
    )
    commission_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        default=dict,
        nullable=False,
        comment="Snapshot: broker_name, level, rule_name"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    broker: Mapped["Broker"] = relationship("Broker")
    rule: Mapped[Optional["CommissionRule"]] = relationship("CommissionRule")
    payment: Mapped["Payment"] = relationship("Payment")

    def __repr__(self) -> str:
        return f"<Commission(broker={self.broker_id}, payment={self.payment_id}, amount={self.amount})>"
