"""Broker hierarchy model.

Brokers form a strict tree per tenant (top broker -> sub-broker -> agent).
A broker's level is fixed when it is created from its parent's level and is
never recomputed afterwards.
"""
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_crm.database import Base
from school_crm.db_types import JSONType, UUIDType

if TYPE_CHECKING:
    from school_crm.models.commission import CommissionRule
    from school_crm.models.student import Student


class Broker(Base):
    """
    Broker/agent node in the referral hierarchy.

    level 0 = top broker (root), increases by one per generation.
    """
    __tablename__ = "brokers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_broker_tenant_code"),
        Index("ix_brokers_tenant_parent", "tenant_id", "parent_broker_id"),
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

    # Identification
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="Unique per tenant e.g., BRK-001, AGT-001"
    )

    # Hierarchy
    parent_broker_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("brokers.id", ondelete="RESTRICT"),
        nullable=True
    )
    level: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="0 = root, parent level + 1 otherwise"
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    broker_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        default=dict,
        nullable=False
    )

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

    # Relationships
    parent: Mapped[Optional["Broker"]] = relationship(
        "Broker",
        remote_side="Broker.id",
        back_populates="children"
    )
    children: Mapped[List["Broker"]] = relationship(
        "Broker",
        back_populates="parent"
    )
    rules: Mapped[List["CommissionRule"]] = relationship(
        "CommissionRule",
        back_populates="broker"
    )
    students: Mapped[List["Student"]] = relationship(
        "Student",
        back_populates="broker"
    )

    @property
    def is_root(self) -> bool:
        return self.parent_broker_id is None

    def __repr__(self) -> str:
        return f"<Broker(code={self.code}, level={self.level})>"
