"""Student, Fee and Payment records.

These rows are owned by the fee-management side of the product. The
commission engine only reads them: a payment tells it how much was paid and
for which fee, the student tells it which broker referred them.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_crm.database import Base
from school_crm.db_types import MoneyType, UUIDType

if TYPE_CHECKING:
    from school_crm.models.broker import Broker


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Student(Base):
    """Enrolled student, optionally referred by a broker/agent."""
    __tablename__ = "students"
    __table_args__ = (
        Index("ix_students_tenant_broker", "tenant_id", "broker_id"),
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
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    enrollment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    grade_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Referring broker (agent who enrolled the student)
    broker_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("brokers.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    broker: Mapped[Optional["Broker"]] = relationship("Broker", back_populates="students")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Fee(Base):
    """A fee charged to a student (tuition, admission, exam, ...)."""
    __tablename__ = "fees"

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
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    fee_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="TUITION, ADMISSION, EXAM, TRANSPORT, ..."
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    academic_year: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class Payment(Base):
    """A payment against a fee. Only COMPLETED payments earn commission."""
    __tablename__ = "payments"

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
    fee_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("fees.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default="COMPLETED",
        nullable=False,
        comment="PENDING, COMPLETED, FAILED, REFUNDED"
    )
    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    fee: Mapped["Fee"] = relationship("Fee")
    student: Mapped["Student"] = relationship("Student")
