"""
Tenant model for multi-tenant architecture
"""
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
import uuid

from school_crm.database import Base
from school_crm.db_types import JSONType, UUIDType


class Tenant(Base):
    """
    Tenant/School model

    Each tenant represents a school (or school group). Every broker, rule,
    student, payment and commission row carries the owning tenant id.

    settings example:
        {"features": {"commission": true, "fees": true}}
    """
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subdomain: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    settings: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
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

    def has_feature(self, feature_code: str) -> bool:
        features = (self.settings or {}).get("features") or {}
        return bool(features.get(feature_code, False))

    def __repr__(self) -> str:
        return f"<Tenant(subdomain={self.subdomain}, status={self.status})>"
