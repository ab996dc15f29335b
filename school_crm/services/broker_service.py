"""
Broker Service

Administration of the broker hierarchy for a tenant:
- Broker directory lookups (by id, parent, children, ancestors)
- Broker creation with level derived from the parent
- Updates and soft deactivation
- Hierarchy view and referral/commission statistics
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_crm.models.broker import Broker
from school_crm.models.commission import Commission, CommissionStatus
from school_crm.models.student import Student
from school_crm.schemas.broker import BrokerCreate, BrokerUpdate
from school_crm.services.commission.exceptions import (
    BrokerConflictError,
    BrokerNotFoundError,
    BrokerValidationError,
)
from school_crm.services.commission.hierarchy import BrokerTree, HierarchyWalker
from school_crm.services.commission.money import to_decimal

logger = logging.getLogger(__name__)


class BrokerService:
    """Service for Broker operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # Directory
    # ========================================================================

    async def get_broker(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> Broker:
        """Get a broker of this tenant or raise BrokerNotFoundError."""
        result = await self.db.execute(
            select(Broker).where(
                Broker.id == broker_id,
                Broker.tenant_id == tenant_id,
            )
        )
        broker = result.scalar_one_or_none()
        if broker is None:
            raise BrokerNotFoundError(broker_id)
        return broker

    async def get_parent(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> Optional[Broker]:
        broker = await self.get_broker(broker_id, tenant_id)
        if broker.parent_broker_id is None:
            return None
        return await self.get_broker(broker.parent_broker_id, tenant_id)

    async def list_children(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> List[Broker]:
        result = await self.db.execute(
            select(Broker)
            .where(
                Broker.parent_broker_id == broker_id,
                Broker.tenant_id == tenant_id,
            )
            .order_by(Broker.name, Broker.code)
        )
        return list(result.scalars().all())

    async def list_ancestors(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> List[Broker]:
        """The broker followed by its parents up to the root."""
        return await HierarchyWalker(self.db).ancestor_chain(broker_id, tenant_id)

    async def list_brokers(
        self,
        tenant_id: uuid.UUID,
        is_active: Optional[bool] = None,
    ) -> Tuple[List[Broker], int]:
        """List a tenant's brokers, top of the hierarchy first."""
        query = select(Broker).where(Broker.tenant_id == tenant_id)
        if is_active is not None:
            query = query.where(Broker.is_active == is_active)

        result = await self.db.execute(query.order_by(Broker.level, Broker.name))
        brokers = list(result.scalars().all())
        return brokers, len(brokers)

    async def get_hierarchy(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> dict:
        """Broker, its parent and all of its descendants (breadth first)."""
        tree = await BrokerTree.load(self.db, tenant_id)
        broker = tree.get(broker_id)
        if broker is None:
            raise BrokerNotFoundError(broker_id)

        return {
            "broker": broker,
            "parent": tree.parent_of(broker_id),
            "descendants": tree.descendants_of(broker_id),
        }

    # ========================================================================
    # Administration
    # ========================================================================

    async def create_broker(self, tenant_id: uuid.UUID, data: BrokerCreate) -> Broker:
        """
        Create a broker.

        The parent, when given, must belong to the same tenant; the new
        broker's level is the parent's level + 1 (0 for a top broker) and is
        never recomputed.
        """
        level = 0
        if data.parent_broker_id is not None:
            result = await self.db.execute(
                select(Broker).where(
                    Broker.id == data.parent_broker_id,
                    Broker.tenant_id == tenant_id,
                )
            )
            parent = result.scalar_one_or_none()
            if parent is None:
                raise BrokerValidationError(
                    f"Parent broker {data.parent_broker_id} not found in this tenant"
                )
            level = parent.level + 1

        await self._ensure_code_available(tenant_id, data.code)

        broker = Broker(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=data.name,
            code=data.code,
            parent_broker_id=data.parent_broker_id,
            level=level,
            is_active=data.is_active,
            broker_metadata=data.metadata,
        )
        self.db.add(broker)
        await self._commit(f"Broker code {data.code} already exists")
        await self.db.refresh(broker)

        logger.info(f"Created broker {broker.code} at level {broker.level} for tenant {tenant_id}")
        return broker

    async def update_broker(
        self,
        broker_id: uuid.UUID,
        tenant_id: uuid.UUID,
        data: BrokerUpdate,
    ) -> Broker:
        """Update name, code, active flag or metadata."""
        broker = await self.get_broker(broker_id, tenant_id)
        update_data = data.model_dump(exclude_unset=True)

        if update_data.get("code") and update_data["code"] != broker.code:
            await self._ensure_code_available(tenant_id, update_data["code"])

        if update_data.get("is_active") is False and broker.is_active:
            await self._ensure_can_deactivate(broker)

        if "metadata" in update_data:
            broker.broker_metadata = update_data.pop("metadata") or {}

        for field, value in update_data.items():
            if value is not None and hasattr(broker, field):
                setattr(broker, field, value)

        broker.updated_at = datetime.now(timezone.utc)
        await self._commit(f"Broker code {broker.code} already exists")
        await self.db.refresh(broker)
        return broker

    async def deactivate_broker(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> Broker:
        """Soft-delete: refused while students or sub-brokers are attached."""
        broker = await self.get_broker(broker_id, tenant_id)
        if not broker.is_active:
            return broker

        await self._ensure_can_deactivate(broker)

        broker.is_active = False
        broker.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(broker)

        logger.info(f"Deactivated broker {broker.code} for tenant {tenant_id}")
        return broker

    # ========================================================================
    # Statistics
    # ========================================================================

    async def get_broker_stats(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> dict:
        """Students referred and commission totals for a broker."""
        await self.get_broker(broker_id, tenant_id)

        students_result = await self.db.execute(
            select(func.count(Student.id)).where(
                Student.broker_id == broker_id,
                Student.tenant_id == tenant_id,
            )
        )
        total_students = students_result.scalar() or 0

        sub_result = await self.db.execute(
            select(func.count(Broker.id)).where(
                Broker.parent_broker_id == broker_id,
                Broker.tenant_id == tenant_id,
            )
        )
        sub_broker_count = sub_result.scalar() or 0

        # Commission totals grouped by status
        totals_result = await self.db.execute(
            select(
                Commission.status,
                func.count(Commission.id),
                func.coalesce(func.sum(Commission.amount), 0),
            )
            .where(
                Commission.broker_id == broker_id,
                Commission.tenant_id == tenant_id,
            )
            .group_by(Commission.status)
        )

        total_commissions = 0
        total_amount = Decimal("0")
        by_status = {}
        for status, count, amount in totals_result.all():
            amount = to_decimal(amount or 0)
            total_commissions += count
            total_amount += amount
            by_status[status] = amount

        return {
            "broker_id": broker_id,
            "total_students": total_students,
            "total_commissions": total_commissions,
            "total_commission_amount": total_amount,
            "pending_commission_amount": by_status.get(CommissionStatus.PENDING.value, Decimal("0")),
            "paid_commission_amount": by_status.get(CommissionStatus.PAID.value, Decimal("0")),
            "sub_broker_count": sub_broker_count,
        }

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _ensure_code_available(self, tenant_id: uuid.UUID, code: str) -> None:
        result = await self.db.execute(
            select(Broker.id).where(
                Broker.tenant_id == tenant_id,
                Broker.code == code,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise BrokerConflictError(f"Broker code {code} already exists")

    async def _ensure_can_deactivate(self, broker: Broker) -> None:
        students_result = await self.db.execute(
            select(func.count(Student.id)).where(
                Student.broker_id == broker.id,
                Student.tenant_id == broker.tenant_id,
            )
        )
        if students_result.scalar():
            raise BrokerConflictError(
                f"Cannot deactivate broker {broker.code} with enrolled students"
            )

        children_result = await self.db.execute(
            select(func.count(Broker.id)).where(
                Broker.parent_broker_id == broker.id,
                Broker.tenant_id == broker.tenant_id,
            )
        )
        if children_result.scalar():
            raise BrokerConflictError(
                f"Cannot deactivate broker {broker.code} with sub-brokers"
            )

    async def _commit(self, conflict_message: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise BrokerConflictError(conflict_message) from e
