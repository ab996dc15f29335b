"""
Commission Rule Service

Create, update, deactivate and list the commission rules bound to a broker.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_crm.models.commission import CommissionRule
from school_crm.schemas.commission import CommissionRuleCreate, CommissionRuleUpdate
from school_crm.services.broker_service import BrokerService
from school_crm.services.commission.exceptions import RuleNotFoundError

logger = logging.getLogger(__name__)


class CommissionRuleService:
    """Service for CommissionRule operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.brokers = BrokerService(db)

    async def get_rule(self, rule_id: uuid.UUID, tenant_id: uuid.UUID) -> CommissionRule:
        result = await self.db.execute(
            select(CommissionRule).where(
                CommissionRule.id == rule_id,
                CommissionRule.tenant_id == tenant_id,
            )
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def list_for_broker(
        self,
        broker_id: uuid.UUID,
        tenant_id: uuid.UUID,
        is_active: Optional[bool] = None,
    ) -> Tuple[List[CommissionRule], int]:
        """A broker's rules, highest priority first."""
        await self.brokers.get_broker(broker_id, tenant_id)

        query = select(CommissionRule).where(
            CommissionRule.broker_id == broker_id,
            CommissionRule.tenant_id == tenant_id,
        )
        if is_active is not None:
            query = query.where(CommissionRule.is_active == is_active)

        query = query.order_by(
            CommissionRule.priority.desc(),
            CommissionRule.created_at.desc(),
            CommissionRule.id.asc(),
        )
        result = await self.db.execute(query)
        rules = list(result.scalars().all())
        return rules, len(rules)

    async def create_rule(
        self,
        broker_id: uuid.UUID,
        tenant_id: uuid.UUID,
        data: CommissionRuleCreate,
    ) -> CommissionRule:
        """Create a rule; its level is copied from the broker."""
        broker = await self.brokers.get_broker(broker_id, tenant_id)

        rule = CommissionRule(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            broker_id=broker.id,
            name=data.name,
            level=broker.level,
            percentage=data.percentage,
            conditions=data.conditions.to_storage(),
            priority=data.priority,
            is_active=data.is_active,
        )
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(
            f"Created commission rule '{rule.name}' ({rule.percentage}%, priority {rule.priority}) "
            f"for broker {broker.code}"
        )
        return rule

    async def update_rule(
        self,
        rule_id: uuid.UUID,
        tenant_id: uuid.UUID,
        data: CommissionRuleUpdate,
    ) -> CommissionRule:
        rule = await self.get_rule(rule_id, tenant_id)
        update_data = data.model_dump(exclude_unset=True, exclude={"conditions"})

        if "conditions" in data.model_fields_set:
            rule.conditions = data.conditions.to_storage() if data.conditions else {}

        for field, value in update_data.items():
            if value is not None and hasattr(rule, field):
                setattr(rule, field, value)

        rule.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(rule)
        return rule

    async def deactivate_rule(self, rule_id: uuid.UUID, tenant_id: uuid.UUID) -> CommissionRule:
        """Rules are never deleted: commission records keep pointing at them."""
        rule = await self.get_rule(rule_id, tenant_id)
        rule.is_active = False
        rule.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(f"Deactivated commission rule {rule.id}")
        return rule
