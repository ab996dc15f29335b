"""
Commission Ledger.

Persists calculated line items as commission records. One record per
(payment, broker): a repeated commit for the same payment is a no-op for
brokers that already have a record, and the uq_commission_payment_broker
constraint settles races between concurrent commits.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from school_crm.config import settings
from school_crm.models.broker import Broker
from school_crm.models.commission import Commission, CommissionRule, CommissionStatus
from school_crm.models.student import Payment
from school_crm.services.commission.calculator import CalculatedLineItem
from school_crm.services.commission.exceptions import (
    BrokerNotFoundError,
    CommissionTransactionError,
    PaymentNotFoundError,
    RuleNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """Outcome of CommissionLedger.commit."""
    commissions: List[Commission] = field(default_factory=list)
    created_count: int = 0
    duplicate_count: int = 0


class CommissionLedger:
    """Writes and reads commission records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(
        self,
        payment_id: uuid.UUID,
        tenant_id: uuid.UUID,
        line_items: Sequence[CalculatedLineItem],
    ) -> CommitResult:
        """
        Record line items for a payment in a single transaction.

        Returns every record that exists for the payment afterwards, newly
        created or not. Nothing is written if the transaction fails.

        Raises:
            PaymentNotFoundError: payment is not in this tenant
            BrokerNotFoundError, RuleNotFoundError: a line item names a broker or
                rule outside this tenant, or a rule of another broker
            CommissionTransactionError: the transaction aborted and was rolled back
        """
        await self._ensure_payment(payment_id, tenant_id)
        await self._ensure_tenant_references(tenant_id, line_items)

        existing = await self.list_for_payment(payment_id, tenant_id)
        recorded_brokers = {c.broker_id for c in existing}

        new_records: List[Commission] = []
        duplicate_count = 0
        for item in line_items:
            if item.broker_id in recorded_brokers:
                duplicate_count += 1
                logger.info(
                    f"Commission for payment {payment_id} and broker {item.broker_id} already recorded, skipping"
                )
                continue
            recorded_brokers.add(item.broker_id)
            new_records.append(Commission(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                broker_id=item.broker_id,
                payment_id=payment_id,
                rule_id=item.rule_id,
                percentage=item.percentage,
                base_amount=item.base_amount,
                amount=item.commission_amount,
                status=CommissionStatus.PENDING.value,
                commission_metadata=item.metadata,
            ))

        if not new_records:
            return CommitResult(
                commissions=existing,
                created_count=0,
                duplicate_count=duplicate_count,
            )

        attempted_brokers = {record.broker_id for record in new_records}
        try:
            self.db.add_all(new_records)
            await self.db.flush()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            stored = await self.list_for_payment(payment_id, tenant_id)
            stored_brokers = {c.broker_id for c in stored}

            # Only a concurrent commit that stored every broker we tried is a duplicate
            if not attempted_brokers <= stored_brokers:
                logger.error(f"Commission commit failed for payment {payment_id}: {e}")
                raise CommissionTransactionError(payment_id, str(e.orig)) from e

            logger.warning(
                f"Concurrent commission commit detected for payment {payment_id}; keeping the records already stored"
            )
            return CommitResult(
                commissions=stored,
                created_count=0,
                duplicate_count=sum(1 for item in line_items if item.broker_id in stored_brokers),
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Commission commit failed for payment {payment_id}: {e}")
            raise CommissionTransactionError(payment_id, str(e)) from e

        logger.info(
            f"Recorded {len(new_records)} commission(s) for payment {payment_id} "
            f"({duplicate_count} already present)"
        )
        return CommitResult(
            commissions=existing + new_records,
            created_count=len(new_records),
            duplicate_count=duplicate_count,
        )

    async def list_for_payment(self, payment_id: uuid.UUID, tenant_id: uuid.UUID) -> List[Commission]:
        result = await self.db.execute(
            select(Commission)
            .where(
                Commission.payment_id == payment_id,
                Commission.tenant_id == tenant_id,
            )
            .order_by(Commission.created_at, Commission.id)
        )
        return list(result.scalars().all())

    async def list_for_broker(
        self,
        broker_id: uuid.UUID,
        tenant_id: uuid.UUID,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Commission]:
        """Newest first; optionally filtered by status. Each record carries its payment, fee and student."""
        query = (
            select(Commission)
            .where(
                Commission.broker_id == broker_id,
                Commission.tenant_id == tenant_id,
            )
            .options(
                selectinload(Commission.payment).selectinload(Payment.fee),
                selectinload(Commission.payment).selectinload(Payment.student),
            )
        )
        if status:
            query = query.where(Commission.status == status)

        query = query.order_by(Commission.created_at.desc(), Commission.id.asc())
        query = query.limit(limit or settings.COMMISSION_LIST_LIMIT)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _ensure_payment(self, payment_id: uuid.UUID, tenant_id: uuid.UUID) -> None:
        result = await self.db.execute(
            select(Payment.id).where(
                Payment.id == payment_id,
                Payment.tenant_id == tenant_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise PaymentNotFoundError(payment_id)

    async def _ensure_tenant_references(
        self,
        tenant_id: uuid.UUID,
        line_items: Sequence[CalculatedLineItem],
    ) -> None:
        """Every broker and rule named by the line items must belong to the tenant."""
        broker_ids = {item.broker_id for item in line_items}
        if broker_ids:
            result = await self.db.execute(
                select(Broker.id).where(
                    Broker.id.in_(broker_ids),
                    Broker.tenant_id == tenant_id,
                )
            )
            missing = broker_ids - set(result.scalars().all())
            if missing:
                raise BrokerNotFoundError(sorted(missing, key=str)[0])

        rule_brokers = {item.rule_id: item.broker_id for item in line_items if item.rule_id is not None}
        if rule_brokers:
            result = await self.db.execute(
                select(CommissionRule.id, CommissionRule.broker_id).where(
                    CommissionRule.id.in_(rule_brokers.keys()),
                    CommissionRule.tenant_id == tenant_id,
                )
            )
            found = dict(result.all())
            for rule_id, broker_id in rule_brokers.items():
                if found.get(rule_id) != broker_id:
                    raise RuleNotFoundError(rule_id)
