"""
Commission Calculator.

Turns one completed payment into one line item per eligible broker in the
referring broker's ancestor chain. Nothing is written here; the ledger
persists what the calculator returns.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_crm.config import settings
from school_crm.models.commission import CommissionRule
from school_crm.models.student import Fee, Payment, PaymentStatus, Student
from school_crm.models.tenant import Tenant
from school_crm.services.commission.exceptions import (
    CommissionError,
    PaymentNotCompletedError,
    PaymentNotFoundError,
    StudentNotFoundError,
)
from school_crm.services.commission.hierarchy import HierarchyWalker
from school_crm.services.commission.money import commission_amount, to_decimal
from school_crm.services.commission.rule_selector import PaymentContext, RuleSelector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalculatedLineItem:
    """Commission one broker would earn for a payment."""
    broker_id: uuid.UUID
    broker_name: str
    level: int
    rule_id: Optional[uuid.UUID]
    rule_name: Optional[str]
    percentage: Decimal
    base_amount: Decimal
    commission_amount: Decimal

    @property
    def metadata(self) -> dict:
        """Snapshot stored alongside the persisted commission."""
        return {
            "broker_name": self.broker_name,
            "level": self.level,
            "rule_name": self.rule_name,
        }


def total_commission(items: Iterable[CalculatedLineItem]) -> Decimal:
    """Sum of line item amounts (each already rounded)."""
    return sum((item.commission_amount for item in items), Decimal("0"))


class CommissionCalculator:
    """
    Calculates the commissions a payment generates.

    Same payment + same stored brokers and rules always yields the same
    list, in chain order (referring broker first, root last).
    """

    def __init__(
        self,
        db: AsyncSession,
        walker: Optional[HierarchyWalker] = None,
        selector: Optional[RuleSelector] = None,
    ):
        self.db = db
        self.walker = walker or HierarchyWalker(db)
        self.selector = selector or RuleSelector(db)

    async def calculate(self, payment_id: uuid.UUID, tenant_id: uuid.UUID) -> List[CalculatedLineItem]:
        """
        Calculate line items for a payment.

        Returns an empty list when the student has no referring broker or no
        broker in the chain has a matching rule.

        Raises:
            PaymentNotFoundError, StudentNotFoundError, BrokerNotFoundError
            PaymentNotCompletedError
            HierarchyIntegrityError, RuleIntegrityError
        """
        try:
            return await self._calculate(payment_id, tenant_id)
        except CommissionError as e:
            e.for_payment(payment_id)
            logger.warning(str(e))
            raise

    async def _calculate(self, payment_id: uuid.UUID, tenant_id: uuid.UUID) -> List[CalculatedLineItem]:
        payment, fee = await self._get_payment(payment_id, tenant_id)

        if payment.status != PaymentStatus.COMPLETED.value:
            raise PaymentNotCompletedError(payment_id, payment.status)

        student = await self._get_student(payment.student_id, tenant_id)
        if student.broker_id is None:
            logger.info(f"Payment {payment_id}: student {student.enrollment_number} has no referring broker")
            return []

        currency = await self._get_currency(tenant_id)
        context = PaymentContext(
            fee_type=fee.fee_type,
            amount=payment.amount,
            as_of=payment.paid_at.date(),
            grade_level=student.grade_level,
        )

        chain = await self.walker.ancestor_chain(student.broker_id, tenant_id)

        items: List[CalculatedLineItem] = []
        for broker in chain:
            # Inactive brokers keep their place in the chain but earn nothing
            if not broker.is_active:
                continue

            rule = await self.selector.select_rule(broker.id, tenant_id, context)
            if rule is None:
                continue

            items.append(self._line_item(broker, rule, payment.amount, currency))

        logger.info(
            f"Payment {payment_id}: {len(items)} commission(s) across {len(chain)} broker(s), "
            f"total {total_commission(items)} {currency}"
        )
        return items

    @staticmethod
    def _line_item(broker, rule: CommissionRule, base_amount: Decimal, currency: str) -> CalculatedLineItem:
        return CalculatedLineItem(
            broker_id=broker.id,
            broker_name=broker.name,
            level=broker.level,
            rule_id=rule.id,
            rule_name=rule.name,
            percentage=rule.percentage,
            base_amount=to_decimal(base_amount),
            commission_amount=commission_amount(base_amount, rule.percentage, currency),
        )

    async def _get_payment(self, payment_id: uuid.UUID, tenant_id: uuid.UUID):
        result = await self.db.execute(
            select(Payment, Fee)
            .join(Fee, Payment.fee_id == Fee.id)
            .where(
                Payment.id == payment_id,
                Payment.tenant_id == tenant_id,
            )
        )
        row = result.first()
        if row is None:
            raise PaymentNotFoundError(payment_id)
        return row[0], row[1]

    async def _get_student(self, student_id: uuid.UUID, tenant_id: uuid.UUID) -> Student:
        result = await self.db.execute(
            select(Student).where(
                Student.id == student_id,
                Student.tenant_id == tenant_id,
            )
        )
        student = result.scalar_one_or_none()
        if student is None:
            raise StudentNotFoundError(student_id)
        return student

    async def _get_currency(self, tenant_id: uuid.UUID) -> str:
        result = await self.db.execute(select(Tenant.currency).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none() or settings.COMMISSION_DEFAULT_CURRENCY
