"""
Commission rule selection.

For a broker and a payment, the selector returns the single rule that pays
out: candidates are the broker's active rules ordered by priority (highest
first), then most recently created, then smallest id. The first candidate
whose present conditions all hold wins.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_crm.models.commission import CommissionRule
from school_crm.schemas.commission import RuleConditions
from school_crm.services.commission.exceptions import RuleIntegrityError
from school_crm.services.commission.money import HUNDRED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentContext:
    """The facts about a payment that rule conditions can test."""
    fee_type: str
    amount: Decimal
    as_of: date
    grade_level: Optional[str] = None


def conditions_match(conditions: RuleConditions, context: PaymentContext) -> bool:
    """True when every present condition holds for the payment."""
    if conditions.min_amount is not None and context.amount < conditions.min_amount:
        return False
    if conditions.max_amount is not None and context.amount > conditions.max_amount:
        return False
    if conditions.fee_types is not None:
        if (context.fee_type or "").upper() not in conditions.fee_types:
            return False
    if conditions.grade_levels is not None:
        if context.grade_level is None or context.grade_level.upper() not in conditions.grade_levels:
            return False
    if conditions.date_from is not None and context.as_of < conditions.date_from:
        return False
    if conditions.date_to is not None and context.as_of > conditions.date_to:
        return False
    return True


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def order_candidates(rules: Iterable[CommissionRule]) -> List[CommissionRule]:
    """Priority DESC, created_at DESC, id ASC."""
    # Two stable sorts: the id order survives among equal (priority, created_at)
    by_id = sorted(rules, key=lambda r: r.id)
    return sorted(by_id, key=lambda r: (r.priority, _as_utc(r.created_at)), reverse=True)


def parse_conditions(rule: CommissionRule) -> RuleConditions:
    try:
        return RuleConditions.from_storage(rule.conditions)
    except ValidationError as e:
        raise RuleIntegrityError(f"Commission rule {rule.name} has invalid conditions: {e}") from e


def check_percentage(rule: CommissionRule) -> None:
    if rule.percentage is None or not (Decimal("0") < rule.percentage <= HUNDRED):
        logger.error(f"Commission rule {rule.id} has percentage {rule.percentage} outside (0, 100]")
        raise RuleIntegrityError(
            f"Commission rule {rule.name} has percentage {rule.percentage}, expected 0 < percentage <= 100"
        )


def choose_rule(rules: Iterable[CommissionRule], context: PaymentContext) -> Optional[CommissionRule]:
    """Pick the winning rule from already-fetched active rules, or None."""
    for rule in order_candidates(rules):
        if conditions_match(parse_conditions(rule), context):
            check_percentage(rule)
            return rule
    return None


class RuleSelector:
    """Reads a broker's active rules and picks the one that applies."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_rules(self, broker_id: uuid.UUID, tenant_id: uuid.UUID) -> List[CommissionRule]:
        """Active rules for a broker, in selection order."""
        result = await self.db.execute(
            select(CommissionRule)
            .where(
                CommissionRule.broker_id == broker_id,
                CommissionRule.tenant_id == tenant_id,
                CommissionRule.is_active == True,  # noqa: E712
            )
            .order_by(
                CommissionRule.priority.desc(),
                CommissionRule.created_at.desc(),
                CommissionRule.id.asc(),
            )
        )
        return order_candidates(result.scalars().all())

    async def select_rule(
        self,
        broker_id: uuid.UUID,
        tenant_id: uuid.UUID,
        context: PaymentContext,
    ) -> Optional[CommissionRule]:
        rules = await self.list_active_rules(broker_id, tenant_id)
        rule = choose_rule(rules, context)
        if rule is None:
            logger.debug(f"No commission rule matched for broker {broker_id} ({len(rules)} active)")
        return rule
