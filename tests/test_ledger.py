import dataclasses
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from school_crm.database import async_session_factory
from school_crm.models import Commission, CommissionStatus
from school_crm.services.commission import CommissionCalculator, CommissionLedger
from school_crm.services.commission.exceptions import (
    BrokerNotFoundError,
    CommissionTransactionError,
    PaymentNotFoundError,
    RuleNotFoundError,
)

from tests import factories


async def count_commissions(payment_id) -> int:
    async with async_session_factory() as session:
        result = await session.execute(
            select(func.count(Commission.id)).where(Commission.payment_id == payment_id)
        )
        return result.scalar()


async def calculate(db, tenant, payment):
    return await CommissionCalculator(db).calculate(payment.id, tenant.id)


async def test_commit_records_every_line_item(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)

    result = await CommissionLedger(db).commit(payment.id, chain.tenant.id, items)

    assert result.created_count == 3
    assert result.duplicate_count == 0
    assert await count_commissions(payment.id) == 3

    by_broker = {c.broker_id: c for c in result.commissions}
    agent_commission = by_broker[chain.agent.id]
    assert agent_commission.status == CommissionStatus.PENDING.value
    assert agent_commission.amount == Decimal("2500.00")
    assert agent_commission.base_amount == Decimal("50000.00")
    assert agent_commission.rule_id == chain.agent_rule.id
    assert agent_commission.commission_metadata == {
        "broker_name": "Field Agent",
        "level": 2,
        "rule_name": "Agent - Large Payments",
    }


async def test_commit_is_idempotent(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    ledger = CommissionLedger(db)

    first = await ledger.commit(payment.id, chain.tenant.id, items)
    second = await ledger.commit(payment.id, chain.tenant.id, items)

    assert second.created_count == 0
    assert second.duplicate_count == 3
    assert {c.id for c in second.commissions} == {c.id for c in first.commissions}
    assert await count_commissions(payment.id) == 3


async def test_recalculated_commit_only_adds_missing_brokers(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    ledger = CommissionLedger(db)

    await ledger.commit(payment.id, chain.tenant.id, items[:1])
    result = await ledger.commit(payment.id, chain.tenant.id, items)

    assert result.created_count == 2
    assert result.duplicate_count == 1
    assert len(result.commissions) == 3
    assert await count_commissions(payment.id) == 3


async def test_no_referrer_persists_nothing(db, tenant):
    student = await factories.create_student(db, tenant, broker=None)
    payment = await factories.create_payment(db, tenant, student, "50000")
    items = await calculate(db, tenant, payment)

    result = await CommissionLedger(db).commit(payment.id, tenant.id, items)

    assert result.commissions == []
    assert result.created_count == 0
    assert await count_commissions(payment.id) == 0


async def test_unknown_payment_is_rejected(db, tenant):
    with pytest.raises(PaymentNotFoundError):
        await CommissionLedger(db).commit(uuid.uuid4(), tenant.id, [])


async def test_concurrent_commit_collision_is_a_no_op(db, chain, monkeypatch):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    # The rollback below expires loaded objects; keep plain ids
    payment_id, tenant_id = payment.id, chain.tenant.id

    # Another worker records the payment first
    async with async_session_factory() as other:
        winner = await CommissionLedger(other).commit(payment_id, tenant_id, items)

    # This worker read the ledger before the winner committed
    original = CommissionLedger.list_for_payment
    reads = []

    async def stale_first_read(self, payment_id, tenant_id):
        reads.append(payment_id)
        if len(reads) == 1:
            return []
        return await original(self, payment_id, tenant_id)

    monkeypatch.setattr(CommissionLedger, "list_for_payment", stale_first_read)

    result = await CommissionLedger(db).commit(payment_id, tenant_id, items)

    assert result.created_count == 0
    assert result.duplicate_count == 3
    assert {c.id for c in result.commissions} == {c.id for c in winner.commissions}
    assert await count_commissions(payment_id) == 3


async def test_partial_concurrent_collision_is_not_a_duplicate(db, chain, monkeypatch):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    payment_id, tenant_id = payment.id, chain.tenant.id

    # Another worker only got as far as the first broker
    async with async_session_factory() as other:
        await CommissionLedger(other).commit(payment_id, tenant_id, items[:1])

    original = CommissionLedger.list_for_payment
    reads = []

    async def stale_first_read(self, payment_id, tenant_id):
        reads.append(payment_id)
        if len(reads) == 1:
            return []
        return await original(self, payment_id, tenant_id)

    monkeypatch.setattr(CommissionLedger, "list_for_payment", stale_first_read)

    with pytest.raises(CommissionTransactionError):
        await CommissionLedger(db).commit(payment_id, tenant_id, items)
    assert await count_commissions(payment_id) == 1

    # A retry fills in the brokers still missing
    retry = await CommissionLedger(db).commit(payment_id, tenant_id, items)
    assert retry.created_count == 2
    assert retry.duplicate_count == 1
    assert await count_commissions(payment_id) == 3


async def test_constraint_violation_is_not_mistaken_for_a_duplicate(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    payment_id, tenant_id = payment.id, chain.tenant.id
    broken = [dataclasses.replace(item, commission_amount=None) for item in items]

    with pytest.raises(CommissionTransactionError) as exc_info:
        await CommissionLedger(db).commit(payment_id, tenant_id, broken)

    assert str(exc_info.value).startswith(f"No commissions were recorded for payment {payment_id}")
    assert await count_commissions(payment_id) == 0

    # The valid items still go through afterwards
    result = await CommissionLedger(db).commit(payment_id, tenant_id, items)
    assert result.created_count == 3
    assert result.duplicate_count == 0


async def test_line_items_must_reference_the_tenant(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    other_tenant = await factories.create_tenant(db, name="Other School")
    foreign = await factories.create_broker(db, other_tenant, "Foreign Top", "BRK-001")
    ledger = CommissionLedger(db)

    with pytest.raises(BrokerNotFoundError):
        await ledger.commit(payment.id, chain.tenant.id, [dataclasses.replace(items[0], broker_id=foreign.id)])

    # A rule belonging to another broker of the same tenant
    with pytest.raises(RuleNotFoundError):
        await ledger.commit(payment.id, chain.tenant.id, [dataclasses.replace(items[0], rule_id=chain.top_rule.id)])

    assert await count_commissions(payment.id) == 0


async def test_transaction_failure_records_nothing(db, chain, monkeypatch):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await calculate(db, chain.tenant, payment)
    payment_id, tenant_id = payment.id, chain.tenant.id

    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(CommissionTransactionError) as exc_info:
        await CommissionLedger(db).commit(payment_id, tenant_id, items)

    assert str(exc_info.value).startswith(f"No commissions were recorded for payment {payment_id}")
    assert await count_commissions(payment_id) == 0


async def test_list_for_broker_newest_first_with_status_filter(db, chain):
    ledger = CommissionLedger(db)
    payments = []
    for amount in ("50000", "60000", "70000"):
        payment = await factories.create_payment(db, chain.tenant, chain.student, amount)
        await ledger.commit(payment.id, chain.tenant.id, await calculate(db, chain.tenant, payment))
        payments.append(payment)

    # Spread creation times so the order does not depend on clock resolution
    records = await ledger.list_for_broker(chain.top.id, chain.tenant.id)
    base = datetime(2026, 5, 1, tzinfo=timezone.utc)
    for commission in records:
        index = [p.id for p in payments].index(commission.payment_id)
        commission.created_at = base + timedelta(days=index)
    records[0].status = CommissionStatus.PAID.value
    await db.commit()

    newest_first = await ledger.list_for_broker(chain.top.id, chain.tenant.id)
    assert [c.payment_id for c in newest_first] == [p.id for p in reversed(payments)]

    paid = await ledger.list_for_broker(chain.top.id, chain.tenant.id, status="PAID")
    assert [c.id for c in paid] == [records[0].id]

    pending = await ledger.list_for_broker(chain.top.id, chain.tenant.id, status="PENDING")
    assert len(pending) == 2

    limited = await ledger.list_for_broker(chain.top.id, chain.tenant.id, limit=1)
    assert [c.payment_id for c in limited] == [payments[-1].id]


async def test_list_for_broker_is_tenant_scoped(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    ledger = CommissionLedger(db)
    await ledger.commit(payment.id, chain.tenant.id, await calculate(db, chain.tenant, payment))
    other_tenant = await factories.create_tenant(db, name="Other School")

    assert await ledger.list_for_broker(chain.top.id, other_tenant.id) == []


async def test_listed_records_carry_payment_fee_and_student(db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000", fee_type="EXAM")
    await CommissionLedger(db).commit(payment.id, chain.tenant.id, await calculate(db, chain.tenant, payment))
    payment_id, student_id = payment.id, chain.student.id

    async with async_session_factory() as session:
        records = await CommissionLedger(session).list_for_broker(chain.top.id, chain.tenant.id)

    # Loaded up front, so still readable once the session is gone
    assert len(records) == 1
    assert records[0].payment.id == payment_id
    assert records[0].payment.fee.fee_type == "EXAM"
    assert records[0].payment.fee.academic_year == "2026-27"
    assert records[0].payment.student.id == student_id
    assert records[0].payment.student.first_name == "Asha"


async def test_three_decimal_currency_survives_a_round_trip(db):
    tenant = await factories.create_tenant(db, currency="KWD")
    top = await factories.create_broker(db, tenant, "Top Broker", "BRK-001")
    await factories.create_rule(db, top, "2.5")
    student = await factories.create_student(db, tenant, broker=top)
    payment = await factories.create_payment(db, tenant, student, "50.250")
    await CommissionLedger(db).commit(payment.id, tenant.id, await calculate(db, tenant, payment))
    broker_id, tenant_id = top.id, tenant.id

    async with async_session_factory() as session:
        records = await CommissionLedger(session).list_for_broker(broker_id, tenant_id)

    # 50.250 * 2.5% = 1.25625, rounded to the fils
    assert records[0].amount == Decimal("1.256")
    assert records[0].base_amount == Decimal("50.250")
    assert Commission.__table__.c.amount.type.scale >= 3
