import uuid
from decimal import Decimal

import pytest

from school_crm.models import CommissionStatus
from school_crm.schemas.broker import BrokerCreate, BrokerUpdate
from school_crm.schemas.commission import CommissionRuleCreate, CommissionRuleUpdate
from school_crm.services.broker_service import BrokerService
from school_crm.services.commission import CommissionCalculator, CommissionLedger
from school_crm.services.commission.exceptions import (
    BrokerConflictError,
    BrokerNotFoundError,
    BrokerValidationError,
    RuleNotFoundError,
)
from school_crm.services.commission_rule_service import CommissionRuleService

from tests import factories


# ==================== Brokers ====================

async def test_create_derives_level_and_uppercases_code(db, tenant):
    service = BrokerService(db)

    top = await service.create_broker(tenant.id, BrokerCreate(name="Top Broker", code="brk-001"))
    sub = await service.create_broker(
        tenant.id, BrokerCreate(name="Sub Broker", code="sub-001", parent_broker_id=top.id)
    )

    assert top.level == 0
    assert top.code == "BRK-001"
    assert top.parent_broker_id is None
    assert sub.level == 1
    assert sub.parent_broker_id == top.id


async def test_duplicate_code_is_a_conflict(db, tenant):
    service = BrokerService(db)
    await service.create_broker(tenant.id, BrokerCreate(name="Top Broker", code="BRK-001"))

    with pytest.raises(BrokerConflictError):
        await service.create_broker(tenant.id, BrokerCreate(name="Other", code="brk-001"))


async def test_same_code_in_another_tenant_is_allowed(db, tenant):
    other_tenant = await factories.create_tenant(db, name="Other School")
    service = BrokerService(db)

    await service.create_broker(tenant.id, BrokerCreate(name="Top Broker", code="BRK-001"))
    broker = await service.create_broker(other_tenant.id, BrokerCreate(name="Top Broker", code="BRK-001"))

    assert broker.tenant_id == other_tenant.id


async def test_parent_must_exist_in_the_same_tenant(db, tenant):
    other_tenant = await factories.create_tenant(db, name="Other School")
    foreign = await factories.create_broker(db, other_tenant, "Foreign Top", "BRK-001")
    service = BrokerService(db)

    with pytest.raises(BrokerValidationError):
        await service.create_broker(
            tenant.id, BrokerCreate(name="Agent", code="AGT-001", parent_broker_id=foreign.id)
        )
    with pytest.raises(BrokerValidationError):
        await service.create_broker(
            tenant.id, BrokerCreate(name="Agent", code="AGT-001", parent_broker_id=uuid.uuid4())
        )


async def test_get_broker_is_tenant_scoped(db, chain):
    other_tenant = await factories.create_tenant(db, name="Other School")

    with pytest.raises(BrokerNotFoundError):
        await BrokerService(db).get_broker(chain.top.id, other_tenant.id)


async def test_update_broker(db, chain):
    service = BrokerService(db)

    broker = await service.update_broker(
        chain.top.id, chain.tenant.id,
        BrokerUpdate(name="Head Office", code="hq-001", metadata={"region": "NORTH"}),
    )

    assert broker.name == "Head Office"
    assert broker.code == "HQ-001"
    assert broker.broker_metadata == {"region": "NORTH"}
    assert broker.level == 0


async def test_update_to_taken_code_is_a_conflict(db, chain):
    with pytest.raises(BrokerConflictError):
        await BrokerService(db).update_broker(chain.agent.id, chain.tenant.id, BrokerUpdate(code="SUB-001"))


async def test_deactivation_refused_with_students(db, chain):
    with pytest.raises(BrokerConflictError, match="students"):
        await BrokerService(db).deactivate_broker(chain.agent.id, chain.tenant.id)


async def test_deactivation_refused_with_sub_brokers(db, chain):
    with pytest.raises(BrokerConflictError, match="sub-brokers"):
        await BrokerService(db).deactivate_broker(chain.top.id, chain.tenant.id)

    with pytest.raises(BrokerConflictError):
        await BrokerService(db).update_broker(chain.sub.id, chain.tenant.id, BrokerUpdate(is_active=False))


async def test_deactivate_leaf_broker(db, tenant):
    top = await factories.create_broker(db, tenant, "Top Broker", "BRK-001")
    leaf = await factories.create_broker(db, tenant, "Leaf", "AGT-001", parent=top)

    broker = await BrokerService(db).deactivate_broker(leaf.id, tenant.id)

    assert broker.is_active is False
    active, total = await BrokerService(db).list_brokers(tenant.id, is_active=True)
    assert [b.id for b in active] == [top.id]
    assert total == 1


async def test_list_brokers_top_first(db, chain):
    brokers, total = await BrokerService(db).list_brokers(chain.tenant.id)

    assert total == 3
    assert [b.id for b in brokers] == [chain.top.id, chain.sub.id, chain.agent.id]


async def test_hierarchy_and_ancestors(db, chain):
    service = BrokerService(db)

    hierarchy = await service.get_hierarchy(chain.sub.id, chain.tenant.id)
    assert hierarchy["broker"].id == chain.sub.id
    assert hierarchy["parent"].id == chain.top.id
    assert [b.id for b in hierarchy["descendants"]] == [chain.agent.id]

    ancestors = await service.list_ancestors(chain.agent.id, chain.tenant.id)
    assert [b.id for b in ancestors] == [chain.agent.id, chain.sub.id, chain.top.id]

    assert (await service.get_parent(chain.top.id, chain.tenant.id)) is None
    assert [b.id for b in await service.list_children(chain.top.id, chain.tenant.id)] == [chain.sub.id]

    with pytest.raises(BrokerNotFoundError):
        await service.get_hierarchy(uuid.uuid4(), chain.tenant.id)


async def test_broker_stats(db, chain):
    ledger = CommissionLedger(db)
    for amount in ("50000", "60000"):
        payment = await factories.create_payment(db, chain.tenant, chain.student, amount)
        items = await CommissionCalculator(db).calculate(payment.id, chain.tenant.id)
        await ledger.commit(payment.id, chain.tenant.id, items)

    # Top broker earns 2%: 1000 and 1200
    records = await ledger.list_for_broker(chain.top.id, chain.tenant.id)
    newest = records[0]
    newest.status = CommissionStatus.PAID.value
    await db.commit()

    stats = await BrokerService(db).get_broker_stats(chain.top.id, chain.tenant.id)

    assert stats["total_commissions"] == 2
    assert stats["total_commission_amount"] == Decimal("2200")
    assert stats["paid_commission_amount"] == newest.amount
    assert stats["pending_commission_amount"] == Decimal("2200") - newest.amount
    assert stats["sub_broker_count"] == 1
    assert stats["total_students"] == 0

    agent_stats = await BrokerService(db).get_broker_stats(chain.agent.id, chain.tenant.id)
    assert agent_stats["total_students"] == 1
    assert agent_stats["sub_broker_count"] == 0


async def test_stats_for_broker_without_commissions(db, tenant):
    broker = await factories.create_broker(db, tenant, "Top Broker", "BRK-001")

    stats = await BrokerService(db).get_broker_stats(broker.id, tenant.id)

    assert stats["total_commissions"] == 0
    assert stats["total_commission_amount"] == Decimal("0")
    assert stats["pending_commission_amount"] == Decimal("0")


# ==================== Rules ====================

async def test_create_rule_copies_broker_level(db, chain):
    rule = await CommissionRuleService(db).create_rule(
        chain.sub.id, chain.tenant.id,
        CommissionRuleCreate(
            name="Sub-Broker Admissions",
            percentage=Decimal("1.25"),
            conditions={"fee_types": ["admission"]},
            priority=7,
        ),
    )

    assert rule.level == chain.sub.level == 1
    assert rule.tenant_id == chain.tenant.id
    assert rule.percentage == Decimal("1.25")
    assert rule.conditions == {"fee_types": ["ADMISSION"]}
    assert rule.is_active is True


async def test_create_rule_for_unknown_broker(db, tenant):
    with pytest.raises(BrokerNotFoundError):
        await CommissionRuleService(db).create_rule(
            uuid.uuid4(), tenant.id, CommissionRuleCreate(name="Rule", percentage=Decimal("1"))
        )


async def test_update_rule(db, chain):
    service = CommissionRuleService(db)

    rule = await service.update_rule(
        chain.sub_rule.id, chain.tenant.id,
        CommissionRuleUpdate(percentage=Decimal("4"), priority=3),
    )
    assert rule.percentage == Decimal("4")
    assert rule.priority == 3
    # Untouched conditions stay
    assert rule.conditions == {"fee_types": ["TUITION"], "min_amount": "10000"}

    cleared = await service.update_rule(chain.sub_rule.id, chain.tenant.id, CommissionRuleUpdate(conditions=None))
    assert cleared.conditions == {}


async def test_deactivated_rule_stops_matching(db, chain):
    service = CommissionRuleService(db)
    await service.deactivate_rule(chain.agent_rule.id, chain.tenant.id)

    rules, total = await service.list_for_broker(chain.agent.id, chain.tenant.id, is_active=True)
    assert rules == []
    assert total == 0

    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    items = await CommissionCalculator(db).calculate(payment.id, chain.tenant.id)
    assert [i.broker_id for i in items] == [chain.sub.id, chain.top.id]


async def test_list_rules_highest_priority_first(db, tenant):
    broker = await factories.create_broker(db, tenant, "Top Broker", "BRK-001")
    low = await factories.create_rule(db, broker, "1", priority=1)
    high = await factories.create_rule(db, broker, "2", priority=10)

    rules, total = await CommissionRuleService(db).list_for_broker(broker.id, tenant.id)

    assert [r.id for r in rules] == [high.id, low.id]
    assert total == 2


async def test_rule_lookup_is_tenant_scoped(db, chain):
    other_tenant = await factories.create_tenant(db, name="Other School")

    with pytest.raises(RuleNotFoundError):
        await CommissionRuleService(db).get_rule(chain.top_rule.id, other_tenant.id)
