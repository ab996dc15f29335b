# Services module
from school_crm.services.broker_service import BrokerService
from school_crm.services.commission_rule_service import CommissionRuleService

# Commission engine
from school_crm.services.commission import (
    CommissionCalculator,
    CommissionLedger,
    HierarchyWalker,
    RuleSelector,
)

__all__ = [
    "BrokerService",
    "CommissionRuleService",
    # Commission engine
    "CommissionCalculator",
    "CommissionLedger",
    "HierarchyWalker",
    "RuleSelector",
]
