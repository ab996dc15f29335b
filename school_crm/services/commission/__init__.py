"""
Commission Engine

Hierarchical broker commission calculation:
- HierarchyWalker / BrokerTree: ancestor chain of a broker (self first, root last)
- RuleSelector: highest-priority active rule whose conditions hold for a payment
- CommissionCalculator: payment -> ordered line items, no writes
- CommissionLedger: idempotent, single-transaction persistence of line items
"""

from school_crm.services.commission.hierarchy import BrokerTree, HierarchyWalker
from school_crm.services.commission.rule_selector import PaymentContext, RuleSelector
from school_crm.services.commission.calculator import (
    CalculatedLineItem,
    CommissionCalculator,
    total_commission,
)
from school_crm.services.commission.ledger import CommissionLedger, CommitResult

__all__ = [
    "BrokerTree",
    "HierarchyWalker",
    "PaymentContext",
    "RuleSelector",
    "CalculatedLineItem",
    "CommissionCalculator",
    "total_commission",
    "CommissionLedger",
    "CommitResult",
]
