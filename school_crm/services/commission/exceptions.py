"""Errors raised by the commission engine.

NotFound errors map to 404, data integrity errors to 422 and transaction
failures to 503 (see the exception handlers in main.py). A student without a
referring broker and a broker without a matching rule are not errors.
"""
from typing import Optional
import uuid


class CommissionError(Exception):
    """Base class for commission engine errors."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
        self.payment_id: Optional[uuid.UUID] = None

    def for_payment(self, payment_id: uuid.UUID) -> "CommissionError":
        """Attach the payment being calculated so the message names it."""
        self.payment_id = payment_id
        return self

    def __str__(self) -> str:
        if self.payment_id is not None:
            return f"Could not calculate commissions for payment {self.payment_id}: {self.reason}"
        return self.reason


# ==================== Not Found ====================

class CommissionNotFoundError(CommissionError):
    """A referenced record does not resolve within the tenant."""
    pass


class PaymentNotFoundError(CommissionNotFoundError):
    def __init__(self, payment_id: uuid.UUID):
        super().__init__(f"Payment {payment_id} not found")


class StudentNotFoundError(CommissionNotFoundError):
    def __init__(self, student_id: uuid.UUID):
        super().__init__(f"Student {student_id} not found")


class BrokerNotFoundError(CommissionNotFoundError):
    def __init__(self, broker_id: uuid.UUID):
        super().__init__(f"Broker {broker_id} not found")


class RuleNotFoundError(CommissionNotFoundError):
    def __init__(self, rule_id: uuid.UUID):
        super().__init__(f"Commission rule {rule_id} not found")


# ==================== Data Integrity ====================

class CommissionDataIntegrityError(CommissionError):
    """Stored broker or rule data violates an engine invariant."""
    pass


class HierarchyIntegrityError(CommissionDataIntegrityError):
    """Broker chain is too deep, cyclic, dangling or has inconsistent levels."""
    pass


class RuleIntegrityError(CommissionDataIntegrityError):
    """A rule carries a percentage outside (0, 100]."""
    pass


# ==================== Business Rules ====================

class PaymentNotCompletedError(CommissionError):
    def __init__(self, payment_id: uuid.UUID, status: str):
        super().__init__(f"Payment {payment_id} is {status}, only COMPLETED payments earn commission")
        self.status = status


class BrokerValidationError(CommissionError):
    """Administrative broker/rule input was rejected."""
    pass


class BrokerConflictError(BrokerValidationError):
    """Duplicate code, or the broker still has students or sub-brokers attached."""
    pass


# ==================== Persistence ====================

class CommissionTransactionError(CommissionError):
    """The commit transaction aborted; nothing was written and the call may be retried."""

    def __init__(self, payment_id: uuid.UUID, reason: str):
        super().__init__(reason)
        self.payment_id = payment_id

    def __str__(self) -> str:
        return f"No commissions were recorded for payment {self.payment_id}: {self.reason}"
