# Models module - importing registers every table with Base.metadata
from school_crm.models.tenant import Tenant
from school_crm.models.broker import Broker
from school_crm.models.student import Student, Fee, Payment, PaymentStatus
from school_crm.models.commission import CommissionRule, Commission, CommissionStatus

__all__ = [
    "Tenant",
    "Broker",
    "Student",
    "Fee",
    "Payment",
    "PaymentStatus",
    "CommissionRule",
    "Commission",
    "CommissionStatus",
]
