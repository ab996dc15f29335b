"""
Enum Utilities for VARCHAR-based Status Fields

ARCHITECTURE STANDARD:
━━━━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR(20..50) - NOT PostgreSQL ENUM
• SQLAlchemy: String(n) with Mapped[str]
• Pydantic: Python Enum for API validation
• API Response: Use string directly (NO .value needed)
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: CommissionStatus.PENDING → "PENDING" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly

CASE NORMALIZATION:
━━━━━━━━━━━━━━━━━━━
Use normalize_to_uppercase() in field validators to accept case-insensitive
input while storing UPPERCASE.
"""

from enum import Enum
from typing import Any, Iterable, Optional, Set


def enum_comment(enum_class: type[Enum]) -> str:
    """
    Generate a comment string for VARCHAR column.

    Examples:
        >>> enum_comment(CommissionStatus)
        'PENDING, APPROVED, PAID, REJECTED'
    """
    return ", ".join(e.value for e in enum_class)


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Optional[Set[str]] = None) -> Any:
    """
    Normalize a string value to UPPERCASE.

    When valid_values is given, only known values are normalized and anything
    else is returned as-is for Pydantic to reject.

    Examples:
        >>> normalize_to_uppercase('pending', {'PENDING', 'PAID'})
        'PENDING'
        >>> normalize_to_uppercase('invalid', {'PENDING', 'PAID'})
        'invalid'
        >>> normalize_to_uppercase(' tuition ')
        'TUITION'
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper()
        if valid_values is None or upper_v in valid_values:
            return upper_v
    return value


def normalize_code_list(values: Optional[Iterable[Any]]) -> Optional[list[str]]:
    """Uppercase, de-duplicate and sort a list of free-form codes (fee types, grades)."""
    if values is None:
        return None
    return sorted({normalize_to_uppercase(str(v)) for v in values})


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_COMMISSION_STATUSES = {"PENDING", "APPROVED", "PAID", "REJECTED"}
