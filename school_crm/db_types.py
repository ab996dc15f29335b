"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases (native UUID on PostgreSQL, CHAR(32) elsewhere)
UUIDType = Uuid

# Money and percentage columns; scale 3 holds every minor unit in money.CURRENCY_MINOR_UNITS
MoneyType = Numeric(18, 3)
PercentageType = Numeric(7, 4)
