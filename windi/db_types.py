"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import Numeric

# Money columns: two decimals, the canonical ledger precision
MoneyType = Numeric(12, 2)

# Commission rates such as 0.2500
RateType = Numeric(5, 4)
