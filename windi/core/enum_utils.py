"""
Enum Utilities for VARCHAR-based Status Fields

ARCHITECTURE STANDARD:
━━━━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR(30) - NOT native ENUM types
• SQLAlchemy: String(30) with Mapped[str]
• Python: str-based Enum classes declared next to each model
• Reading: every status read from the database goes through normalize_status()

DATA FLOW:
━━━━━━━━━━
WRITE:
    SubscriptionStatus.ACTIVE → .value → "ACTIVE" → VARCHAR

READ (two schema generations coexist in old rows):
    "active" / "PAID" / " Active " → normalize_status(...) → SubscriptionStatus.ACTIVE

Subscription and sale statuses are stored UPPERCASE, payment statuses
lowercase; legacy spellings are mapped through per-enum alias tables.
"""

from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(SaleStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def normalize_status(
    value: Any,
    enum_class: Type[T],
    aliases: Optional[Mapping[str, T]] = None,
    default: Optional[T] = None,
) -> Optional[T]:
    """
    Map a raw status string onto a closed enumeration.

    Matching is case-insensitive and whitespace-tolerant. Legacy spellings
    are resolved through ``aliases`` (keys compared upper-cased).

    Examples:
        >>> normalize_status("paid", SubscriptionStatus, SUBSCRIPTION_ALIASES)
        SubscriptionStatus.ACTIVE
        >>> normalize_status("bogus", SaleStatus)
        None
    """
    if value is None:
        return default
    if isinstance(value, enum_class):
        return value
    raw = str(get_enum_value(value)).strip()
    if not raw:
        return default

    for member in enum_class:
        if member.value.upper() == raw.upper():
            return member

    if aliases:
        aliased = aliases.get(raw.upper())
        if aliased is not None:
            return aliased

    return default
