"""Product quota gate: may a business add another catalog entry?"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from windi.models.business import Product
from windi.models.plan import Plan
from windi.services.subscription_service import find_active_subscription

logger = logging.getLogger(__name__)


@dataclass
class QuotaDecision:
    allowed: bool
    limit: Optional[int]
    used: int


def effective_limit(max_products) -> Optional[int]:
    """Absent, non-numeric or non-positive ceilings mean unlimited."""
    if max_products is None:
        return None
    try:
        limit = int(max_products)
    except (TypeError, ValueError):
        return None
    return limit if limit > 0 else None


class QuotaService:
    """
    Read-only quota check.

    Callers re-check right before inserting; concurrent inserts can still
    overshoot by the width of that window.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def can_create_product(self, business_id: int) -> QuotaDecision:
        count_result = await self.db.execute(
            select(func.count(Product.id)).where(Product.business_id == business_id)
        )
        used = int(count_result.scalar() or 0)

        active = await find_active_subscription(self.db, business_id)
        if not active:
            return QuotaDecision(allowed=True, limit=None, used=used)

        plan = await self.db.get(Plan, active.plan_id)
        limit = effective_limit(plan.max_products if plan else None)
        if limit is None:
            return QuotaDecision(allowed=True, limit=None, used=used)
        return QuotaDecision(allowed=used < limit, limit=limit, used=used)
