"""
Plan Catalog Service

Administrative management of subscription plans. Plans are never deleted;
deactivating a plan hides it from checkout without touching existing
subscriptions.
"""

import logging
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windi.config import settings
from windi.core.exceptions import NotFound, PlanValidationError
from windi.core.money import ZERO, normalize_money
from windi.models.plan import Plan
from windi.services.mirror_service import MirrorOutboxService

logger = logging.getLogger(__name__)


DEFAULT_PLANS = [
    {"code": "BASIC", "display_name": "Basico", "price": Decimal("12999"), "max_products": 10},
    {"code": "PREMIUM", "display_name": "Premium", "price": Decimal("16999"), "max_products": 50},
    {"code": "ELITE", "display_name": "Elite", "price": Decimal("21999"), "max_products": None},
]


def parse_max_products(raw: Any) -> Optional[int]:
    """Blank means unlimited; anything else is clamped to at least 1."""
    if raw is None:
        return None
    text = str(raw).strip()
    if text == "":
        return None
    try:
        value = int(float(text))
    except (TypeError, ValueError):
        raise PlanValidationError("max_products must be a whole number")
    return max(1, value)


class PlanService:
    """Service for plan catalog operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox = MirrorOutboxService(db)

    async def ensure_default_plans(self) -> int:
        """
        Insert the default plans that are missing.

        Existing rows are left as the administrators edited them.

        Returns:
            Number of plans created
        """
        created = 0
        for default in DEFAULT_PLANS:
            result = await self.db.execute(
                select(Plan.id).where(Plan.code == default["code"])
            )
            if result.scalar_one_or_none():
                continue
            plan = Plan(currency=settings.DEFAULT_CURRENCY, is_active=True, **default)
            self.db.add(plan)
            await self.db.flush()
            self.outbox.mark_dirty("plans", plan.id)
            created += 1

        if created:
            await self.db.commit()
            logger.info(f"Seeded {created} default plans")
        return created

    async def list_plans(self, active_only: bool = False) -> List[Plan]:
        query = select(Plan).order_by(Plan.price, Plan.id)
        if active_only:
            query = query.where(Plan.is_active.is_(True))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_plan(self, plan_id: int) -> Plan:
        plan = await self.db.get(Plan, plan_id)
        if not plan:
            raise NotFound(f"Plan {plan_id} not found")
        return plan

    async def find_active_plan(
        self,
        plan_code: Optional[str] = None,
        plan_id: Optional[int] = None,
    ) -> Optional[Plan]:
        """Active plan by code or display name (case-insensitive), else by id."""
        key = (plan_code or "").strip().upper()
        if key:
            result = await self.db.execute(
                select(Plan)
                .where(
                    Plan.is_active.is_(True),
                    or_(func.upper(Plan.code) == key, func.upper(Plan.display_name) == key),
                )
                .order_by(Plan.id)
                .limit(1)
            )
            plan = result.scalar_one_or_none()
            if plan:
                return plan

        if plan_id:
            result = await self.db.execute(
                select(Plan).where(Plan.id == plan_id, Plan.is_active.is_(True))
            )
            return result.scalar_one_or_none()
        return None

    def _validated(self, code: Any, display_name: Any, price: Any, max_products: Any) -> dict:
        clean_code = str(code or "").strip().upper()
        clean_name = str(display_name or "").strip()
        clean_price = normalize_money(price)

        if not clean_code:
            raise PlanValidationError("Plan code is required")
        if not clean_name:
            raise PlanValidationError("Plan display name is required")
        if clean_price <= ZERO:
            raise PlanValidationError("Plan price must be greater than 0")

        return {
            "code": clean_code,
            "display_name": clean_name,
            "price": clean_price,
            "max_products": parse_max_products(max_products),
        }

    async def create_plan(
        self,
        code: str,
        display_name: str,
        price: Any,
        max_products: Any = None,
    ) -> Plan:
        data = self._validated(code, display_name, price, max_products)
        plan = Plan(currency=settings.DEFAULT_CURRENCY, is_active=True, **data)
        self.db.add(plan)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise PlanValidationError(f"Plan code {data['code']} already exists")

        self.outbox.mark_dirty("plans", plan.id)
        await self.db.commit()
        await self.db.refresh(plan)
        logger.info(f"Plan created: {plan.code} price={plan.price}")
        return plan

    async def update_plan(
        self,
        plan_id: int,
        code: str,
        display_name: str,
        price: Any,
        max_products: Any = None,
    ) -> Plan:
        plan = await self.get_plan(plan_id)
        data = self._validated(code, display_name, price, max_products)
        for key, value in data.items():
            setattr(plan, key, value)
        plan.currency = settings.DEFAULT_CURRENCY

        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise PlanValidationError(f"Plan code {data['code']} already exists")

        self.outbox.mark_dirty("plans", plan.id)
        await self.db.commit()
        await self.db.refresh(plan)
        logger.info(f"Plan {plan_id} updated")
        return plan

    async def toggle_active(self, plan_id: int) -> Plan:
        plan = await self.get_plan(plan_id)
        plan.is_active = not plan.is_active
        self.outbox.mark_dirty("plans", plan.id)
        await self.db.commit()
        await self.db.refresh(plan)
        logger.info(f"Plan {plan_id} is_active={plan.is_active}")
        return plan
