"""
Affiliate Payout Service

Batches APPROVED, unpaid commission sales of one affiliate for a period
into a payout, netting the affiliate's outstanding negative_balance.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from windi.core.exceptions import NoEligibleSales, NotFound, ValidationError
from windi.core.money import ZERO, normalize_money, positive_part, to_decimal
from windi.models.affiliate import Affiliate, AffiliateSale, AffiliatePayout, SaleStatus
from windi.services.mirror_service import MirrorOutboxService

logger = logging.getLogger(__name__)


def default_period(today: Optional[date] = None) -> Tuple[date, date]:
    """Previous calendar week, Monday to Sunday (UTC)."""
    today = today or datetime.now(timezone.utc).date()
    this_monday = today - timedelta(days=today.weekday())
    return this_monday - timedelta(days=7), this_monday - timedelta(days=1)


def _period_bounds(period_start: date, period_end: date) -> Tuple[datetime, datetime]:
    """[start 00:00, day after end 00:00) so both calendar days are inclusive."""
    if period_start > period_end:
        raise ValidationError("period_start must not be after period_end")
    lower = datetime.combine(period_start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(period_end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower, upper


class PayoutService:
    """Service for affiliate payout generation"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox = MirrorOutboxService(db)

    async def payout_candidates(
        self,
        period_start: Optional[date] = None,
        period_end: Optional[date] = None,
    ) -> List[dict]:
        """
        What each active affiliate would be paid for the period.

        Returns:
            One dict per active affiliate with approved, debt and payable
        """
        if period_start is None or period_end is None:
            period_start, period_end = default_period()
        lower, upper = _period_bounds(period_start, period_end)

        affiliates_result = await self.db.execute(
            select(Affiliate)
            .where(Affiliate.is_active.is_(True))
            .order_by(Affiliate.display_name, Affiliate.id)
        )
        affiliates = affiliates_result.scalars().all()

        totals_result = await self.db.execute(
            select(
                AffiliateSale.affiliate_id,
                func.coalesce(func.sum(AffiliateSale.commission_amount), 0),
            )
            .where(
                AffiliateSale.status == SaleStatus.APPROVED.value,
                AffiliateSale.payout_id.is_(None),
                AffiliateSale.created_at >= lower,
                AffiliateSale.created_at < upper,
            )
            .group_by(AffiliateSale.affiliate_id)
        )
        approved_by_affiliate = {row[0]: normalize_money(row[1]) for row in totals_result.all()}

        candidates = []
        for affiliate in affiliates:
            approved = approved_by_affiliate.get(affiliate.id, ZERO)
            debt = normalize_money(affiliate.negative_balance)
            candidates.append({
                "affiliate_id": affiliate.id,
                "ref_code": affiliate.ref_code,
                "display_name": affiliate.display_name,
                "period_start": period_start,
                "period_end": period_end,
                "approved": normalize_money(approved),
                "debt": debt,
                "payable": normalize_money(positive_part(approved - debt)),
            })
        return candidates

    async def generate_payout(
        self,
        affiliate_id: int,
        period_start: date,
        period_end: date,
        method: str = "transfer",
        note: Optional[str] = None,
    ) -> AffiliatePayout:
        """
        Settle the affiliate's APPROVED unpaid sales created in the period.

        amount_paid = max(0, approved - negative_balance); whatever debt the
        batch does not cover stays in negative_balance.
        """
        lower, upper = _period_bounds(period_start, period_end)

        result = await self.db.execute(
            select(Affiliate).where(Affiliate.id == affiliate_id).with_for_update()
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")

        sales_result = await self.db.execute(
            select(AffiliateSale)
            .where(
                AffiliateSale.affiliate_id == affiliate_id,
                AffiliateSale.status == SaleStatus.APPROVED.value,
                AffiliateSale.payout_id.is_(None),
                AffiliateSale.created_at >= lower,
                AffiliateSale.created_at < upper,
            )
            .order_by(AffiliateSale.created_at, AffiliateSale.id)
            .with_for_update()
        )
        sales = sales_result.scalars().all()
        if not sales:
            raise NoEligibleSales(
                f"No approved sales for affiliate {affiliate_id} between {period_start} and {period_end}"
            )

        approved_amount = normalize_money(sum((to_decimal(s.commission_amount) for s in sales), ZERO))
        debt = normalize_money(affiliate.negative_balance)
        amount_paid = positive_part(approved_amount - debt)
        debt_after = positive_part(debt - approved_amount)

        payout = AffiliatePayout(
            affiliate_id=affiliate_id,
            period_start=period_start,
            period_end=period_end,
            approved_amount=approved_amount,
            debt_applied=debt - debt_after,
            amount_paid=amount_paid,
            method=(method or "transfer").strip() or "transfer",
            note=note or None,
        )
        self.db.add(payout)
        await self.db.flush()

        paid_at = datetime.now(timezone.utc)
        for sale in sales:
            sale.status = SaleStatus.PAID.value
            sale.paid_at = paid_at
            sale.payout_id = payout.id
            self.outbox.mark_dirty("affiliate_sales", sale.id)

        affiliate.total_commission_paid = normalize_money(
            to_decimal(affiliate.total_commission_paid) + amount_paid
        )
        affiliate.negative_balance = debt_after

        self.outbox.mark_dirty("affiliate_payouts", payout.id)
        self.outbox.mark_dirty("affiliates", affiliate.id)
        await self.db.commit()
        await self.db.refresh(payout)

        logger.info(
            f"Payout {payout.id} generated for affiliate {affiliate_id}: "
            f"{len(sales)} sales, approved={approved_amount} debt={debt} paid={amount_paid}"
        )
        return payout

    async def list_payouts(self, affiliate_id: Optional[int] = None, limit: int = 100) -> List[AffiliatePayout]:
        query = select(AffiliatePayout).order_by(AffiliatePayout.created_at.desc(), AffiliatePayout.id.desc())
        if affiliate_id:
            query = query.where(AffiliatePayout.affiliate_id == affiliate_id)
        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())
