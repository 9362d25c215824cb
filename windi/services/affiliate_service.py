"""
Affiliate Commission Ledger Service

Handles the commission bookkeeping for referred businesses:
- Affiliate registration and referral attribution
- Pending sale creation from a paid subscription
- Sale review (approve / reject / reverse)
- Per-affiliate balance summary

Balance rules: points_confirmed, total_commission_earned and
negative_balance never go below zero. Deficits produced by a reversal are
carried in points_debt and negative_balance and recovered by later payouts.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windi.config import settings
from windi.core.enum_utils import normalize_status
from windi.core.exceptions import (
    NotFound,
    SaleNotPending,
    SaleNotReversible,
    ValidationError,
)
from windi.core.money import (
    ZERO,
    commission_for,
    normalize_money,
    points_for,
    positive_part,
    to_decimal,
)
from windi.models.affiliate import (
    Affiliate,
    AffiliateSale,
    SaleStatus,
    REVERSIBLE_SALE_STATUSES,
)
from windi.models.business import Business
from windi.models.subscription import (
    Subscription,
    SubscriptionStatus,
    SUBSCRIPTION_STATUS_ALIASES,
)
from windi.services.mirror_service import MirrorOutboxService

logger = logging.getLogger(__name__)

REF_CODE_ATTEMPTS = 12


class AffiliateService:
    """Service for affiliate commission operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox = MirrorOutboxService(db)

    # ========================================================================
    # Ref Code Generation
    # ========================================================================

    async def generate_ref_code(self, seed_text: str = "") -> str:
        """
        Generate unique referral code: seed prefix + 6 hex characters
        Example: JUANPE3F9A1C (seed "Juan Perez"), AFI0B12CD (no seed)
        """
        seed = "".join(c for c in (seed_text or "").upper() if c.isascii() and c.isalnum())[:6]
        prefix = seed or "AFI"

        for _ in range(REF_CODE_ATTEMPTS):
            candidate = f"{prefix}{secrets.token_hex(3).upper()}"
            result = await self.db.execute(
                select(Affiliate.id).where(Affiliate.ref_code == candidate)
            )
            if not result.scalar_one_or_none():
                return candidate

        fallback = f"AFI{_base36(int(time.time() * 1000))}"
        result = await self.db.execute(
            select(Affiliate.id).where(Affiliate.ref_code == fallback)
        )
        if result.scalar_one_or_none():
            fallback = f"{fallback}{secrets.randbelow(1000)}"
        return fallback

    # ========================================================================
    # Affiliate Registration
    # ========================================================================

    async def register_affiliate(
        self,
        user_id: int,
        seed_text: str = "",
        commission_rate: Optional[Decimal] = None,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Affiliate:
        """Register a referral partner with zeroed running totals."""
        existing = await self.db.execute(
            select(Affiliate.id).where(Affiliate.user_id == user_id)
        )
        if existing.scalar_one_or_none():
            raise ValidationError(f"User {user_id} is already an affiliate")

        rate = to_decimal(settings.DEFAULT_COMMISSION_RATE if commission_rate is None else commission_rate)
        if rate <= ZERO or rate > Decimal("1"):
            raise ValidationError("commission_rate must be between 0 and 1")

        affiliate = Affiliate(
            user_id=user_id,
            ref_code=await self.generate_ref_code(seed_text or display_name or ""),
            display_name=display_name,
            email=email.strip().lower() if email else None,
            commission_rate=rate,
            is_active=True,
            points_confirmed=0,
            points_debt=0,
            total_commission_earned=ZERO,
            total_commission_paid=ZERO,
            negative_balance=ZERO,
        )
        self.db.add(affiliate)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError("Affiliate could not be registered (duplicate user or ref code)")

        self.outbox.mark_dirty("affiliates", affiliate.id)
        await self.db.commit()
        await self.db.refresh(affiliate)

        logger.info(f"Affiliate registered: id={affiliate.id} ref_code={affiliate.ref_code}")
        return affiliate

    async def get_affiliate(self, affiliate_id: int) -> Affiliate:
        result = await self.db.execute(
            select(Affiliate).where(Affiliate.id == affiliate_id)
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")
        return affiliate

    async def find_by_ref_code(self, ref_code: str) -> Optional[Affiliate]:
        """Active affiliate owning ``ref_code`` (case-insensitive)."""
        code = (ref_code or "").strip().upper()
        if not code:
            return None
        result = await self.db.execute(
            select(Affiliate).where(
                Affiliate.ref_code == code,
                Affiliate.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def attribute_business(self, business_id: int, ref_code: str) -> Optional[Affiliate]:
        """
        Link a business to the affiliate that referred it.

        The first attribution wins. Unknown or inactive codes and
        self-referrals (same email) are ignored.
        """
        result = await self.db.execute(
            select(Business).where(Business.id == business_id)
        )
        business = result.scalar_one_or_none()
        if not business:
            raise NotFound(f"Business {business_id} not found")
        if business.affiliate_id:
            return None

        affiliate = await self.find_by_ref_code(ref_code)
        if not affiliate:
            return None
        if affiliate.email and business.owner_email and \
                affiliate.email.lower() == business.owner_email.strip().lower():
            logger.warning(f"Self-referral ignored: business={business_id} ref_code={affiliate.ref_code}")
            return None

        business.affiliate_id = affiliate.id
        business.referred_at = datetime.now(timezone.utc)
        self.outbox.mark_dirty("businesses", business.id)
        await self.db.commit()
        return affiliate

    async def list_affiliates(self) -> List[Tuple[Affiliate, int]]:
        """All affiliates, newest first, with the number of businesses each referred."""
        result = await self.db.execute(
            select(Affiliate, func.count(Business.id))
            .outerjoin(Business, Business.affiliate_id == Affiliate.id)
            .group_by(Affiliate.id)
            .order_by(Affiliate.created_at.desc(), Affiliate.id.desc())
        )
        return [(affiliate, referrals) for affiliate, referrals in result.all()]

    async def toggle_active(self, affiliate_id: int) -> Affiliate:
        affiliate = await self.get_affiliate(affiliate_id)
        affiliate.is_active = not affiliate.is_active
        self.outbox.mark_dirty("affiliates", affiliate.id)
        await self.db.commit()
        await self.db.refresh(affiliate)
        logger.info(f"Affiliate {affiliate_id} is_active={affiliate.is_active}")
        return affiliate

    # ========================================================================
    # Sale Creation
    # ========================================================================

    async def create_pending_sale(self, subscription_id: int) -> Optional[AffiliateSale]:
        """
        Derive the PENDING commission sale for a paid subscription.

        No-op (returns None) unless the subscription is paid, its business
        was referred by an active affiliate and no sale exists yet. Returns
        the existing sale when one is already recorded.
        """
        result = await self.db.execute(
            select(Subscription, Business.affiliate_id)
            .join(Business, Business.id == Subscription.business_id)
            .where(Subscription.id == subscription_id)
        )
        row = result.first()
        if not row:
            return None
        subscription, affiliate_id = row

        status = normalize_status(subscription.status, SubscriptionStatus, SUBSCRIPTION_STATUS_ALIASES)
        if status != SubscriptionStatus.ACTIVE or not affiliate_id:
            return None

        existing = await self._sale_for_subscription(subscription_id)
        if existing:
            return existing

        affiliate = await self.db.get(Affiliate, affiliate_id)
        if not affiliate or not affiliate.is_active:
            return None

        amount = normalize_money(subscription.amount)
        rate = to_decimal(affiliate.commission_rate) or to_decimal(settings.DEFAULT_COMMISSION_RATE)

        sale = AffiliateSale(
            affiliate_id=affiliate.id,
            business_id=subscription.business_id,
            subscription_id=subscription.id,
            plan_id=subscription.plan_id,
            amount=amount,
            commission_rate=rate,
            commission_amount=commission_for(amount, rate),
            points_earned=points_for(amount),
            status=SaleStatus.PENDING.value,
        )
        self.db.add(sale)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(f"Duplicate affiliate sale collapsed for subscription {subscription_id}")
            return await self._sale_for_subscription(subscription_id)

        self.outbox.mark_dirty("affiliate_sales", sale.id)
        await self.db.commit()
        await self.db.refresh(sale)

        logger.info(
            f"Affiliate sale created: id={sale.id} affiliate={affiliate.id} "
            f"subscription={subscription_id} commission={sale.commission_amount}"
        )
        return sale

    async def _sale_for_subscription(self, subscription_id: int) -> Optional[AffiliateSale]:
        result = await self.db.execute(
            select(AffiliateSale).where(AffiliateSale.subscription_id == subscription_id)
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # Sale Review
    # ========================================================================

    async def _lock_sale(self, sale_id: int) -> AffiliateSale:
        result = await self.db.execute(
            select(AffiliateSale).where(AffiliateSale.id == sale_id).with_for_update()
        )
        sale = result.scalar_one_or_none()
        if not sale:
            raise NotFound(f"Sale {sale_id} not found")
        return sale

    async def _lock_affiliate(self, affiliate_id: int) -> Affiliate:
        result = await self.db.execute(
            select(Affiliate).where(Affiliate.id == affiliate_id).with_for_update()
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")
        return affiliate

    async def approve_sale(
        self,
        sale_id: int,
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AffiliateSale:
        """Move a PENDING sale to APPROVED and credit points and commission."""
        sale = await self._lock_sale(sale_id)
        if normalize_status(sale.status, SaleStatus) != SaleStatus.PENDING:
            raise SaleNotPending(f"Only PENDING sales can be approved (sale {sale_id} is {sale.status})")

        affiliate = await self._lock_affiliate(sale.affiliate_id)
        affiliate.points_confirmed = (affiliate.points_confirmed or 0) + (sale.points_earned or 0)
        affiliate.total_commission_earned = normalize_money(
            to_decimal(affiliate.total_commission_earned) + to_decimal(sale.commission_amount)
        )

        sale.status = SaleStatus.APPROVED.value
        sale.reviewed_at = datetime.now(timezone.utc)
        sale.reviewed_by = reviewer_id
        sale.review_note = note or None

        self.outbox.mark_dirty("affiliate_sales", sale.id)
        self.outbox.mark_dirty("affiliates", affiliate.id)
        await self.db.commit()
        await self.db.refresh(sale)

        logger.info(f"Affiliate sale {sale_id} approved by {reviewer_id}")
        return sale

    async def reject_sale(
        self,
        sale_id: int,
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AffiliateSale:
        """Move a PENDING sale to REJECTED; balances are untouched."""
        sale = await self._lock_sale(sale_id)
        if normalize_status(sale.status, SaleStatus) != SaleStatus.PENDING:
            raise SaleNotPending(f"Only PENDING sales can be rejected (sale {sale_id} is {sale.status})")

        sale.status = SaleStatus.REJECTED.value
        sale.reviewed_at = datetime.now(timezone.utc)
        sale.reviewed_by = reviewer_id
        sale.review_note = note or None

        self.outbox.mark_dirty("affiliate_sales", sale.id)
        await self.db.commit()
        await self.db.refresh(sale)

        logger.info(f"Affiliate sale {sale_id} rejected by {reviewer_id}")
        return sale

    async def reverse_sale(
        self,
        sale_id: int,
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AffiliateSale:
        """
        Withdraw the credit of an APPROVED or PAID sale.

        Confirmed points and earned commission are reduced and clamped at
        zero; the uncovered part moves to points_debt / negative_balance.
        Reversing a PAID sale also adds the full commission to
        negative_balance, to be recovered from future payouts.
        """
        sale = await self._lock_sale(sale_id)
        prior_status = normalize_status(sale.status, SaleStatus)
        if prior_status not in REVERSIBLE_SALE_STATUSES:
            raise SaleNotReversible(
                f"Only APPROVED or PAID sales can be reversed (sale {sale_id} is {sale.status})"
            )

        affiliate = await self._lock_affiliate(sale.affiliate_id)
        commission = to_decimal(sale.commission_amount)

        new_points = (affiliate.points_confirmed or 0) - (sale.points_earned or 0)
        affiliate.points_confirmed = max(0, new_points)
        affiliate.points_debt = (affiliate.points_debt or 0) + max(0, -new_points)

        earned_after = to_decimal(affiliate.total_commission_earned) - commission
        extra_debt = positive_part(-earned_after)
        paid_clawback = commission if prior_status == SaleStatus.PAID else ZERO
        affiliate.total_commission_earned = normalize_money(positive_part(earned_after))
        affiliate.negative_balance = normalize_money(
            to_decimal(affiliate.negative_balance) + extra_debt + paid_clawback
        )

        now = datetime.now(timezone.utc)
        sale.status = SaleStatus.REVERSED.value
        sale.reversed_at = now
        sale.reviewed_at = now
        sale.reviewed_by = reviewer_id
        sale.reverse_note = note or None
        if sale.review_note is None:
            sale.review_note = note or None

        self.outbox.mark_dirty("affiliate_sales", sale.id)
        self.outbox.mark_dirty("affiliates", affiliate.id)
        await self.db.commit()
        await self.db.refresh(sale)

        logger.info(
            f"Affiliate sale {sale_id} reversed from {prior_status.value}: "
            f"points_debt+={max(0, -new_points)} negative_balance+={extra_debt + paid_clawback}"
        )
        return sale

    async def reverse_latest_for_subscription(
        self,
        subscription_id: int,
        note: Optional[str] = None,
        reviewer_id: Optional[str] = None,
    ) -> Optional[AffiliateSale]:
        """Reverse the most recent APPROVED/PAID sale of a subscription, if any."""
        result = await self.db.execute(
            select(AffiliateSale.id)
            .where(
                AffiliateSale.subscription_id == subscription_id,
                AffiliateSale.status.in_([s.value for s in REVERSIBLE_SALE_STATUSES]),
            )
            .order_by(AffiliateSale.id.desc())
            .limit(1)
        )
        sale_id = result.scalar_one_or_none()
        if sale_id is None:
            return None
        return await self.reverse_sale(sale_id, reviewer_id=reviewer_id, note=note)

    # ========================================================================
    # Queries
    # ========================================================================

    async def list_sales(
        self,
        status: Optional[SaleStatus] = None,
        affiliate_id: Optional[int] = None,
        limit: int = 200,
    ) -> List[AffiliateSale]:
        query = select(AffiliateSale).order_by(AffiliateSale.created_at.desc(), AffiliateSale.id.desc())
        if status:
            query = query.where(AffiliateSale.status == status.value)
        if affiliate_id:
            query = query.where(AffiliateSale.affiliate_id == affiliate_id)
        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())

    async def affiliate_summary(self, affiliate_id: int) -> dict:
        """Running totals plus what the next payout would settle."""
        affiliate = await self.get_affiliate(affiliate_id)

        approved_result = await self.db.execute(
            select(func.coalesce(func.sum(AffiliateSale.commission_amount), 0))
            .where(
                AffiliateSale.affiliate_id == affiliate_id,
                AffiliateSale.status == SaleStatus.APPROVED.value,
                AffiliateSale.payout_id.is_(None),
            )
        )
        approved_unpaid = normalize_money(approved_result.scalar())

        counts_result = await self.db.execute(
            select(AffiliateSale.status, func.count(AffiliateSale.id))
            .where(AffiliateSale.affiliate_id == affiliate_id)
            .group_by(AffiliateSale.status)
        )
        counts = {s.value: 0 for s in SaleStatus}
        for status, count in counts_result.all():
            counts[status] = count

        negative_balance = normalize_money(affiliate.negative_balance)
        return {
            "affiliate_id": affiliate.id,
            "ref_code": affiliate.ref_code,
            "is_active": affiliate.is_active,
            "points_confirmed": affiliate.points_confirmed,
            "points_debt": affiliate.points_debt,
            "total_commission_earned": normalize_money(affiliate.total_commission_earned),
            "total_commission_paid": normalize_money(affiliate.total_commission_paid),
            "negative_balance": negative_balance,
            "approved_unpaid": approved_unpaid,
            "pending_for_payout": positive_part(approved_unpaid - negative_balance),
            "sales_by_status": counts,
        }


def _base36(value: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"
