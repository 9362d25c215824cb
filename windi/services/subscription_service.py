"""
Subscription Lifecycle Service

Handles the merchant side of billing:
- Gate resolution (may the business use paid features?)
- Checkout: reuse or create the single pending subscription and obtain a
  hosted checkout URL from the payment gateway (also used for plan changes)
- Status queries and the admin listing
- Administrative activation (create-paid / mark-paid)

Gateway calls never run inside an open ledger transaction: the pending row
is committed first, the gateway is called, then the result is persisted in
a second short transaction.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Tuple, Union

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windi.config import settings
from windi.core.enum_utils import normalize_status
from windi.core.exceptions import (
    GatewayError,
    GatewayUnavailable,
    InvalidPlan,
    NotFound,
)
from windi.core.money import ZERO, normalize_money
from windi.models.business import Business, OnboardingStep
from windi.models.plan import Plan
from windi.models.subscription import (
    Subscription,
    Payment,
    SubscriptionStatus,
    PaymentStatus,
    SUBSCRIPTION_STATUS_ALIASES,
    ACTIVE_STATUS_VALUES,
    PENDING_STATUS_VALUES,
)
from windi.services.affiliate_service import AffiliateService
from windi.services.mercadopago_service import MercadoPagoService, build_preference_payload
from windi.services.mirror_service import MirrorOutboxService
from windi.services.plan_service import PlanService

logger = logging.getLogger(__name__)


CHECKOUT_REDIRECT = "/onboarding/checkout"
PLAN_REDIRECT = "/onboarding/plan"


# ==================== EXTERNAL REFERENCE ====================

class ExternalReference(NamedTuple):
    subscription_id: int
    business_id: int
    plan_code: str


_EXTERNAL_REFERENCE_RE = re.compile(r"^sub:(\d+)\|biz:(\d+)\|plan:(.*)$")


def build_external_reference(subscription_id: int, business_id: int, plan_code: str) -> str:
    """Correlation token sent to the gateway: sub:{id}|biz:{id}|plan:{CODE}"""
    return f"sub:{subscription_id}|biz:{business_id}|plan:{(plan_code or '').strip().upper()}"


def parse_external_reference(value: Optional[str]) -> Optional[ExternalReference]:
    match = _EXTERNAL_REFERENCE_RE.match((value or "").strip())
    if not match:
        return None
    return ExternalReference(int(match.group(1)), int(match.group(2)), match.group(3))


# ==================== GATE RESULT ====================

class MustPayReason(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    NO_SUBSCRIPTION = "no_subscription"


@dataclass
class ActiveSubscription:
    """Business holds an ACTIVE subscription."""
    subscription: Subscription
    kind = "active_subscription"
    allowed = True
    redirect_to = None


@dataclass
class LegacyGrant:
    """Onboarded before subscriptions existed; allowed without a subscription row."""
    business_id: int
    kind = "legacy_grant"
    allowed = True
    redirect_to = None


@dataclass
class MustPay:
    """Business must complete (or start) a payment."""
    reason: MustPayReason
    pending: Optional[Subscription] = None
    kind = "must_pay"
    allowed = False

    @property
    def redirect_to(self) -> str:
        return CHECKOUT_REDIRECT if self.reason == MustPayReason.PENDING_PAYMENT else PLAN_REDIRECT


GateResult = Union[ActiveSubscription, LegacyGrant, MustPay]


class _PlanRef(NamedTuple):
    id: int
    code: str
    display_name: str
    currency: str


@dataclass
class CheckoutResult:
    checkout_url: Optional[str] = None
    subscription_id: Optional[int] = None
    reused: bool = False
    already_active: bool = False


# ==================== ACTIVATION ====================

def apply_activation(
    subscription: Subscription,
    business: Optional[Business],
    now: Optional[datetime] = None,
) -> None:
    """
    Mark a subscription ACTIVE and its business onboarded.

    paid_at, current_period_start and current_period_end are only set when
    empty, so a replay never moves an already-running period.
    """
    now = now or datetime.now(timezone.utc)
    subscription.status = SubscriptionStatus.ACTIVE.value
    if subscription.paid_at is None:
        subscription.paid_at = now
    if subscription.current_period_start is None:
        subscription.current_period_start = now
    if subscription.current_period_end is None:
        subscription.current_period_end = now + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)

    if business is not None:
        business.has_completed_onboarding = True
        business.onboarding_step = OnboardingStep.DONE.value
        business.plan_id = subscription.plan_id


async def find_active_subscription(db: AsyncSession, business_id: int) -> Optional[Subscription]:
    """Most recent paid subscription (by period end, then last update)."""
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.business_id == business_id,
            func.upper(Subscription.status).in_(ACTIVE_STATUS_VALUES),
        )
        .order_by(
            func.coalesce(
                Subscription.current_period_end,
                Subscription.updated_at,
                Subscription.created_at,
            ).desc(),
            Subscription.id.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


class SubscriptionService:
    """Service for subscription lifecycle operations"""

    def __init__(self, db: AsyncSession, gateway: Optional[Any] = None):
        self.db = db
        self.gateway = gateway if gateway is not None else MercadoPagoService()
        self.outbox = MirrorOutboxService(db)

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_business(self, business_id: int) -> Business:
        result = await self.db.execute(
            select(Business).where(Business.id == business_id)
        )
        business = result.scalar_one_or_none()
        if not business:
            raise NotFound(f"Business {business_id} not found")
        return business

    async def active_subscription(self, business_id: int) -> Optional[Subscription]:
        return await find_active_subscription(self.db, business_id)

    async def pending_subscription(self, business_id: int) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.business_id == business_id,
                func.upper(Subscription.status).in_(PENDING_STATUS_VALUES),
            )
            .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _has_any_subscription(self, business_id: int) -> bool:
        result = await self.db.execute(
            select(Subscription.id).where(Subscription.business_id == business_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _latest_pending_payment(
        self,
        subscription_id: int,
        with_checkout_url: bool = False,
    ) -> Optional[Payment]:
        query = select(Payment).where(
            Payment.subscription_id == subscription_id,
            Payment.status == PaymentStatus.PENDING.value,
        )
        if with_checkout_url:
            query = query.where(Payment.checkout_url.is_not(None))
        result = await self.db.execute(query.order_by(Payment.id.desc()).limit(1))
        return result.scalar_one_or_none()

    # ========================================================================
    # Gate
    # ========================================================================

    async def resolve_gate(self, business_id: int) -> GateResult:
        """
        Decide whether the business may use paid features.

        ACTIVE subscription => ActiveSubscription. A business flagged as
        onboarded (or carrying a plan) with no subscription rows at all
        predates billing and gets a LegacyGrant. Otherwise MustPay, pointing
        at checkout when a pending row exists and at plan selection if not.
        """
        business = await self.get_business(business_id)

        active = await self.active_subscription(business_id)
        if active:
            return ActiveSubscription(subscription=active)

        if (business.has_completed_onboarding or business.plan_id) and \
                not await self._has_any_subscription(business_id):
            return LegacyGrant(business_id=business_id)

        pending = await self.pending_subscription(business_id)
        if pending:
            return MustPay(reason=MustPayReason.PENDING_PAYMENT, pending=pending)
        return MustPay(reason=MustPayReason.NO_SUBSCRIPTION)

    # ========================================================================
    # Checkout
    # ========================================================================

    async def start_checkout(
        self,
        business_id: int,
        plan_code: Optional[str] = None,
        plan_id: Optional[int] = None,
        payer_email: Optional[str] = None,
        payer_name: Optional[str] = None,
        plan_change: bool = False,
    ) -> CheckoutResult:
        """
        Return a checkout URL for the requested plan.

        Flow:
        1. Already allowed by the gate => already_active, no gateway call.
           With plan_change the allowed business may buy another plan; only
           its current plan short-circuits, and its onboarding flags and
           active subscription stay as they are until the new payment lands
        2. Resolve an active plan (InvalidPlan) and check the credential
           (GatewayUnavailable)
        3. Reuse the pending subscription's checkout URL when plan and
           amount still match
        4. Otherwise commit the (single) pending row, call the gateway, and
           persist preference id, external reference and pending payment
        """
        business = await self.get_business(business_id)

        gate = await self.resolve_gate(business_id)
        if gate.allowed and not plan_change:
            return CheckoutResult(already_active=True)

        plan = await PlanService(self.db).find_active_plan(plan_code=plan_code, plan_id=plan_id)
        if not plan:
            raise InvalidPlan("Invalid plan")
        if gate.allowed:
            current_plan_id = gate.subscription.plan_id if isinstance(gate, ActiveSubscription) else business.plan_id
            if current_plan_id == plan.id:
                return CheckoutResult(already_active=True)
        if not getattr(self.gateway, "is_configured", False):
            raise GatewayUnavailable("Payment gateway is not configured")

        expected_amount = normalize_money(plan.price)
        plan_ref = _PlanRef(plan.id, plan.code, plan.display_name, plan.currency or settings.DEFAULT_CURRENCY)
        business_name = business.name
        owner_email = business.owner_email

        pending = await self.pending_subscription(business_id)
        if pending:
            payment = await self._latest_pending_payment(pending.id, with_checkout_url=True)
            if (
                payment
                and pending.plan_id == plan.id
                and normalize_money(pending.amount) == expected_amount
                and normalize_money(payment.amount) == expected_amount
            ):
                logger.info(f"Reusing pending checkout for business {business_id} (subscription {pending.id})")
                return CheckoutResult(
                    checkout_url=payment.checkout_url,
                    subscription_id=pending.id,
                    reused=True,
                )

        created_seed = False
        if pending is None:
            pending, created_seed = await self._insert_pending_seed(business_id, plan_ref.id, expected_amount)

        subscription_id = pending.id
        external_reference = build_external_reference(subscription_id, business_id, plan_ref.code)
        payload = build_preference_payload(
            subscription_id=subscription_id,
            business_id=business_id,
            business_name=business_name,
            plan_id=plan_ref.id,
            plan_code=plan_ref.code,
            plan_name=plan_ref.display_name,
            amount=expected_amount,
            currency=plan_ref.currency,
            external_reference=external_reference,
            payer_email=payer_email or owner_email,
            payer_name=payer_name or business_name,
        )

        # end the read transaction before waiting on the gateway
        await self.db.commit()
        try:
            preference = await self.gateway.create_preference(payload)
        except GatewayError:
            if created_seed:
                await self._discard_seed(subscription_id)
            raise

        await self._record_checkout(
            subscription_id=subscription_id,
            business_id=business_id,
            plan=plan_ref,
            amount=expected_amount,
            external_reference=external_reference,
            preference_id=preference.id,
            checkout_url=preference.checkout_url,
            reset_onboarding=not gate.allowed,
        )

        logger.info(
            f"Checkout issued: business={business_id} subscription={subscription_id} "
            f"plan={plan_ref.code} amount={expected_amount}"
        )
        return CheckoutResult(checkout_url=preference.checkout_url, subscription_id=subscription_id)

    async def _insert_pending_seed(self, business_id: int, plan_id: int, amount: Decimal):
        """
        Insert the business's pending row.

        The partial unique index allows one PENDING_PAYMENT row per
        business; losing the race means re-reading the winner.
        """
        seed = Subscription(
            business_id=business_id,
            plan_id=plan_id,
            amount=amount,
            status=SubscriptionStatus.PENDING_PAYMENT.value,
            payment_provider="mercadopago",
        )
        self.db.add(seed)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            winner = await self.pending_subscription(business_id)
            if winner is None:
                raise
            logger.warning(f"Concurrent checkout for business {business_id}: reusing pending {winner.id}")
            return winner, False

        self.outbox.mark_dirty("subscriptions", seed.id)
        await self.db.commit()
        return seed, True

    async def _discard_seed(self, subscription_id: int) -> None:
        """Drop a seed row created for a checkout whose gateway call failed."""
        await self.db.rollback()
        result = await self.db.execute(
            delete(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.provider_preference_id.is_(None),
            )
        )
        if result.rowcount:
            await self.outbox.discard("subscriptions", subscription_id)
        await self.db.commit()

    async def _record_checkout(
        self,
        subscription_id: int,
        business_id: int,
        plan: "_PlanRef",
        amount: Decimal,
        external_reference: str,
        preference_id: Optional[str],
        checkout_url: str,
        reset_onboarding: bool = True,
    ) -> None:
        result = await self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        )
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFound(f"Subscription {subscription_id} disappeared during checkout")

        subscription.plan_id = plan.id
        subscription.amount = amount
        subscription.status = SubscriptionStatus.PENDING_PAYMENT.value
        subscription.payment_provider = "mercadopago"
        subscription.provider_preference_id = preference_id or None
        subscription.external_reference = external_reference

        currency = plan.currency
        payment = await self._latest_pending_payment(subscription_id)
        if payment:
            payment.provider_preference_id = preference_id or payment.provider_preference_id
            payment.amount = amount
            payment.currency = currency
            payment.checkout_url = checkout_url or payment.checkout_url
        else:
            payment = Payment(
                subscription_id=subscription_id,
                provider="mercadopago",
                provider_preference_id=preference_id or None,
                amount=amount,
                currency=currency,
                status=PaymentStatus.PENDING.value,
                checkout_url=checkout_url,
            )
            self.db.add(payment)

        business = await self.get_business(business_id)
        if reset_onboarding:
            business.onboarding_step = OnboardingStep.CHECKOUT.value
            business.has_completed_onboarding = False
            self.outbox.mark_dirty("businesses", business.id)

        await self.db.flush()
        self.outbox.mark_dirty("subscriptions", subscription.id)
        self.outbox.mark_dirty("payments", payment.id)
        await self.db.commit()

    # ========================================================================
    # Status
    # ========================================================================

    async def subscription_status(
        self,
        business_id: int,
        subscription_id: Optional[int] = None,
    ) -> dict:
        """
        Normalized status of the given (or current) subscription.

        Without an explicit id the pending row wins over the active one, so
        a merchant returning from checkout sees the payment in flight.
        """
        await self.get_business(business_id)

        if not subscription_id:
            pending = await self.pending_subscription(business_id)
            active = None if pending else await self.active_subscription(business_id)
            current = pending or active
            subscription_id = current.id if current else None

        if not subscription_id:
            return {"status": "NONE", "active": False, "subscription": None}

        result = await self.db.execute(
            select(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.business_id == business_id,
            )
        )
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFound(f"Subscription {subscription_id} not found")

        status = normalize_status(subscription.status, SubscriptionStatus, SUBSCRIPTION_STATUS_ALIASES)
        status_value = status.value if status else str(subscription.status or "").strip().upper()
        return {
            "status": status_value,
            "active": status == SubscriptionStatus.ACTIVE,
            "subscription": subscription,
        }

    async def list_subscriptions(self, limit: int = 100) -> List[Tuple[Subscription, str, str]]:
        """Most recent subscriptions as (subscription, business name, plan display name)."""
        result = await self.db.execute(
            select(Subscription, Business.name, Plan.display_name)
            .join(Business, Business.id == Subscription.business_id)
            .join(Plan, Plan.id == Subscription.plan_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(limit)
        )
        return [tuple(row) for row in result.all()]

    # ========================================================================
    # Administrative activation
    # ========================================================================

    async def create_paid_subscription(
        self,
        business_id: int,
        plan_id: int,
        amount: Optional[Any] = None,
    ) -> Subscription:
        """Record a subscription paid outside the gateway."""
        business = await self.get_business(business_id)
        plan = await self.db.get(Plan, plan_id)
        if not plan:
            raise NotFound(f"Plan {plan_id} not found")

        paid_amount = normalize_money(amount)
        if paid_amount <= ZERO:
            paid_amount = normalize_money(plan.price)

        subscription = Subscription(
            business_id=business.id,
            plan_id=plan.id,
            amount=paid_amount,
            payment_provider="manual",
        )
        apply_activation(subscription, business)
        self.db.add(subscription)
        await self.db.flush()

        self.outbox.mark_dirty("subscriptions", subscription.id)
        self.outbox.mark_dirty("businesses", business.id)
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"Paid subscription {subscription.id} created for business {business_id} (plan {plan.code})")
        await AffiliateService(self.db).create_pending_sale(subscription.id)
        return subscription

    async def mark_subscription_paid(self, subscription_id: int) -> Subscription:
        """Activate an existing subscription manually."""
        result = await self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        )
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFound(f"Subscription {subscription_id} not found")

        business = await self.get_business(subscription.business_id)
        apply_activation(subscription, business)

        self.outbox.mark_dirty("subscriptions", subscription.id)
        self.outbox.mark_dirty("businesses", business.id)
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"Subscription {subscription_id} marked paid")
        await AffiliateService(self.db).create_pending_sale(subscription.id)
        return subscription
