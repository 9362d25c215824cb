"""
Payment Webhook Reconciliation Service

Turns a gateway payment notification into ledger state:

    gateway status          Subscription       Payment
    approved                ACTIVE             paid
    pending                 PENDING_PAYMENT    pending
    rejected / cancelled    CANCELED           failed
    refunded / charged_back EXPIRED            refunded
    anything else           PENDING_PAYMENT    pending

A pending notification never moves an ACTIVE, CANCELED or EXPIRED
subscription back to PENDING_PAYMENT, nor creates a second pending row for
the business; only the Payment row follows it then.

The HTTP endpoint always acknowledges with 200; the outcome returned here
is what gets logged and reported. Failures are rolled back and logged with
the payment id and subscription id for manual reconciliation.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from windi.core.enum_utils import normalize_status
from windi.core.money import ZERO, normalize_money
from windi.models.business import Business, OnboardingStep
from windi.models.subscription import (
    Subscription,
    Payment,
    SubscriptionStatus,
    PaymentStatus,
    SUBSCRIPTION_STATUS_ALIASES,
    PENDING_STATUS_VALUES,
)
from windi.services.affiliate_service import AffiliateService
from windi.services.mercadopago_service import MercadoPagoService, GatewayPayment
from windi.services.mirror_service import MirrorOutboxService
from windi.services.subscription_service import apply_activation

logger = logging.getLogger(__name__)


REFUND_REVERSAL_NOTE = "Automatic reversal due to gateway refund/chargeback"


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    payment_id: Optional[str] = None
    subscription_id: Optional[int] = None
    subscription_status: Optional[SubscriptionStatus] = None
    payment_status: Optional[PaymentStatus] = None
    error: Optional[str] = None

    def as_ack(self) -> dict:
        """Transport-level acknowledgement: always ok."""
        body = {"ok": True}
        if self.outcome == WebhookOutcome.DUPLICATE:
            body["duplicate"] = True
        elif self.outcome == WebhookOutcome.IGNORED:
            body["ignored"] = True
        return body


def map_gateway_status(provider_status: Optional[str]) -> Tuple[SubscriptionStatus, PaymentStatus]:
    status = (provider_status or "").strip().lower()
    if status == "approved":
        return SubscriptionStatus.ACTIVE, PaymentStatus.PAID
    if status == "pending":
        return SubscriptionStatus.PENDING_PAYMENT, PaymentStatus.PENDING
    if status in ("rejected", "cancelled"):
        return SubscriptionStatus.CANCELED, PaymentStatus.FAILED
    if status in ("refunded", "charged_back"):
        return SubscriptionStatus.EXPIRED, PaymentStatus.REFUNDED
    return SubscriptionStatus.PENDING_PAYMENT, PaymentStatus.PENDING


def extract_payment_id(query: Optional[Mapping[str, Any]], body: Any) -> Optional[str]:
    """Payment id from ?data.id= / ?id= or a JSON body {data: {id}} / {id}."""
    query = query or {}
    candidate = query.get("data.id") or query.get("id")
    if not candidate and isinstance(body, Mapping):
        data = body.get("data")
        if isinstance(data, Mapping):
            candidate = data.get("id")
        candidate = candidate or body.get("id")
    text = str(candidate).strip() if candidate is not None else ""
    return text or None


class WebhookService:
    """Reconcile gateway notifications against the ledger."""

    def __init__(self, db: AsyncSession, gateway: Optional[Any] = None):
        self.db = db
        self.gateway = gateway if gateway is not None else MercadoPagoService()
        self.outbox = MirrorOutboxService(db)
        self._subscription_id: Optional[int] = None

    async def handle_webhook(self, payment_id: Optional[str]) -> WebhookResult:
        """Process one notification; never raises."""
        if not payment_id:
            logger.warning("Webhook without payment id ignored")
            return WebhookResult(outcome=WebhookOutcome.IGNORED)

        self._subscription_id = None
        try:
            return await self._reconcile(str(payment_id))
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Webhook reconciliation failed: payment_id={payment_id} "
                f"subscription_id={self._subscription_id}: {e}",
                exc_info=True,
            )
            return WebhookResult(
                outcome=WebhookOutcome.FAILED,
                payment_id=str(payment_id),
                subscription_id=self._subscription_id,
                error=str(e),
            )

    async def _is_duplicate(self, payment_id: str) -> bool:
        result = await self.db.execute(
            select(Payment.id)
            .where(
                Payment.provider_payment_id == payment_id,
                Payment.status == PaymentStatus.PAID.value,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _resolve_subscription(self, payment: GatewayPayment) -> Optional[Subscription]:
        """Metadata subscription id first, then the latest external_reference match."""
        subscription_id = payment.metadata_subscription_id
        if subscription_id:
            result = await self.db.execute(
                select(Subscription).where(Subscription.id == subscription_id).with_for_update()
            )
            subscription = result.scalar_one_or_none()
            if subscription:
                return subscription

        if payment.external_reference:
            result = await self.db.execute(
                select(Subscription)
                .where(Subscription.external_reference == payment.external_reference.strip())
                .order_by(Subscription.id.desc())
                .limit(1)
                .with_for_update()
            )
            return result.scalar_one_or_none()
        return None

    async def _target_payment_row(self, subscription_id: int, payment_id: str) -> Optional[Payment]:
        """
        Row to update: the one already carrying this payment id, else the
        latest row when it is not bound to another gateway payment.
        """
        result = await self.db.execute(
            select(Payment).where(Payment.provider_payment_id == payment_id)
        )
        payment = result.scalar_one_or_none()
        if payment:
            return payment

        result = await self.db.execute(
            select(Payment)
            .where(Payment.subscription_id == subscription_id)
            .order_by(Payment.id.desc())
            .limit(1)
        )
        latest = result.scalar_one_or_none()
        if latest and latest.provider_payment_id in (None, "", payment_id):
            return latest
        return None

    async def _holds_status(self, subscription: Subscription, target: SubscriptionStatus) -> bool:
        """True when a pending notification must not touch the subscription row."""
        if target != SubscriptionStatus.PENDING_PAYMENT:
            return False
        current = normalize_status(subscription.status, SubscriptionStatus, SUBSCRIPTION_STATUS_ALIASES)
        if current == SubscriptionStatus.PENDING_PAYMENT:
            return False
        if current is not None:
            return True

        result = await self.db.execute(
            select(Subscription.id)
            .where(
                Subscription.business_id == subscription.business_id,
                Subscription.id != subscription.id,
                func.upper(Subscription.status).in_(PENDING_STATUS_VALUES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _reconcile(self, payment_id: str) -> WebhookResult:
        if await self._is_duplicate(payment_id):
            await self.db.commit()
            logger.info(f"Duplicate webhook for paid payment {payment_id}")
            return WebhookResult(outcome=WebhookOutcome.DUPLICATE, payment_id=payment_id)

        # end the read transaction before waiting on the gateway
        await self.db.commit()
        gateway_payment = await self.gateway.get_payment(payment_id)

        subscription = await self._resolve_subscription(gateway_payment)
        if not subscription:
            await self.db.commit()
            logger.warning(
                f"Webhook ignored, no subscription for payment {payment_id} "
                f"(external_reference={gateway_payment.external_reference!r})"
            )
            return WebhookResult(outcome=WebhookOutcome.IGNORED, payment_id=payment_id)

        subscription_id = self._subscription_id = subscription.id
        business_id = subscription.business_id
        sub_status, pay_status = map_gateway_status(gateway_payment.status)
        gateway_amount = normalize_money(gateway_payment.amount)

        # single transaction: subscription, payment, business
        held = await self._holds_status(subscription, sub_status)
        subscription.last_provider_status = gateway_payment.status or None
        if held:
            sub_status = normalize_status(subscription.status, SubscriptionStatus, SUBSCRIPTION_STATUS_ALIASES)
            logger.info(
                f"Pending notification {payment_id} left subscription {subscription_id} "
                f"at {subscription.status}"
            )
        else:
            subscription.status = sub_status.value
            subscription.provider_payment_id = payment_id
            if gateway_amount > ZERO:
                subscription.amount = gateway_amount

        payment = await self._target_payment_row(subscription_id, payment_id)
        if payment:
            payment.provider_payment_id = payment_id
            payment.merchant_order_id = gateway_payment.merchant_order_id or payment.merchant_order_id
            if gateway_amount > ZERO:
                payment.amount = gateway_amount
            payment.status = pay_status.value
        else:
            payment = Payment(
                subscription_id=subscription_id,
                provider="mercadopago",
                provider_payment_id=payment_id,
                merchant_order_id=gateway_payment.merchant_order_id,
                amount=gateway_amount if gateway_amount > ZERO else normalize_money(subscription.amount),
                status=pay_status.value,
            )
            self.db.add(payment)

        business = await self.db.get(Business, business_id)
        if pay_status == PaymentStatus.PAID:
            apply_activation(subscription, business)
            payment.paid_at = payment.paid_at or subscription.paid_at
        elif pay_status == PaymentStatus.REFUNDED and business is not None:
            business.has_completed_onboarding = False
            business.onboarding_step = OnboardingStep.PLAN.value

        await self.db.flush()
        self.outbox.mark_dirty("subscriptions", subscription_id)
        self.outbox.mark_dirty("payments", payment.id)
        if business is not None:
            self.outbox.mark_dirty("businesses", business_id)
        await self.db.commit()

        logger.info(
            f"Webhook processed: payment_id={payment_id} subscription_id={subscription_id} "
            f"gateway_status={gateway_payment.status} -> {subscription.status}/{pay_status.value}"
        )

        # post-commit side effects
        try:
            affiliates = AffiliateService(self.db)
            if pay_status == PaymentStatus.PAID:
                await affiliates.create_pending_sale(subscription_id)
            elif pay_status == PaymentStatus.REFUNDED:
                await affiliates.reverse_latest_for_subscription(subscription_id, note=REFUND_REVERSAL_NOTE)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Webhook side effect failed: payment_id={payment_id} subscription_id={subscription_id}: {e}",
                exc_info=True,
            )
            return WebhookResult(
                outcome=WebhookOutcome.FAILED,
                payment_id=payment_id,
                subscription_id=subscription_id,
                subscription_status=sub_status,
                payment_status=pay_status,
                error=str(e),
            )

        return WebhookResult(
            outcome=WebhookOutcome.PROCESSED,
            payment_id=payment_id,
            subscription_id=subscription_id,
            subscription_status=sub_status,
            payment_status=pay_status,
        )
