"""Subscription billing models.

Two schema generations wrote status strings with different spellings
(`PAID` vs `ACTIVE`, `PENDING` vs `PENDING_PAYMENT`, mixed case). Reads go
through the alias tables below via core.enum_utils.normalize_status();
writes always use the enum values.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from windi.database import Base
from windi.db_types import MoneyType

if TYPE_CHECKING:
    from windi.models.plan import Plan
    from windi.models.business import Business


# ==================== ENUMS (stored as VARCHAR) ====================

class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, Enum):
    """Gateway transaction status (lowercase by convention)."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


SUBSCRIPTION_STATUS_ALIASES = {
    "PAID": SubscriptionStatus.ACTIVE,
    "PENDING": SubscriptionStatus.PENDING_PAYMENT,
    "CANCELLED": SubscriptionStatus.CANCELED,
}

PAYMENT_STATUS_ALIASES = {
    "APPROVED": PaymentStatus.PAID,
    "ACTIVE": PaymentStatus.PAID,
    "PENDING_PAYMENT": PaymentStatus.PENDING,
    "REJECTED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.FAILED,
}

# Raw stored values (upper-cased) that count as paid / pending
ACTIVE_STATUS_VALUES = ("ACTIVE", "PAID")
PENDING_STATUS_VALUES = ("PENDING_PAYMENT", "PENDING")

PENDING_ONLY_WHERE = text("status = 'PENDING_PAYMENT'")


# ==================== MODELS ====================

class Subscription(Base):
    """
    A business's billing relationship to a plan.

    At most one row per business may be PENDING_PAYMENT; the partial unique
    index enforces it at the store.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_one_pending_per_business",
            "business_id",
            unique=True,
            postgresql_where=PENDING_ONLY_WHERE,
            sqlite_where=PENDING_ONLY_WHERE,
        ),
        Index("ix_subscriptions_status", "status"),
        Index("ix_subscriptions_external_reference", "external_reference"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    business_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("plans.id"),
        nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        default=SubscriptionStatus.PENDING_PAYMENT.value,
        nullable=False,
        comment="PENDING_PAYMENT, ACTIVE, CANCELED, EXPIRED"
    )
    last_provider_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Gateway correlation
    payment_provider: Mapped[str] = mapped_column(String(30), default="mercadopago", nullable=False)
    provider_preference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    external_reference: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        comment="sub:{id}|biz:{id}|plan:{CODE}"
    )

    # Billing period (first write wins)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    plan: Mapped["Plan"] = relationship("Plan")
    business: Mapped["Business"] = relationship("Business")
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="subscription",
        cascade="all, delete-orphan",
        order_by="Payment.id"
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, business={self.business_id}, status='{self.status}')>"


class Payment(Base):
    """
    A single gateway transaction backing a subscription.

    The latest row per subscription is authoritative. provider_payment_id
    is the idempotency key for inbound webhooks.
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subscription_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    provider: Mapped[str] = mapped_column(String(30), default="mercadopago", nullable=False)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    provider_preference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    merchant_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="ARS", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment="pending, paid, failed, refunded"
    )
    checkout_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    subscription: Mapped["Subscription"] = relationship("Subscription", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, provider_payment_id='{self.provider_payment_id}', status='{self.status}')>"
