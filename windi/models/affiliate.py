"""Affiliate referral and commission ledger models.

An affiliate earns a commission sale for every referred business whose
subscription gets paid. Sales are reviewed (approve / reject / reverse)
and batched into payouts. Running totals on the affiliate row are never
negative: deficits land in points_debt / negative_balance instead.
"""
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, Text, Date, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from windi.database import Base
from windi.db_types import MoneyType, RateType

if TYPE_CHECKING:
    from windi.models.subscription import Subscription


# ==================== ENUMS (stored as VARCHAR) ====================

class SaleStatus(str, Enum):
    """Commission sale status."""
    PENDING = "PENDING"       # Created from a paid subscription, awaiting review
    APPROVED = "APPROVED"     # Credited to the affiliate, awaiting payout
    REJECTED = "REJECTED"     # Dismissed during review, never credited
    PAID = "PAID"             # Settled by a payout
    REVERSED = "REVERSED"     # Credit withdrawn (refund / chargeback / manual)


REVERSIBLE_SALE_STATUSES = (SaleStatus.APPROVED, SaleStatus.PAID)


# ==================== MODELS ====================

class Affiliate(Base):
    """Referral partner with running commission totals."""
    __tablename__ = "affiliates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    ref_code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
        comment="Shareable referral code, e.g. JUANPE3F9A1C"
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    commission_rate: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0.25"),
        nullable=False,
        comment="Fraction of the subscription amount, e.g. 0.25"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Running totals
    points_confirmed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_debt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_commission_earned: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0.00"), nullable=False
    )
    total_commission_paid: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0.00"), nullable=False
    )
    negative_balance: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False,
        comment="Commission to recover from future payouts"
    )

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

    sales: Mapped[List["AffiliateSale"]] = relationship(
        "AffiliateSale",
        back_populates="affiliate",
        order_by="AffiliateSale.id"
    )
    payouts: Mapped[List["AffiliatePayout"]] = relationship(
        "AffiliatePayout",
        back_populates="affiliate",
        order_by="AffiliatePayout.id"
    )

    def __repr__(self) -> str:
        return f"<Affiliate(id={self.id}, ref_code='{self.ref_code}')>"


class AffiliateSale(Base):
    """
    Commission event tied 1:1 to a paid subscription.

    commission_amount = round(amount * commission_rate), points_earned =
    round(amount / 100), both half-up to whole units.
    """
    __tablename__ = "affiliate_sales"
    __table_args__ = (
        Index("ix_affiliate_sales_status", "status"),
        Index("ix_affiliate_sales_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    subscription_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    business_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False
    )
    plan_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("plans.id", ondelete="SET NULL"),
        nullable=True
    )

    # Commission calculation
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(RateType, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=SaleStatus.PENDING.value,
        nullable=False,
        comment="PENDING, APPROVED, REJECTED, PAID, REVERSED"
    )

    # Payout reference (when paid)
    payout_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("affiliate_payouts.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Review audit
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    review_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reversed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reverse_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    affiliate: Mapped["Affiliate"] = relationship("Affiliate", back_populates="sales")
    subscription: Mapped["Subscription"] = relationship("Subscription")
    payout: Mapped[Optional["AffiliatePayout"]] = relationship(
        "AffiliatePayout",
        back_populates="sales"
    )

    def __repr__(self) -> str:
        return f"<AffiliateSale(id={self.id}, subscription={self.subscription_id}, status='{self.status}')>"


class AffiliatePayout(Base):
    """Batch disbursement settling approved, unpaid sales for a period."""
    __tablename__ = "affiliate_payouts"
    __table_args__ = (
        Index("ix_affiliate_payouts_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    approved_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Sum of commission_amount over the settled sales"
    )
    debt_applied: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False,
        comment="negative_balance recovered by this payout"
    )
    amount_paid: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    method: Mapped[str] = mapped_column(String(50), default="transfer", nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    affiliate: Mapped["Affiliate"] = relationship("Affiliate", back_populates="payouts")
    sales: Mapped[List["AffiliateSale"]] = relationship("AffiliateSale", back_populates="payout")

    def __repr__(self) -> str:
        return f"<AffiliatePayout(id={self.id}, affiliate={self.affiliate_id}, amount_paid={self.amount_paid})>"
