"""Merchant tenant and the catalog entries counted by the quota gate."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from windi.database import Base
from windi.db_types import MoneyType

if TYPE_CHECKING:
    from windi.models.plan import Plan
    from windi.models.affiliate import Affiliate


class OnboardingStep(str, Enum):
    """Where a business sits in the signup funnel."""
    PLAN = "plan"            # Must choose a plan
    CHECKOUT = "checkout"    # Pending payment
    DONE = "done"            # Paid / onboarded


class Business(Base):
    """
    A merchant tenant.

    Owns its subscriptions and optionally points at the affiliate that
    referred it (weak reference, SET NULL on delete).
    """
    __tablename__ = "businesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Onboarding
    has_completed_onboarding: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    onboarding_step: Mapped[str] = mapped_column(
        String(30),
        default=OnboardingStep.PLAN.value,
        nullable=False,
        comment="plan, checkout, done"
    )
    plan_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("plans.id", ondelete="SET NULL"),
        nullable=True
    )

    # Referral
    affiliate_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    referred_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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

    plan: Mapped[Optional["Plan"]] = relationship("Plan")
    affiliate: Mapped[Optional["Affiliate"]] = relationship("Affiliate")
    products: Mapped[List["Product"]] = relationship(
        "Product",
        back_populates="business",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, name='{self.name}')>"


class Product(Base):
    """Catalog entry. Only its existence matters to the billing core."""
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0.00"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    business: Mapped["Business"] = relationship("Business", back_populates="products")
