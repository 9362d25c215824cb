"""
Pydantic schemas for plans, subscriptions, checkout and quota.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import Field

from windi.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============================================================================
# Plan Schemas
# ============================================================================

class PlanCreate(BaseCreateSchema):
    """Administrative plan create/update body"""
    code: str = Field(..., max_length=30)
    display_name: str = Field(..., max_length=100)
    price: Union[Decimal, str] = Field(..., description="Price in ARS (> 0)")
    # Blank or omitted = unlimited
    max_products: Optional[Union[int, str]] = None


class PlanResponse(BaseResponseSchema):
    id: int
    code: str
    display_name: str
    price: Decimal
    currency: str
    max_products: Optional[int] = None
    is_active: bool


# ============================================================================
# Subscription Schemas
# ============================================================================

class SubscriptionResponse(BaseResponseSchema):
    id: int
    business_id: int
    plan_id: int
    amount: Decimal
    status: str
    last_provider_status: Optional[str] = None
    payment_provider: str
    provider_preference_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    external_reference: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class SubscriptionListItem(SubscriptionResponse):
    business_name: str
    plan_name: str


class SubscriptionStatusResponse(BaseResponseSchema):
    ok: bool = True
    status: str
    active: bool
    subscription: Optional[SubscriptionResponse] = None


class CreatePaidSubscriptionRequest(BaseCreateSchema):
    business_id: int
    plan_id: int
    amount: Optional[Decimal] = Field(None, ge=0, description="Defaults to the plan price")


# ============================================================================
# Checkout / Gate / Quota
# ============================================================================

class CheckoutRequest(BaseCreateSchema):
    """Plan by code (or display name) or by id"""
    plan_code: Optional[str] = None
    plan_id: Optional[int] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None


class CheckoutResponse(BaseResponseSchema):
    ok: bool = True
    checkout_url: Optional[str] = None
    subscription_id: Optional[int] = None
    reused: bool = False
    already_active: bool = False
    redirect_to: Optional[str] = None


class GateResponse(BaseResponseSchema):
    ok: bool = True
    allowed: bool
    kind: str
    reason: Optional[str] = None
    redirect_to: Optional[str] = None
    subscription_id: Optional[int] = None


class QuotaResponse(BaseResponseSchema):
    ok: bool = True
    allowed: bool
    limit: Optional[int] = None
    used: int
