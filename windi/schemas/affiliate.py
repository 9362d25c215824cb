"""
Pydantic schemas for the affiliate commission ledger.

This module defines request/response schemas for:
- Affiliate registration and balances
- Sale review
- Payouts
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field

from windi.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============================================================================
# Affiliate Schemas
# ============================================================================

class AffiliateCreate(BaseCreateSchema):
    user_id: int
    display_name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    # Prefix for the generated ref code, e.g. the affiliate's name
    seed_text: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(None, gt=0, le=1)


class AffiliateResponse(BaseResponseSchema):
    id: int
    user_id: int
    ref_code: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    commission_rate: Decimal
    is_active: bool
    points_confirmed: int
    points_debt: int
    total_commission_earned: Decimal
    total_commission_paid: Decimal
    negative_balance: Decimal
    created_at: datetime


class AffiliateListItem(AffiliateResponse):
    referrals_count: int = 0


class AffiliateSummaryResponse(BaseResponseSchema):
    affiliate_id: int
    ref_code: str
    is_active: bool
    points_confirmed: int
    points_debt: int
    total_commission_earned: Decimal
    total_commission_paid: Decimal
    negative_balance: Decimal
    approved_unpaid: Decimal
    pending_for_payout: Decimal
    sales_by_status: Dict[str, int]


class AttributeBusinessRequest(BaseCreateSchema):
    business_id: int
    ref_code: str


# ============================================================================
# Sale Schemas
# ============================================================================

class SaleReviewRequest(BaseCreateSchema):
    """Free-text note for approve / reject / reverse"""
    note: Optional[str] = None
    review_note: Optional[str] = None
    reverse_note: Optional[str] = None

    @property
    def text(self) -> Optional[str]:
        for value in (self.note, self.reverse_note, self.review_note):
            if value and value.strip():
                return value.strip()
        return None


class AffiliateSaleResponse(BaseResponseSchema):
    id: int
    affiliate_id: int
    subscription_id: int
    business_id: int
    plan_id: Optional[int] = None
    amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    points_earned: int
    status: str
    payout_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_note: Optional[str] = None
    reversed_at: Optional[datetime] = None
    reverse_note: Optional[str] = None
    created_at: datetime


# ============================================================================
# Payout Schemas
# ============================================================================

class PayoutGenerateRequest(BaseCreateSchema):
    affiliate_id: int
    period_start: date
    period_end: date
    method: str = Field("transfer", max_length=50)
    note: Optional[str] = None


class PayoutResponse(BaseResponseSchema):
    id: int
    affiliate_id: int
    period_start: date
    period_end: date
    approved_amount: Decimal
    debt_applied: Decimal
    amount_paid: Decimal
    method: str
    note: Optional[str] = None
    created_at: datetime


class PayoutCandidateResponse(BaseResponseSchema):
    affiliate_id: int
    ref_code: str
    display_name: Optional[str] = None
    period_start: date
    period_end: date
    approved: Decimal
    debt: Decimal
    payable: Decimal
