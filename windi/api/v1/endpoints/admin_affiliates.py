"""
Affiliate Administration API Endpoints

Sale review, payout generation and affiliate management. All routes
require the X-Admin-Key header; X-Reviewer-Id is recorded on reviews.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter

from windi.api.deps import DB, AdminOnly, ReviewerId
from windi.models.affiliate import SaleStatus
from windi.schemas.affiliate import (
    AffiliateCreate,
    AffiliateListItem,
    AffiliateResponse,
    AffiliateSaleResponse,
    AffiliateSummaryResponse,
    AttributeBusinessRequest,
    PayoutCandidateResponse,
    PayoutGenerateRequest,
    PayoutResponse,
    SaleReviewRequest,
)
from windi.services.affiliate_service import AffiliateService
from windi.services.payout_service import PayoutService


router = APIRouter(prefix="/admin", tags=["Admin - Affiliates"], dependencies=[AdminOnly])


# ==================== Sales ====================

@router.get("/affiliate-sales", response_model=List[AffiliateSaleResponse])
async def list_affiliate_sales(
    db: DB,
    status: Optional[SaleStatus] = None,
    affiliate_id: Optional[int] = None,
):
    """List sales, newest first. Omit status for all."""
    sales = await AffiliateService(db).list_sales(status=status, affiliate_id=affiliate_id)
    return [AffiliateSaleResponse.model_validate(s) for s in sales]


@router.post("/affiliate-sales/{sale_id}/approve", response_model=AffiliateSaleResponse)
async def approve_affiliate_sale(
    sale_id: int,
    db: DB,
    reviewer_id: ReviewerId,
    data: Optional[SaleReviewRequest] = None,
):
    sale = await AffiliateService(db).approve_sale(sale_id, reviewer_id, data.text if data else None)
    return AffiliateSaleResponse.model_validate(sale)


@router.post("/affiliate-sales/{sale_id}/reject", response_model=AffiliateSaleResponse)
async def reject_affiliate_sale(
    sale_id: int,
    db: DB,
    reviewer_id: ReviewerId,
    data: Optional[SaleReviewRequest] = None,
):
    sale = await AffiliateService(db).reject_sale(sale_id, reviewer_id, data.text if data else None)
    return AffiliateSaleResponse.model_validate(sale)


@router.post("/affiliate-sales/{sale_id}/reverse", response_model=AffiliateSaleResponse)
async def reverse_affiliate_sale(
    sale_id: int,
    db: DB,
    reviewer_id: ReviewerId,
    data: Optional[SaleReviewRequest] = None,
):
    sale = await AffiliateService(db).reverse_sale(sale_id, reviewer_id, data.text if data else None)
    return AffiliateSaleResponse.model_validate(sale)


# ==================== Payouts ====================

@router.get("/affiliate-payouts/candidates", response_model=List[PayoutCandidateResponse])
async def list_payout_candidates(
    db: DB,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
):
    """Payable amount per active affiliate. Defaults to last Monday-Sunday."""
    candidates = await PayoutService(db).payout_candidates(period_start, period_end)
    return [PayoutCandidateResponse(**c) for c in candidates]


@router.get("/affiliate-payouts", response_model=List[PayoutResponse])
async def list_payouts(db: DB, affiliate_id: Optional[int] = None):
    payouts = await PayoutService(db).list_payouts(affiliate_id=affiliate_id)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.post("/affiliate-payouts/generate", response_model=PayoutResponse)
async def generate_payout(data: PayoutGenerateRequest, db: DB):
    payout = await PayoutService(db).generate_payout(
        affiliate_id=data.affiliate_id,
        period_start=data.period_start,
        period_end=data.period_end,
        method=data.method,
        note=data.note,
    )
    return PayoutResponse.model_validate(payout)


# ==================== Affiliates ====================

@router.get("/affiliates", response_model=List[AffiliateListItem])
async def list_affiliates(db: DB):
    """Every affiliate, newest first, with its referred-business count."""
    rows = await AffiliateService(db).list_affiliates()
    return [
        AffiliateListItem(**AffiliateResponse.model_validate(a).model_dump(), referrals_count=count)
        for a, count in rows
    ]


@router.post("/affiliates", response_model=AffiliateResponse)
async def register_affiliate(data: AffiliateCreate, db: DB):
    affiliate = await AffiliateService(db).register_affiliate(
        user_id=data.user_id,
        seed_text=data.seed_text or "",
        commission_rate=data.commission_rate,
        display_name=data.display_name,
        email=data.email,
    )
    return AffiliateResponse.model_validate(affiliate)


@router.post("/affiliates/attribute")
async def attribute_business(data: AttributeBusinessRequest, db: DB):
    """Link a business to the affiliate owning ref_code (first attribution wins)."""
    affiliate = await AffiliateService(db).attribute_business(data.business_id, data.ref_code)
    return {"ok": True, "attributed": affiliate is not None, "affiliate_id": affiliate.id if affiliate else None}


@router.post("/affiliates/{affiliate_id}/toggle-active", response_model=AffiliateResponse)
async def toggle_affiliate(affiliate_id: int, db: DB):
    affiliate = await AffiliateService(db).toggle_active(affiliate_id)
    return AffiliateResponse.model_validate(affiliate)


@router.get("/affiliates/{affiliate_id}/summary", response_model=AffiliateSummaryResponse)
async def affiliate_summary(affiliate_id: int, db: DB):
    summary = await AffiliateService(db).affiliate_summary(affiliate_id)
    return AffiliateSummaryResponse(**summary)
