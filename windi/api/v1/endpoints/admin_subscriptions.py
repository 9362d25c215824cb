"""Subscription Administration API Endpoints (listing and manual activation)"""

from typing import List

from fastapi import APIRouter, Query

from windi.api.deps import DB, AdminOnly
from windi.schemas.billing import CreatePaidSubscriptionRequest, SubscriptionListItem, SubscriptionResponse
from windi.services.subscription_service import SubscriptionService


router = APIRouter(prefix="/admin/subscriptions", tags=["Admin - Subscriptions"], dependencies=[AdminOnly])


@router.get("", response_model=List[SubscriptionListItem])
async def list_subscriptions(db: DB, limit: int = Query(100, ge=1, le=500)):
    """Most recent subscriptions with business and plan names."""
    rows = await SubscriptionService(db).list_subscriptions(limit=limit)
    return [
        SubscriptionListItem(
            **SubscriptionResponse.model_validate(subscription).model_dump(),
            business_name=business_name,
            plan_name=plan_name,
        )
        for subscription, business_name, plan_name in rows
    ]


@router.post("/create-paid", response_model=SubscriptionResponse)
async def create_paid_subscription(data: CreatePaidSubscriptionRequest, db: DB):
    """Record a subscription paid outside the gateway and activate the business."""
    subscription = await SubscriptionService(db).create_paid_subscription(
        business_id=data.business_id,
        plan_id=data.plan_id,
        amount=data.amount,
    )
    return SubscriptionResponse.model_validate(subscription)


@router.post("/{subscription_id}/mark-paid", response_model=SubscriptionResponse)
async def mark_subscription_paid(subscription_id: int, db: DB):
    subscription = await SubscriptionService(db).mark_subscription_paid(subscription_id)
    return SubscriptionResponse.model_validate(subscription)
