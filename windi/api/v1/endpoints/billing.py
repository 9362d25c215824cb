"""
Merchant Billing API Endpoints

Checkout initiation, subscription status, feature gate and product quota
for one business.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from windi.api.deps import DB, Gateway
from windi.core.exceptions import LedgerError
from windi.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    GateResponse,
    QuotaResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from windi.services.quota_service import QuotaService
from windi.services.subscription_service import MustPay, SubscriptionService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses", tags=["Billing"])


async def _checkout(business_id: int, data: CheckoutRequest, db, gateway, plan_change: bool = False):
    service = SubscriptionService(db, gateway=gateway)
    try:
        result = await service.start_checkout(
            business_id,
            plan_code=data.plan_code,
            plan_id=data.plan_id,
            payer_email=data.payer_email,
            payer_name=data.payer_name,
            plan_change=plan_change,
        )
    except LedgerError:
        raise
    except Exception as e:
        logger.error(f"Checkout failed for business {business_id}: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"ok": False, "message": "Could not start checkout"})

    return CheckoutResponse(
        checkout_url=result.checkout_url,
        subscription_id=result.subscription_id,
        reused=result.reused,
        already_active=result.already_active,
        redirect_to="/app" if result.already_active else None,
    )


@router.post("/{business_id}/checkout", response_model=CheckoutResponse)
async def start_checkout(
    business_id: int,
    data: CheckoutRequest,
    db: DB,
    gateway: Gateway,
):
    """
    Start (or resume) checkout for a plan.

    Errors: 400 invalid plan, 503 gateway not configured, 504 gateway
    timeout, 502 gateway error, 500 anything else.
    """
    return await _checkout(business_id, data, db, gateway)


@router.post("/{business_id}/plan-change", response_model=CheckoutResponse)
async def start_plan_change(
    business_id: int,
    data: CheckoutRequest,
    db: DB,
    gateway: Gateway,
):
    """
    Checkout for another plan while the current subscription stays active.

    Same errors as checkout. Asking for the current plan answers
    already_active.
    """
    return await _checkout(business_id, data, db, gateway, plan_change=True)


@router.get("/{business_id}/subscription/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    business_id: int,
    db: DB,
    subscription_id: Optional[int] = None,
):
    """Normalized status of the current (or given) subscription."""
    status = await SubscriptionService(db).subscription_status(business_id, subscription_id)
    subscription = status["subscription"]
    return SubscriptionStatusResponse(
        status=status["status"],
        active=status["active"],
        subscription=SubscriptionResponse.model_validate(subscription) if subscription else None,
    )


@router.get("/{business_id}/gate", response_model=GateResponse)
async def get_gate(business_id: int, db: DB):
    """Whether the business may use paid features, and where to send it if not."""
    gate = await SubscriptionService(db).resolve_gate(business_id)
    subscription = getattr(gate, "subscription", None) or getattr(gate, "pending", None)
    return GateResponse(
        allowed=gate.allowed,
        kind=gate.kind,
        reason=gate.reason.value if isinstance(gate, MustPay) else None,
        redirect_to=gate.redirect_to,
        subscription_id=subscription.id if subscription else None,
    )


@router.get("/{business_id}/quota", response_model=QuotaResponse)
async def get_product_quota(business_id: int, db: DB):
    """Product ceiling check for the business's active plan."""
    decision = await QuotaService(db).can_create_product(business_id)
    return QuotaResponse(allowed=decision.allowed, limit=decision.limit, used=decision.used)
