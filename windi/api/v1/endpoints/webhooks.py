"""
Payment Gateway Webhook Endpoints

Always answer 200 so the gateway does not redeliver indefinitely; the
reconciliation outcome is logged by the service.
"""

import logging

from fastapi import APIRouter, Request

from windi.api.deps import DB, Gateway
from windi.services.webhook_service import WebhookService, extract_payment_id


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


@router.post("/webhooks/mercadopago")
@router.post("/api/webhooks/mercadopago")
async def mercadopago_webhook(request: Request, db: DB, gateway: Gateway):
    """Mercado Pago payment notification."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    payment_id = extract_payment_id(request.query_params, body)
    result = await WebhookService(db, gateway=gateway).handle_webhook(payment_id)
    logger.info(f"Mercado Pago webhook {payment_id}: {result.outcome.value}")
    return result.as_ack()
