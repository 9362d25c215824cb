"""
Mercado Pago Integration Service.

Handles the two gateway calls the billing core needs:
- Checkout preference creation (hosted payment page)
- Payment lookup for webhook reconciliation

Every call is bounded by its own deadline. Failures are mapped onto the
GatewayError family so callers never see raw httpx exceptions.

API Docs: https://www.mercadopago.com.ar/developers/en/reference
"""
import asyncio
import httpx
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Dict, Any

from windi.config import settings
from windi.core.exceptions import (
    GatewayUnavailable,
    GatewayTimeout,
    GatewayResponseError,
)
from windi.core.money import normalize_money

logger = logging.getLogger(__name__)


@dataclass
class GatewayPreference:
    """Checkout session returned by the gateway."""
    id: Optional[str]
    checkout_url: str


@dataclass
class GatewayPayment:
    """Payment details needed for reconciliation."""
    id: str
    status: str
    amount: Decimal
    external_reference: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    merchant_order_id: Optional[str] = None

    @property
    def metadata_subscription_id(self) -> Optional[int]:
        raw = self.metadata.get("subscription_id")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None


class MercadoPagoService:
    """
    Thin async client over the Mercado Pago REST API.

    Usage:
        service = MercadoPagoService()
        preference = await service.create_preference(payload)
        payment = await service.get_payment("123456789")
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        preference_timeout: Optional[float] = None,
        payment_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = (access_token if access_token is not None else settings.MP_ACCESS_TOKEN).strip()
        self.base_url = (base_url or settings.MP_API_BASE).rstrip("/")
        self.preference_timeout = preference_timeout or settings.MP_PREFERENCE_TIMEOUT_SECONDS
        self.payment_timeout = payment_timeout or settings.MP_PAYMENT_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    async def _request(
        self,
        method: str,
        endpoint: str,
        timeout: float,
        data: Optional[Dict] = None,
    ) -> Dict:
        """Make an authenticated request bounded by ``timeout`` seconds."""
        if not self.is_configured:
            raise GatewayUnavailable("Mercado Pago is not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async def _send() -> httpx.Response:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                return await client.request(method.upper(), url, headers=headers, json=data)

        try:
            response = await asyncio.wait_for(_send(), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error(f"Mercado Pago {method} {endpoint} timed out after {timeout}s")
            raise GatewayTimeout(f"Mercado Pago did not answer within {timeout:g}s")
        except httpx.HTTPError as e:
            logger.error(f"Mercado Pago {method} {endpoint} transport error: {e}")
            raise GatewayResponseError(f"Could not reach Mercado Pago: {e}")

        if response.status_code >= 400:
            logger.error(f"Mercado Pago API error: {response.status_code} - {response.text[:180]}")
            raise GatewayResponseError(
                f"Mercado Pago error ({response.status_code}): {response.text[:180]}",
                http_status=response.status_code,
            )

        try:
            return response.json() if response.text else {}
        except ValueError:
            raise GatewayResponseError("Mercado Pago returned a non-JSON body", http_status=response.status_code)

    # ==================== CHECKOUT ====================

    async def create_preference(self, payload: Dict) -> GatewayPreference:
        """
        Create a checkout preference.

        Returns:
            GatewayPreference with the hosted checkout URL (init_point, or
            sandbox_init_point for test credentials)
        """
        result = await self._request(
            "POST", "/checkout/preferences", timeout=self.preference_timeout, data=payload
        )
        checkout_url = result.get("init_point") or result.get("sandbox_init_point")
        if not checkout_url:
            raise GatewayResponseError("Mercado Pago did not return a checkout URL")

        preference_id = result.get("id")
        return GatewayPreference(
            id=str(preference_id) if preference_id is not None else None,
            checkout_url=checkout_url,
        )

    # ==================== PAYMENTS ====================

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        """Fetch a payment by id for webhook reconciliation."""
        result = await self._request(
            "GET", f"/v1/payments/{payment_id}", timeout=self.payment_timeout
        )
        order = result.get("order") or {}
        merchant_order_id = order.get("id") if isinstance(order, dict) else None

        return GatewayPayment(
            id=str(result.get("id") or payment_id),
            status=str(result.get("status") or "").strip().lower(),
            amount=normalize_money(result.get("transaction_amount")),
            external_reference=result.get("external_reference") or None,
            metadata=result.get("metadata") or {},
            merchant_order_id=str(merchant_order_id) if merchant_order_id is not None else None,
        )


def build_preference_payload(
    *,
    subscription_id: int,
    business_id: int,
    business_name: str,
    plan_id: int,
    plan_code: str,
    plan_name: str,
    amount: Decimal,
    currency: str,
    external_reference: str,
    payer_email: Optional[str] = None,
    payer_name: Optional[str] = None,
) -> Dict:
    """Build the checkout preference body for one subscription."""
    back_base = f"{settings.BASE_URL.rstrip('/')}{settings.CHECKOUT_RETURN_PATH}"
    payload: Dict[str, Any] = {
        "items": [
            {
                "title": f"Plan {plan_name} - {business_name}",
                "quantity": 1,
                "currency_id": currency,
                "unit_price": float(normalize_money(amount)),
            }
        ],
        "metadata": {
            "subscription_id": subscription_id,
            "business_id": business_id,
            "plan_id": plan_id,
            "plan_code": plan_code,
        },
        "external_reference": external_reference,
        "notification_url": settings.webhook_url,
        "back_urls": {
            "success": f"{back_base}?status=success&sub={subscription_id}",
            "pending": f"{back_base}?status=pending&sub={subscription_id}",
            "failure": f"{back_base}?status=failure&sub={subscription_id}",
        },
        "auto_return": "approved",
    }
    if payer_email or payer_name:
        payload["payer"] = {"email": payer_email, "name": payer_name}
    return payload
