# Services module
from windi.services.mercadopago_service import MercadoPagoService
from windi.services.mirror_service import MirrorOutboxService, HttpMirrorPusher
from windi.services.plan_service import PlanService
from windi.services.affiliate_service import AffiliateService
from windi.services.payout_service import PayoutService
from windi.services.subscription_service import SubscriptionService
from windi.services.quota_service import QuotaService
from windi.services.webhook_service import WebhookService

__all__ = [
    "MercadoPagoService",
    "MirrorOutboxService",
    "HttpMirrorPusher",
    "PlanService",
    "AffiliateService",
    "PayoutService",
    "SubscriptionService",
    "QuotaService",
    "WebhookService",
]
