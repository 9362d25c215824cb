from windi.models.plan import Plan
from windi.models.business import Business, Product, OnboardingStep
from windi.models.subscription import (
    Subscription,
    Payment,
    SubscriptionStatus,
    PaymentStatus,
    SUBSCRIPTION_STATUS_ALIASES,
    PAYMENT_STATUS_ALIASES,
    ACTIVE_STATUS_VALUES,
    PENDING_STATUS_VALUES,
)
from windi.models.affiliate import (
    Affiliate,
    AffiliateSale,
    AffiliatePayout,
    SaleStatus,
    REVERSIBLE_SALE_STATUSES,
)
from windi.models.mirror import MirrorOutbox

__all__ = [
    "Plan",
    "Business",
    "Product",
    "OnboardingStep",
    "Subscription",
    "Payment",
    "SubscriptionStatus",
    "PaymentStatus",
    "SUBSCRIPTION_STATUS_ALIASES",
    "PAYMENT_STATUS_ALIASES",
    "ACTIVE_STATUS_VALUES",
    "PENDING_STATUS_VALUES",
    "Affiliate",
    "AffiliateSale",
    "AffiliatePayout",
    "SaleStatus",
    "REVERSIBLE_SALE_STATUSES",
    "MirrorOutbox",
]
