from windi.core.enum_utils import normalize_status
from windi.models.affiliate import SaleStatus
from windi.models.subscription import (
    PAYMENT_STATUS_ALIASES,
    SUBSCRIPTION_STATUS_ALIASES,
    PaymentStatus,
    SubscriptionStatus,
)


def test_legacy_subscription_spellings_normalize():
    aliases = SUBSCRIPTION_STATUS_ALIASES
    assert normalize_status("PAID", SubscriptionStatus, aliases) == SubscriptionStatus.ACTIVE
    assert normalize_status(" active ", SubscriptionStatus, aliases) == SubscriptionStatus.ACTIVE
    assert normalize_status("pending", SubscriptionStatus, aliases) == SubscriptionStatus.PENDING_PAYMENT
    assert normalize_status("Cancelled", SubscriptionStatus, aliases) == SubscriptionStatus.CANCELED


def test_payment_statuses_are_lowercase_values():
    assert normalize_status("APPROVED", PaymentStatus, PAYMENT_STATUS_ALIASES) == PaymentStatus.PAID
    assert normalize_status("Paid", PaymentStatus) == PaymentStatus.PAID
    assert PaymentStatus.PAID.value == "paid"


def test_unknown_status_falls_back_to_default():
    assert normalize_status("bogus", SaleStatus) is None
    assert normalize_status("", SaleStatus, default=SaleStatus.PENDING) == SaleStatus.PENDING
    assert normalize_status(None, SaleStatus) is None
