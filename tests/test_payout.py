from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from windi.core.exceptions import NoEligibleSales, NotFound, ValidationError
from windi.models.affiliate import Affiliate, AffiliateSale, SaleStatus
from windi.services.affiliate_service import AffiliateService
from windi.services.payout_service import PayoutService, default_period
from windi.services.subscription_service import SubscriptionService


@pytest.fixture
async def approved_batch(db, plans, make_business, make_affiliate):
    """One affiliate with two approved sales: 3250 (BASIC) + 4250 (PREMIUM)."""
    affiliate = await make_affiliate()
    affiliates = AffiliateService(db)
    sales = []
    for name, code in (("Bar Uno", "BASIC"), ("Bar Dos", "PREMIUM")):
        business = await make_business(name, owner_email=f"{name.replace(' ', '').lower()}@bar.test")
        await affiliates.attribute_business(business.id, affiliate.ref_code)
        subscription = await SubscriptionService(db).create_paid_subscription(business.id, plans[code].id)
        sale = await affiliates.create_pending_sale(subscription.id)
        sales.append(await affiliates.approve_sale(sale.id))
    return affiliate, sales


def _today() -> date:
    return datetime.now(timezone.utc).date()


async def _set_debt(db, affiliate_id: int, amount: str) -> None:
    row = await db.get(Affiliate, affiliate_id)
    row.negative_balance = Decimal(amount)
    await db.commit()


def test_default_period_is_previous_monday_to_sunday():
    # Wednesday 2026-10-14
    start, end = default_period(date(2026, 10, 14))
    assert start == date(2026, 10, 5)
    assert end == date(2026, 10, 11)
    assert start.weekday() == 0 and end.weekday() == 6

    # Monday itself still points at the week before
    assert default_period(date(2026, 10, 12)) == (date(2026, 10, 5), date(2026, 10, 11))


async def test_payout_settles_approved_sales(db, approved_batch):
    affiliate, sales = approved_batch
    today = _today()

    payout = await PayoutService(db).generate_payout(affiliate.id, today, today, note="semana 41")
    await db.refresh(affiliate)

    assert payout.approved_amount == Decimal("7500.00")
    assert payout.debt_applied == Decimal("0.00")
    assert payout.amount_paid == Decimal("7500.00")
    assert payout.method == "transfer"
    assert affiliate.total_commission_paid == Decimal("7500.00")
    for sale in sales:
        await db.refresh(sale)
        assert sale.status == SaleStatus.PAID.value
        assert sale.payout_id == payout.id
        assert sale.paid_at is not None


async def test_payout_nets_outstanding_debt(db, approved_batch):
    affiliate, _ = approved_batch
    await _set_debt(db, affiliate.id, "2000.00")
    today = _today()

    payout = await PayoutService(db).generate_payout(affiliate.id, today, today)
    await db.refresh(affiliate)

    assert payout.amount_paid == Decimal("5500.00")
    assert payout.debt_applied == Decimal("2000.00")
    assert affiliate.negative_balance == Decimal("0.00")
    assert affiliate.total_commission_paid == Decimal("5500.00")


async def test_debt_larger_than_batch_pays_nothing(db, approved_batch):
    affiliate, sales = approved_batch
    await _set_debt(db, affiliate.id, "9000.00")
    today = _today()

    payout = await PayoutService(db).generate_payout(affiliate.id, today, today)
    await db.refresh(affiliate)

    assert payout.amount_paid == Decimal("0.00")
    assert payout.debt_applied == Decimal("7500.00")
    assert affiliate.negative_balance == Decimal("1500.00")
    for sale in sales:
        await db.refresh(sale)
        assert sale.status == SaleStatus.PAID.value


async def test_period_without_sales_raises(db, approved_batch):
    affiliate, _ = approved_batch
    last_year = _today() - timedelta(days=365)
    with pytest.raises(NoEligibleSales):
        await PayoutService(db).generate_payout(affiliate.id, last_year, last_year)


async def test_sales_are_settled_only_once(db, approved_batch):
    affiliate, _ = approved_batch
    today = _today()
    service = PayoutService(db)
    await service.generate_payout(affiliate.id, today, today)
    with pytest.raises(NoEligibleSales):
        await service.generate_payout(affiliate.id, today, today)


async def test_period_end_day_is_inclusive(db, approved_batch):
    affiliate, sales = approved_batch
    # move one sale to the last minute of yesterday
    yesterday = _today() - timedelta(days=1)
    sale = await db.get(AffiliateSale, sales[0].id)
    sale.created_at = datetime.combine(yesterday, datetime.max.time()).replace(
        microsecond=0, tzinfo=timezone.utc
    )
    await db.commit()

    payout = await PayoutService(db).generate_payout(affiliate.id, yesterday, yesterday)
    assert payout.approved_amount == Decimal("3250.00")


async def test_payout_argument_errors(db, approved_batch):
    affiliate, _ = approved_batch
    today = _today()
    service = PayoutService(db)
    with pytest.raises(NotFound):
        await service.generate_payout(9999, today, today)
    with pytest.raises(ValidationError):
        await service.generate_payout(affiliate.id, today, today - timedelta(days=1))


async def test_candidates_report_payable_amounts(db, approved_batch, make_affiliate):
    affiliate, _ = approved_batch
    idle = await make_affiliate("Zoe", email="zoe@afiliados.test")
    await _set_debt(db, affiliate.id, "500.00")
    today = _today()

    candidates = {c["affiliate_id"]: c for c in await PayoutService(db).payout_candidates(today, today)}

    assert candidates[affiliate.id]["approved"] == Decimal("7500.00")
    assert candidates[affiliate.id]["debt"] == Decimal("500.00")
    assert candidates[affiliate.id]["payable"] == Decimal("7000.00")
    assert candidates[idle.id]["approved"] == Decimal("0.00")
    assert candidates[idle.id]["payable"] == Decimal("0.00")


async def test_list_payouts(db, approved_batch):
    affiliate, _ = approved_batch
    today = _today()
    payout = await PayoutService(db).generate_payout(affiliate.id, today, today, method="mercadopago")

    listed = await PayoutService(db).list_payouts(affiliate_id=affiliate.id)
    assert [p.id for p in listed] == [payout.id]
    assert listed[0].method == "mercadopago"
