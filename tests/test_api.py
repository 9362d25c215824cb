"""HTTP surface, driven through httpx against the ASGI app."""
from datetime import datetime, timezone

import httpx
import pytest

from windi.api.deps import get_gateway
from windi.config import settings
from windi.core.exceptions import GatewayTimeout
from windi.database import get_db
from windi.main import app
from windi.services.affiliate_service import AffiliateService

ADMIN_KEY = "test-admin-key"
ADMIN = {"X-Admin-Key": ADMIN_KEY, "X-Reviewer-Id": "ops@windi.test"}


@pytest.fixture
async def client(session_factory, gateway, monkeypatch):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# ==================== Checkout / status / gate ====================

async def test_checkout_flow(client, plans, make_business):
    business = await make_business()

    response = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "BASIC"})
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["checkout_url"] == "https://mp.test/checkout/pref-1"
    subscription_id = body["subscription_id"]

    again = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "BASIC"})
    assert again.json()["subscription_id"] == subscription_id
    assert again.json()["reused"] is True

    status = await client.get(f"/api/v1/businesses/{business.id}/subscription/status")
    assert status.json()["status"] == "PENDING_PAYMENT"
    assert status.json()["active"] is False
    assert status.json()["subscription"]["amount"] == "12999.00"

    gate = await client.get(f"/api/v1/businesses/{business.id}/gate")
    assert gate.json() == {
        "ok": True,
        "allowed": False,
        "kind": "must_pay",
        "reason": "pending_payment",
        "redirect_to": "/onboarding/checkout",
        "subscription_id": subscription_id,
    }


async def test_checkout_invalid_plan_is_400(client, plans, make_business):
    business = await make_business()
    response = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "GOLD"})
    assert response.status_code == 400
    assert response.json()["ok"] is False


async def test_checkout_without_gateway_is_503(client, plans, make_business, gateway):
    gateway.is_configured = False
    business = await make_business()
    response = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "BASIC"})
    assert response.status_code == 503


async def test_checkout_gateway_timeout_is_504(client, plans, make_business, gateway):
    gateway.preference_error = GatewayTimeout("slow")
    business = await make_business()
    response = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "BASIC"})
    assert response.status_code == 504


async def test_checkout_unexpected_error_is_500(client, plans, make_business, gateway):
    gateway.preference_error = RuntimeError("socket exploded")
    business = await make_business()
    response = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "BASIC"})
    assert response.status_code == 500
    assert response.json() == {"ok": False, "message": "Could not start checkout"}


async def test_unknown_business_is_404(client):
    response = await client.get("/api/v1/businesses/999/gate")
    assert response.status_code == 404


async def test_quota_endpoint(client, plans, make_business, add_products):
    business = await make_business()
    await add_products(business.id, 2)
    response = await client.get(f"/api/v1/businesses/{business.id}/quota")
    assert response.json() == {"ok": True, "allowed": True, "limit": None, "used": 2}


# ==================== Webhooks ====================

async def test_webhook_activates_and_acknowledges(client, plans, make_business, gateway):
    business = await make_business()
    checkout = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "BASIC"})
    subscription_id = checkout.json()["subscription_id"]
    gateway.add_payment("P-1", "approved", subscription_id=subscription_id)

    response = await client.post("/webhooks/mercadopago", params={"data.id": "P-1"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    replay = await client.post("/api/webhooks/mercadopago", json={"data": {"id": "P-1"}})
    assert replay.json() == {"ok": True, "duplicate": True}

    status = await client.get(f"/api/v1/businesses/{business.id}/subscription/status")
    assert status.json()["status"] == "ACTIVE"
    assert status.json()["active"] is True


async def test_webhook_failure_still_answers_200(client, gateway):
    gateway.payment_error = GatewayTimeout("slow")
    response = await client.post("/webhooks/mercadopago", params={"id": "P-9"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}


async def test_webhook_without_id_is_ignored(client):
    response = await client.post(
        "/webhooks/mercadopago",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True, "ignored": True}


# ==================== Admin ====================

async def test_admin_requires_key(client):
    assert (await client.get("/api/v1/admin/affiliate-sales")).status_code == 401
    wrong = await client.get("/api/v1/admin/affiliate-sales", headers={"X-Admin-Key": "nope"})
    assert wrong.status_code == 401


async def test_admin_disabled_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
    response = await client.get("/api/v1/admin/plans", headers=ADMIN)
    assert response.status_code == 503


async def test_admin_affiliate_lifecycle(client, db, plans, make_business):
    created = await client.post(
        "/api/v1/admin/affiliates",
        headers=ADMIN,
        json={"user_id": 55, "display_name": "Juan Perez", "email": "juan@afiliados.test"},
    )
    assert created.status_code == 200
    affiliate = created.json()
    assert affiliate["ref_code"].startswith("JUANPE")

    business = await make_business()
    attributed = await client.post(
        "/api/v1/admin/affiliates/attribute",
        headers=ADMIN,
        json={"business_id": business.id, "ref_code": affiliate["ref_code"]},
    )
    assert attributed.json() == {"ok": True, "attributed": True, "affiliate_id": affiliate["id"]}

    paid = await client.post(
        "/api/v1/admin/subscriptions/create-paid",
        headers=ADMIN,
        json={"business_id": business.id, "plan_id": plans["BASIC"].id},
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "ACTIVE"

    sales = (await client.get("/api/v1/admin/affiliate-sales", headers=ADMIN, params={"status": "PENDING"})).json()
    assert len(sales) == 1
    assert sales[0]["commission_amount"] == "3250.00"
    sale_id = sales[0]["id"]

    approved = await client.post(
        f"/api/v1/admin/affiliate-sales/{sale_id}/approve",
        headers=ADMIN,
        json={"note": "verificado"},
    )
    assert approved.json()["status"] == "APPROVED"
    assert approved.json()["reviewed_by"] == "ops@windi.test"
    assert approved.json()["review_note"] == "verificado"

    again = await client.post(f"/api/v1/admin/affiliate-sales/{sale_id}/reject", headers=ADMIN)
    assert again.status_code == 409

    today = datetime.now(timezone.utc).date().isoformat()
    candidates = await client.get(
        "/api/v1/admin/affiliate-payouts/candidates",
        headers=ADMIN,
        params={"period_start": today, "period_end": today},
    )
    assert candidates.json()[0]["payable"] == "3250.00"

    payout = await client.post(
        "/api/v1/admin/affiliate-payouts/generate",
        headers=ADMIN,
        json={"affiliate_id": affiliate["id"], "period_start": today, "period_end": today},
    )
    assert payout.status_code == 200
    assert payout.json()["amount_paid"] == "3250.00"

    empty = await client.post(
        "/api/v1/admin/affiliate-payouts/generate",
        headers=ADMIN,
        json={"affiliate_id": affiliate["id"], "period_start": today, "period_end": today},
    )
    assert empty.status_code == 409

    reversed_sale = await client.post(
        f"/api/v1/admin/affiliate-sales/{sale_id}/reverse",
        headers=ADMIN,
        json={"reverse_note": "contracargo"},
    )
    assert reversed_sale.json()["status"] == "REVERSED"

    summary = (await client.get(f"/api/v1/admin/affiliates/{affiliate['id']}/summary", headers=ADMIN)).json()
    assert summary["negative_balance"] == "3250.00"
    assert summary["total_commission_paid"] == "3250.00"
    assert summary["sales_by_status"]["REVERSED"] == 1

    payouts = (await client.get("/api/v1/admin/affiliate-payouts", headers=ADMIN)).json()
    assert len(payouts) == 1

    toggled = await client.post(f"/api/v1/admin/affiliates/{affiliate['id']}/toggle-active", headers=ADMIN)
    assert toggled.json()["is_active"] is False


async def test_admin_plan_management(client, plans):
    listed = await client.get("/api/v1/admin/plans", headers=ADMIN)
    assert [p["code"] for p in listed.json()] == ["BASIC", "PREMIUM", "ELITE"]

    created = await client.post(
        "/api/v1/admin/plans",
        headers=ADMIN,
        json={"code": "pro", "display_name": "Pro", "price": "25999", "max_products": ""},
    )
    assert created.status_code == 200
    assert created.json()["code"] == "PRO"
    assert created.json()["max_products"] is None

    invalid = await client.post(
        "/api/v1/admin/plans",
        headers=ADMIN,
        json={"code": "free", "display_name": "Free", "price": "0"},
    )
    assert invalid.status_code == 400

    plan_id = created.json()["id"]
    updated = await client.post(
        f"/api/v1/admin/plans/{plan_id}/update",
        headers=ADMIN,
        json={"code": "PRO", "display_name": "Pro Plus", "price": "27999", "max_products": 200},
    )
    assert updated.json()["display_name"] == "Pro Plus"
    assert updated.json()["price"] == "27999.00"

    toggled = await client.post(f"/api/v1/admin/plans/{plan_id}/toggle-active", headers=ADMIN)
    assert toggled.json()["is_active"] is False


async def test_admin_mark_paid(client, plans, make_business):
    business = await make_business()
    checkout = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_id": plans["ELITE"].id})
    subscription_id = checkout.json()["subscription_id"]

    response = await client.post(f"/api/v1/admin/subscriptions/{subscription_id}/mark-paid", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "ACTIVE"

    gate = await client.get(f"/api/v1/businesses/{business.id}/gate")
    assert gate.json()["kind"] == "active_subscription"
    assert gate.json()["allowed"] is True


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
    assert response.json()["jobs"] == []


async def test_admin_sales_listing_is_newest_first(client, db, plans, referred_business, make_business):
    business, affiliate = referred_business
    other = await make_business("Otro", owner_email="otro@bar.test")
    await AffiliateService(db).attribute_business(other.id, affiliate.ref_code)
    for target in (business, other):
        await client.post(
            "/api/v1/admin/subscriptions/create-paid",
            headers=ADMIN,
            json={"business_id": target.id, "plan_id": plans["BASIC"].id},
        )

    sales = (await client.get("/api/v1/admin/affiliate-sales", headers=ADMIN)).json()
    assert [s["business_id"] for s in sales] == [other.id, business.id]


async def test_plan_change_endpoint(client, plans, make_business, gateway):
    business = await make_business()
    await client.post(
        "/api/v1/admin/subscriptions/create-paid",
        headers=ADMIN,
        json={"business_id": business.id, "plan_id": plans["BASIC"].id},
    )

    blocked = await client.post(f"/api/v1/businesses/{business.id}/checkout", json={"plan_code": "PREMIUM"})
    assert blocked.json()["already_active"] is True

    response = await client.post(f"/api/v1/businesses/{business.id}/plan-change", json={"plan_code": "PREMIUM"})
    assert response.status_code == 200
    assert response.json()["checkout_url"] == "https://mp.test/checkout/pref-1"
    assert response.json()["already_active"] is False

    gate = await client.get(f"/api/v1/businesses/{business.id}/gate")
    assert gate.json()["allowed"] is True


async def test_admin_affiliate_listing_counts_referrals(client, db, make_business, make_affiliate):
    busy = await make_affiliate()
    idle = await make_affiliate("Zoe", email="zoe@afiliados.test")
    for name in ("Uno", "Dos"):
        business = await make_business(name, owner_email=f"{name.lower()}@bar.test")
        await AffiliateService(db).attribute_business(business.id, busy.ref_code)

    response = await client.get("/api/v1/admin/affiliates", headers=ADMIN)

    assert response.status_code == 200
    listed = response.json()
    assert [a["id"] for a in listed] == [idle.id, busy.id]
    assert {a["id"]: a["referrals_count"] for a in listed} == {busy.id: 2, idle.id: 0}


async def test_admin_subscription_listing(client, plans, make_business):
    uno = await make_business("Uno", owner_email="uno@bar.test")
    dos = await make_business("Dos", owner_email="dos@bar.test")
    for business, code in ((uno, "BASIC"), (dos, "ELITE")):
        await client.post(
            "/api/v1/admin/subscriptions/create-paid",
            headers=ADMIN,
            json={"business_id": business.id, "plan_id": plans[code].id},
        )

    listed = (await client.get("/api/v1/admin/subscriptions", headers=ADMIN)).json()
    assert [(s["business_name"], s["plan_name"]) for s in listed] == [("Dos", "Elite"), ("Uno", "Basico")]
    assert listed[0]["status"] == "ACTIVE"

    limited = (await client.get("/api/v1/admin/subscriptions", headers=ADMIN, params={"limit": 1})).json()
    assert len(limited) == 1
