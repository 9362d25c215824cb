"""
Shared fixtures: an in-memory SQLite ledger per test, a scripted payment
gateway and small factories for the rows most tests need.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MP_ACCESS_TOKEN", "")
os.environ.setdefault("MIRROR_PUSH_URL", "")

from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from windi.database import Base
from windi import models  # noqa: F401
from windi.core.exceptions import GatewayError
from windi.models.business import Business, Product
from windi.services.affiliate_service import AffiliateService
from windi.services.mercadopago_service import GatewayPayment, GatewayPreference
from windi.services.plan_service import PlanService


# ==================== DATABASE ====================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ==================== GATEWAY ====================

class FakeGateway:
    """Scripted stand-in for MercadoPagoService."""

    def __init__(self, configured: bool = True):
        self.is_configured = configured
        self.preferences: List[Dict] = []
        self.payments: Dict[str, GatewayPayment] = {}
        self.preference_error: Optional[Exception] = None
        self.payment_error: Optional[Exception] = None
        self.payment_lookups: List[str] = []

    async def create_preference(self, payload: Dict) -> GatewayPreference:
        if self.preference_error is not None:
            raise self.preference_error
        self.preferences.append(payload)
        number = len(self.preferences)
        return GatewayPreference(
            id=f"pref-{number}",
            checkout_url=f"https://mp.test/checkout/pref-{number}",
        )

    def add_payment(
        self,
        payment_id: str,
        status: str,
        amount="12999",
        subscription_id: Optional[int] = None,
        external_reference: Optional[str] = None,
    ) -> GatewayPayment:
        payment = GatewayPayment(
            id=payment_id,
            status=status,
            amount=Decimal(str(amount)),
            external_reference=external_reference,
            metadata={"subscription_id": subscription_id} if subscription_id else {},
            merchant_order_id=f"order-{payment_id}",
        )
        self.payments[payment_id] = payment
        return payment

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        self.payment_lookups.append(payment_id)
        if self.payment_error is not None:
            raise self.payment_error
        if payment_id not in self.payments:
            raise GatewayError(f"unknown payment {payment_id}")
        return self.payments[payment_id]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def unconfigured_gateway():
    return FakeGateway(configured=False)


# ==================== FACTORIES ====================

@pytest.fixture
async def plans(db):
    """Default catalog keyed by code: BASIC 12999/10, PREMIUM 16999/50, ELITE 21999/unlimited."""
    service = PlanService(db)
    await service.ensure_default_plans()
    return {plan.code: plan for plan in await service.list_plans()}


@pytest.fixture
def make_business(db):
    async def _make(name: str = "La Esquina", owner_email: Optional[str] = "owner@esquina.test", **fields) -> Business:
        business = Business(name=name, owner_email=owner_email, **fields)
        db.add(business)
        await db.commit()
        await db.refresh(business)
        return business
    return _make


@pytest.fixture
def make_affiliate(db):
    counter = {"user_id": 100}

    async def _make(display_name: str = "Juan Perez", email: Optional[str] = "juan@afiliados.test", **kwargs):
        counter["user_id"] += 1
        return await AffiliateService(db).register_affiliate(
            user_id=counter["user_id"],
            display_name=display_name,
            email=email,
            **kwargs,
        )
    return _make


@pytest.fixture
def add_products(db):
    async def _add(business_id: int, count: int) -> None:
        for index in range(count):
            db.add(Product(business_id=business_id, name=f"Producto {index + 1}"))
        await db.commit()
    return _add


@pytest.fixture
async def referred_business(make_business, make_affiliate, db):
    """A business attributed to an active affiliate (rate 0.25)."""
    affiliate = await make_affiliate()
    business = await make_business()
    await AffiliateService(db).attribute_business(business.id, affiliate.ref_code)
    await db.refresh(business)
    return business, affiliate
