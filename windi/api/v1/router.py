from fastapi import APIRouter

from windi.api.v1.endpoints import (
    # Merchant billing
    billing,
    # Administration
    admin_affiliates,
    admin_plans,
    admin_subscriptions,
)


api_router = APIRouter()

api_router.include_router(billing.router)
api_router.include_router(admin_affiliates.router)
api_router.include_router(admin_plans.router)
api_router.include_router(admin_subscriptions.router)
