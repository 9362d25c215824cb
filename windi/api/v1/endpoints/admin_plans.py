"""Plan Catalog Administration API Endpoints"""

from typing import List

from fastapi import APIRouter

from windi.api.deps import DB, AdminOnly
from windi.schemas.billing import PlanCreate, PlanResponse
from windi.services.plan_service import PlanService


router = APIRouter(prefix="/admin/plans", tags=["Admin - Plans"], dependencies=[AdminOnly])


@router.get("", response_model=List[PlanResponse])
async def list_plans(db: DB):
    plans = await PlanService(db).list_plans()
    return [PlanResponse.model_validate(p) for p in plans]


@router.post("", response_model=PlanResponse)
async def create_plan(data: PlanCreate, db: DB):
    plan = await PlanService(db).create_plan(
        code=data.code,
        display_name=data.display_name,
        price=data.price,
        max_products=data.max_products,
    )
    return PlanResponse.model_validate(plan)


@router.post("/{plan_id}/update", response_model=PlanResponse)
async def update_plan(plan_id: int, data: PlanCreate, db: DB):
    plan = await PlanService(db).update_plan(
        plan_id,
        code=data.code,
        display_name=data.display_name,
        price=data.price,
        max_products=data.max_products,
    )
    return PlanResponse.model_validate(plan)


@router.post("/{plan_id}/toggle-active", response_model=PlanResponse)
async def toggle_plan(plan_id: int, db: DB):
    plan = await PlanService(db).toggle_active(plan_id)
    return PlanResponse.model_validate(plan)
