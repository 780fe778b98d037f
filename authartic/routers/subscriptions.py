from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.db import get_db
from authartic.core.deps import get_current_user, get_mailer, require_vendor
from authartic.core.errors import ServiceError
from authartic.integrations.mail_client import MailClient
from authartic.models.user import User
from authartic.schemas.subscriptions import PlanOut, SubscriptionStatusOut
from authartic.services.plans import get_plan, list_plans
from authartic.services.quota import activate_plan, find_status_for_user

router = APIRouter(tags=["Subscriptions"])


@router.get("/subscription-plans", response_model=list[PlanOut])
async def all_plans(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await list_plans(db, is_active=True)


@router.get("/subscription-plans/{plan_id}", response_model=PlanOut)
async def one_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await get_plan(db, plan_id=plan_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/subscription/activate/{plan_id}", response_model=SubscriptionStatusOut)
async def activate(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
    mailer: MailClient = Depends(get_mailer),
):
    vendor_id = int(vendor.id)
    try:
        await activate_plan(db, vendor=vendor, plan_id=plan_id, mailer=mailer)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return await find_status_for_user(db, vendor_id)


@router.get("/subscription/status", response_model=SubscriptionStatusOut)
async def my_status(
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
):
    status = await find_status_for_user(db, int(vendor.id))
    if status is None:
        raise HTTPException(status_code=404, detail="You don't have any subscription plan.")
    return status
