from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.db import get_db
from authartic.core.deps import require_admin
from authartic.core.errors import ServiceError
from authartic.schemas.subscriptions import PlanCreate, PlanOut, VendorVerifyIn, VendorVerifyOut
from authartic.services.accounts import verify_vendor
from authartic.services.plans import admin_create_plan

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/subscription-plans", response_model=PlanOut, status_code=201)
async def create_plan(
    body: PlanCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    try:
        return await admin_create_plan(db, data=body)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/vendors/{vendor_id}/verify", response_model=VendorVerifyOut)
async def verify(
    vendor_id: int,
    body: VendorVerifyIn,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
) -> VendorVerifyOut:
    try:
        info = await verify_vendor(db, vendor_id=vendor_id, validation_code=body.validation_code)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return VendorVerifyOut(vendor_id=info.user_id, verified=bool(info.validation_code))
