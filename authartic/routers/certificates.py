from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.db import get_db
from authartic.core.deps import get_current_user, require_consumer
from authartic.core.errors import ServiceError
from authartic.models.user import User
from authartic.schemas.certificates import OwnedCertificateOut, ScanOut
from authartic.services.certificate_store import list_owned_certificates
from authartic.services.ownership import scan_certificate

router = APIRouter(prefix="/certificate", tags=["Certificates"])


@router.get("", response_model=list[OwnedCertificateOut])
async def my_certificates(
    name: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_consumer),
):
    return await list_owned_certificates(db, user_id=int(current_user.id), name=name)


@router.post("/claim-certificate/{certificate_id}/scan", response_model=ScanOut)
async def claim_certificate(
    certificate_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ScanOut:
    try:
        result = await scan_certificate(db, certificate_id=certificate_id, user=current_user)
        return ScanOut(message=result["message"])
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
