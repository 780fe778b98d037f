from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.db import get_db
from authartic.core.deps import get_mailer, require_vendor
from authartic.core.errors import ServiceError
from authartic.integrations.mail_client import MailClient
from authartic.models.user import User
from authartic.schemas.certificates import (
    CertificateInfoCreate,
    CertificateInfoOut,
    CertificateInfoPage,
    IssuanceOut,
    MintedCertificateOut,
    ReissueIn,
)
from authartic.services.certificate_store import get_vendor_batch, list_vendor_batches
from authartic.services.issuance import (
    IssuanceResult,
    create_certificate_info,
    reissue_batch,
    reissue_certificate,
)

router = APIRouter(prefix="/certificate-info", tags=["Vendor - Certificates"])


def _issuance_out(result: IssuanceResult) -> IssuanceOut:
    return IssuanceOut(
        message=result.message,
        certificate_info=CertificateInfoOut.model_validate(result.batch),
        certificates=[
            MintedCertificateOut(
                certificate_id=c.certificate_id,
                serial_number=c.serial_number,
                claim_url=c.claim_url,
            )
            for c in result.certificates
        ],
        remaining_certificates=result.remaining_certificates,
    )


@router.post("", response_model=IssuanceOut, status_code=201)
async def create_batch(
    payload: CertificateInfoCreate,
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
    mailer: MailClient = Depends(get_mailer),
) -> IssuanceOut:
    try:
        result = await create_certificate_info(db, vendor=vendor, data=payload, mailer=mailer)
        return _issuance_out(result)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=CertificateInfoPage)
async def list_batches(
    name: Optional[str] = None,
    saved_draft: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=8, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
) -> CertificateInfoPage:
    try:
        result = await list_vendor_batches(
            db,
            vendor_id=int(vendor.id),
            name=name,
            saved_draft=saved_draft,
            page=page,
            limit=limit,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return CertificateInfoPage(
        total=result.total,
        pages=result.pages,
        data=[CertificateInfoOut.model_validate(b) for b in result.data],
    )


@router.get("/{batch_id}", response_model=CertificateInfoOut)
async def get_batch(
    batch_id: int,
    saved_draft: bool = False,
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
):
    try:
        return await get_vendor_batch(db, batch_id=batch_id, vendor_id=int(vendor.id), saved_draft=saved_draft)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{batch_id}/re-issue", response_model=IssuanceOut, status_code=201)
async def reissue_existing_batch(
    batch_id: int,
    payload: ReissueIn,
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
    mailer: MailClient = Depends(get_mailer),
) -> IssuanceOut:
    try:
        result = await reissue_batch(
            db,
            vendor=vendor,
            batch_id=batch_id,
            count=payload.number_of_certificate,
            mailer=mailer,
        )
        return _issuance_out(result)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{batch_id}/certificates/{certificate_id}/re-issue", response_model=IssuanceOut, status_code=201)
async def reissue_one_certificate(
    batch_id: int,
    certificate_id: int,
    db: AsyncSession = Depends(get_db),
    vendor: User = Depends(require_vendor),
    mailer: MailClient = Depends(get_mailer),
) -> IssuanceOut:
    try:
        result = await reissue_certificate(
            db,
            vendor=vendor,
            batch_id=batch_id,
            certificate_id=certificate_id,
            mailer=mailer,
        )
        return _issuance_out(result)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
