from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.errors import Conflict, NotFound, ValidationFailed
from authartic.models.attachment import Attachment
from authartic.models.certificate import (
    CERTIFICATE_ACTIVE,
    CERTIFICATE_REVOKED,
    Certificate,
    CertificateInfo,
    CertificateOwner,
)
from authartic.models.user import User, VendorInfo

SERIAL_ATTEMPTS = 20


# -------------------------
# Attachments
# -------------------------
async def find_attachment(db: AsyncSession, attachment_id: int) -> Attachment | None:
    res = await db.execute(select(Attachment).where(Attachment.id == attachment_id))
    return res.scalar_one_or_none()


# -------------------------
# Batches
# -------------------------
async def get_vendor_batch(
    db: AsyncSession,
    *,
    batch_id: int,
    vendor_id: int,
    saved_draft: bool | None = None,
    for_update: bool = False,
) -> CertificateInfo:
    stmt = select(CertificateInfo).where(
        CertificateInfo.id == batch_id,
        CertificateInfo.created_by_vendor_id == vendor_id,
    )
    if saved_draft is not None:
        stmt = stmt.where(CertificateInfo.saved_draft.is_(saved_draft))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    res = await db.execute(stmt)
    info = res.scalar_one_or_none()
    if info is None:
        raise NotFound(f"Certificate with ID {batch_id} not found.")
    return info


@dataclass
class BatchPage:
    data: list[CertificateInfo]
    total: int
    pages: int


async def list_vendor_batches(
    db: AsyncSession,
    *,
    vendor_id: int,
    name: str | None = None,
    saved_draft: bool = False,
    page: int = 1,
    limit: int = 8,
) -> BatchPage:
    if page < 1:
        raise ValidationFailed("Page number must be greater than 0.")
    if limit < 1:
        raise ValidationFailed("Limit must be greater than 0.")

    filters = [
        CertificateInfo.created_by_vendor_id == vendor_id,
        CertificateInfo.saved_draft.is_(saved_draft),
    ]
    if name:
        filters.append(CertificateInfo.name.ilike(f"%{name}%"))

    total_res = await db.execute(select(func.count(CertificateInfo.id)).where(and_(*filters)))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(CertificateInfo)
        .where(and_(*filters))
        .order_by(CertificateInfo.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return BatchPage(
        data=list(res.scalars().all()),
        total=total,
        pages=math.ceil(total / limit),
    )


# -------------------------
# Certificates
# -------------------------
def format_serial(position: int, issued_at: datetime) -> str:
    return f"SN-{position}-{int(issued_at.timestamp() * 1000)}"


async def next_serial(db: AsyncSession, position: int, issued_at: datetime) -> str:
    """
    SN-<position>-<epoch ms>. On collision with an existing serial the
    millisecond part is advanced until a free one is found.
    """
    stamp = issued_at
    for _attempt in range(SERIAL_ATTEMPTS):
        candidate = format_serial(position, stamp)
        exists = await db.execute(
            select(Certificate.id).where(Certificate.serial_number == candidate)
        )
        if exists.scalar_one_or_none() is None:
            return candidate
        stamp = stamp + timedelta(milliseconds=1)

    raise Conflict("Failed to generate unique serial number.")


async def add_certificate(db: AsyncSession, *, batch_id: int, serial_number: str) -> Certificate:
    cert = Certificate(
        serial_number=serial_number,
        certificate_info_id=batch_id,
        status=CERTIFICATE_ACTIVE,
        is_deleted=False,
    )
    db.add(cert)
    await db.flush()  # assigns cert.id
    return cert


async def set_claim_url(db: AsyncSession, cert: Certificate, claim_url: str) -> Certificate:
    cert.qr_code = claim_url
    await db.flush()
    return cert


async def get_vendor_certificate(
    db: AsyncSession,
    *,
    certificate_id: int,
    batch_id: int,
    vendor_id: int,
) -> Certificate:
    res = await db.execute(
        select(Certificate)
        .join(CertificateInfo, CertificateInfo.id == Certificate.certificate_info_id)
        .where(
            Certificate.id == certificate_id,
            CertificateInfo.id == batch_id,
            CertificateInfo.created_by_vendor_id == vendor_id,
        )
        .with_for_update(of=Certificate)
        .execution_options(populate_existing=True)
    )
    cert = res.scalar_one_or_none()
    if cert is None:
        raise NotFound(f"Certificate with ID {certificate_id} not found.")
    return cert


async def lock_certificate(db: AsyncSession, certificate_id: int) -> Certificate | None:
    res = await db.execute(
        select(Certificate)
        .where(Certificate.id == certificate_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


def is_revoked(cert: Certificate) -> bool:
    return bool(cert.is_deleted) and cert.status == CERTIFICATE_REVOKED


async def revoke_certificate(db: AsyncSession, cert: Certificate) -> Certificate:
    if is_revoked(cert):
        raise Conflict(f"Already re-issued certificate for this certificate with ID {cert.id}.")

    cert.status = CERTIFICATE_REVOKED
    cert.is_deleted = True
    await db.flush()
    return cert


# -------------------------
# Owners
# -------------------------
async def active_owners(db: AsyncSession, certificate_id: int) -> list[CertificateOwner]:
    res = await db.execute(
        select(CertificateOwner)
        .where(
            CertificateOwner.certificate_id == certificate_id,
            CertificateOwner.is_owner.is_(True),
            CertificateOwner.is_deleted.is_(False),
        )
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


async def set_active_owner(db: AsyncSession, *, certificate_id: int, user_id: int) -> CertificateOwner:
    """
    Make user_id the single active owner: retire the current active row
    (if any) and insert a new one. Caller must hold the certificate lock.
    """
    current = await active_owners(db, certificate_id)
    if len(current) > 1:
        raise Conflict(f"Certificate {certificate_id} has more than one active owner.")

    for row in current:
        if row.user_id == user_id:
            raise Conflict("You are already owner")
        row.is_owner = False

    # retire before insert so the partial unique index never sees two active rows
    await db.flush()

    owner = CertificateOwner(certificate_id=certificate_id, user_id=user_id, is_owner=True, is_deleted=False)
    db.add(owner)
    await db.flush()
    return owner


# -------------------------
# Owned certificates (consumer view)
# -------------------------
async def list_owned_certificates(
    db: AsyncSession,
    *,
    user_id: int,
    name: str | None = None,
) -> list[dict]:
    filters = [
        CertificateOwner.user_id == user_id,
        CertificateOwner.is_owner.is_(True),
        CertificateOwner.is_deleted.is_(False),
        Certificate.is_deleted.is_(False),
    ]
    if name:
        filters.append(CertificateInfo.name.ilike(f"%{name}%"))

    stmt = (
        select(Certificate, CertificateInfo, User, Attachment.url)
        .select_from(CertificateOwner)
        .join(Certificate, Certificate.id == CertificateOwner.certificate_id)
        .join(CertificateInfo, CertificateInfo.id == Certificate.certificate_info_id)
        .join(User, User.id == CertificateInfo.created_by_vendor_id)
        .outerjoin(VendorInfo, VendorInfo.user_id == User.id)
        .outerjoin(Attachment, Attachment.id == VendorInfo.logo_attachment_id)
        .where(and_(*filters))
        .order_by(Certificate.id.desc())
    )

    res = await db.execute(stmt)

    out: list[dict] = []
    for cert, info, vendor, logo_url in res.all():
        out.append(
            {
                "id": cert.id,
                "serial_number": cert.serial_number,
                "qr_code": cert.qr_code,
                "status": cert.status,
                "certificate_info": {
                    "id": info.id,
                    "name": info.name,
                    "description": info.description,
                    "font": info.font,
                    "font_color": info.font_color,
                    "bg_color": info.bg_color,
                    "product_image_id": info.product_image_id,
                    "custom_bg_id": info.custom_bg_id,
                },
                "vendor": {
                    "id": vendor.id,
                    "name": vendor.user_name,
                    "logo": logo_url or "",
                },
            }
        )
    return out
