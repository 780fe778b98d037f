from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.clock import Clock, as_utc, utc_now
from authartic.core.config import settings
from authartic.core.errors import (
    CapacityExceeded,
    Forbidden,
    InternalError,
    NotFound,
    ServiceError,
    ValidationFailed,
)
from authartic.integrations.mail_client import MailClient
from authartic.models.certificate import CertificateInfo
from authartic.models.subscription import SubscriptionStatus
from authartic.models.user import User
from authartic.schemas.certificates import CertificateInfoCreate
from authartic.services.accounts import VendorAccount, load_account
from authartic.services.certificate_artifacts import BatchStyle, CertificateArtifact, build_batch_archive
from authartic.services.certificate_store import (
    add_certificate,
    find_attachment,
    get_vendor_batch,
    get_vendor_certificate,
    next_serial,
    revoke_certificate,
    set_active_owner,
    set_claim_url,
)
from authartic.services.quota import QuotaTotals, apply_delta, lock_status_for_user

logger = logging.getLogger(__name__)


@dataclass
class IssuanceResult:
    batch: CertificateInfo
    certificates: list[CertificateArtifact] = field(default_factory=list)
    remaining_certificates: int | None = None
    message: str = ""


def claim_url(certificate_id: int) -> str:
    return f"{settings.CLAIM_URL_BASE.rstrip('/')}/certificate/claim-certificate/{certificate_id}/scan"


async def _eligible_status(
    db: AsyncSession,
    vendor: User,
    count: int,
    now: datetime,
) -> SubscriptionStatus:
    """
    Eligibility gate. Locks the vendor's ledger row so a concurrent issuance
    waits here instead of passing the same balance check.
    """
    account = await load_account(db, vendor)
    if not isinstance(account, VendorAccount):
        raise Forbidden("Only VENDOR can issue certificates.")
    if account.info is None:
        raise NotFound("Vendor info not found.")
    if not account.is_verified:
        raise Forbidden("Your account is not verified yet. Please contact the admin.")
    if not vendor.email:
        raise ValidationFailed("Vendor email is required to deliver certificates.")

    status = await lock_status_for_user(db, vendor.id)
    if status is None:
        raise Forbidden("You don't have any active subscription plan.")
    if status.is_expired or as_utc(status.plan_expiry_date) < now:
        raise Forbidden("Your subscription plan has expired. Please upgrade now.")

    remaining = int(status.remaining_certificates)
    if remaining < count:
        raise CapacityExceeded(f"You have only {remaining} certificates available.", remaining=remaining)

    return status


async def _mint(
    db: AsyncSession,
    *,
    batch: CertificateInfo,
    owner_id: int,
    count: int,
    first_position: int,
    now: datetime,
) -> list[CertificateArtifact]:
    minted: list[CertificateArtifact] = []

    for i in range(count):
        serial = await next_serial(db, first_position + i, now)
        cert = await add_certificate(db, batch_id=batch.id, serial_number=serial)

        # the URL embeds the id, so it can only be set after the insert
        url = claim_url(cert.id)
        await set_claim_url(db, cert, url)

        await set_active_owner(db, certificate_id=cert.id, user_id=owner_id)

        minted.append(CertificateArtifact(certificate_id=cert.id, serial_number=serial, claim_url=url))

    return minted


async def _commit_quota(db: AsyncSession, status: SubscriptionStatus, count: int) -> SubscriptionStatus:
    totals = QuotaTotals(
        total_certificates_issued=int(status.total_certificates_issued) + count,
        remaining_certificates=int(status.remaining_certificates) - count,
    )
    return await apply_delta(db, status.id, count, totals)


async def _deliver(
    mailer: MailClient,
    *,
    email: str,
    batch: CertificateInfo,
    minted: list[CertificateArtifact],
) -> None:
    style = BatchStyle(
        name=batch.name,
        description=batch.description,
        font_color=batch.font_color,
        bg_color=batch.bg_color,
    )
    archive = await build_batch_archive(minted, style)
    # a failed delivery aborts the whole issuance
    await mailer.send_batch_archive(email, archive)


def _mark_issued(batch: CertificateInfo, count: int, now: datetime) -> None:
    batch.issued = int(batch.issued or 0) + count
    batch.saved_draft = False
    batch.issued_date = now


async def _rollback(db: AsyncSession, exc: BaseException, *, action: str, vendor_id: int) -> None:
    await db.rollback()
    if isinstance(exc, ServiceError):
        logger.info("%s rejected for vendor %s: %s", action, vendor_id, exc)
    else:
        logger.exception("%s failed for vendor %s", action, vendor_id)


async def create_certificate_info(
    db: AsyncSession,
    *,
    vendor: User,
    data: CertificateInfoCreate,
    mailer: MailClient,
    clock: Clock = utc_now,
) -> IssuanceResult:
    """
    Create a batch and, unless it is a draft, mint `number_of_certificate`
    certificates from it in the same transaction: serials, claim URLs,
    initial vendor ownership, quota, rendered archive and delivery.
    Nothing persists unless every step succeeds.
    """
    count = 0 if data.saved_draft or not data.number_of_certificate else int(data.number_of_certificate)
    now = clock()

    try:
        status = await _eligible_status(db, vendor, count, now)

        product_image = await find_attachment(db, data.product_image_id)
        if product_image is None:
            raise NotFound("Product image is not found.")

        if data.custom_bg:
            custom_bg = await find_attachment(db, data.custom_bg)
            if custom_bg is None:
                raise NotFound("Background image not found.")

        batch = CertificateInfo(
            name=data.name,
            description=data.description,
            font=data.font,
            font_color=data.font_color,
            bg_color=data.bg_color,
            product_sell=data.product_sell,
            product_image_id=data.product_image_id,
            custom_bg_id=data.custom_bg,
            created_by_vendor_id=vendor.id,
            saved_draft=bool(data.saved_draft),
            issued=0,
            issued_date=None,
        )
        db.add(batch)
        await db.flush()

        minted: list[CertificateArtifact] = []
        if count > 0:
            minted = await _mint(db, batch=batch, owner_id=vendor.id, count=count, first_position=1, now=now)
            status = await _commit_quota(db, status, count)
            await _deliver(mailer, email=vendor.email, batch=batch, minted=minted)
            _mark_issued(batch, count, now)

        await db.commit()

    except Exception as e:
        await _rollback(db, e, action="Certificate creation", vendor_id=vendor.id)
        if isinstance(e, ServiceError):
            raise
        raise InternalError("Certificate creation failed.") from e

    logger.info("Vendor %s created batch %s with %d certificates", vendor.id, batch.id, count)

    if count > 0:
        message = f"Certificates created and sent to {vendor.email}"
    else:
        message = "Certificate saved as draft"

    return IssuanceResult(
        batch=batch,
        certificates=minted,
        remaining_certificates=int(status.remaining_certificates),
        message=message,
    )


async def reissue_batch(
    db: AsyncSession,
    *,
    vendor: User,
    batch_id: int,
    count: int,
    mailer: MailClient,
    clock: Clock = utc_now,
) -> IssuanceResult:
    """Mint `count` more certificates from one of the vendor's existing batches."""
    if not batch_id:
        raise ValidationFailed("Certificate ID is required.")
    if count is None or count < 1:
        raise ValidationFailed("Number of certificates must be at least 1.")

    now = clock()

    try:
        status = await _eligible_status(db, vendor, count, now)
        batch = await get_vendor_batch(db, batch_id=batch_id, vendor_id=vendor.id, for_update=True)

        minted = await _mint(
            db,
            batch=batch,
            owner_id=vendor.id,
            count=count,
            first_position=int(batch.issued or 0) + 1,
            now=now,
        )
        status = await _commit_quota(db, status, count)
        await _deliver(mailer, email=vendor.email, batch=batch, minted=minted)
        _mark_issued(batch, count, now)

        await db.commit()

    except Exception as e:
        await _rollback(db, e, action="Batch re-issue", vendor_id=vendor.id)
        if isinstance(e, ServiceError):
            raise
        raise InternalError("Certificate re-issue failed.") from e

    logger.info("Vendor %s re-issued %d certificates from batch %s", vendor.id, count, batch.id)

    return IssuanceResult(
        batch=batch,
        certificates=minted,
        remaining_certificates=int(status.remaining_certificates),
        message=f"Certificates re-issued for existing and sent to {vendor.email}",
    )


async def reissue_certificate(
    db: AsyncSession,
    *,
    vendor: User,
    batch_id: int,
    certificate_id: int,
    mailer: MailClient,
    clock: Clock = utc_now,
) -> IssuanceResult:
    """
    Revoke one certificate and mint exactly one replacement in the same batch.
    A certificate that is already revoked cannot be re-issued again.
    """
    if not batch_id or not certificate_id:
        raise ValidationFailed("Certificate ID is required.")

    now = clock()

    try:
        status = await _eligible_status(db, vendor, 1, now)

        old = await get_vendor_certificate(
            db, certificate_id=certificate_id, batch_id=batch_id, vendor_id=vendor.id
        )
        await revoke_certificate(db, old)

        batch = await get_vendor_batch(db, batch_id=batch_id, vendor_id=vendor.id, for_update=True)

        minted = await _mint(
            db,
            batch=batch,
            owner_id=vendor.id,
            count=1,
            first_position=int(batch.issued or 0) + 1,
            now=now,
        )
        status = await _commit_quota(db, status, 1)
        await _deliver(mailer, email=vendor.email, batch=batch, minted=minted)
        _mark_issued(batch, 1, now)

        await db.commit()

    except Exception as e:
        await _rollback(db, e, action="Certificate re-issue", vendor_id=vendor.id)
        if isinstance(e, ServiceError):
            raise
        raise InternalError("Certificate re-issue failed.") from e

    logger.info(
        "Vendor %s re-issued certificate %s as %s",
        vendor.id,
        certificate_id,
        minted[0].certificate_id,
    )

    return IssuanceResult(
        batch=batch,
        certificates=minted,
        remaining_certificates=int(status.remaining_certificates),
        message=f"Certificate reissued and sent to {vendor.email}",
    )
