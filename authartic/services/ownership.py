from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.errors import Conflict, NotFound, ValidationFailed
from authartic.models.certificate import CERTIFICATE_ACTIVE
from authartic.models.user import User
from authartic.services.certificate_store import is_revoked, lock_certificate, set_active_owner

logger = logging.getLogger(__name__)


async def scan_certificate(db: AsyncSession, *, certificate_id: int, user: User) -> dict:
    """
    Claim-by-scan: the scanning user becomes the single active owner.

    The certificate row is locked first, so two concurrent scans of the same
    certificate apply one after the other; the second sees the first's owner.
    """
    if not certificate_id:
        raise ValidationFailed("Certificate ID is required.")

    user_id = user.id

    try:
        cert = await lock_certificate(db, certificate_id)

        if cert is not None and is_revoked(cert):
            raise Conflict("The certificate is no longer available for scanning.")
        if cert is None or cert.is_deleted or cert.status != CERTIFICATE_ACTIVE:
            raise NotFound("Certificate not found.")

        owner = await set_active_owner(db, certificate_id=cert.id, user_id=user_id)

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info("Certificate %s now owned by user %s", certificate_id, user_id)
    return {"message": "Ownership transferred successfully", "owner_id": owner.id}
