from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    Text,
    false,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from authartic.core.db import Base, BigIntPK

CERTIFICATE_ACTIVE = 1
CERTIFICATE_REVOKED = 2


class CertificateInfo(Base):
    """A batch/template created by one vendor; physical certificates are minted from it."""

    __tablename__ = "certificate_infos"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    font: Mapped[str] = mapped_column(Text, nullable=False)
    font_color: Mapped[str] = mapped_column(Text, nullable=False)
    bg_color: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_sell: Mapped[str] = mapped_column(Text, nullable=False)

    issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    issued_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    saved_draft: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    product_image_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("attachments.id", ondelete="RESTRICT"), nullable=False
    )
    custom_bg_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("attachments.id", ondelete="SET NULL"), nullable=True
    )
    created_by_vendor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        CheckConstraint("status IN (1, 2)", name="certificates_status_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    # Filled in right after the first insert, once id is known
    qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=CERTIFICATE_ACTIVE)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    certificate_info_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("certificate_infos.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class CertificateOwner(Base):
    """Ownership history. Superseded rows keep is_owner=false and are never touched again."""

    __tablename__ = "certificate_owners"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    certificate_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("certificates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    is_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# At most one active owner per certificate
Index(
    "uq_certificate_owners_active",
    CertificateOwner.certificate_id,
    unique=True,
    postgresql_where=text("is_owner AND NOT is_deleted"),
    sqlite_where=text("is_owner = 1 AND is_deleted = 0"),
)
