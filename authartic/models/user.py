from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    String,
    Text,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from authartic.core.db import Base, BigIntPK

ROLE_ADMIN = "admin"
ROLE_VENDOR = "vendor"
ROLE_USER = "user"

ROLES = (ROLE_ADMIN, ROLE_VENDOR, ROLE_USER)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('admin','vendor','user')", name="users_role_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_USER)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class VendorInfo(Base):
    __tablename__ = "vendor_infos"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Set by an admin once the vendor is vetted; NULL means unverified
    validation_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_verified_email: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    about_brand: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    logo_attachment_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("attachments.id", ondelete="SET NULL"), nullable=True
    )


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    is_verified_email: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    avatar_attachment_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("attachments.id", ondelete="SET NULL"), nullable=True
    )
