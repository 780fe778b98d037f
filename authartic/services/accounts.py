from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.errors import Conflict, NotFound
from authartic.models.user import ROLE_ADMIN, ROLE_VENDOR, User, UserProfile, VendorInfo


@dataclass(frozen=True)
class VendorAccount:
    user: User
    info: VendorInfo | None

    @property
    def is_verified(self) -> bool:
        return self.info is not None and bool(self.info.validation_code)

    @property
    def is_email_verified(self) -> bool:
        return self.info is not None and bool(self.info.is_verified_email)


@dataclass(frozen=True)
class ConsumerAccount:
    user: User
    profile: UserProfile | None


@dataclass(frozen=True)
class AdminAccount:
    user: User


Account = Union[VendorAccount, ConsumerAccount, AdminAccount]


async def load_account(db: AsyncSession, user: User) -> Account:
    """Resolve the principal into its account kind, once per workflow."""
    if user.role == ROLE_ADMIN:
        return AdminAccount(user=user)

    if user.role == ROLE_VENDOR:
        res = await db.execute(select(VendorInfo).where(VendorInfo.user_id == user.id))
        return VendorAccount(user=user, info=res.scalar_one_or_none())

    res = await db.execute(select(UserProfile).where(UserProfile.user_id == user.id))
    return ConsumerAccount(user=user, profile=res.scalar_one_or_none())


async def get_user(db: AsyncSession, user_id: int) -> User:
    res = await db.execute(select(User).where(User.id == user_id, User.is_deleted.is_(False)))
    u = res.scalar_one_or_none()
    if u is None:
        raise NotFound("User not found.")
    return u


async def verify_vendor(db: AsyncSession, *, vendor_id: int, validation_code: str) -> VendorInfo:
    """Admin marks a vendor as vetted by attaching a validation code."""
    user = await get_user(db, vendor_id)
    if user.role != ROLE_VENDOR:
        raise NotFound(f"Vendor with ID {vendor_id} not found.")

    res = await db.execute(select(VendorInfo).where(VendorInfo.user_id == vendor_id).with_for_update())
    info = res.scalar_one_or_none()
    if info is None:
        raise NotFound("Vendor info not found.")
    if info.validation_code:
        raise Conflict("Vendor is already verified.")

    try:
        info.validation_code = validation_code
        await db.commit()
        await db.refresh(info)
        return info
    except Exception:
        await db.rollback()
        raise
