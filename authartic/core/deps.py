from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.db import get_db
from authartic.core.security import decode_token, TokenError
from authartic.integrations.mail_client import MailClient
from authartic.models.user import ROLE_ADMIN, ROLE_USER, ROLE_VENDOR, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub") or payload.get("user_id") or payload.get("id")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token missing user id (sub/user_id)")

    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id in token")

    res = await db.execute(select(User).where(User.id == user_id_int, User.is_deleted.is_(False)))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User inactive")

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin only")
    return current_user


def require_vendor(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ROLE_VENDOR:
        raise HTTPException(status_code=403, detail="Vendor only")
    return current_user


def require_consumer(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ROLE_USER:
        raise HTTPException(status_code=403, detail="User only")
    return current_user


def get_mailer() -> MailClient:
    return MailClient()
