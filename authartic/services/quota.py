from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authartic.core.clock import Clock, as_utc, utc_now
from authartic.core.config import settings
from authartic.core.errors import CapacityExceeded, Forbidden, NotFound, Unauthorized, ValidationFailed
from authartic.core.security import create_activation_token
from authartic.integrations.mail_client import MailClient, NotificationError
from authartic.models.subscription import SubscriptionPlan, SubscriptionStatus
from authartic.models.user import User
from authartic.services.accounts import VendorAccount, get_user, load_account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaTotals:
    total_certificates_issued: int
    remaining_certificates: int


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


async def find_status_for_user(db: AsyncSession, user_id: int) -> SubscriptionStatus | None:
    res = await db.execute(
        select(SubscriptionStatus)
        .where(SubscriptionStatus.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def lock_status(db: AsyncSession, status_id: int) -> SubscriptionStatus:
    """
    Lock the ledger row FOR UPDATE and re-read it, so concurrent issuances
    for the same vendor serialize on this row.
    """
    res = await db.execute(
        select(SubscriptionStatus)
        .where(SubscriptionStatus.id == status_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    status = res.scalar_one_or_none()
    if status is None:
        raise NotFound("Subscription status not found.")
    return status


async def lock_status_for_user(db: AsyncSession, user_id: int) -> SubscriptionStatus | None:
    res = await db.execute(
        select(SubscriptionStatus)
        .where(SubscriptionStatus.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def _free_certificates_grant(db: AsyncSession, plan_id: int) -> tuple[SubscriptionPlan, int]:
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise NotFound("Subscription plan not found.")

    feature = next((f for f in plan.features if f.name == settings.FREE_CERTIFICATES_FEATURE), None)
    if feature is None:
        raise NotFound(f'Feature "{settings.FREE_CERTIFICATES_FEATURE}" not found.')

    try:
        grant = int(feature.value) if feature.value else 0
    except ValueError:
        raise ValidationFailed(f'Feature "{feature.name}" has a non-numeric value.')

    return plan, max(grant, 0)


async def activate_plan(
    db: AsyncSession,
    *,
    vendor: User,
    plan_id: int,
    clock: Clock = utc_now,
    mailer: MailClient | None = None,
) -> SubscriptionStatus:
    """
    Start a new term on plan_id for the vendor.

    The remaining balance is replaced by the plan's free-certificate grant,
    never added to. The cumulative issued counter is kept.
    """
    if not plan_id:
        raise ValidationFailed("Subscription ID is required.")

    user = await get_user(db, vendor.id)
    account = await load_account(db, user)
    if not isinstance(account, VendorAccount):
        raise Forbidden("Only vendors can activate subscription plans.")
    if account.info is None:
        raise NotFound("Vendor info not found.")

    if not account.is_email_verified:
        if mailer is not None and user.email:
            try:
                await mailer.send_activation_link(user.email, create_activation_token(email=user.email))
            except NotificationError as e:
                logger.warning("Activation link for vendor %s not sent: %s", user.id, e)
        raise Unauthorized(
            "Please verify your email first. We have sent an activation email to your email address."
        )

    plan, grant = await _free_certificates_grant(db, plan_id)

    if not account.is_verified:
        raise Unauthorized("Your account is not verified by admin. Please contact the admin.")

    now = clock()
    expiry = now + timedelta(days=settings.SUBSCRIPTION_TERM_DAYS)

    try:
        status = await lock_status_for_user(db, user.id)

        if status is None:
            status = SubscriptionStatus(user_id=user.id, total_certificates_issued=0)
            db.add(status)

        status.plan_id = plan.id
        status.remaining_certificates = grant
        status.plan_activated_date = now
        status.plan_expiry_date = expiry
        status.is_expired = False
        status.additional_cost = 0

        await db.commit()
        await db.refresh(status)

        logger.info(
            "Activated plan %s for vendor %s: %d certificates until %s",
            plan.id,
            user.id,
            grant,
            expiry.isoformat(),
        )
        return status

    except Exception:
        await db.rollback()
        raise


async def reserve(db: AsyncSession, status_id: int, count: int) -> SubscriptionStatus:
    """
    Take `count` certificates off the vendor's balance.

    Runs inside the caller's transaction and does not commit; the row stays
    locked until the caller commits or rolls back.
    """
    if count < 0:
        raise ValidationFailed("Number of certificates must be a positive number or zero.")

    status = await lock_status(db, status_id)

    remaining = int(status.remaining_certificates)
    if remaining <= 0:
        raise CapacityExceeded(
            "You don't have remaining certificates, save in draft or upgrade plan.",
            remaining=remaining,
        )
    if remaining - count < 0:
        raise CapacityExceeded(
            f"You have only {remaining} certificate{_plural(remaining)} available.",
            remaining=remaining,
        )

    status.remaining_certificates = remaining - count
    await db.flush()
    return status


async def apply_delta(
    db: AsyncSession,
    status_id: int,
    count: int,
    totals: QuotaTotals,
) -> SubscriptionStatus:
    """
    Reserve `count`, then overwrite both counters with the caller's absolute values.
    The only bounds check is the one `reserve` performs.
    """
    status = await reserve(db, status_id, count)

    status.total_certificates_issued = totals.total_certificates_issued
    status.remaining_certificates = totals.remaining_certificates
    await db.flush()
    return status


async def expire_due(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock = utc_now,
) -> int:
    """
    Flag every lapsed, still-active term as expired. Each row gets its own
    session; a failing row is logged and skipped. Returns the number expired.
    """
    now = clock()

    async with session_factory() as db:
        res = await db.execute(
            select(SubscriptionStatus.id, SubscriptionStatus.plan_expiry_date)
            .where(SubscriptionStatus.is_expired.is_(False))
            .order_by(SubscriptionStatus.id)
        )
        rows = res.all()

    expired = 0
    for status_id, expiry_date in rows:
        if expiry_date is None or as_utc(expiry_date) >= now:
            continue

        try:
            async with session_factory() as db:
                await db.execute(
                    update(SubscriptionStatus)
                    .where(
                        SubscriptionStatus.id == status_id,
                        SubscriptionStatus.is_expired.is_(False),
                    )
                    .values(is_expired=True)
                )
                await db.commit()
            expired += 1
        except Exception:
            logger.exception("Failed to update is_expired for status ID %s", status_id)

    logger.info("Expiry sweep at %s: %d of %d active terms expired", now.isoformat(), expired, len(rows))
    return expired
