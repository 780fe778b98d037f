"""
Shared fixtures: an in-memory SQLite database with the real models,
seeded vendors/consumers, a fake mail client and a fixed clock.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CLAIM_URL_BASE"] = "https://claims.test"
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import AsyncGenerator

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import authartic.models  # noqa: F401
from authartic.core.db import Base
from authartic.integrations.mail_client import NotificationError
from authartic.models.attachment import Attachment
from authartic.models.subscription import SubscriptionPlan, SubscriptionPlanFeature, SubscriptionStatus
from authartic.models.user import ROLE_USER, ROLE_VENDOR, User, UserProfile, VendorInfo
from authartic.schemas.certificates import CertificateInfoCreate

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)

_seq = count(1)


def fixed_clock() -> datetime:
    return FIXED_NOW


class FakeMailer:
    """Records deliveries; fails batch delivery when fail=True, activation links when fail_activation=True."""

    def __init__(self, fail: bool = False, fail_activation: bool = False):
        self.fail = fail
        self.fail_activation = fail_activation
        self.archives: list[tuple[str, bytes]] = []
        self.activation_links: list[tuple[str, str]] = []

    async def send_batch_archive(self, email: str, archive_bytes: bytes) -> None:
        if self.fail:
            raise NotificationError("Mail delivery failed (503): relay unavailable")
        self.archives.append((email, archive_bytes))

    async def send_activation_link(self, email: str, token: str) -> None:
        if self.fail_activation:
            raise NotificationError("Mail delivery failed (503): relay unavailable")
        self.activation_links.append((email, token))

    async def send_one_time_code(self, email: str, code: str) -> None:
        pass


@dataclass
class SeededVendor:
    vendor: User
    vendor_id: int
    email: str
    image_id: int
    plan_id: int
    status_id: int | None


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


# =============================================================================
# Seed helpers
# =============================================================================

async def create_plan(db: AsyncSession, *, grant: int | None = 5, name: str | None = None) -> SubscriptionPlan:
    features = [SubscriptionPlanFeature(name="Priority Support", value="yes")]
    if grant is not None:
        features.append(SubscriptionPlanFeature(name="Free Monthly Certificates", value=str(grant)))

    plan = SubscriptionPlan(name=name or f"Plan {next(_seq)}", price=0, is_active=True, features=features)
    db.add(plan)
    await db.commit()
    return plan


async def seed_vendor(
    db: AsyncSession,
    *,
    remaining: int | None = 5,
    total_issued: int = 0,
    verified: bool = True,
    email_verified: bool = True,
    is_expired: bool = False,
    expiry: datetime | None = None,
    grant: int = 5,
) -> SeededVendor:
    """Vendor with vendor-info, a product image and (unless remaining is None) a subscription."""
    n = next(_seq)
    email = f"vendor{n}@example.com"

    image = Attachment(url=f"https://files.test/product-{n}.png", file_type="image/png")
    vendor = User(user_name=f"Vendor {n}", email=email, role=ROLE_VENDOR)
    db.add_all([image, vendor])
    await db.flush()

    db.add(
        VendorInfo(
            user_id=vendor.id,
            validation_code=f"CODE-{n}" if verified else None,
            is_verified_email=email_verified,
        )
    )

    plan = await create_plan(db, grant=grant)

    status_id = None
    if remaining is not None:
        status = SubscriptionStatus(
            user_id=vendor.id,
            plan_id=plan.id,
            remaining_certificates=remaining,
            total_certificates_issued=total_issued,
            plan_activated_date=FIXED_NOW - timedelta(days=1),
            plan_expiry_date=expiry or FIXED_NOW + timedelta(days=29),
            is_expired=is_expired,
            additional_cost=0,
        )
        db.add(status)
        await db.flush()
        status_id = status.id

    await db.commit()

    return SeededVendor(
        vendor=vendor,
        vendor_id=vendor.id,
        email=email,
        image_id=image.id,
        plan_id=plan.id,
        status_id=status_id,
    )


async def seed_consumer(db: AsyncSession) -> User:
    n = next(_seq)
    user = User(user_name=f"Consumer {n}", email=f"user{n}@example.com", role=ROLE_USER)
    db.add(user)
    await db.flush()
    db.add(UserProfile(user_id=user.id, is_verified_email=True))
    await db.commit()
    return user


def batch_input(image_id: int, number: int = 3, **overrides) -> CertificateInfoCreate:
    data = {
        "name": "Leather Weekender",
        "description": "Hand-stitched leather weekender bag, limited run.",
        "number_of_certificate": number,
        "font": "Helvetica",
        "font_color": "#333",
        "bg_color": "#FFFFFF",
        "product_sell": "Leather goods",
        "product_image_id": image_id,
    }
    data.update(overrides)
    return CertificateInfoCreate(**data)


async def fetch_status(db: AsyncSession, status_id: int) -> SubscriptionStatus:
    res = await db.execute(
        select(SubscriptionStatus)
        .where(SubscriptionStatus.id == status_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one()


@pytest.fixture
async def seeded(db) -> SeededVendor:
    return await seed_vendor(db, remaining=5)
