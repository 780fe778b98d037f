from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authartic.core.db import Base, BigIntPK


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    features: Mapped[list["SubscriptionPlanFeature"]] = relationship(
        back_populates="plan",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SubscriptionPlanFeature.id",
    )


class SubscriptionPlanFeature(Base):
    __tablename__ = "subscription_plan_features"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    plan_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("subscription_plans.id", ondelete="CASCADE"), nullable=False
    )

    # e.g. name="Free Monthly Certificates", value="50"
    name: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    plan: Mapped[SubscriptionPlan] = relationship(back_populates="features")


class SubscriptionStatus(Base):
    """Quota ledger row, one per vendor."""

    __tablename__ = "subscription_statuses"
    __table_args__ = (
        CheckConstraint("remaining_certificates >= 0", name="subscription_remaining_nonneg_chk"),
        CheckConstraint("total_certificates_issued >= 0", name="subscription_total_nonneg_chk"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    plan_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("subscription_plans.id", ondelete="RESTRICT"), nullable=False
    )

    remaining_certificates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_certificates_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    plan_activated_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    plan_expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_expired: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(), index=True
    )

    additional_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    additional_feature_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    plan: Mapped[SubscriptionPlan] = relationship(lazy="selectin")
