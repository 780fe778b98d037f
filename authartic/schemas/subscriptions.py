from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PlanFeatureIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    value: str | None = None


class PlanCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)
    description: str | None = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    features: list[PlanFeatureIn] = Field(default_factory=list)


class PlanFeatureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    value: str | None = None


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    price: Decimal
    is_active: bool
    features: list[PlanFeatureOut] = Field(default_factory=list)


class SubscriptionStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    plan_id: int
    remaining_certificates: int
    total_certificates_issued: int
    plan_activated_date: datetime
    plan_expiry_date: datetime
    is_expired: bool
    additional_cost: Decimal
    additional_feature_status: str | None = None
    plan: PlanOut | None = None


class VendorVerifyIn(BaseModel):
    validation_code: str = Field(..., min_length=4, max_length=64)


class VendorVerifyOut(BaseModel):
    vendor_id: int
    verified: bool
