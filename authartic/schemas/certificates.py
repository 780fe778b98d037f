from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_COLOR = r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$"


class CertificateInfoCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=80)
    description: str = Field(..., min_length=10, max_length=500)
    number_of_certificate: int = Field(default=0, ge=0, le=1000)
    font: str = Field(..., min_length=2, max_length=150)
    font_color: str = Field(..., pattern=HEX_COLOR)
    bg_color: str | None = Field(default=None, pattern=HEX_COLOR)
    custom_bg: int | None = None
    product_sell: str = Field(..., min_length=6, max_length=1000)
    saved_draft: bool | None = None
    product_image_id: int

    @field_validator("bg_color", "custom_bg", "saved_draft", "number_of_certificate", mode="before")
    @classmethod
    def _blank_to_default(cls, v, info):
        # forms send "" for untouched optional fields
        if v == "":
            return 0 if info.field_name == "number_of_certificate" else None
        return v


class ReissueIn(BaseModel):
    number_of_certificate: int = Field(..., ge=1, le=1000)


class CertificateInfoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    font: str
    font_color: str
    bg_color: str | None = None
    product_sell: str
    issued: int
    issued_date: datetime | None = None
    saved_draft: bool
    product_image_id: int
    custom_bg_id: int | None = None
    created_by_vendor_id: int


class CertificateInfoPage(BaseModel):
    total: int
    pages: int
    data: List[CertificateInfoOut] = Field(default_factory=list)


class MintedCertificateOut(BaseModel):
    certificate_id: int
    serial_number: str
    claim_url: str


class IssuanceOut(BaseModel):
    message: str
    certificate_info: CertificateInfoOut
    certificates: List[MintedCertificateOut] = Field(default_factory=list)
    remaining_certificates: int | None = None


class ScanOut(BaseModel):
    message: str


class OwnedCertificateInfo(BaseModel):
    id: int
    name: str
    description: str
    font: str
    font_color: str
    bg_color: str | None = None
    product_image_id: int
    custom_bg_id: int | None = None


class CertificateVendor(BaseModel):
    id: int
    name: str | None = None
    logo: str = ""


class OwnedCertificateOut(BaseModel):
    id: int
    serial_number: str
    qr_code: str | None = None
    status: int
    certificate_info: OwnedCertificateInfo
    vendor: CertificateVendor
