from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class TaxRate(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "tax_rates"

    tax_type: str = Field(default="VAT", max_length=32)
    country_code: str = Field(default="US", max_length=2)
    region: str | None = Field(default=None, max_length=64)
    tax_percentage: float
    description: str | None = Field(default=None)
    is_reverse_charge_applicable: bool = Field(default=False)
    is_composite: bool = Field(default=False)
    start_date: datetime | None = Field(default=None)
    end_date: datetime | None = Field(default=None)
    is_active: bool = Field(default=True)


class CompanyTaxSettings(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "company_tax_settings"

    company_id: UUID = Field(foreign_key="companies.id", index=True, unique=True)
    tax_rate_id: UUID = Field(foreign_key="tax_rates.id")
    is_reverse_charge_applicable: bool = Field(default=False)


class CompanyTaxRate(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    """Company-specific rate that overrides CompanyTaxSettings."""

    __tablename__ = "company_tax_rates"

    company_id: UUID = Field(foreign_key="companies.id", index=True)
    tax_rate_id: UUID = Field(foreign_key="tax_rates.id")
