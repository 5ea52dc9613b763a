from __future__ import annotations

from uuid import UUID

from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class Company(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "companies"

    company_name: str = Field(index=True, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    billing_email: str | None = Field(default=None, max_length=255)
    # References contacts.id; kept without a FK constraint because contacts point back at companies.
    billing_contact_id: UUID | None = Field(default=None, index=True)
    address: str | None = Field(default=None, max_length=512)
    phone_number: str | None = Field(default=None, max_length=32)
    is_active: bool = Field(default=True)
