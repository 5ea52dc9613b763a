from __future__ import annotations

from uuid import UUID

from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class Contact(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "contacts"

    company_id: UUID | None = Field(default=None, foreign_key="companies.id", index=True)
    full_name: str = Field(max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone_number: str | None = Field(default=None, max_length=32)
    is_inactive: bool = Field(default=False)
