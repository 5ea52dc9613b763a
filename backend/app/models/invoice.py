from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    FAILED = "failed"


class Invoice(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "invoices"

    company_id: UUID = Field(foreign_key="companies.id", index=True)
    invoice_number: str = Field(index=True, max_length=64)
    invoice_date: datetime
    due_date: datetime
    billing_period_start: datetime
    billing_period_end: datetime
    subtotal: int = Field(default=0)
    tax: int = Field(default=0)
    total: int = Field(default=0)
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, index=True)
    finalized_at: datetime | None = Field(default=None)
    tax_rate_id: UUID | None = Field(default=None, foreign_key="tax_rates.id")
    is_reverse_charge: bool = Field(default=False)


class InvoiceItem(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "invoice_items"

    invoice_id: UUID = Field(foreign_key="invoices.id", index=True)
    plan_id: UUID | None = Field(default=None, foreign_key="billing_plans.id")
    service_id: UUID | None = Field(default=None, foreign_key="service_catalog.id")
    position: int = Field(default=0)
    description: str
    quantity: float
    unit_price: int
    net_amount: int
