from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.schemas.common import IDModel, Timestamped


class InvoiceGenerateRequest(BaseModel):
    company_id: UUID
    billing_period_start: datetime | str
    billing_period_end: datetime | str


class InvoiceCompany(BaseModel):
    id: UUID
    name: str


class InvoiceItemRead(IDModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    description: str
    quantity: float
    unit_price: int
    net_amount: int
    plan_id: UUID | None = None
    service_id: UUID | None = None


class InvoiceRead(IDModel, Timestamped):
    invoice_number: str
    company: InvoiceCompany
    invoice_date: datetime
    due_date: datetime
    billing_period_start: datetime
    billing_period_end: datetime
    subtotal: int
    tax: int
    total: int
    status: str
    finalized_at: datetime | None = None
    is_reverse_charge: bool = False


class InvoiceDetailRead(InvoiceRead):
    items: List[InvoiceItemRead] = []
