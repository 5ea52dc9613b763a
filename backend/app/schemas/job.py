from __future__ import annotations

from datetime import datetime
from typing import List, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schemas.common import IDModel, Timestamped


class JobStepResult(BaseModel):
    """Progress payload emitted for each started/completed pipeline step."""

    model_config = ConfigDict(populate_by_name=True)

    step: str
    status: Literal["started", "completed", "failed"]
    invoice_id: str = Field(alias="invoiceId")
    details: str
    file_id: str | None = None
    recipient_email: str | None = Field(default=None, alias="recipientEmail")

    def as_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class JobStepDefinition(BaseModel):
    step_name: str
    type: str
    metadata: dict = Field(default_factory=dict)


class InvoiceEmailJobData(BaseModel):
    job_id: UUID
    tenant_id: UUID
    invoice_ids: List[UUID]
    steps: List[JobStepDefinition]
    user_id: UUID | None = None

    @model_validator(mode="after")
    def _two_steps_per_invoice(self) -> "InvoiceEmailJobData":
        if len(self.steps) != 2 * len(self.invoice_ids):
            raise ValueError("Invoice email jobs need exactly two steps (PDF, email) per invoice")
        return self


class InvoiceEmailJobCreate(BaseModel):
    invoice_ids: List[UUID] = Field(min_length=1)
    user_id: UUID | None = None


class JobStepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_index: int
    step_name: str
    step_type: str
    status: str
    step_metadata: dict | None = None


class JobDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    step_name: str
    status: str
    result: dict | None = None
    processed_at: datetime


class JobRead(IDModel, Timestamped):
    tenant_id: UUID
    job_type: str
    status: str
    details: str | None = None
    error: str | None = None
    processed_at: datetime | None = None
    steps: List[JobStepRead] = []
    history: List[JobDetailRead] = []
