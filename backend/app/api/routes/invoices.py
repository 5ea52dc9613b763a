from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from app.api.deps import get_current_tenant, get_db
from app.core.exceptions import ComputationError, InvalidStateError, NotFoundError, ValidationError
from app.models.company import Company
from app.models.invoice import Invoice, InvoiceStatus
from app.models.tenant import Tenant
from app.schemas.invoice import (
    InvoiceCompany,
    InvoiceDetailRead,
    InvoiceGenerateRequest,
    InvoiceItemRead,
    InvoiceRead,
)
from app.services.invoice import InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _invoice_payload(invoice: Invoice, company: Company | None) -> dict:
    return {
        "id": invoice.id,
        "created_at": invoice.created_at,
        "updated_at": invoice.updated_at,
        "invoice_number": invoice.invoice_number,
        "company": InvoiceCompany(
            id=invoice.company_id,
            name=company.company_name if company else "Unknown Company",
        ),
        "invoice_date": invoice.invoice_date,
        "due_date": invoice.due_date,
        "billing_period_start": invoice.billing_period_start,
        "billing_period_end": invoice.billing_period_end,
        "subtotal": invoice.subtotal,
        "tax": invoice.tax,
        "total": invoice.total,
        "status": InvoiceStatus(invoice.status).value,
        "finalized_at": invoice.finalized_at,
        "is_reverse_charge": invoice.is_reverse_charge,
    }


def _detail(service: InvoiceService, tenant_id: UUID, invoice: Invoice) -> InvoiceDetailRead:
    company = service.company_service.get_company(tenant_id, invoice.company_id)
    items = [InvoiceItemRead.model_validate(item) for item in service.get_invoice_items(tenant_id, invoice.id)]
    return InvoiceDetailRead(**_invoice_payload(invoice, company), items=items)


@router.post("/generate", response_model=InvoiceDetailRead, status_code=status.HTTP_201_CREATED)
def generate_invoice(
    payload: InvoiceGenerateRequest,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> InvoiceDetailRead:
    service = InvoiceService(session)
    try:
        invoice = service.generate_invoice(
            tenant.id,
            payload.company_id,
            payload.billing_period_start,
            payload.billing_period_end,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ComputationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _detail(service, tenant.id, invoice)


@router.get("", response_model=List[InvoiceRead])
def list_invoices(
    company_id: UUID | None = None,
    invoice_status: InvoiceStatus | None = Query(default=None, alias="status"),
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> List[InvoiceRead]:
    service = InvoiceService(session)
    invoices = service.list_invoices(tenant.id, company_id=company_id, status=invoice_status)
    companies: dict[UUID, Company | None] = {}
    result: List[InvoiceRead] = []
    for invoice in invoices:
        if invoice.company_id not in companies:
            companies[invoice.company_id] = service.company_service.get_company(tenant.id, invoice.company_id)
        result.append(InvoiceRead(**_invoice_payload(invoice, companies[invoice.company_id])))
    return result


@router.get("/{invoice_id}", response_model=InvoiceDetailRead)
def get_invoice(
    invoice_id: UUID,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> InvoiceDetailRead:
    service = InvoiceService(session)
    invoice = service.get_invoice(tenant.id, invoice_id)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return _detail(service, tenant.id, invoice)


@router.post("/{invoice_id}/finalize", response_model=InvoiceDetailRead)
def finalize_invoice(
    invoice_id: UUID,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> InvoiceDetailRead:
    service = InvoiceService(session)
    try:
        invoice = service.finalize_invoice(tenant.id, invoice_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _detail(service, tenant.id, invoice)
