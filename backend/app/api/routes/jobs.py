from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlmodel import Session

from app.api.deps import get_current_tenant, get_db
from app.core.exceptions import ValidationError
from app.models.job import Job, JobStatus
from app.models.tenant import Tenant
from app.schemas.job import InvoiceEmailJobCreate, JobDetailRead, JobRead, JobStepRead
from app.services.invoice import InvoiceService
from app.services.invoice_email import run_invoice_email_job
from app.services.job import JobService

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _job_read(service: JobService, job: Job) -> JobRead:
    steps = [
        JobStepRead(
            step_index=step.step_index,
            step_name=step.step_name,
            step_type=step.step_type,
            status=getattr(step.status, "value", step.status),
            step_metadata=step.step_metadata,
        )
        for step in service.list_steps(job.tenant_id, job.id)
    ]
    history = [
        JobDetailRead(
            sequence=entry.sequence,
            step_name=entry.step_name,
            status=entry.status,
            result=entry.result,
            processed_at=entry.processed_at,
        )
        for entry in service.get_history(job.tenant_id, job.id)
    ]
    return JobRead(
        id=job.id,
        created_at=job.created_at,
        updated_at=job.updated_at,
        tenant_id=job.tenant_id,
        job_type=job.job_type,
        status=JobStatus(job.status).value,
        details=job.details,
        error=job.error,
        processed_at=job.processed_at,
        steps=steps,
        history=history,
    )


@router.post("/invoice-emails", response_model=JobRead, status_code=status.HTTP_202_ACCEPTED)
def create_invoice_email_job(
    payload: InvoiceEmailJobCreate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> JobRead:
    invoice_service = InvoiceService(session)
    missing = [str(invoice_id) for invoice_id in payload.invoice_ids if not invoice_service.get_invoice(tenant.id, invoice_id)]
    if missing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Invoices not found: {', '.join(missing)}")

    service = JobService(session)
    try:
        job, data = service.create_invoice_email_job(
            tenant_id=tenant.id,
            invoice_ids=payload.invoice_ids,
            user_id=payload.user_id,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    background_tasks.add_task(run_invoice_email_job, data)
    return _job_read(service, job)


@router.get("/{job_id}", response_model=JobRead)
def get_job(
    job_id: UUID,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> JobRead:
    service = JobService(session)
    job = service.get_job(tenant.id, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return _job_read(service, job)
