from __future__ import annotations

from typing import Iterable, Sequence
from uuid import UUID

from sqlmodel import Session, func, select

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.core.logging_setup import logger
from app.models.base import utcnow
from app.models.job import (
    TERMINAL_JOB_STATUSES,
    Job,
    JobDetail,
    JobStatus,
    JobStep,
    JobStepStatus,
)
from app.schemas.job import InvoiceEmailJobData, JobStepResult, JobStepDefinition

INVOICE_EMAIL_JOB = "invoice_email"
PDF_STEP_TYPE = "pdf_generation"
EMAIL_STEP_TYPE = "email_sending"


def invoice_email_steps(tenant_id: UUID, invoice_ids: Sequence[UUID]) -> list[JobStepDefinition]:
    steps: list[JobStepDefinition] = []
    for invoice_id in invoice_ids:
        metadata = {"invoiceId": str(invoice_id), "tenantId": str(tenant_id)}
        steps.append(JobStepDefinition(step_name=f"Generate PDF for invoice {invoice_id}", type=PDF_STEP_TYPE, metadata=metadata))
        steps.append(JobStepDefinition(step_name=f"Send email for invoice {invoice_id}", type=EMAIL_STEP_TYPE, metadata=metadata))
    return steps


class JobService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create_job(
        self,
        *,
        tenant_id: UUID,
        job_type: str,
        steps: Sequence[JobStepDefinition],
        metadata: dict | None = None,
        user_id: UUID | None = None,
    ) -> Job:
        job = Job(
            tenant_id=tenant_id,
            job_type=job_type,
            status=JobStatus.PENDING,
            user_id=user_id,
            job_metadata=metadata or {},
        )
        self.session.add(job)
        self.session.flush()
        for index, definition in enumerate(steps):
            self.session.add(
                JobStep(
                    tenant_id=tenant_id,
                    job_id=job.id,
                    step_index=index,
                    step_name=definition.step_name,
                    step_type=definition.type,
                    step_metadata=dict(definition.metadata),
                )
            )
        self.session.commit()
        self.session.refresh(job)
        logger.info("Created %s job %s with %d step(s)", job_type, job.id, len(steps))
        return job

    def create_invoice_email_job(
        self,
        *,
        tenant_id: UUID,
        invoice_ids: Sequence[UUID],
        user_id: UUID | None = None,
    ) -> tuple[Job, InvoiceEmailJobData]:
        if not invoice_ids:
            raise ValidationError("No invoice IDs provided")
        steps = invoice_email_steps(tenant_id, invoice_ids)
        job = self.create_job(
            tenant_id=tenant_id,
            job_type=INVOICE_EMAIL_JOB,
            steps=steps,
            metadata={"invoice_ids": [str(invoice_id) for invoice_id in invoice_ids]},
            user_id=user_id,
        )
        data = InvoiceEmailJobData(
            job_id=job.id,
            tenant_id=tenant_id,
            invoice_ids=list(invoice_ids),
            steps=steps,
            user_id=user_id,
        )
        return job, data

    def get_job(self, tenant_id: UUID, job_id: UUID) -> Job | None:
        job = self.session.get(Job, job_id)
        if job and job.tenant_id == tenant_id:
            return job
        return None

    def list_steps(self, tenant_id: UUID, job_id: UUID) -> list[JobStep]:
        return list(
            self.session.exec(
                select(JobStep)
                .where((JobStep.tenant_id == tenant_id) & (JobStep.job_id == job_id))
                .order_by(JobStep.step_index)
            ).all()
        )

    def get_history(self, tenant_id: UUID, job_id: UUID) -> Iterable[JobDetail]:
        return self.session.exec(
            select(JobDetail)
            .where((JobDetail.tenant_id == tenant_id) & (JobDetail.job_id == job_id))
            .order_by(JobDetail.sequence)
        ).all()

    def _next_sequence(self, job_id: UUID) -> int:
        count = self.session.exec(
            select(func.count()).select_from(JobDetail).where(JobDetail.job_id == job_id)
        ).one()
        return int(count or 0) + 1

    def _mark_step(self, tenant_id: UUID, job_id: UUID, step_index: int, status: JobStepStatus) -> None:
        step = self.session.exec(
            select(JobStep).where(
                (JobStep.tenant_id == tenant_id) & (JobStep.job_id == job_id) & (JobStep.step_index == step_index)
            )
        ).first()
        if not step:
            raise NotFoundError(f"Job {job_id} has no step at position {step_index}")
        step.status = status
        step.updated_at = utcnow()
        self.session.add(step)

    def update_job_status(
        self,
        job_id: UUID,
        status: JobStatus,
        *,
        tenant_id: UUID,
        step_result: JobStepResult | None = None,
        step_index: int | None = None,
        error: str | None = None,
        details: str | None = None,
        runner_id: str | None = None,
    ) -> Job:
        """Apply a status update and append it to the job history.

        Completed and Failed are terminal: any update after either raises InvalidStateError.
        """
        status = JobStatus(status)
        job = self.get_job(tenant_id, job_id)
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        current = JobStatus(job.status)
        if current in TERMINAL_JOB_STATUSES:
            raise InvalidStateError(f"Job {job_id} is already {current.value}")
        if status is JobStatus.PENDING:
            raise InvalidStateError(f"Job {job_id} cannot move back to {status.value}")

        now = utcnow()
        job.status = status
        job.updated_at = now
        if runner_id:
            job.runner_id = runner_id
        if error is not None:
            job.error = error
        if details is not None:
            job.details = details
        if status in TERMINAL_JOB_STATUSES:
            job.processed_at = now
        self.session.add(job)

        if step_result is not None and step_index is not None:
            self._mark_step(tenant_id, job_id, step_index, JobStepStatus(step_result.status))
        elif step_index is not None and status is JobStatus.FAILED:
            self._mark_step(tenant_id, job_id, step_index, JobStepStatus.FAILED)

        if step_result is not None:
            entry_name, entry_status, result = step_result.step, step_result.status, step_result.as_payload()
        else:
            entry_name, entry_status = job.job_type, status.value
            result = {key: value for key, value in (("error", error), ("details", details)) if value is not None}
        self.session.add(
            JobDetail(
                tenant_id=tenant_id,
                job_id=job_id,
                sequence=self._next_sequence(job_id),
                step_name=entry_name,
                status=entry_status,
                result=result,
                processed_at=now,
            )
        )
        self.session.commit()
        self.session.refresh(job)

        if status is JobStatus.FAILED:
            logger.error("Job %s failed: %s", job_id, error)
        elif status is JobStatus.COMPLETED:
            logger.info("Job %s completed: %s", job_id, details)
        return job
