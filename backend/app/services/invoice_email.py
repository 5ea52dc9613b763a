from __future__ import annotations

import tempfile
import time
from functools import partial
from pathlib import Path
from typing import Callable, Protocol
from uuid import UUID

import anyio.to_thread
from sqlmodel import Session

from app.core.config import settings
from app.core.exceptions import (
    BillingError,
    InvalidStateError,
    NotFoundError,
    PipelineStepError,
    ResourceError,
    ValidationError,
)
from app.core.logging_setup import logger
from app.db import session as db_session
from app.models.job import TERMINAL_JOB_STATUSES, JobStatus
from app.schemas.job import InvoiceEmailJobData, JobStepResult, JobStepDefinition
from app.services.company import CompanyService, CompanyView
from app.services.invoice import InvoiceService, InvoiceView
from app.services.job import JobService
from app.services.notification import CompanyBrand, EmailService, InvoiceEmail
from app.services.pdf import InvoicePDFService, RenderedInvoice
from app.services.storage import DownloadedFile, FileStorageService


class PdfRenderer(Protocol):
    def generate_and_store(
        self, *, tenant_id: UUID, invoice_id: UUID, invoice_number: str, version: int = 1
    ) -> RenderedInvoice:
        ...


class ArtifactStore(Protocol):
    def download_file(self, file_id: UUID, *, tenant_id: UUID) -> DownloadedFile:
        ...


class InvoiceMailer(Protocol):
    def send_invoice_email(self, message: InvoiceEmail, file_path: str | Path) -> bool:
        ...


class InvoiceEmailOrchestrator:
    """Renders and emails a batch of invoices, one after the other, failing fast.

    Each invoice owns two consecutive job steps (render at 2*i, delivery at 2*i+1) and
    reports started/completed for both. The first hard failure marks the job Failed and
    is re-raised; invoices after it are left untouched.
    """

    def __init__(
        self,
        *,
        job_service: JobService,
        invoice_service: InvoiceService,
        company_service: CompanyService,
        pdf_service: PdfRenderer,
        storage_service: ArtifactStore,
        email_service: InvoiceMailer,
        temp_dir: str | Path | None = None,
    ) -> None:
        self.job_service = job_service
        self.invoice_service = invoice_service
        self.company_service = company_service
        self.pdf_service = pdf_service
        self.storage_service = storage_service
        self.email_service = email_service
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())

    def _temp_path(self, invoice_number: str) -> Path:
        safe_number = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in invoice_number)
        return self.temp_dir / f"invoice_{safe_number}_{time.time_ns() // 1_000_000}.pdf"

    def _report(self, data: InvoiceEmailJobData, step_index: int, result: JobStepResult, runner_id: str | None) -> None:
        self.job_service.update_job_status(
            data.job_id,
            JobStatus.PROCESSING,
            tenant_id=data.tenant_id,
            step_result=result,
            step_index=step_index,
            runner_id=runner_id,
        )

    async def handle(self, data: InvoiceEmailJobData, *, runner_id: str | None = None) -> None:
        job = self.job_service.get_job(data.tenant_id, data.job_id)
        if not job:
            raise NotFoundError(f"Job {data.job_id} not found")
        current = JobStatus(job.status)
        if current in TERMINAL_JOB_STATUSES:
            raise InvalidStateError(f"Job {data.job_id} is already {current.value}")
        if not data.invoice_ids:
            self.job_service.update_job_status(
                data.job_id,
                JobStatus.FAILED,
                tenant_id=data.tenant_id,
                error="No invoice IDs provided",
                runner_id=runner_id,
            )
            raise ValidationError("No invoice IDs provided")

        logger.info(
            "Starting invoice email job %s: processing %d invoice(s) for tenant %s",
            data.job_id,
            len(data.invoice_ids),
            data.tenant_id,
        )
        for index, invoice_id in enumerate(data.invoice_ids):
            await self._process_invoice(data, index, invoice_id, runner_id)

        self.job_service.update_job_status(
            data.job_id,
            JobStatus.COMPLETED,
            tenant_id=data.tenant_id,
            details=f"Successfully processed {len(data.invoice_ids)} invoice(s)",
            runner_id=runner_id,
        )

    async def _process_invoice(
        self, data: InvoiceEmailJobData, index: int, invoice_id: UUID, runner_id: str | None
    ) -> None:
        pdf_index, email_index = index * 2, index * 2 + 1
        pdf_step: JobStepDefinition = data.steps[pdf_index]
        email_step: JobStepDefinition = data.steps[email_index]
        tenant_id = data.tenant_id

        invoice: InvoiceView | None = None
        company: CompanyView | None = None
        current_step: JobStepDefinition = pdf_step
        current_index = pdf_index
        try:
            invoice = self.invoice_service.get_invoice_for_rendering(tenant_id, invoice_id)
            if not invoice or not invoice.invoice_number:
                raise PipelineStepError(f"Failed to get details for Invoice ID {invoice_id}")
            company = self.company_service.get_company_view(tenant_id, invoice.company_id)
            if not company:
                raise PipelineStepError(f"Company not found for Invoice #{invoice.invoice_number}")
            label = f"Invoice #{invoice.invoice_number} ({company.company_name})"

            self._report(
                data,
                pdf_index,
                JobStepResult(step=pdf_step.type, status="started", invoice_id=str(invoice_id), details=f"Generating PDF for {label}"),
                runner_id,
            )
            rendered = await anyio.to_thread.run_sync(
                partial(
                    self.pdf_service.generate_and_store,
                    tenant_id=tenant_id,
                    invoice_id=invoice_id,
                    invoice_number=invoice.invoice_number,
                    version=1,
                )
            )
            file_id = rendered.file_id
            self._report(
                data,
                pdf_index,
                JobStepResult(
                    step=pdf_step.type,
                    status="completed",
                    invoice_id=str(invoice_id),
                    file_id=str(file_id),
                    details=f"Generated PDF for {label}",
                ),
                runner_id,
            )

            current_step, current_index = email_step, email_index
            recipient = self.company_service.resolve_billing_recipient(company)
            if not recipient:
                raise PipelineStepError(
                    f"No valid email address found for {company.company_name} (Invoice #{invoice.invoice_number})"
                )
            self._report(
                data,
                email_index,
                JobStepResult(
                    step=email_step.type,
                    status="started",
                    invoice_id=str(invoice_id),
                    details=(
                        f"Sending Invoice #{invoice.invoice_number} to {recipient.name} "
                        f"({recipient.email}) at {company.company_name}"
                    ),
                ),
                runner_id,
            )

            downloaded = await anyio.to_thread.run_sync(
                partial(self.storage_service.download_file, file_id, tenant_id=tenant_id)
            )
            message = InvoiceEmail(
                invoice=invoice,
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                tenant_id=tenant_id,
                company=CompanyBrand(name=company.company_name, address=company.address or ""),
            )
            temp_path = self._temp_path(invoice.invoice_number)
            try:
                temp_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ResourceError(f"Could not create temporary directory {temp_path.parent}: {exc}") from exc
            try:
                try:
                    temp_path.write_bytes(downloaded.buffer)
                except OSError as exc:
                    raise ResourceError(f"Could not write temporary file {temp_path}: {exc}") from exc
                sent = await anyio.to_thread.run_sync(self.email_service.send_invoice_email, message, temp_path)
                if not sent:
                    raise PipelineStepError("Failed to send invoice email")
            finally:
                temp_path.unlink(missing_ok=True)

            self._report(
                data,
                email_index,
                JobStepResult(
                    step=email_step.type,
                    status="completed",
                    invoice_id=str(invoice_id),
                    recipient_email=recipient.email,
                    details=(
                        f"Successfully sent Invoice #{invoice.invoice_number} to {recipient.name} "
                        f"at {company.company_name}"
                    ),
                ),
                runner_id,
            )
        except Exception as exc:
            invoice_number = invoice.invoice_number if invoice else str(invoice_id)
            company_name = company.company_name if company else "Unknown Company"
            contextual_error = f"Failed to process Invoice #{invoice_number} for {company_name}: {exc}"
            logger.error("Invoice email job %s: %s", data.job_id, contextual_error)
            self.job_service.update_job_status(
                data.job_id,
                JobStatus.FAILED,
                tenant_id=tenant_id,
                step_index=current_index,
                error=contextual_error,
                runner_id=runner_id,
            )
            raise PipelineStepError(contextual_error, invoice_id=invoice_id, step=current_step.type) from exc


def build_orchestrator(session: Session) -> InvoiceEmailOrchestrator:
    """Wire fresh service instances around one session; every job gets its own set."""
    invoice_service = InvoiceService(session)
    storage_service = FileStorageService(session)
    return InvoiceEmailOrchestrator(
        job_service=JobService(session),
        invoice_service=invoice_service,
        company_service=invoice_service.company_service,
        pdf_service=InvoicePDFService(
            invoice_service,
            storage_service,
            pdf_cache_dir=settings.pdf_cache_dir,
        ),
        storage_service=storage_service,
        email_service=EmailService.from_settings(settings),
        temp_dir=settings.invoice_temp_dir,
    )


async def run_invoice_email_job(
    data: InvoiceEmailJobData,
    *,
    session_factory: Callable[[], Session] | None = None,
    runner_id: str | None = None,
) -> bool:
    """Background entry point. Returns False when the job ended Failed (already recorded on the job)."""
    factory = session_factory or db_session.new_session
    with factory() as session:
        orchestrator = build_orchestrator(session)
        try:
            await orchestrator.handle(data, runner_id=runner_id)
        except BillingError as exc:
            logger.warning("Invoice email job %s stopped: %s", data.job_id, exc)
            return False
    return True
