from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from app.core.exceptions import InvalidStateError, PipelineStepError, ResourceError, ValidationError
from app.models.job import JobStatus
from app.services.company import CompanyView, Recipient
from app.services.invoice import InvoiceItemView, InvoiceView
from app.services.invoice_email import InvoiceEmailOrchestrator
from app.services.job import EMAIL_STEP_TYPE, PDF_STEP_TYPE, invoice_email_steps
from app.services.pdf import RenderedInvoice
from app.services.storage import DownloadedFile
from app.schemas.job import InvoiceEmailJobData

pytestmark = pytest.mark.anyio

TENANT_ID = uuid4()
COMPANY_ID = uuid4()


class FakeJobService:
    def __init__(self, status: JobStatus = JobStatus.PENDING):
        self.status = status
        self.updates = []

    def get_job(self, tenant_id, job_id):
        return SimpleNamespace(id=job_id, tenant_id=tenant_id, status=self.status)

    def update_job_status(self, job_id, status, *, tenant_id, step_result=None, step_index=None, error=None, details=None, runner_id=None):
        self.status = JobStatus(status)
        self.updates.append(
            {
                "status": JobStatus(status),
                "step_index": step_index,
                "result": step_result.as_payload() if step_result else None,
                "error": error,
                "details": details,
            }
        )

    @property
    def step_updates(self):
        return [update for update in self.updates if update["result"]]

    @property
    def terminal(self):
        return [update for update in self.updates if update["status"] in (JobStatus.COMPLETED, JobStatus.FAILED)]


class FakeInvoiceService:
    def __init__(self, invoices):
        self.invoices = {invoice.invoice_id: invoice for invoice in invoices}

    def get_invoice_for_rendering(self, tenant_id, invoice_id):
        return self.invoices.get(invoice_id)


class FakeCompanyService:
    def __init__(self, company, recipient):
        self.company = company
        self.recipient = recipient

    def get_company_view(self, tenant_id, company_id):
        return self.company if company_id == self.company.id else None

    def resolve_billing_recipient(self, company):
        return self.recipient


class FakePdfService:
    def __init__(self, fail_for: str | None = None):
        self.fail_for = fail_for
        self.rendered = []

    def generate_and_store(self, *, tenant_id, invoice_id, invoice_number, version=1):
        if invoice_number == self.fail_for:
            raise RuntimeError("renderer crashed")
        self.rendered.append(invoice_number)
        return RenderedInvoice(file_id=uuid4(), invoice_id=invoice_id, version=version, size=8)


class FakeStorageService:
    def download_file(self, file_id, *, tenant_id):
        return DownloadedFile(file_id=file_id, original_name="invoice.pdf", mime_type="application/pdf", buffer=b"%PDF-1.4")


class FakeEmailService:
    def __init__(self, result: bool = True, fail_for: str | None = None):
        self.result = result
        self.fail_for = fail_for
        self.sent = []
        self.paths: list[Path] = []

    def send_invoice_email(self, message, file_path):
        path = Path(file_path)
        self.paths.append(path)
        assert path.read_bytes() == b"%PDF-1.4"
        if message.invoice.invoice_number == self.fail_for:
            return False
        self.sent.append((message.invoice.invoice_number, message.recipient_email))
        return self.result


class BrokenEmailService(FakeEmailService):
    def send_invoice_email(self, message, file_path):
        self.paths.append(Path(file_path))
        assert Path(file_path).exists()
        raise OSError("smtp down")


def _invoice(number: str) -> InvoiceView:
    return InvoiceView(
        invoice_id=uuid4(),
        tenant_id=TENANT_ID,
        company_id=COMPANY_ID,
        invoice_number=number,
        invoice_date=datetime(2024, 2, 1),
        due_date=datetime(2024, 3, 2),
        billing_period_start=datetime(2024, 1, 1),
        billing_period_end=datetime(2024, 2, 1),
        subtotal=10000,
        tax=1000,
        total=11000,
        status="draft",
        items=(InvoiceItemView(description="Managed services", quantity=1, unit_price=10000, net_amount=10000),),
    )


def _company() -> CompanyView:
    return CompanyView(
        id=COMPANY_ID,
        tenant_id=TENANT_ID,
        company_name="Globex",
        email="accounts@globex.com",
        billing_email=None,
        billing_contact_id=None,
        address="1 Globex Way",
    )


def _data(invoice_ids: list[UUID]) -> InvoiceEmailJobData:
    return InvoiceEmailJobData(
        job_id=uuid4(),
        tenant_id=TENANT_ID,
        invoice_ids=invoice_ids,
        steps=invoice_email_steps(TENANT_ID, invoice_ids),
    )


def _orchestrator(tmp_path, invoices, *, pdf=None, email=None, jobs=None, recipient=Recipient("billing@globex.com", "Globex", "billing_email")):
    jobs = jobs or FakeJobService()
    orchestrator = InvoiceEmailOrchestrator(
        job_service=jobs,
        invoice_service=FakeInvoiceService(invoices),
        company_service=FakeCompanyService(_company(), recipient),
        pdf_service=pdf or FakePdfService(),
        storage_service=FakeStorageService(),
        email_service=email or FakeEmailService(),
        temp_dir=tmp_path,
    )
    return orchestrator, jobs


async def test_emits_two_started_completed_pairs_per_invoice(tmp_path):
    invoices = [_invoice("INV-1"), _invoice("INV-2")]
    email = FakeEmailService()
    orchestrator, jobs = _orchestrator(tmp_path, invoices, email=email)

    await orchestrator.handle(_data([invoice.invoice_id for invoice in invoices]))

    emitted = [(update["step_index"], update["result"]["step"], update["result"]["status"]) for update in jobs.step_updates]
    assert emitted == [
        (0, PDF_STEP_TYPE, "started"),
        (0, PDF_STEP_TYPE, "completed"),
        (1, EMAIL_STEP_TYPE, "started"),
        (1, EMAIL_STEP_TYPE, "completed"),
        (2, PDF_STEP_TYPE, "started"),
        (2, PDF_STEP_TYPE, "completed"),
        (3, EMAIL_STEP_TYPE, "started"),
        (3, EMAIL_STEP_TYPE, "completed"),
    ]
    pdf_completed = jobs.step_updates[1]["result"]
    assert pdf_completed["invoiceId"] == str(invoices[0].invoice_id)
    assert "file_id" in pdf_completed
    assert jobs.step_updates[3]["result"]["recipientEmail"] == "billing@globex.com"
    assert email.sent == [("INV-1", "billing@globex.com"), ("INV-2", "billing@globex.com")]
    assert jobs.terminal == [
        {
            "status": JobStatus.COMPLETED,
            "step_index": None,
            "result": None,
            "error": None,
            "details": "Successfully processed 2 invoice(s)",
        }
    ]


async def test_temp_files_are_removed_after_success(tmp_path):
    invoices = [_invoice("INV-1")]
    email = FakeEmailService()
    orchestrator, _ = _orchestrator(tmp_path, invoices, email=email)

    await orchestrator.handle(_data([invoices[0].invoice_id]))

    [path] = email.paths
    assert path.parent == tmp_path
    assert path.name.startswith("invoice_INV-1_") and path.suffix == ".pdf"
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


async def test_render_failure_stops_the_batch(tmp_path):
    invoices = [_invoice("INV-1"), _invoice("INV-2"), _invoice("INV-3")]
    pdf = FakePdfService(fail_for="INV-2")
    email = FakeEmailService()
    orchestrator, jobs = _orchestrator(tmp_path, invoices, pdf=pdf, email=email)

    with pytest.raises(PipelineStepError) as excinfo:
        await orchestrator.handle(_data([invoice.invoice_id for invoice in invoices]))

    message = "Failed to process Invoice #INV-2 for Globex: renderer crashed"
    assert str(excinfo.value) == message
    assert excinfo.value.step == PDF_STEP_TYPE
    assert excinfo.value.invoice_id == invoices[1].invoice_id
    assert pdf.rendered == ["INV-1"]
    assert [sent for sent, _ in email.sent] == ["INV-1"]
    # invoice 1 fully reported, invoice 2 only started its render step
    assert len(jobs.step_updates) == 5
    assert jobs.terminal == [
        {"status": JobStatus.FAILED, "step_index": 2, "result": None, "error": message, "details": None}
    ]


async def test_false_send_result_fails_the_job_and_cleans_up(tmp_path):
    invoices = [_invoice("INV-1"), _invoice("INV-2")]
    email = FakeEmailService(fail_for="INV-1")
    orchestrator, jobs = _orchestrator(tmp_path, invoices, email=email)

    with pytest.raises(PipelineStepError, match="Failed to send invoice email"):
        await orchestrator.handle(_data([invoice.invoice_id for invoice in invoices]))

    assert len(email.paths) == 1
    assert not email.paths[0].exists()
    assert list(tmp_path.iterdir()) == []
    [failure] = jobs.terminal
    assert failure["status"] == JobStatus.FAILED
    assert failure["step_index"] == 1
    assert failure["error"].startswith("Failed to process Invoice #INV-1 for Globex:")


async def test_missing_recipient_fails_email_step(tmp_path):
    invoices = [_invoice("INV-1")]
    orchestrator, jobs = _orchestrator(tmp_path, invoices, recipient=None)

    with pytest.raises(PipelineStepError, match="No valid email address found for Globex") as excinfo:
        await orchestrator.handle(_data([invoices[0].invoice_id]))

    assert excinfo.value.step == EMAIL_STEP_TYPE
    assert [update["result"]["status"] for update in jobs.step_updates] == ["started", "completed"]
    assert jobs.terminal[0]["step_index"] == 1


async def test_unknown_invoice_uses_id_in_failure_message(tmp_path):
    missing_id = uuid4()
    orchestrator, jobs = _orchestrator(tmp_path, [])

    with pytest.raises(PipelineStepError) as excinfo:
        await orchestrator.handle(_data([missing_id]))

    assert str(excinfo.value).startswith(f"Failed to process Invoice #{missing_id} for Unknown Company:")
    assert jobs.step_updates == []
    assert jobs.terminal[0]["status"] == JobStatus.FAILED


async def test_raising_mailer_fails_the_job_and_cleans_up(tmp_path):
    invoices = [_invoice("INV-1"), _invoice("INV-2")]
    email = BrokenEmailService()
    orchestrator, jobs = _orchestrator(tmp_path, invoices, email=email)

    with pytest.raises(PipelineStepError, match="smtp down") as excinfo:
        await orchestrator.handle(_data([invoice.invoice_id for invoice in invoices]))

    assert isinstance(excinfo.value.__cause__, OSError)
    assert excinfo.value.step == EMAIL_STEP_TYPE
    assert len(email.paths) == 1
    assert list(tmp_path.iterdir()) == []
    # PDF started/completed and email started for INV-1 only
    assert len(jobs.step_updates) == 3
    assert all(update["result"]["invoiceId"] == str(invoices[0].invoice_id) for update in jobs.step_updates)
    [failure] = jobs.terminal
    assert failure["status"] == JobStatus.FAILED
    assert failure["step_index"] == 1
    assert failure["error"] == "Failed to process Invoice #INV-1 for Globex: smtp down"


async def test_unwritable_temp_dir_is_a_resource_error(tmp_path):
    blocked = tmp_path / "blocked"
    blocked.write_text("not a directory")
    invoices = [_invoice("INV-1")]
    email = FakeEmailService()
    orchestrator, jobs = _orchestrator(tmp_path, invoices, email=email)
    orchestrator.temp_dir = blocked / "tmp"

    with pytest.raises(PipelineStepError, match="Could not create temporary directory") as excinfo:
        await orchestrator.handle(_data([invoices[0].invoice_id]))

    assert isinstance(excinfo.value.__cause__, ResourceError)
    assert email.paths == []
    [failure] = jobs.terminal
    assert failure["status"] == JobStatus.FAILED
    assert failure["step_index"] == 1
    assert jobs.status == JobStatus.FAILED


async def test_empty_batch_marks_the_job_failed(tmp_path):
    orchestrator, jobs = _orchestrator(tmp_path, [])

    with pytest.raises(ValidationError, match="No invoice IDs provided"):
        await orchestrator.handle(_data([]))

    assert jobs.terminal == [
        {"status": JobStatus.FAILED, "step_index": None, "result": None, "error": "No invoice IDs provided", "details": None}
    ]


@pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
async def test_finished_job_is_not_rerun(tmp_path, status):
    invoices = [_invoice("INV-1")]
    jobs = FakeJobService(status=status)
    pdf = FakePdfService()
    orchestrator, _ = _orchestrator(tmp_path, invoices, pdf=pdf, jobs=jobs)

    with pytest.raises(InvalidStateError, match=f"already {status.value}"):
        await orchestrator.handle(_data([invoices[0].invoice_id]))

    assert jobs.updates == []
    assert pdf.rendered == []
