from __future__ import annotations

import smtplib
from uuid import uuid4

import pytest
from fastapi import status

from app.core.config import settings

JOBS_URL = f"{settings.api_v1_str}/jobs"


class RecordingSMTP:
    sent: list = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def send_message(self, message):
        if RecordingSMTP.fail:
            raise smtplib.SMTPException("mailbox unavailable")
        RecordingSMTP.sent.append(message)


@pytest.fixture()
def smtp(monkeypatch, tmp_path):
    RecordingSMTP.sent = []
    RecordingSMTP.fail = False
    monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)
    monkeypatch.setattr(settings, "email_backend", "smtp")
    monkeypatch.setattr(settings, "smtp_host", "smtp.acme.io")
    monkeypatch.setattr(settings, "smtp_sender", "billing@acme.io")
    monkeypatch.setattr(settings, "sendgrid_api_key", None)
    monkeypatch.setattr(settings, "invoice_temp_dir", str(tmp_path / "tmp"))
    monkeypatch.setattr(settings, "pdf_cache_dir", None)
    (tmp_path / "tmp").mkdir()
    return RecordingSMTP


def test_invoice_email_job_runs_to_completion(client, factory, tenant_headers, smtp, tmp_path):
    company = factory.company()
    invoices = [factory.invoice(company, number="INV-1"), factory.invoice(company, number="INV-2")]

    response = client.post(
        f"{JOBS_URL}/invoice-emails",
        json={"invoice_ids": [str(invoice.id) for invoice in invoices]},
        headers=tenant_headers,
    )

    assert response.status_code == status.HTTP_202_ACCEPTED, response.json()
    job_id = response.json()["id"]
    assert len(response.json()["steps"]) == 4

    job = client.get(f"{JOBS_URL}/{job_id}", headers=tenant_headers).json()
    assert job["status"] == "Completed"
    assert job["details"] == "Successfully processed 2 invoice(s)"
    assert [step["status"] for step in job["steps"]] == ["completed"] * 4
    assert [entry["status"] for entry in job["history"]] == ["started", "completed"] * 4 + ["Completed"]
    assert [message["Subject"] for message in smtp.sent] == ["Invoice INV-1 from Globex", "Invoice INV-2 from Globex"]
    assert all(message["To"] == "accounts@globex.com" for message in smtp.sent)
    assert list((tmp_path / "tmp").iterdir()) == []


def test_delivery_failure_marks_job_failed(client, factory, tenant_headers, smtp, tmp_path):
    smtp.fail = True
    company = factory.company()
    invoices = [factory.invoice(company, number="INV-1"), factory.invoice(company, number="INV-2")]

    response = client.post(
        f"{JOBS_URL}/invoice-emails",
        json={"invoice_ids": [str(invoice.id) for invoice in invoices]},
        headers=tenant_headers,
    )
    job = client.get(f"{JOBS_URL}/{response.json()['id']}", headers=tenant_headers).json()

    assert job["status"] == "Failed"
    assert job["error"] == "Failed to process Invoice #INV-1 for Globex: Failed to send invoice email"
    assert [step["status"] for step in job["steps"]] == ["completed", "failed", "pending", "pending"]
    assert job["history"][-1]["status"] == "Failed"
    assert list((tmp_path / "tmp").iterdir()) == []


def test_job_request_validation(client, factory, tenant_headers):
    empty = client.post(f"{JOBS_URL}/invoice-emails", json={"invoice_ids": []}, headers=tenant_headers)
    assert empty.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    unknown = client.post(f"{JOBS_URL}/invoice-emails", json={"invoice_ids": [str(uuid4())]}, headers=tenant_headers)
    assert unknown.status_code == status.HTTP_404_NOT_FOUND

    assert client.get(f"{JOBS_URL}/{uuid4()}", headers=tenant_headers).status_code == status.HTTP_404_NOT_FOUND
