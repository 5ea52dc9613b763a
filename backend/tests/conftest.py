from __future__ import annotations

import os
import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine

from app.api.deps import get_db
from app.db import session as db_session_module
from app.main import app
from app.models.billing import (
    ApprovalStatus,
    BillingPlan,
    BucketPlan,
    BucketUsage,
    CompanyBillingPlan,
    PlanService,
    PlanType,
    Service,
    TimeEntry,
    UsageRecord,
)
from app.models.company import Company
from app.models.contact import Contact
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from app.models.tax import CompanyTaxRate, CompanyTaxSettings, TaxRate
from app.models.tenant import Tenant

PERIOD_START = datetime(2024, 1, 1)
PERIOD_END = datetime(2024, 2, 1)


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    is_postgres = test_database_url.startswith("postgresql")

    admin_engine = None
    schema_name = None

    if is_postgres:
        schema_name = f"test_{uuid.uuid4().hex}"
        admin_engine = create_engine(test_database_url, future=True)
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
            )
        client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
        connect_args = {"options": f"-csearch_path={schema_name},public -cclient_encoding={client_encoding}"}
        engine = create_engine(test_database_url, connect_args=connect_args, future=True)
    else:
        engine = create_engine(test_database_url, connect_args={"check_same_thread": False})

    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    db_session_module.engine = engine

    def override_get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield engine

    app.dependency_overrides.pop(get_db, None)
    db_session_module.engine = original_engine
    engine.dispose()
    if is_postgres and admin_engine and schema_name:
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            )
        admin_engine.dispose()


@pytest.fixture()
def storage_env(monkeypatch, tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("MSP_BILLING_STORAGE", str(storage_dir))
    yield storage_dir


@pytest.fixture()
def client(db_engine, storage_env) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


class BillingFactory:
    """Builds billing records for one tenant; every helper commits."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.tenant = self._save(Tenant(name="Acme MSP", slug=f"acme-{uuid.uuid4().hex[:8]}"))

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def company(self, name: str = "Globex", **kwargs) -> Company:
        kwargs.setdefault("email", "accounts@globex.com")
        return self._save(Company(tenant_id=self.tenant.id, company_name=name, **kwargs))

    def contact(self, company: Company, full_name: str = "Hank Scorpio", email: str | None = "hank@globex.com") -> Contact:
        return self._save(Contact(tenant_id=self.tenant.id, company_id=company.id, full_name=full_name, email=email))

    def plan(self, company: Company, plan_type: PlanType, name: str | None = None, **assignment) -> BillingPlan:
        plan = self._save(BillingPlan(tenant_id=self.tenant.id, plan_name=name or f"{plan_type.value} plan", plan_type=plan_type))
        assignment.setdefault("start_date", datetime(2023, 1, 1))
        self._save(CompanyBillingPlan(tenant_id=self.tenant.id, company_id=company.id, plan_id=plan.id, **assignment))
        return plan

    def service(self, name: str, default_rate: int | None = None, **kwargs) -> Service:
        return self._save(Service(tenant_id=self.tenant.id, service_name=name, default_rate=default_rate, **kwargs))

    def attach(self, plan: BillingPlan, service: Service, quantity: int | None = None, custom_rate: int | None = None) -> PlanService:
        return self._save(
            PlanService(
                tenant_id=self.tenant.id,
                plan_id=plan.id,
                service_id=service.id,
                quantity=quantity,
                custom_rate=custom_rate,
            )
        )

    def time_entry(
        self,
        company: Company,
        service: Service,
        minutes: int,
        start_time: datetime = datetime(2024, 1, 10, 9, 0),
        approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
    ) -> TimeEntry:
        return self._save(
            TimeEntry(
                tenant_id=self.tenant.id,
                company_id=company.id,
                service_id=service.id,
                start_time=start_time,
                end_time=start_time,
                billable_duration=minutes,
                approval_status=approval_status,
            )
        )

    def usage(self, company: Company, service: Service, quantity: float, usage_date: datetime) -> UsageRecord:
        return self._save(
            UsageRecord(
                tenant_id=self.tenant.id,
                company_id=company.id,
                service_id=service.id,
                usage_date=usage_date,
                quantity=quantity,
            )
        )

    def bucket(self, plan: BillingPlan, total_hours: int, overage_rate: int) -> BucketPlan:
        return self._save(
            BucketPlan(tenant_id=self.tenant.id, plan_id=plan.id, total_hours=total_hours, overage_rate=overage_rate)
        )

    def bucket_usage(
        self,
        bucket: BucketPlan,
        company: Company,
        hours_used: float,
        service: Service | None = None,
        period_start: datetime = PERIOD_START,
        period_end: datetime = PERIOD_END,
    ) -> BucketUsage:
        return self._save(
            BucketUsage(
                tenant_id=self.tenant.id,
                bucket_plan_id=bucket.id,
                company_id=company.id,
                service_catalog_id=service.id if service else None,
                period_start=period_start,
                period_end=period_end,
                hours_used=hours_used,
                overage_hours=max(0.0, hours_used - bucket.total_hours),
            )
        )

    def tax_rate(self, percentage: float, **kwargs) -> TaxRate:
        return self._save(TaxRate(tenant_id=self.tenant.id, tax_percentage=percentage, **kwargs))

    def tax_settings(self, company: Company, rate: TaxRate, reverse_charge: bool = False) -> CompanyTaxSettings:
        return self._save(
            CompanyTaxSettings(
                tenant_id=self.tenant.id,
                company_id=company.id,
                tax_rate_id=rate.id,
                is_reverse_charge_applicable=reverse_charge,
            )
        )

    def tax_override(self, company: Company, rate: TaxRate) -> CompanyTaxRate:
        return self._save(CompanyTaxRate(tenant_id=self.tenant.id, company_id=company.id, tax_rate_id=rate.id))

    def invoice(
        self,
        company: Company,
        number: str = "INV-000001",
        amounts: tuple[int, int] = (10000, 1000),
        status: InvoiceStatus = InvoiceStatus.DRAFT,
    ) -> Invoice:
        subtotal, tax = amounts
        invoice = self._save(
            Invoice(
                tenant_id=self.tenant.id,
                company_id=company.id,
                invoice_number=number,
                invoice_date=PERIOD_END,
                due_date=datetime(2024, 3, 2),
                billing_period_start=PERIOD_START,
                billing_period_end=PERIOD_END,
                subtotal=subtotal,
                tax=tax,
                total=subtotal + tax,
                status=status,
            )
        )
        self._save(
            InvoiceItem(
                tenant_id=self.tenant.id,
                invoice_id=invoice.id,
                description="Managed services",
                quantity=1,
                unit_price=subtotal,
                net_amount=subtotal,
            )
        )
        return invoice


@pytest.fixture()
def factory(db_session) -> BillingFactory:
    return BillingFactory(db_session)


@pytest.fixture()
def tenant_headers(factory) -> dict[str, str]:
    return {"X-Tenant-ID": str(factory.tenant.id)}
