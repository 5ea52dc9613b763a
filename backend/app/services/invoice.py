from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from app.core.config import settings
from app.core.exceptions import InvalidStateError, NotFoundError
from app.core.logging_setup import logger
from app.models.base import utcnow
from app.models.company import Company
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from app.services.company import CompanyService
from app.services.plan_aggregator import LineItem, PlanAggregator
from app.services.tax import TaxCalculator, TaxResult
from app.utils.periods import BillingPeriod


@dataclass(frozen=True)
class InvoiceItemView:
    description: str
    quantity: float
    unit_price: int
    net_amount: int


@dataclass(frozen=True)
class InvoiceView:
    """Read-only snapshot of an invoice handed to renderers and mailers."""

    invoice_id: UUID
    tenant_id: UUID
    company_id: UUID
    invoice_number: str
    invoice_date: datetime
    due_date: datetime
    billing_period_start: datetime
    billing_period_end: datetime
    subtotal: int
    tax: int
    total: int
    status: str
    items: tuple[InvoiceItemView, ...] = ()


class InvoiceAssembler:
    """Persists computed line items and totals as one draft invoice."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def next_invoice_number(self, tenant_id: UUID) -> str:
        count = self.session.exec(
            select(func.count()).select_from(Invoice).where(Invoice.tenant_id == tenant_id)
        ).one()
        return f"{settings.invoice_number_prefix}{int(count or 0) + 1:06d}"

    def assemble(
        self,
        *,
        tenant_id: UUID,
        company: Company,
        period: BillingPeriod,
        line_items: Sequence[LineItem],
        tax: TaxResult,
    ) -> Invoice:
        subtotal = sum(item.net_amount for item in line_items)
        now = utcnow()
        invoice = Invoice(
            tenant_id=tenant_id,
            company_id=company.id,
            invoice_number=self.next_invoice_number(tenant_id),
            invoice_date=now,
            due_date=now + timedelta(days=max(settings.invoice_due_days, 0)),
            billing_period_start=period.start,
            billing_period_end=period.end,
            subtotal=subtotal,
            tax=tax.amount,
            total=subtotal + tax.amount,
            status=InvoiceStatus.DRAFT,
            tax_rate_id=tax.tax_rate_id,
            is_reverse_charge=tax.reverse_charge,
        )
        try:
            self.session.add(invoice)
            self.session.flush()
            for position, item in enumerate(line_items):
                self.session.add(
                    InvoiceItem(
                        tenant_id=tenant_id,
                        invoice_id=invoice.id,
                        plan_id=item.plan_id,
                        service_id=item.service_id,
                        position=position,
                        description=item.description,
                        quantity=float(item.quantity),
                        unit_price=item.unit_price,
                        net_amount=item.net_amount,
                    )
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(invoice)
        return invoice


class InvoiceFinalizer:
    def __init__(self, session: Session) -> None:
        self.session = session

    def finalize(self, invoice: Invoice) -> Invoice:
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} cannot be finalized from status '{InvoiceStatus(invoice.status).value}'"
            )
        now = utcnow()
        invoice.status = InvoiceStatus.SENT
        invoice.finalized_at = now
        invoice.updated_at = now
        self.session.add(invoice)
        self.session.commit()
        self.session.refresh(invoice)
        return invoice


class InvoiceService:
    def __init__(
        self,
        session: Session,
        aggregator: PlanAggregator | None = None,
        tax_calculator: TaxCalculator | None = None,
        company_service: CompanyService | None = None,
    ) -> None:
        self.session = session
        self.aggregator = aggregator or PlanAggregator(session)
        self.tax_calculator = tax_calculator or TaxCalculator(session)
        self.company_service = company_service or CompanyService(session)
        self.assembler = InvoiceAssembler(session)
        self.finalizer = InvoiceFinalizer(session)

    def _ensure_no_duplicate_draft(self, tenant_id: UUID, company_id: UUID, period: BillingPeriod) -> None:
        existing = self.session.exec(
            select(Invoice).where(
                (Invoice.tenant_id == tenant_id)
                & (Invoice.company_id == company_id)
                & (Invoice.billing_period_start == period.start)
                & (Invoice.billing_period_end == period.end)
                & (Invoice.status == InvoiceStatus.DRAFT)
            )
        ).first()
        if existing:
            raise InvalidStateError(
                f"Draft invoice {existing.invoice_number} already exists for company {company_id} in the given period"
            )

    def generate_invoice(
        self,
        tenant_id: UUID,
        company_id: UUID,
        period_start: str | datetime,
        period_end: str | datetime,
    ) -> Invoice:
        period = BillingPeriod.parse(period_start, period_end)
        company = self.company_service.get_company(tenant_id, company_id)
        if not company:
            raise NotFoundError(f"Company {company_id} not found")
        if settings.invoice_prevent_duplicate_drafts:
            self._ensure_no_duplicate_draft(tenant_id, company_id, period)

        line_items = self.aggregator.collect_line_items(tenant_id, company_id, period)
        subtotal = sum(item.net_amount for item in line_items)
        tax = self.tax_calculator.calculate(tenant_id=tenant_id, company_id=company_id, subtotal=subtotal)

        invoice = self.assembler.assemble(
            tenant_id=tenant_id,
            company=company,
            period=period,
            line_items=line_items,
            tax=tax,
        )
        logger.info(
            "Generated draft invoice %s for %s (subtotal=%d tax=%d total=%d, %d item(s))",
            invoice.invoice_number,
            company.company_name,
            invoice.subtotal,
            invoice.tax,
            invoice.total,
            len(line_items),
        )
        return invoice

    def finalize_invoice(self, tenant_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = self.get_invoice(tenant_id, invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        invoice = self.finalizer.finalize(invoice)
        logger.info("Invoice %s finalized", invoice.invoice_number)
        return invoice

    def get_invoice(self, tenant_id: UUID, invoice_id: UUID) -> Invoice | None:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice and invoice.tenant_id == tenant_id:
            return invoice
        return None

    def list_invoices(
        self,
        tenant_id: UUID,
        *,
        company_id: UUID | None = None,
        status: InvoiceStatus | None = None,
    ) -> Iterable[Invoice]:
        statement = select(Invoice).where(Invoice.tenant_id == tenant_id)
        if company_id:
            statement = statement.where(Invoice.company_id == company_id)
        if status:
            statement = statement.where(Invoice.status == status)
        return self.session.exec(statement.order_by(Invoice.created_at.desc())).all()

    def get_invoice_items(self, tenant_id: UUID, invoice_id: UUID) -> list[InvoiceItem]:
        return list(
            self.session.exec(
                select(InvoiceItem)
                .where((InvoiceItem.tenant_id == tenant_id) & (InvoiceItem.invoice_id == invoice_id))
                .order_by(InvoiceItem.position)
            ).all()
        )

    def get_invoice_for_rendering(self, tenant_id: UUID, invoice_id: UUID) -> InvoiceView | None:
        invoice = self.get_invoice(tenant_id, invoice_id)
        if not invoice:
            return None
        items = tuple(
            InvoiceItemView(
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                net_amount=item.net_amount,
            )
            for item in self.get_invoice_items(tenant_id, invoice_id)
        )
        return InvoiceView(
            invoice_id=invoice.id,
            tenant_id=invoice.tenant_id,
            company_id=invoice.company_id,
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            billing_period_start=invoice.billing_period_start,
            billing_period_end=invoice.billing_period_end,
            subtotal=invoice.subtotal,
            tax=invoice.tax,
            total=invoice.total,
            status=InvoiceStatus(invoice.status).value,
            items=items,
        )
