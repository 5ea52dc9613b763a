from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime
from html import escape
from pathlib import Path
from uuid import UUID

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.core.exceptions import NotFoundError
from app.core.logging_setup import logger
from app.services.company import CompanyService, CompanyView
from app.services.invoice import InvoiceService, InvoiceView
from app.services.storage import FileStorageService


@dataclass(frozen=True)
class RenderedInvoice:
    file_id: UUID
    invoice_id: UUID
    version: int
    size: int
    from_cache: bool = False


def format_amount(value: int) -> str:
    return f"{value / 100:,.2f}"


def format_quantity(value: float) -> str:
    return f"{value:g}"


class InvoicePDFService:
    def __init__(
        self,
        invoice_service: InvoiceService,
        storage_service: FileStorageService,
        company_service: CompanyService | None = None,
        pdf_cache_dir: str | Path | None = None,
    ) -> None:
        self.invoice_service = invoice_service
        self.storage_service = storage_service
        self.company_service = company_service or invoice_service.company_service
        self.pdf_cache_dir = Path(pdf_cache_dir) if pdf_cache_dir else None

    def _cache_path(self, tenant_id: UUID, invoice_id: UUID, version: int) -> Path | None:
        if not self.pdf_cache_dir:
            return None
        return self.pdf_cache_dir / str(tenant_id) / f"{invoice_id}_v{version}.pdf"

    def render(self, invoice: InvoiceView, company: CompanyView | None) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=LETTER,
            leftMargin=0.8 * inch,
            rightMargin=0.8 * inch,
            topMargin=1 * inch,
            bottomMargin=0.75 * inch,
        )
        doc.title = f"Invoice {invoice.invoice_number}"

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "InvoiceTitle",
            parent=styles["Heading1"],
            fontSize=16,
            leading=19,
            textColor=colors.HexColor("#11284b"),
            spaceAfter=4,
        )
        body_style = ParagraphStyle(
            "InvoiceBody",
            parent=styles["BodyText"],
            fontSize=10,
            leading=14,
            textColor=colors.HexColor("#101820"),
        )

        def fmt_date(value: datetime | None) -> str:
            return value.strftime("%Y-%m-%d") if value else "-"

        story: list = [Paragraph(f"Invoice #{escape(invoice.invoice_number)}", title_style)]
        header = [
            ("Bill to", company.company_name if company else "-"),
            ("Address", (company.address if company else None) or "-"),
            ("Invoice date", fmt_date(invoice.invoice_date)),
            ("Due date", fmt_date(invoice.due_date)),
            (
                "Billing period",
                f"{fmt_date(invoice.billing_period_start)} to {fmt_date(invoice.billing_period_end)}",
            ),
        ]
        story.append(
            Table(
                [
                    [Paragraph(f"<b>{escape(label)}</b>", body_style), Paragraph(escape(value), body_style)]
                    for label, value in header
                ],
                colWidths=[doc.width * 0.3, doc.width * 0.7],
                hAlign="LEFT",
            )
        )
        story.append(Spacer(1, 14))

        rows: list[list[str]] = [["Description", "Quantity", "Unit price", "Amount"]]
        for item in invoice.items:
            rows.append(
                [
                    item.description,
                    format_quantity(item.quantity),
                    format_amount(item.unit_price),
                    format_amount(item.net_amount),
                ]
            )
        rows.append(["", "", "Subtotal", format_amount(invoice.subtotal)])
        rows.append(["", "", "Tax", format_amount(invoice.tax)])
        rows.append(["", "", "Total", format_amount(invoice.total)])

        items_table = Table(
            rows,
            colWidths=[doc.width * 0.46, doc.width * 0.14, doc.width * 0.2, doc.width * 0.2],
            hAlign="LEFT",
        )
        items_table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#dce4f2")),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTNAME", (2, -1), (-1, -1), "Helvetica-Bold"),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("GRID", (0, 0), (-1, -4), 0.25, colors.HexColor("#c8d1e4")),
                ]
            )
        )
        story.append(items_table)
        doc.build(story)
        return buffer.getvalue()

    def generate_and_store(
        self,
        *,
        tenant_id: UUID,
        invoice_id: UUID,
        invoice_number: str,
        version: int = 1,
    ) -> RenderedInvoice:
        invoice = self.invoice_service.get_invoice_for_rendering(tenant_id, invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        cache_path = self._cache_path(tenant_id, invoice_id, version)
        from_cache = bool(cache_path and cache_path.exists())
        if cache_path and from_cache:
            pdf_bytes = cache_path.read_bytes()
        else:
            company = self.company_service.get_company_view(tenant_id, invoice.company_id)
            pdf_bytes = self.render(invoice, company)
            if cache_path:
                cache_path.parent.mkdir(parents=True, exist_ok=True)
                cache_path.write_bytes(pdf_bytes)

        stored = self.storage_service.upload_file(
            tenant_id=tenant_id,
            name=f"invoice_{invoice_number}_v{version}.pdf",
            data=pdf_bytes,
            mime_type="application/pdf",
            root="invoices",
        )
        logger.info("Stored PDF for invoice %s as file %s", invoice_number, stored.id)
        return RenderedInvoice(
            file_id=stored.id,
            invoice_id=invoice_id,
            version=version,
            size=len(pdf_bytes),
            from_cache=from_cache,
        )
