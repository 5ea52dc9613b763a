from app.services.company import CompanyService
from app.services.invoice import InvoiceAssembler, InvoiceFinalizer, InvoiceService
from app.services.invoice_email import InvoiceEmailOrchestrator, run_invoice_email_job
from app.services.job import JobService
from app.services.notification import EmailService
from app.services.pdf import InvoicePDFService
from app.services.plan_aggregator import PlanAggregator
from app.services.storage import FileStorageService
from app.services.tax import TaxCalculator

__all__ = [
    "CompanyService",
    "EmailService",
    "FileStorageService",
    "InvoiceAssembler",
    "InvoiceEmailOrchestrator",
    "InvoiceFinalizer",
    "InvoicePDFService",
    "InvoiceService",
    "JobService",
    "PlanAggregator",
    "TaxCalculator",
    "run_invoice_email_job",
]
