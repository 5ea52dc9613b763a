# noqa: F401 to ensure models are imported for metadata
from app.models.billing import (
    BillingPlan,
    BucketPlan,
    BucketUsage,
    CompanyBillingPlan,
    PlanService,
    Service,
    TimeEntry,
    UsageRecord,
)
from app.models.company import Company
from app.models.contact import Contact
from app.models.file import StoredFile
from app.models.invoice import Invoice, InvoiceItem
from app.models.job import Job, JobDetail, JobStep
from app.models.tax import CompanyTaxRate, CompanyTaxSettings, TaxRate
from app.models.tenant import Tenant

__all__ = [
    "BillingPlan",
    "BucketPlan",
    "BucketUsage",
    "CompanyBillingPlan",
    "PlanService",
    "Service",
    "TimeEntry",
    "UsageRecord",
    "Company",
    "Contact",
    "StoredFile",
    "Invoice",
    "InvoiceItem",
    "Job",
    "JobDetail",
    "JobStep",
    "CompanyTaxRate",
    "CompanyTaxSettings",
    "TaxRate",
    "Tenant",
]
