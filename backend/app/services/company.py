from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlmodel import Session

from app.models.company import Company
from app.models.contact import Contact
from app.utils.email_validation import normalize_recipient_email


@dataclass(frozen=True)
class CompanyView:
    id: UUID
    tenant_id: UUID
    company_name: str
    email: str | None
    billing_email: str | None
    billing_contact_id: UUID | None
    address: str | None

    @classmethod
    def from_model(cls, company: Company) -> "CompanyView":
        return cls(
            id=company.id,
            tenant_id=company.tenant_id,
            company_name=company.company_name,
            email=company.email,
            billing_email=company.billing_email,
            billing_contact_id=company.billing_contact_id,
            address=company.address,
        )


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str
    source: str


class CompanyService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_company(self, tenant_id: UUID, company_id: UUID) -> Company | None:
        company = self.session.get(Company, company_id)
        if company and company.tenant_id == tenant_id:
            return company
        return None

    def get_company_view(self, tenant_id: UUID, company_id: UUID) -> CompanyView | None:
        company = self.get_company(tenant_id, company_id)
        return CompanyView.from_model(company) if company else None

    def get_contact(self, tenant_id: UUID, contact_id: UUID) -> Contact | None:
        contact = self.session.get(Contact, contact_id)
        if contact and contact.tenant_id == tenant_id:
            return contact
        return None

    def resolve_billing_recipient(self, company: CompanyView) -> Recipient | None:
        """Billing contact first, then the explicit billing email, then the company email."""
        if company.billing_contact_id:
            contact = self.get_contact(company.tenant_id, company.billing_contact_id)
            email = normalize_recipient_email(contact.email) if contact else None
            if contact and email:
                return Recipient(email=email, name=contact.full_name, source="billing_contact")

        billing_email = normalize_recipient_email(company.billing_email)
        if billing_email:
            return Recipient(email=billing_email, name=company.company_name, source="billing_email")

        company_email = normalize_recipient_email(company.email)
        if company_email:
            return Recipient(email=company_email, name=company.company_name, source="company_email")
        return None
