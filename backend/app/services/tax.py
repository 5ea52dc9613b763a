from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import ComputationError
from app.core.logging_setup import logger
from app.models.tax import CompanyTaxRate, CompanyTaxSettings, TaxRate
from app.utils.money import round_minor_units, to_decimal


class ReverseChargePolicy(str, Enum):
    IGNORE = "ignore"
    ZERO = "zero"


@dataclass(frozen=True)
class TaxResult:
    amount: int
    percentage: Decimal
    tax_rate_id: UUID | None = None
    reverse_charge: bool = False
    source: str = "none"


NO_TAX = TaxResult(amount=0, percentage=Decimal(0))


class TaxCalculator:
    def __init__(self, session: Session, reverse_charge_policy: ReverseChargePolicy | str | None = None) -> None:
        self.session = session
        policy = reverse_charge_policy or settings.tax_reverse_charge_policy or ReverseChargePolicy.IGNORE
        self.reverse_charge_policy = ReverseChargePolicy(policy)

    def _load_rate(self, tenant_id: UUID, tax_rate_id: UUID) -> TaxRate:
        rate = self.session.get(TaxRate, tax_rate_id)
        if not rate or rate.tenant_id != tenant_id:
            raise ComputationError(f"Tax rate {tax_rate_id} referenced by the company tax settings does not exist")
        return rate

    def _override_rate(self, tenant_id: UUID, company_id: UUID) -> TaxRate | None:
        overrides = self.session.exec(
            select(CompanyTaxRate)
            .where((CompanyTaxRate.tenant_id == tenant_id) & (CompanyTaxRate.company_id == company_id))
            .order_by(CompanyTaxRate.created_at.desc())
        ).all()
        for override in overrides:
            rate = self._load_rate(tenant_id, override.tax_rate_id)
            if rate.is_active:
                return rate
        return None

    def resolve(self, tenant_id: UUID, company_id: UUID) -> tuple[TaxRate | None, bool, str]:
        """Return the applicable rate, the reverse-charge flag and where the rate came from."""
        company_settings = self.session.exec(
            select(CompanyTaxSettings).where(
                (CompanyTaxSettings.tenant_id == tenant_id) & (CompanyTaxSettings.company_id == company_id)
            )
        ).first()

        override = self._override_rate(tenant_id, company_id)
        if override:
            reverse_charge = override.is_reverse_charge_applicable or bool(
                company_settings and company_settings.is_reverse_charge_applicable
            )
            return override, reverse_charge, "override"

        if company_settings:
            rate = self._load_rate(tenant_id, company_settings.tax_rate_id)
            if rate.is_active:
                reverse_charge = company_settings.is_reverse_charge_applicable or rate.is_reverse_charge_applicable
                return rate, reverse_charge, "default"

        return None, False, "none"

    def calculate(self, *, tenant_id: UUID, company_id: UUID, subtotal: int) -> TaxResult:
        rate, reverse_charge, source = self.resolve(tenant_id, company_id)
        if rate is None:
            return NO_TAX

        percentage = to_decimal(rate.tax_percentage)
        amount = round_minor_units(Decimal(subtotal) * percentage / Decimal(100))
        if reverse_charge and self.reverse_charge_policy is ReverseChargePolicy.ZERO:
            logger.info("Reverse charge applies to company %s; tax zeroed", company_id)
            amount = 0
        return TaxResult(
            amount=amount,
            percentage=percentage,
            tax_rate_id=rate.id,
            reverse_charge=reverse_charge,
            source=source,
        )
