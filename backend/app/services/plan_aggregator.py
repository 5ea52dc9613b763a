from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable
from uuid import UUID

from sqlmodel import Session, select

from app.core.exceptions import ComputationError
from app.core.logging_setup import logger
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
from app.utils.money import round_minor_units, to_decimal
from app.utils.periods import BillingPeriod

MINUTES_PER_HOUR = Decimal(60)


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit_price: int
    plan_id: UUID | None = None
    service_id: UUID | None = None

    @property
    def net_amount(self) -> int:
        return round_minor_units(self.quantity * self.unit_price)


class PlanAggregator:
    """Turns the billing records of one company and period into invoice line items."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._handlers: dict[PlanType, Callable[[UUID, UUID, BillingPlan, BillingPeriod], list[LineItem]]] = {
            PlanType.FIXED: self._fixed_items,
            PlanType.HOURLY: self._hourly_items,
            PlanType.USAGE: self._usage_items,
            PlanType.BUCKET: self._bucket_items,
        }

    def active_plans(self, tenant_id: UUID, company_id: UUID, period: BillingPeriod) -> list[BillingPlan]:
        rows = self.session.exec(
            select(CompanyBillingPlan, BillingPlan)
            .join(BillingPlan, BillingPlan.id == CompanyBillingPlan.plan_id)
            .where(
                (CompanyBillingPlan.tenant_id == tenant_id)
                & (CompanyBillingPlan.company_id == company_id)
                & (CompanyBillingPlan.is_active.is_(True))
                & (CompanyBillingPlan.start_date < period.end)
                & (
                    CompanyBillingPlan.end_date.is_(None)  # type: ignore[union-attr]
                    | (CompanyBillingPlan.end_date > period.start)
                )
            )
            .order_by(CompanyBillingPlan.created_at, CompanyBillingPlan.id)
        ).all()
        return [plan for _, plan in rows]

    def collect_line_items(self, tenant_id: UUID, company_id: UUID, period: BillingPeriod) -> list[LineItem]:
        plans = self.active_plans(tenant_id, company_id, period)
        if not plans:
            raise ComputationError(f"No active billing plans found for company {company_id} in the given period")

        items: list[LineItem] = []
        for plan in plans:
            plan_items = self._handlers[PlanType(plan.plan_type)](tenant_id, company_id, plan, period)
            logger.debug("Plan %s (%s) produced %d line item(s)", plan.plan_name, plan.plan_type, len(plan_items))
            items.extend(plan_items)
        return items

    def _plan_services(self, tenant_id: UUID, plan: BillingPlan) -> list[tuple[PlanService, Service]]:
        return list(
            self.session.exec(
                select(PlanService, Service)
                .join(Service, Service.id == PlanService.service_id)
                .where((PlanService.tenant_id == tenant_id) & (PlanService.plan_id == plan.id))
                .order_by(PlanService.created_at, PlanService.id)
            ).all()
        )

    @staticmethod
    def _resolve_rate(plan: BillingPlan, service: Service, custom_rate: int | None) -> int:
        rate = custom_rate if custom_rate is not None else service.default_rate
        if rate is None:
            raise ComputationError(
                f"Service '{service.service_name}' has no rate defined for plan '{plan.plan_name}'"
            )
        return rate

    def _fixed_items(self, tenant_id: UUID, company_id: UUID, plan: BillingPlan, period: BillingPeriod) -> list[LineItem]:
        items = []
        for plan_service, service in self._plan_services(tenant_id, plan):
            quantity = plan_service.quantity if plan_service.quantity is not None else 1
            items.append(
                LineItem(
                    description=service.service_name,
                    quantity=to_decimal(quantity),
                    unit_price=self._resolve_rate(plan, service, plan_service.custom_rate),
                    plan_id=plan.id,
                    service_id=service.id,
                )
            )
        return items

    def _hourly_items(self, tenant_id: UUID, company_id: UUID, plan: BillingPlan, period: BillingPeriod) -> list[LineItem]:
        plan_services = self._plan_services(tenant_id, plan)
        if not plan_services:
            return []
        by_service: "OrderedDict[UUID, tuple[PlanService, Service]]" = OrderedDict(
            (service.id, (plan_service, service)) for plan_service, service in plan_services
        )
        entries = self.session.exec(
            select(TimeEntry).where(
                (TimeEntry.tenant_id == tenant_id)
                & (TimeEntry.company_id == company_id)
                & (TimeEntry.service_id.in_(list(by_service)))  # type: ignore[union-attr]
                & (TimeEntry.approval_status == ApprovalStatus.APPROVED)
                & (TimeEntry.start_time >= period.start)
                & (TimeEntry.start_time < period.end)
            )
        ).all()

        minutes: dict[UUID, int] = {}
        for entry in entries:
            minutes[entry.service_id] = minutes.get(entry.service_id, 0) + int(entry.billable_duration or 0)

        items = []
        for service_id, (plan_service, service) in by_service.items():
            if service_id not in minutes:
                continue
            items.append(
                LineItem(
                    description=service.service_name,
                    quantity=Decimal(minutes[service_id]) / MINUTES_PER_HOUR,
                    unit_price=self._resolve_rate(plan, service, plan_service.custom_rate),
                    plan_id=plan.id,
                    service_id=service.id,
                )
            )
        return items

    def _usage_items(self, tenant_id: UUID, company_id: UUID, plan: BillingPlan, period: BillingPeriod) -> list[LineItem]:
        services = {service.id: service for _, service in self._plan_services(tenant_id, plan)}
        if not services:
            return []
        records: Iterable[UsageRecord] = self.session.exec(
            select(UsageRecord)
            .where(
                (UsageRecord.tenant_id == tenant_id)
                & (UsageRecord.company_id == company_id)
                & (UsageRecord.service_id.in_(list(services)))  # type: ignore[union-attr]
                & (UsageRecord.usage_date >= period.start)
                & (UsageRecord.usage_date < period.end)
            )
            .order_by(UsageRecord.usage_date, UsageRecord.created_at)
        ).all()

        items = []
        for record in records:
            service = services[record.service_id]
            items.append(
                LineItem(
                    description=service.service_name,
                    quantity=to_decimal(record.quantity),
                    unit_price=self._resolve_rate(plan, service, None),
                    plan_id=plan.id,
                    service_id=service.id,
                )
            )
        return items

    def _bucket_items(self, tenant_id: UUID, company_id: UUID, plan: BillingPlan, period: BillingPeriod) -> list[LineItem]:
        rows = self.session.exec(
            select(BucketUsage, BucketPlan)
            .join(BucketPlan, BucketPlan.id == BucketUsage.bucket_plan_id)
            .where(
                (BucketPlan.tenant_id == tenant_id)
                & (BucketPlan.plan_id == plan.id)
                & (BucketUsage.company_id == company_id)
                & (BucketUsage.period_start < period.end)
                & (BucketUsage.period_end > period.start)
            )
            .order_by(BucketUsage.period_start, BucketUsage.created_at)
        ).all()

        items = []
        for usage, bucket in rows:
            overage = max(Decimal(0), to_decimal(usage.hours_used) - to_decimal(bucket.total_hours))
            if overage <= 0:
                continue
            service = self.session.get(Service, usage.service_catalog_id) if usage.service_catalog_id else None
            label = service.service_name if service else plan.plan_name
            items.append(
                LineItem(
                    description=f"{label} (Overage)",
                    quantity=overage,
                    unit_price=bucket.overage_rate,
                    plan_id=plan.id,
                    service_id=service.id if service else None,
                )
            )
        return items
