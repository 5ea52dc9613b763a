from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class PlanType(str, Enum):
    FIXED = "Fixed"
    HOURLY = "Hourly"
    USAGE = "Usage"
    BUCKET = "Bucket"


class ApprovalStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class BillingPlan(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "billing_plans"

    plan_name: str = Field(max_length=255)
    plan_type: PlanType
    billing_frequency: str = Field(default="monthly", max_length=32)
    is_custom: bool = Field(default=False)


class Service(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "service_catalog"

    service_name: str = Field(max_length=255)
    description: str | None = Field(default=None)
    service_type: str | None = Field(default=None, max_length=32)
    default_rate: int | None = Field(default=None)
    unit_of_measure: str = Field(default="unit", max_length=32)


class PlanService(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "plan_services"

    plan_id: UUID = Field(foreign_key="billing_plans.id", index=True)
    service_id: UUID = Field(foreign_key="service_catalog.id", index=True)
    quantity: int | None = Field(default=None)
    custom_rate: int | None = Field(default=None)


class CompanyBillingPlan(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "company_billing_plans"

    company_id: UUID = Field(foreign_key="companies.id", index=True)
    plan_id: UUID = Field(foreign_key="billing_plans.id", index=True)
    start_date: datetime
    end_date: datetime | None = Field(default=None)
    is_active: bool = Field(default=True)


class BucketPlan(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "bucket_plans"

    plan_id: UUID = Field(foreign_key="billing_plans.id", index=True)
    total_hours: int
    billing_period: str = Field(default="Monthly", max_length=32)
    overage_rate: int


class BucketUsage(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "bucket_usage"

    bucket_plan_id: UUID = Field(foreign_key="bucket_plans.id", index=True)
    company_id: UUID = Field(foreign_key="companies.id", index=True)
    service_catalog_id: UUID | None = Field(default=None, foreign_key="service_catalog.id")
    period_start: datetime
    period_end: datetime
    hours_used: float = Field(default=0)
    overage_hours: float = Field(default=0)


class TimeEntry(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "time_entries"

    company_id: UUID = Field(foreign_key="companies.id", index=True)
    service_id: UUID | None = Field(default=None, foreign_key="service_catalog.id", index=True)
    user_id: UUID | None = Field(default=None)
    work_item_id: UUID | None = Field(default=None)
    work_item_type: str | None = Field(default=None, max_length=32)
    start_time: datetime = Field(index=True)
    end_time: datetime
    billable_duration: int = Field(default=0)  # minutes
    approval_status: ApprovalStatus = Field(default=ApprovalStatus.DRAFT)
    notes: str | None = Field(default=None)


class UsageRecord(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "usage_tracking"

    company_id: UUID = Field(foreign_key="companies.id", index=True)
    service_id: UUID = Field(foreign_key="service_catalog.id", index=True)
    usage_date: datetime = Field(index=True)
    quantity: float
