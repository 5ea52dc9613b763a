from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class JobStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobStepStatus(str, Enum):
    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "jobs"

    job_type: str = Field(max_length=64, index=True)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    user_id: UUID | None = Field(default=None)
    runner_id: str | None = Field(default=None, max_length=128)
    details: str | None = Field(default=None)
    error: str | None = Field(default=None)
    job_metadata: dict | None = Field(default_factory=dict, sa_type=JSON)
    processed_at: datetime | None = Field(default=None)


class JobStep(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "job_steps"

    job_id: UUID = Field(foreign_key="jobs.id", index=True)
    step_index: int
    step_name: str = Field(max_length=255)
    step_type: str = Field(max_length=64)
    status: JobStepStatus = Field(default=JobStepStatus.PENDING)
    step_metadata: dict | None = Field(default_factory=dict, sa_type=JSON)


class JobDetail(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    """One row per status update; never modified once written."""

    __tablename__ = "job_details"

    job_id: UUID = Field(foreign_key="jobs.id", index=True)
    sequence: int
    step_name: str = Field(max_length=255)
    status: str = Field(max_length=32)
    result: dict | None = Field(default=None, sa_type=JSON)
    processed_at: datetime
