"""Billing baseline: tenants, companies, plans, tax, invoices, jobs and stored files.

Revision ID: 0001_billing_baseline
Revises:
"""
from __future__ import annotations

from alembic import op
from sqlmodel import SQLModel

import app.db.base  # noqa: F401

revision = "0001_billing_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    SQLModel.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    SQLModel.metadata.drop_all(bind=op.get_bind())
