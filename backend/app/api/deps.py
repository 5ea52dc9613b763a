from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlmodel import Session

from app.db.session import get_session
from app.models.tenant import Tenant


def get_db() -> Session:
    yield from get_session()


def get_current_tenant(
    session: Annotated[Session, Depends(get_db)],
    x_tenant_id: Annotated[UUID, Header(alias="X-Tenant-ID")],
) -> Tenant:
    tenant = session.get(Tenant, x_tenant_id)
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    if not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant inactive")
    return tenant
