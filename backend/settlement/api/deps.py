"""FastAPI dependencies: DB session and the calling tenant/user.

Authentication happens upstream. The gateway forwards the resolved tenant and
user in X-Tenant-ID / X-User-ID; every query below is scoped by that tenant.
"""
from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from settlement.db.session import SessionLocal
from settlement.models.tenant import Tenant


@dataclass
class TenantContext:
    tenant_id: str
    user_id: Optional[str] = None


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_tenant_context(
    db: Session = Depends(get_db),
    x_tenant_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> TenantContext:
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Tenant-ID header")
    tenant = db.query(Tenant).filter(Tenant.id == x_tenant_id).first()
    if not tenant:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown tenant")
    return TenantContext(tenant_id=tenant.id, user_id=x_user_id)
