"""Tenants and their branches. Owned by the tenant/auth layer; the engine only references them."""
from sqlalchemy import Column, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from settlement.core.config import settings
from settlement.db.base import Base, new_id, utcnow


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    currency = Column(String(8), nullable=False, default=settings.DEFAULT_CURRENCY)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Branch(Base):
    __tablename__ = "branches"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    tenant = relationship("Tenant", backref="branches")
