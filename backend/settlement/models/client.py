from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import relationship

from settlement.db.base import Base, new_id


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(64), nullable=True)

    tenant = relationship("Tenant", backref="clients")
