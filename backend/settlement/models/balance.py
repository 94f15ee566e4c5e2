"""
CustomerBalance: cached running balance per (tenant, client).

Derived from ledger_entries and rebuildable from them (balance_service.rebuild_balance).
Written only in the same transaction as the postings that move it.
"""
from sqlalchemy import Column, String, ForeignKey, Numeric, DateTime

from settlement.db.base import Base, utcnow


class CustomerBalance(Base):
    __tablename__ = "customer_balances"

    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)  # positive = client owes
    currency = Column(String(8), nullable=False)
    last_updated = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
