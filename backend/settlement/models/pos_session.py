"""
POSSession: one physical cash drawer shift.

Status flow: open -> closed -> reconciled. Terminal close fields are written
together in one update. At most one open session per (tenant, branch) is
enforced by the partial unique index below, not by application checks.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, Text, Index, func
from sqlalchemy.orm import relationship

from settlement.db.base import Base, new_id, utcnow


class SessionStatus:
    OPEN = "open"
    CLOSED = "closed"
    RECONCILED = "reconciled"


class POSSession(Base):
    __tablename__ = "pos_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=True)
    opened_by = Column(String(64), nullable=False)
    closed_by = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default=SessionStatus.OPEN)
    opening_cash = Column(Numeric(12, 2), nullable=False, default=0)
    closing_cash = Column(Numeric(12, 2), nullable=True)
    expected_cash = Column(Numeric(12, 2), nullable=True)
    cash_variance = Column(Numeric(12, 2), nullable=True)  # closing - expected
    sale_count = Column(Integer, nullable=False, default=0)  # last sequence handed out, never decremented
    notes = Column(Text, nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)

    tenant = relationship("Tenant", backref="pos_sessions")


# NULL branch_id must collide with itself, hence coalesce
Index(
    "ux_pos_sessions_one_open",
    POSSession.tenant_id,
    func.coalesce(POSSession.branch_id, ""),
    unique=True,
    sqlite_where=POSSession.status == SessionStatus.OPEN,
    postgresql_where=POSSession.status == SessionStatus.OPEN,
)
