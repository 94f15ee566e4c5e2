"""
Ledger entries: append-only postings per (tenant, client).

amount > 0 increases what the client owes (invoice), amount < 0 decreases it
(payment, credit). balance_after is the running balance at append time.
Rows are never updated or deleted; the mapper listeners below enforce it.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, Index, UniqueConstraint, event
from sqlalchemy.types import JSON

from settlement.core.exceptions import LedgerImmutableError
from settlement.db.base import Base, utcnow


class EntryType:
    INVOICE = "invoice"
    PAYMENT = "payment"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"

    ALL = (INVOICE, PAYMENT, CREDIT, ADJUSTMENT)
    MANUAL = (CREDIT, ADJUSTMENT)


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        # One row per payment within a batch; a retried batch cannot append twice
        UniqueConstraint(
            "tenant_id", "payment_session_id", "batch_ordinal", name="uq_ledger_payment_batch_ordinal"
        ),
    )

    # Autoincrement id doubles as creation order
    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    entry_type = Column(String(16), nullable=False)
    reference_type = Column(String(32), nullable=True)
    reference_id = Column(String(36), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(16), nullable=True)
    payment_session_id = Column(String(64), nullable=True, index=True)
    batch_ordinal = Column(Integer, nullable=True)
    description = Column(String(512), nullable=True)
    entry_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_ledger_entries_tenant_client", LedgerEntry.tenant_id, LedgerEntry.client_id)
Index("ix_ledger_entries_reference", LedgerEntry.reference_type, LedgerEntry.reference_id)
# At most one receivable posting per invoice
Index(
    "ux_ledger_invoice_posting",
    LedgerEntry.reference_type,
    LedgerEntry.reference_id,
    unique=True,
    sqlite_where=LedgerEntry.entry_type == EntryType.INVOICE,
    postgresql_where=LedgerEntry.entry_type == EntryType.INVOICE,
)


@event.listens_for(LedgerEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise LedgerImmutableError("Ledger entries are append-only", entry_id=target.id)


@event.listens_for(LedgerEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise LedgerImmutableError("Ledger entries are append-only", entry_id=target.id)
