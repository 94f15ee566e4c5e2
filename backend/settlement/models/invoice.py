"""
Invoice header and line items.

Status flow: draft -> issued -> partial -> paid, cancelled from any non-paid state.
"overdue" is never stored; see invoice_service.display_status.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, Date, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, new_id, utcnow


class InvoiceStatus:
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"  # display only
    CANCELLED = "cancelled"

    STORED = (DRAFT, ISSUED, PARTIAL, PAID, CANCELLED)
    PAYABLE = (ISSUED, PARTIAL)


class PaymentMethod:
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    DEBT = "debt"
    MIXED = "mixed"  # more than one method contributed

    SALE_METHODS = (CASH, CARD, TRANSFER, DEBT)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True, index=True)  # null = walk-in
    client_name = Column(String(255), nullable=True)
    invoice_number = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=InvoiceStatus.DRAFT)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)  # subtotal - discount + tax
    currency = Column(String(8), nullable=False)
    payment_method = Column(String(16), nullable=True)  # derived from ledger once payments exist
    payment_received_at = Column(DateTime(timezone=True), nullable=True)
    pos_session_id = Column(String(36), ForeignKey("pos_sessions.id"), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    client = relationship("Client", backref="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )

    @property
    def is_walk_in(self) -> bool:
        return self.client_id is None


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    description = Column(String(512), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)  # quantity * unit_price, set by the writer
    entity_type = Column(String(64), nullable=True)
    entity_id = Column(String(64), nullable=True)

    invoice = relationship("Invoice", back_populates="items")
