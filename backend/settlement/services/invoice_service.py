"""
Invoice store and status state machine.

Paid amounts are always summed from payment postings in the ledger. The
invoice's own status and payment_method columns are a materialized view of
those postings, recomputed by apply_settlement after every payment batch.
"""
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from settlement.core.audit import AuditLog
from settlement.core.config import settings
from settlement.core.exceptions import (
    InvalidAmountError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    ValidationError,
)
from settlement.core.money import ZERO, is_settled, money_sum, to_money
from settlement.db.base import utcnow
from settlement.models.client import Client
from settlement.models.invoice import Invoice, InvoiceItem, InvoiceStatus, PaymentMethod
from settlement.models.ledger import EntryType, LedgerEntry
from settlement.models.tenant import Tenant
from settlement.services.ledger_service import list_for_reference

logger = logging.getLogger(__name__)

REFERENCE_INVOICE = "invoice"
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


@dataclass
class LineItem:
    """One billable line as handed in by the catalog or the POS cart."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Optional[Decimal] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass
class PaymentRecord:
    entry_id: int
    amount: Decimal  # positive, as collected
    payment_method: Optional[str]
    payment_session_id: Optional[str]
    metadata: dict
    created_at: object
    description: Optional[str]


@dataclass
class InvoicePaymentSummary:
    invoice_id: str
    status: str
    display_status: str
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    is_paid: bool
    is_partial: bool
    payments: List[PaymentRecord] = field(default_factory=list)


def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_invoice_number(prefix: str = "INV") -> str:
    """Human-readable number: PREFIX-<base36 millis><4 hex>."""
    stamp = _base36(int(time.time() * 1000))
    return f"{prefix}-{stamp}{secrets.token_hex(2).upper()}"


def build_items(lines: Iterable[LineItem]) -> List[InvoiceItem]:
    """Turn lines into InvoiceItem rows. total_price must equal quantity * unit_price."""
    items = []
    for position, line in enumerate(lines):
        if not (line.description or "").strip():
            raise ValidationError("Line description cannot be empty", position=position)
        quantity = Decimal(str(line.quantity))
        unit_price = to_money(line.unit_price)
        if quantity <= 0:
            raise InvalidAmountError("Quantity must be positive", position=position)
        if unit_price < ZERO:
            raise InvalidAmountError("Unit price cannot be negative", position=position)
        expected = to_money(quantity * unit_price)
        total_price = expected if line.total_price is None else to_money(line.total_price)
        if total_price != expected:
            raise InvalidAmountError(
                "Line total does not match quantity * unit price",
                position=position,
                total_price=total_price,
                expected=expected,
            )
        items.append(
            InvoiceItem(
                position=position,
                description=line.description.strip(),
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
                entity_type=line.entity_type,
                entity_id=line.entity_id,
            )
        )
    return items


def compute_totals(items: List[InvoiceItem], discount_amount=ZERO, tax_amount=ZERO) -> dict:
    """total = subtotal - discount + tax."""
    subtotal = money_sum(item.total_price for item in items)
    discount = to_money(discount_amount)
    tax = to_money(tax_amount)
    if discount < ZERO or tax < ZERO:
        raise InvalidAmountError("Discount and tax cannot be negative")
    if discount > subtotal:
        raise InvalidAmountError("Discount exceeds subtotal", discount_amount=discount, subtotal=subtotal)
    return {
        "subtotal": subtotal,
        "discount_amount": discount,
        "tax_amount": tax,
        "total_amount": subtotal - discount + tax,
    }


def create_invoice(
    db: Session,
    tenant_id: str,
    lines: List[LineItem],
    client_id: str | None = None,
    client_name: str | None = None,
    status: str = InvoiceStatus.DRAFT,
    issue_date: date | None = None,
    due_date: date | None = None,
    discount_amount=ZERO,
    tax_amount=ZERO,
    currency: str | None = None,
    invoice_number: str | None = None,
    notes: str | None = None,
    pos_session_id: str | None = None,
    branch_id: str | None = None,
    payment_method: str | None = None,
    created_by: str | None = None,
    auto_commit: bool = False,
) -> Invoice:
    """Persist header + items together. Never leaves a header without its items.

    Args:
        auto_commit: If True, commits immediately. If False, caller must commit.
    """
    if status not in (InvoiceStatus.DRAFT, InvoiceStatus.ISSUED):
        raise InvalidTransitionError(f"New invoices start as draft or issued, not '{status}'")
    if not lines:
        raise ValidationError("Invoice needs at least one line item")

    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise ValidationError("Unknown tenant", tenant_id=tenant_id)
    if client_id:
        client = db.query(Client).filter(Client.id == client_id, Client.tenant_id == tenant_id).first()
        if not client:
            raise ValidationError("Unknown client for tenant", client_id=client_id)
        client_name = client_name or client.name

    items = build_items(lines)
    totals = compute_totals(items, discount_amount, tax_amount)

    inv = Invoice(
        tenant_id=tenant_id,
        branch_id=branch_id,
        client_id=client_id,
        client_name=client_name,
        invoice_number=invoice_number or generate_invoice_number(),
        status=status,
        issue_date=issue_date or date.today(),
        due_date=due_date,
        currency=currency or tenant.currency or settings.DEFAULT_CURRENCY,
        payment_method=payment_method,
        pos_session_id=pos_session_id,
        notes=notes,
        created_by=created_by,
        **totals,
    )
    inv.items = items
    db.add(inv)
    if auto_commit:
        db.commit()
        db.refresh(inv)
    else:
        db.flush()  # Get ID without committing
    logger.info(f"Created invoice {inv.invoice_number} ({inv.status}) total={inv.total_amount} tenant={tenant_id}")
    return inv


def get_invoice(db: Session, invoice_id: str, tenant_id: str, lock: bool = False) -> Invoice:
    """Load an invoice of this tenant. lock=True takes the row lock used to serialize posting."""
    q = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
    if lock:
        q = q.with_for_update().populate_existing()
    inv = q.first()
    if not inv:
        raise InvoiceNotFoundError("Invoice not found", resource="Invoice", invoice_id=invoice_id)
    return inv


def list_invoices(
    db: Session,
    tenant_id: str,
    status: str | None = None,
    client_id: str | None = None,
    pos_session_id: str | None = None,
    limit: int = 100,
) -> List[Invoice]:
    q = db.query(Invoice).filter(Invoice.tenant_id == tenant_id)
    if status:
        q = q.filter(Invoice.status == status)
    if client_id:
        q = q.filter(Invoice.client_id == client_id)
    if pos_session_id:
        q = q.filter(Invoice.pos_session_id == pos_session_id)
    return q.order_by(Invoice.created_at.desc()).limit(limit).all()


def payment_entries(db: Session, inv: Invoice) -> List[LedgerEntry]:
    return list_for_reference(
        db, REFERENCE_INVOICE, inv.id, entry_type=EntryType.PAYMENT, tenant_id=inv.tenant_id
    )


def paid_amount(db: Session, inv: Invoice) -> Decimal:
    """Strictly from payment postings; payments are stored negative."""
    return money_sum(abs(to_money(e.amount)) for e in payment_entries(db, inv))


def resolve_payment_method(entries: Iterable[LedgerEntry]) -> Optional[str]:
    """Single method, or "mixed" once more than one method has paid into the invoice."""
    methods = {e.payment_method for e in entries if e.payment_method}
    if not methods:
        return None
    if len(methods) > 1:
        return PaymentMethod.MIXED
    return methods.pop()


def apply_settlement(db: Session, inv: Invoice, user_id: str | None = None) -> str:
    """Recompute status and payment marker from the ledger. Caller holds the invoice lock."""
    entries = payment_entries(db, inv)
    paid = money_sum(abs(to_money(e.amount)) for e in entries)
    outstanding = to_money(inv.total_amount) - paid
    old_status = inv.status

    if is_settled(outstanding):
        inv.status = InvoiceStatus.PAID
        inv.payment_received_at = utcnow()
        inv.payment_method = resolve_payment_method(entries)
    elif paid > ZERO:
        inv.status = InvoiceStatus.PARTIAL
        inv.payment_method = resolve_payment_method(entries)
    db.flush()

    AuditLog.log_invoice_status(inv.id, old_status, inv.status, user_id)
    return inv.status


def display_status(inv: Invoice, outstanding: Decimal, today: date | None = None) -> str:
    """Read-time projection: issued/partial past due with money still owed shows as overdue."""
    today = today or date.today()
    if (
        inv.status in InvoiceStatus.PAYABLE
        and inv.due_date is not None
        and inv.due_date < today
        and not is_settled(outstanding)
    ):
        return InvoiceStatus.OVERDUE
    return inv.status


def summarize_invoice(db: Session, invoice_id: str, tenant_id: str, today: date | None = None) -> InvoicePaymentSummary:
    inv = get_invoice(db, invoice_id, tenant_id)
    entries = payment_entries(db, inv)
    payments = [
        PaymentRecord(
            entry_id=e.id,
            amount=abs(to_money(e.amount)),
            payment_method=e.payment_method,
            payment_session_id=e.payment_session_id,
            metadata=e.entry_metadata or {},
            created_at=e.created_at,
            description=e.description,
        )
        for e in entries
    ]
    total = to_money(inv.total_amount)
    paid = money_sum(p.amount for p in payments)
    outstanding = max(ZERO, total - paid)
    return InvoicePaymentSummary(
        invoice_id=inv.id,
        status=inv.status,
        display_status=display_status(inv, outstanding, today),
        total_amount=total,
        paid_amount=paid,
        outstanding_amount=outstanding,
        is_paid=is_settled(outstanding),
        is_partial=paid > ZERO and not is_settled(outstanding),
        payments=payments,
    )


def issue_invoice(db: Session, invoice_id: str, tenant_id: str, user_id: str | None = None, auto_commit: bool = False) -> Invoice:
    """draft -> issued. Plain field write."""
    inv = get_invoice(db, invoice_id, tenant_id, lock=True)
    if inv.status != InvoiceStatus.DRAFT:
        raise InvalidTransitionError(
            f"Only draft invoices can be issued (invoice is {inv.status})",
            invoice_id=inv.id,
            status=inv.status,
        )
    inv.status = InvoiceStatus.ISSUED
    db.flush()
    AuditLog.log_invoice_status(inv.id, InvoiceStatus.DRAFT, InvoiceStatus.ISSUED, user_id)
    if auto_commit:
        db.commit()
        db.refresh(inv)
    return inv


def cancel_invoice(
    db: Session,
    invoice_id: str,
    tenant_id: str,
    user_id: str | None = None,
    reason: str | None = None,
    auto_commit: bool = False,
) -> Invoice:
    """Soft cancel from any non-paid state. Stops further payments; touches no money."""
    inv = get_invoice(db, invoice_id, tenant_id, lock=True)
    if inv.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
        raise InvalidTransitionError(
            f"Cannot cancel a {inv.status} invoice",
            invoice_id=inv.id,
            status=inv.status,
        )
    old_status = inv.status
    inv.status = InvoiceStatus.CANCELLED
    if reason:
        inv.notes = f"{inv.notes} [cancelled: {reason}]" if inv.notes else f"[cancelled: {reason}]"
    db.flush()
    AuditLog.log_invoice_status(inv.id, old_status, InvoiceStatus.CANCELLED, user_id)
    if auto_commit:
        db.commit()
        db.refresh(inv)
    return inv


def delete_invoice(db: Session, invoice_id: str, tenant_id: str, auto_commit: bool = False) -> None:
    """Hard delete of a draft that nothing references. Anything issued is cancelled instead."""
    inv = get_invoice(db, invoice_id, tenant_id, lock=True)
    if inv.status != InvoiceStatus.DRAFT or inv.pos_session_id:
        raise InvalidTransitionError(
            f"Only draft invoices can be deleted (invoice is {inv.status}); cancel it instead",
            invoice_id=inv.id,
            status=inv.status,
        )
    if list_for_reference(db, REFERENCE_INVOICE, inv.id):
        raise InvalidTransitionError(
            "Invoice has ledger postings; cancel it instead",
            invoice_id=inv.id,
        )
    db.delete(inv)
    db.flush()
    logger.info(f"Deleted invoice {invoice_id} for tenant {tenant_id}")
    if auto_commit:
        db.commit()
