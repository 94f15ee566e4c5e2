"""
Ledger store: append-only postings keyed by (tenant, client).

Used by the payment poster, invoice service and manual ledger routes.
Nothing here commits; callers own the transaction so postings and the
balance cache move together.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from settlement.core.exceptions import LedgerConstraintError
from settlement.core.money import ZERO, to_money
from settlement.models.client import Client
from settlement.models.ledger import EntryType, LedgerEntry
from settlement.models.tenant import Tenant

logger = logging.getLogger(__name__)


def check_sign(entry_type: str, amount: Decimal) -> None:
    """Enforce the sign convention for each entry type."""
    if entry_type not in EntryType.ALL:
        raise LedgerConstraintError(f"Unknown entry type '{entry_type}'", entry_type=entry_type)
    if amount == ZERO:
        raise LedgerConstraintError("Ledger amount cannot be zero", entry_type=entry_type)
    if entry_type == EntryType.INVOICE and amount < ZERO:
        raise LedgerConstraintError("Invoice postings must be positive", entry_type=entry_type, amount=amount)
    if entry_type in (EntryType.PAYMENT, EntryType.CREDIT) and amount > ZERO:
        raise LedgerConstraintError(
            f"{entry_type.capitalize()} postings must be negative", entry_type=entry_type, amount=amount
        )


def ensure_client(db: Session, tenant_id: str, client_id: str) -> Client:
    """The client must exist and belong to the tenant."""
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise LedgerConstraintError("Unknown tenant", tenant_id=tenant_id)
    client = db.query(Client).filter(Client.id == client_id, Client.tenant_id == tenant_id).first()
    if not client:
        raise LedgerConstraintError("Unknown client for tenant", tenant_id=tenant_id, client_id=client_id)
    return client


def sum_for_client(db: Session, tenant_id: str, client_id: str, entry_type: Optional[str] = None) -> Decimal:
    """Sum of committed (and flushed) postings. Never cached."""
    q = db.query(func.coalesce(func.sum(LedgerEntry.amount), 0)).filter(
        LedgerEntry.tenant_id == tenant_id,
        LedgerEntry.client_id == client_id,
    )
    if entry_type:
        q = q.filter(LedgerEntry.entry_type == entry_type)
    return to_money(q.scalar())


def append_entry(
    db: Session,
    tenant_id: str,
    client_id: str,
    entry_type: str,
    amount: Decimal | float,
    balance_after: Decimal | float | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    payment_method: str | None = None,
    payment_session_id: str | None = None,
    batch_ordinal: int | None = None,
    description: str | None = None,
    metadata: dict | None = None,
    created_by: str | None = None,
) -> LedgerEntry:
    """Append one posting and flush so it gets an id.

    balance_after defaults to the ledger sum plus this amount. Callers that
    carry a running balance across a batch pass it explicitly.
    """
    amount = to_money(amount)
    check_sign(entry_type, amount)
    ensure_client(db, tenant_id, client_id)

    if balance_after is None:
        balance_after = sum_for_client(db, tenant_id, client_id) + amount

    entry = LedgerEntry(
        tenant_id=tenant_id,
        client_id=client_id,
        entry_type=entry_type,
        reference_type=reference_type,
        reference_id=reference_id,
        amount=amount,
        balance_after=to_money(balance_after),
        payment_method=payment_method,
        payment_session_id=payment_session_id,
        batch_ordinal=batch_ordinal,
        description=description,
        entry_metadata=metadata or {},
        created_by=created_by,
    )
    db.add(entry)
    db.flush()
    logger.debug(f"Appended ledger entry {entry.id}: {entry_type} {amount} for client {client_id}")
    return entry


def list_for_reference(
    db: Session,
    reference_type: str,
    reference_id: str,
    entry_type: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> List[LedgerEntry]:
    q = db.query(LedgerEntry).filter(
        LedgerEntry.reference_type == reference_type,
        LedgerEntry.reference_id == reference_id,
    )
    if entry_type:
        q = q.filter(LedgerEntry.entry_type == entry_type)
    if tenant_id:
        q = q.filter(LedgerEntry.tenant_id == tenant_id)
    return q.order_by(LedgerEntry.id.asc()).all()


def list_for_client(db: Session, tenant_id: str, client_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
    """Client statement, oldest first."""
    q = (
        db.query(LedgerEntry)
        .filter(LedgerEntry.tenant_id == tenant_id, LedgerEntry.client_id == client_id)
        .order_by(LedgerEntry.id.asc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def list_for_payment_session(db: Session, tenant_id: str, payment_session_id: str) -> List[LedgerEntry]:
    """Entries of one payment batch. Batch ids are only unique within a tenant."""
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.tenant_id == tenant_id, LedgerEntry.payment_session_id == payment_session_id)
        .order_by(LedgerEntry.batch_ordinal.asc(), LedgerEntry.id.asc())
        .all()
    )
