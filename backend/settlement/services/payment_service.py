"""
Payment poster: validation plus multi-entry posting against one invoice.

The whole batch is one unit of work. The invoice row lock is taken before
reading what has already been paid and held until commit, so two checkouts
against the same invoice cannot both pass the outstanding check on a stale
read. The client's balance row is locked the same way before the running
balance is read.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from settlement.core.audit import AuditLog
from settlement.core.config import settings
from settlement.core.exceptions import (
    ConcurrentPostingError,
    EmptyPaymentBatchError,
    InvalidAmountError,
    InvalidTransitionError,
    LedgerConstraintError,
    OverpaymentError,
    PaymentSessionConflictError,
    PostingStorageError,
    ValidationError,
    WalkInInvoiceError,
)
from settlement.core.money import ZERO, money_sum, to_money
from settlement.models.invoice import Invoice, InvoiceStatus
from settlement.models.ledger import EntryType, LedgerEntry
from settlement.services import balance_service, invoice_service, ledger_service
from settlement.services.invoice_service import REFERENCE_INVOICE

logger = logging.getLogger(__name__)


@dataclass
class PaymentInput:
    amount: Decimal
    payment_method: str
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class PostingResult:
    invoice_id: str
    paid_amount: Decimal
    outstanding_amount: Decimal
    invoice_status: str
    entry_ids: List[int] = field(default_factory=list)
    balance_after: Optional[Decimal] = None
    replayed: bool = False


def _validate_batch(payments: Sequence[PaymentInput], payment_session_id: str) -> List[PaymentInput]:
    if not payments:
        raise EmptyPaymentBatchError("No payments provided")
    if not payment_session_id:
        raise ValidationError("payment_session_id is required to make the batch retry-safe")
    cleaned = []
    for ordinal, p in enumerate(payments):
        amount = to_money(p.amount)
        if amount <= ZERO:
            raise InvalidAmountError("Payment amount must be positive", ordinal=ordinal, amount=amount)
        if not (p.payment_method or "").strip():
            raise ValidationError("Payment method is required", ordinal=ordinal)
        cleaned.append(PaymentInput(amount, p.payment_method.strip().lower(), p.reference, p.notes))
    return cleaned


def _outcome(db: Session, inv: Invoice, entry_ids: List[int], balance_after=None, replayed=False) -> PostingResult:
    paid = invoice_service.paid_amount(db, inv)
    return PostingResult(
        invoice_id=inv.id,
        paid_amount=paid,
        outstanding_amount=max(ZERO, to_money(inv.total_amount) - paid),
        invoice_status=inv.status,
        entry_ids=entry_ids,
        balance_after=balance_after,
        replayed=replayed,
    )


def _replay(db: Session, inv: Invoice, payments: List[PaymentInput], existing: List[LedgerEntry]) -> PostingResult:
    """A batch with this payment_session_id already landed. Return it instead of posting twice."""
    same_invoice = all(e.reference_id == inv.id for e in existing)
    same_tenders = [(abs(to_money(e.amount)), e.payment_method) for e in existing] == [
        (p.amount, p.payment_method) for p in payments
    ]
    if not (same_invoice and same_tenders):
        logger.warning(
            f"payment_session_id {existing[0].payment_session_id} reused for invoice {inv.id}; "
            f"already holds entries {[e.id for e in existing]}"
        )
        # Only the caller's own invoice goes back in the details
        raise PaymentSessionConflictError(
            "payment_session_id was already used for a different batch",
            invoice_id=inv.id,
            payment_session_id=existing[0].payment_session_id,
        )
    logger.info(f"Replaying payment batch for invoice {inv.id}: {len(existing)} entries already committed")
    result = _outcome(db, inv, [e.id for e in existing], to_money(existing[-1].balance_after), replayed=True)
    AuditLog.log_payment_batch(
        inv.id,
        existing[0].payment_session_id,
        [e.payment_method for e in existing],
        money_sum(p.amount for p in payments),
        inv.status,
        replayed=True,
    )
    return result


def committed_entry_ids(db: Session, tenant_id: str, payment_session_id: str) -> Optional[List[int]]:
    """After a failure: which postings of the batch are actually in the ledger. None if unknowable."""
    try:
        return [e.id for e in ledger_service.list_for_payment_session(db, tenant_id, payment_session_id)]
    except SQLAlchemyError as e:
        logger.error(f"Could not determine committed entries for batch {payment_session_id}: {e}")
        return None


def post_payments(
    db: Session,
    invoice_id: str,
    tenant_id: str,
    payments: Sequence[PaymentInput],
    payment_session_id: str,
    created_by: str | None = None,
    auto_commit: bool = True,
) -> PostingResult:
    """Post one ledger entry per payment, update the balance cache and invoice status.

    Args:
        payment_session_id: Caller-generated token for this batch. Re-sending the
            same token returns the original outcome instead of posting again.
        auto_commit: If True, commits (or rolls back) here. If False, the caller
            owns the transaction, e.g. the sale composer.

    Raises:
        ValidationError subclasses before anything is written.
        ConcurrentPostingError when the storage layer rejects a racing write.
        PostingStorageError when the database fails; committed_entry_ids says what landed.
    """
    try:
        payments = _validate_batch(payments, payment_session_id)

        # 1. Lock and read the invoice
        inv = invoice_service.get_invoice(db, invoice_id, tenant_id, lock=True)
        if inv.is_walk_in:
            raise WalkInInvoiceError(
                "Cannot record payment for walk-in invoice (no client)", invoice_id=inv.id
            )
        existing = ledger_service.list_for_payment_session(db, tenant_id, payment_session_id)
        if existing:
            result = _replay(db, inv, payments, existing)
            if auto_commit:
                db.commit()  # nothing written, releases the lock
            return result

        if inv.status not in InvoiceStatus.PAYABLE:
            raise InvalidTransitionError(
                f"Invoice is {inv.status}; payments are accepted only for issued or partial invoices",
                invoice_id=inv.id,
                status=inv.status,
            )

        # 2-4. Outstanding strictly from ledger payment postings
        previously_paid = invoice_service.paid_amount(db, inv)
        current_outstanding = to_money(inv.total_amount) - previously_paid
        batch_total = money_sum(p.amount for p in payments)
        if batch_total > current_outstanding + settings.PAYMENT_EPSILON:
            raise OverpaymentError(
                f"Payment amount ({batch_total}) exceeds outstanding ({current_outstanding})",
                invoice_id=inv.id,
                paid_amount=previously_paid,
                outstanding_amount=current_outstanding,
                attempted=batch_total,
            )
    except (ValidationError, PaymentSessionConflictError) as e:
        AuditLog.log_rejection("post_payments", e.message, tenant_id, invoice_id)
        if auto_commit:
            db.rollback()  # release the invoice lock
        raise

    entry_ids: List[int] = []
    try:
        # 5. Starting point is the cached balance, under its row lock
        balance_row = balance_service.lock_balance(db, tenant_id, inv.client_id)
        running = to_money(balance_row.balance)

        # 6. One entry per tender, in input order
        for ordinal, p in enumerate(payments):
            running -= p.amount
            metadata = {}
            if p.reference:
                metadata["reference"] = p.reference
            if p.notes:
                metadata["notes"] = p.notes
            entry = ledger_service.append_entry(
                db,
                tenant_id=tenant_id,
                client_id=inv.client_id,
                entry_type=EntryType.PAYMENT,
                amount=-p.amount,
                balance_after=running,
                reference_type=REFERENCE_INVOICE,
                reference_id=inv.id,
                payment_method=p.payment_method,
                payment_session_id=payment_session_id,
                batch_ordinal=ordinal,
                description=f"Payment for Invoice {inv.invoice_number}",
                metadata=metadata,
                created_by=created_by,
            )
            entry_ids.append(entry.id)

        # 7. Cache follows the postings in the same transaction
        balance_row.balance = running
        db.flush()

        # 8. Status is recomputed from the ledger, never patched
        invoice_service.apply_settlement(db, inv, created_by)

        if auto_commit:
            db.commit()
    except IntegrityError as e:
        if not auto_commit:
            raise ConcurrentPostingError(
                "Payment batch collided with a concurrent write", invoice_id=invoice_id
            ) from e
        db.rollback()
        logger.warning(f"Payment batch {payment_session_id} for invoice {invoice_id} collided: {e.orig}")
        raise ConcurrentPostingError(
            "Payment batch collided with a concurrent write; re-read the invoice and retry",
            invoice_id=invoice_id,
            committed_entry_ids=committed_entry_ids(db, tenant_id, payment_session_id),
        ) from e
    except LedgerConstraintError:
        if auto_commit:
            db.rollback()
        raise
    except SQLAlchemyError as e:
        if not auto_commit:
            raise
        db.rollback()
        logger.error(f"Payment batch {payment_session_id} for invoice {invoice_id} failed: {e}", exc_info=True)
        raise PostingStorageError(
            "Payment batch failed at the storage layer",
            committed_entry_ids=committed_entry_ids(db, tenant_id, payment_session_id),
            invoice_id=invoice_id,
        ) from e

    AuditLog.log_ledger_posting(
        EntryType.PAYMENT, tenant_id, inv.client_id, entry_ids, -batch_total, running, inv.id, created_by
    )
    AuditLog.log_payment_batch(inv.id, payment_session_id, [p.payment_method for p in payments], batch_total, inv.status)
    logger.info(
        f"Posted {len(entry_ids)} payment(s) totalling {batch_total} to invoice {inv.invoice_number}: status={inv.status}"
    )
    return _outcome(db, inv, entry_ids, running)


def post_invoice_charge(db: Session, inv: Invoice, created_by: str | None = None) -> Optional[LedgerEntry]:
    """Post the receivable (+total) for an invoice. Caller owns the transaction.

    Walk-in invoices are skipped. An invoice already charged returns its existing entry.
    """
    if inv.is_walk_in:
        logger.info(f"Skipping ledger charge for walk-in invoice {inv.invoice_number}")
        return None

    existing = ledger_service.list_for_reference(db, REFERENCE_INVOICE, inv.id, entry_type=EntryType.INVOICE)
    if existing:
        logger.info(f"Invoice {inv.invoice_number} already charged (entry {existing[0].id})")
        return existing[0]

    total = to_money(inv.total_amount)
    if total <= ZERO:
        logger.info(f"Invoice {inv.invoice_number} has zero total, nothing to charge")
        return None

    balance_row = balance_service.lock_balance(db, inv.tenant_id, inv.client_id)
    new_balance = to_money(balance_row.balance) + total
    entry = ledger_service.append_entry(
        db,
        tenant_id=inv.tenant_id,
        client_id=inv.client_id,
        entry_type=EntryType.INVOICE,
        amount=total,
        balance_after=new_balance,
        reference_type=REFERENCE_INVOICE,
        reference_id=inv.id,
        description=f"Invoice {inv.invoice_number}",
        created_by=created_by,
    )
    balance_row.balance = new_balance
    db.flush()
    AuditLog.log_ledger_posting(
        EntryType.INVOICE, inv.tenant_id, inv.client_id, [entry.id], total, new_balance, inv.id, created_by
    )
    return entry


def issue_and_charge(db: Session, invoice_id: str, tenant_id: str, user_id: str | None = None) -> Invoice:
    """Issue a draft and establish its receivable in one commit."""
    try:
        inv = invoice_service.issue_invoice(db, invoice_id, tenant_id, user_id)
        post_invoice_charge(db, inv, user_id)
        if to_money(inv.total_amount) == ZERO:
            invoice_service.apply_settlement(db, inv, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(inv)
    return inv


def post_manual_entry(
    db: Session,
    tenant_id: str,
    client_id: str,
    entry_type: str,
    amount: Decimal | float,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    created_by: str | None = None,
    auto_commit: bool = True,
) -> LedgerEntry:
    """Credit or adjustment entered by staff, with its cache update in the same commit."""
    if entry_type not in EntryType.MANUAL:
        raise LedgerConstraintError(
            "Only credit and adjustment entries can be posted manually", entry_type=entry_type
        )
    amount = to_money(amount)
    ledger_service.check_sign(entry_type, amount)
    ledger_service.ensure_client(db, tenant_id, client_id)
    try:
        balance_row = balance_service.lock_balance(db, tenant_id, client_id)
        new_balance = to_money(balance_row.balance) + amount
        entry = ledger_service.append_entry(
            db,
            tenant_id=tenant_id,
            client_id=client_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=new_balance,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            created_by=created_by,
        )
        balance_row.balance = new_balance
        db.flush()
        if auto_commit:
            db.commit()
            db.refresh(entry)
    except IntegrityError as e:
        if auto_commit:
            db.rollback()
        raise ConcurrentPostingError("Ledger entry collided with a concurrent write", client_id=client_id) from e
    AuditLog.log_ledger_posting(entry_type, tenant_id, client_id, [entry.id], amount, new_balance, reference_id, created_by)
    return entry
