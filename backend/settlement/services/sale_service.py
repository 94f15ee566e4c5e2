"""
Sale composer: turns a POS cart into an invoice, and for known clients
posts the receivable and the counter payment in the same transaction.

Walk-in sales never touch the ledger or the balance cache.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from settlement.core.audit import AuditLog
from settlement.core.exceptions import (
    ConcurrentPostingError,
    InvalidSaleError,
    SessionStateError,
    SettlementError,
    StorageError,
)
from settlement.core.money import ZERO, money_sum, to_money
from settlement.db.base import utcnow
from settlement.models.invoice import Invoice, InvoiceStatus, PaymentMethod
from settlement.models.pos_session import POSSession, SessionStatus
from settlement.services import invoice_service, payment_service, pos_session_service
from settlement.services.invoice_service import LineItem
from settlement.services.payment_service import PaymentInput
from settlement.services.tax_policy import TaxPolicy, default_tax_policy

logger = logging.getLogger(__name__)

WALK_IN_NAME = "Walk-in Customer"


@dataclass
class CartItem:
    name: str
    unit_price: Decimal
    quantity: Decimal = Decimal("1")
    total_price: Optional[Decimal] = None
    secondary_name: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


def traceability_tag(session_id: str, sequence: int) -> str:
    """[POS:<first 8 of session id>:<4-digit position in session>]"""
    return f"[POS:{session_id[:8]}:{sequence:04d}]"


def _next_sequence(session: POSSession) -> int:
    """Caller holds the session row lock. Rolled back together with the sale if it fails."""
    session.sale_count = (session.sale_count or 0) + 1
    return session.sale_count


def _to_lines(cart: List[CartItem], session_id: str) -> List[LineItem]:
    lines = []
    for item in cart:
        description = f"{item.name} / {item.secondary_name}" if item.secondary_name else item.name
        lines.append(
            LineItem(
                description=description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                entity_type=item.entity_type or "pos_sale",
                entity_id=item.entity_id or session_id,
            )
        )
    return lines


def create_sale(
    db: Session,
    cart_items: List[CartItem],
    tenant_id: str,
    session_id: str,
    created_by: str,
    payment_method: str,
    client_id: str | None = None,
    client_name: str | None = None,
    discount_amount: Decimal | float = ZERO,
    notes: str | None = None,
    tax_policy: TaxPolicy | None = None,
) -> Invoice:
    """Compose and persist a sale. Either everything commits or nothing does.

    Client sales: invoice -> items -> +total ledger charge -> (unless debt) one
    payment for the total, leaving the invoice paid.
    Walk-in sales: invoice -> items; paid at the counter, no ledger.
    """
    payment_method = (payment_method or "").strip().lower()
    if payment_method not in PaymentMethod.SALE_METHODS:
        raise InvalidSaleError(f"Unsupported payment method '{payment_method}'", payment_method=payment_method)
    if not cart_items:
        raise InvalidSaleError("Cart is empty")
    if payment_method == PaymentMethod.DEBT and not client_id:
        raise InvalidSaleError("Debt sales need a client to carry the balance")
    tax_policy = tax_policy or default_tax_policy()

    try:
        # Session row lock also serializes the in-session sequence number
        session = pos_session_service.get_session(db, session_id, tenant_id, lock=True)
        if session.status != SessionStatus.OPEN:
            raise SessionStateError(
                f"Cannot ring up a sale on a {session.status} session",
                session_id=session.id,
                status=session.status,
            )

        lines = _to_lines(cart_items, session.id)
        subtotal = money_sum(item.total_price for item in invoice_service.build_items(lines))
        discount = to_money(discount_amount)
        if discount < ZERO or discount > subtotal:
            raise InvalidSaleError("Discount must be between zero and the cart subtotal", discount_amount=discount)
        tax = tax_policy.compute(subtotal, discount)

        sequence = _next_sequence(session)
        tag = traceability_tag(session.id, sequence)
        today = date.today()

        inv = invoice_service.create_invoice(
            db,
            tenant_id=tenant_id,
            lines=lines,
            client_id=client_id,
            client_name=client_name or (None if client_id else WALK_IN_NAME),
            status=InvoiceStatus.ISSUED,
            issue_date=today,
            due_date=today,
            discount_amount=discount,
            tax_amount=tax,
            invoice_number=invoice_service.generate_invoice_number("POS"),
            notes=f"{tag} {notes}" if notes else tag,
            pos_session_id=session.id,
            branch_id=session.branch_id,
            payment_method=payment_method,
            created_by=created_by,
        )

        if inv.is_walk_in or to_money(inv.total_amount) == ZERO:
            # Settled at the counter (or nothing owed); nothing to post
            inv.status = InvoiceStatus.PAID
            inv.payment_received_at = utcnow()
            db.flush()
            AuditLog.log_invoice_status(inv.id, InvoiceStatus.ISSUED, InvoiceStatus.PAID, created_by)
        else:
            payment_service.post_invoice_charge(db, inv, created_by)
            if payment_method != PaymentMethod.DEBT:
                payment_service.post_payments(
                    db,
                    invoice_id=inv.id,
                    tenant_id=tenant_id,
                    payments=[PaymentInput(amount=to_money(inv.total_amount), payment_method=payment_method)],
                    payment_session_id=str(uuid.uuid4()),
                    created_by=created_by,
                    auto_commit=False,
                )
        db.commit()
    except SettlementError as e:
        db.rollback()
        AuditLog.log_rejection("create_sale", e.message, tenant_id, session_id)
        raise
    except IntegrityError as e:
        db.rollback()
        raise ConcurrentPostingError("Sale collided with a concurrent write; retry", session_id=session_id) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Sale on session {session_id} failed: {e}", exc_info=True)
        raise StorageError("Sale could not be saved; nothing was recorded", session_id=session_id) from e

    db.refresh(inv)
    logger.info(
        f"Sale {inv.invoice_number} {tag} total={inv.total_amount} method={payment_method} "
        f"client={client_id or 'walk-in'} status={inv.status}"
    )
    return inv
