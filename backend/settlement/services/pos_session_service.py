"""
Cash session manager: a drawer's open -> closed -> reconciled lifecycle.

Only one session may be open per (tenant, branch). The partial unique index
on pos_sessions enforces that; open_session just translates the violation.
Expected cash at close is opening cash plus the totals of settled cash
invoices rung up in the session. Variance is reported, never corrected.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.core.audit import AuditLog
from settlement.core.exceptions import (
    InvalidAmountError,
    SessionAlreadyOpenError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from settlement.core.money import ZERO, to_money
from settlement.db.base import utcnow
from settlement.models.invoice import Invoice, InvoiceStatus, PaymentMethod
from settlement.models.pos_session import POSSession, SessionStatus
from settlement.models.tenant import Branch, Tenant

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    session_id: str
    status: str
    opening_cash: Decimal
    invoice_count: int
    total_sales: Decimal
    totals_by_method: Dict[str, Decimal] = field(default_factory=dict)
    expected_cash: Decimal = ZERO


def get_session(db: Session, session_id: str, tenant_id: str | None = None, lock: bool = False) -> POSSession:
    q = db.query(POSSession).filter(POSSession.id == session_id)
    if tenant_id:
        q = q.filter(POSSession.tenant_id == tenant_id)
    if lock:
        q = q.with_for_update().populate_existing()
    session = q.first()
    if not session:
        raise SessionNotFoundError("POS session not found", resource="POS session", session_id=session_id)
    return session


def get_open_session(db: Session, tenant_id: str, branch_id: str | None = None) -> Optional[POSSession]:
    q = db.query(POSSession).filter(POSSession.tenant_id == tenant_id, POSSession.status == SessionStatus.OPEN)
    if branch_id:
        q = q.filter(POSSession.branch_id == branch_id)
    else:
        q = q.filter(POSSession.branch_id.is_(None))
    return q.first()


def list_sessions(db: Session, tenant_id: str, branch_id: str | None = None, limit: int = 50) -> List[POSSession]:
    q = db.query(POSSession).filter(POSSession.tenant_id == tenant_id)
    if branch_id:
        q = q.filter(POSSession.branch_id == branch_id)
    return q.order_by(POSSession.opened_at.desc()).limit(limit).all()


def open_session(
    db: Session,
    tenant_id: str,
    opened_by: str,
    opening_cash: Decimal | float = ZERO,
    branch_id: str | None = None,
    notes: str | None = None,
) -> POSSession:
    """Open a drawer. A second open for the same (tenant, branch) fails at insert time."""
    opening_cash = to_money(opening_cash)
    if opening_cash < ZERO:
        raise InvalidAmountError("Opening cash cannot be negative", opening_cash=opening_cash)
    if not db.query(Tenant).filter(Tenant.id == tenant_id).first():
        raise ValidationError("Unknown tenant", tenant_id=tenant_id)
    if branch_id and not db.query(Branch).filter(Branch.id == branch_id, Branch.tenant_id == tenant_id).first():
        raise ValidationError("Unknown branch for tenant", branch_id=branch_id)

    session = POSSession(
        tenant_id=tenant_id,
        branch_id=branch_id,
        opened_by=opened_by,
        opening_cash=opening_cash,
        notes=notes,
        status=SessionStatus.OPEN,
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        AuditLog.log_rejection("open_session", "session already open", tenant_id, branch_id)
        raise SessionAlreadyOpenError(
            "A session is already open", tenant_id=tenant_id, branch_id=branch_id
        ) from e
    db.refresh(session)
    AuditLog.log_session_event(
        "open", session.id, tenant_id, opened_by, details={"branch_id": branch_id, "opening_cash": opening_cash}
    )
    logger.info(f"Opened POS session {session.id} for tenant {tenant_id} branch {branch_id}")
    return session


def cash_sales_total(db: Session, session_id: str) -> Decimal:
    """Totals of cash invoices in the session that have actually been paid."""
    total = (
        db.query(func.coalesce(func.sum(Invoice.total_amount), 0))
        .filter(
            Invoice.pos_session_id == session_id,
            Invoice.payment_method == PaymentMethod.CASH,
            Invoice.payment_received_at.isnot(None),
        )
        .scalar()
    )
    return to_money(total)


def preview_expected_cash(db: Session, session_id: str, tenant_id: str | None = None) -> Decimal:
    """What close_session would compute as expected right now."""
    session = get_session(db, session_id, tenant_id)
    return to_money(session.opening_cash) + cash_sales_total(db, session.id)


def close_session(
    db: Session,
    session_id: str,
    actual_cash: Decimal | float,
    closed_by: str,
    tenant_id: str | None = None,
    notes: str | None = None,
) -> POSSession:
    """Count the drawer and close. All terminal fields are written in one commit."""
    actual_cash = to_money(actual_cash)
    if actual_cash < ZERO:
        raise InvalidAmountError("Counted cash cannot be negative", actual_cash=actual_cash)

    try:
        session = get_session(db, session_id, tenant_id, lock=True)
        if session.status != SessionStatus.OPEN:
            raise SessionStateError(
                f"Session is already {session.status}", session_id=session.id, status=session.status
            )

        cash_sum = cash_sales_total(db, session.id)
        expected = to_money(session.opening_cash) + cash_sum
        variance = actual_cash - expected

        session.status = SessionStatus.CLOSED
        session.closing_cash = actual_cash
        session.expected_cash = expected
        session.cash_variance = variance
        session.closed_by = closed_by
        session.closed_at = utcnow()
        if notes:
            session.notes = notes
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(session)

    AuditLog.log_session_event(
        "close",
        session.id,
        session.tenant_id,
        closed_by,
        details={"expected_cash": expected, "closing_cash": actual_cash, "cash_variance": variance},
    )
    if variance != ZERO:
        logger.warning(f"POS session {session.id} closed with cash variance {variance} (expected {expected})")
    else:
        logger.info(f"POS session {session.id} closed, drawer balanced at {expected}")
    return session


def reconcile_session(
    db: Session,
    session_id: str,
    reconciled_by: str,
    tenant_id: str | None = None,
    notes: str | None = None,
) -> POSSession:
    """closed -> reconciled. Bookkeeping only; no amounts change."""
    try:
        session = get_session(db, session_id, tenant_id, lock=True)
        if session.status != SessionStatus.CLOSED:
            raise SessionStateError(
                f"Only closed sessions can be reconciled (session is {session.status})",
                session_id=session.id,
                status=session.status,
            )
        session.status = SessionStatus.RECONCILED
        session.reconciled_at = utcnow()
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(session)
    AuditLog.log_session_event("reconcile", session.id, session.tenant_id, reconciled_by)
    return session


def session_summary(db: Session, session_id: str, tenant_id: str | None = None) -> SessionSummary:
    session = get_session(db, session_id, tenant_id)
    rows = (
        db.query(Invoice.payment_method, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_amount), 0))
        .filter(Invoice.pos_session_id == session.id, Invoice.status != InvoiceStatus.CANCELLED)
        .group_by(Invoice.payment_method)
        .all()
    )
    by_method = {(method or "unknown"): to_money(total) for method, _, total in rows}
    if session.status == SessionStatus.OPEN:
        expected = to_money(session.opening_cash) + cash_sales_total(db, session.id)
    else:
        expected = to_money(session.expected_cash)
    return SessionSummary(
        session_id=session.id,
        status=session.status,
        opening_cash=to_money(session.opening_cash),
        invoice_count=sum(count for _, count, _ in rows),
        total_sales=sum(by_method.values(), ZERO),
        totals_by_method=by_method,
        expected_cash=expected,
    )
