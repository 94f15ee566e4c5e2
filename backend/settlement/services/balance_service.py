"""
Balance cache: one CustomerBalance row per (tenant, client).

Always written inside the transaction that appended the postings behind it.
The ledger stays the source of truth; rebuild_* replays it into the cache.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from settlement.core.audit import AuditLog
from settlement.core.config import settings
from settlement.core.money import ZERO, to_money
from settlement.models.balance import CustomerBalance
from settlement.models.ledger import LedgerEntry
from settlement.models.tenant import Tenant
from settlement.services.ledger_service import sum_for_client

logger = logging.getLogger(__name__)


def tenant_currency(db: Session, tenant_id: str) -> str:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    return tenant.currency if tenant and tenant.currency else settings.DEFAULT_CURRENCY


def get_balance_row(db: Session, tenant_id: str, client_id: str, lock: bool = False) -> Optional[CustomerBalance]:
    q = db.query(CustomerBalance).filter(
        CustomerBalance.tenant_id == tenant_id,
        CustomerBalance.client_id == client_id,
    )
    if lock:
        q = q.with_for_update().populate_existing()
    return q.first()


def get_balance(db: Session, tenant_id: str, client_id: str) -> Decimal:
    """Cached balance, 0 for clients with no postings yet."""
    row = get_balance_row(db, tenant_id, client_id)
    return to_money(row.balance) if row else ZERO


def lock_balance(db: Session, tenant_id: str, client_id: str) -> CustomerBalance:
    """Row-lock the client's balance, creating it at zero on first use.

    Every writer for a client goes through here before reading its starting
    balance, so appends and cache writes for that client are serialized.
    """
    row = get_balance_row(db, tenant_id, client_id, lock=True)
    if row:
        return row
    row = CustomerBalance(
        tenant_id=tenant_id,
        client_id=client_id,
        balance=ZERO,
        currency=tenant_currency(db, tenant_id),
    )
    db.add(row)
    db.flush()  # a concurrent first insert fails here with IntegrityError
    return row


def upsert_balance(db: Session, tenant_id: str, client_id: str, balance: Decimal | float) -> CustomerBalance:
    row = lock_balance(db, tenant_id, client_id)
    row.balance = to_money(balance)
    db.flush()
    return row


def list_balances(db: Session, tenant_id: str) -> List[CustomerBalance]:
    return (
        db.query(CustomerBalance)
        .filter(CustomerBalance.tenant_id == tenant_id)
        .order_by(CustomerBalance.last_updated.desc())
        .all()
    )


def rebuild_balance(db: Session, tenant_id: str, client_id: str, auto_commit: bool = False) -> CustomerBalance:
    """Replay the ledger for one client into the cache."""
    row = lock_balance(db, tenant_id, client_id)
    cached = to_money(row.balance)
    replayed = sum_for_client(db, tenant_id, client_id)
    row.balance = replayed
    db.flush()
    AuditLog.log_balance_rebuild(tenant_id, client_id, cached, replayed)
    if cached != replayed:
        logger.warning(f"Balance drift repaired for client {client_id}: cached={cached} ledger={replayed}")
    if auto_commit:
        db.commit()
        db.refresh(row)
    return row


def _ledger_totals(db: Session, tenant_id: str) -> dict:
    rows = (
        db.query(LedgerEntry.client_id, func.sum(LedgerEntry.amount))
        .filter(LedgerEntry.tenant_id == tenant_id)
        .group_by(LedgerEntry.client_id)
        .all()
    )
    return {client_id: to_money(total) for client_id, total in rows}


def rebuild_tenant_balances(db: Session, tenant_id: str, auto_commit: bool = False) -> List[CustomerBalance]:
    """Replay every client of the tenant that has postings or a cached row."""
    client_ids = set(_ledger_totals(db, tenant_id))
    client_ids.update(row.client_id for row in list_balances(db, tenant_id))
    rebuilt = [rebuild_balance(db, tenant_id, client_id) for client_id in sorted(client_ids)]
    if auto_commit:
        db.commit()
    logger.info(f"Rebuilt {len(rebuilt)} balances for tenant {tenant_id}")
    return rebuilt


def find_drift(db: Session, tenant_id: str) -> List[Tuple[str, Decimal, Decimal]]:
    """(client_id, cached, ledger) for every client where the cache disagrees with the ledger."""
    ledger = _ledger_totals(db, tenant_id)
    cached = {row.client_id: to_money(row.balance) for row in list_balances(db, tenant_id)}
    drift = []
    for client_id in sorted(set(ledger) | set(cached)):
        cached_value = cached.get(client_id, ZERO)
        ledger_value = ledger.get(client_id, ZERO)
        if cached_value != ledger_value:
            drift.append((client_id, cached_value, ledger_value))
    return drift
