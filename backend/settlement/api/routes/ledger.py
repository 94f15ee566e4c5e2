"""
Customer ledger and balance cache. Entries are append-only; corrections go in
as new credit/adjustment entries, never as edits.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from settlement.api.deps import TenantContext, get_db, get_tenant_context
from settlement.core.exceptions import SettlementError, to_http_exception
from settlement.schemas.ledger import (
    BalanceDriftResponse,
    CustomerBalanceResponse,
    LedgerEntryResponse,
    ManualEntryCreate,
)
from settlement.services import balance_service, ledger_service, payment_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/clients/{client_id}/entries", response_model=List[LedgerEntryResponse])
def list_client_entries(
    client_id: str,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Entries in posting order; balance_after on the last one is the client's position."""
    try:
        ledger_service.ensure_client(db, ctx.tenant_id, client_id)
    except SettlementError as e:
        raise to_http_exception(e)
    return ledger_service.list_for_client(db, ctx.tenant_id, client_id, limit=limit)


@router.get("/clients/{client_id}/balance", response_model=CustomerBalanceResponse)
def get_client_balance(
    client_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)
):
    try:
        ledger_service.ensure_client(db, ctx.tenant_id, client_id)
    except SettlementError as e:
        raise to_http_exception(e)
    row = balance_service.get_balance_row(db, ctx.tenant_id, client_id)
    if row is None:
        # No postings yet
        return CustomerBalanceResponse(
            tenant_id=ctx.tenant_id,
            client_id=client_id,
            balance=balance_service.get_balance(db, ctx.tenant_id, client_id),
            currency=balance_service.tenant_currency(db, ctx.tenant_id),
        )
    return row


@router.post("/entries", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
def create_manual_entry(
    body: ManualEntryCreate, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)
):
    try:
        return payment_service.post_manual_entry(
            db,
            tenant_id=ctx.tenant_id,
            client_id=body.client_id,
            entry_type=body.entry_type,
            amount=body.amount,
            description=body.description,
            reference_type=body.reference_type,
            reference_id=body.reference_id,
            created_by=ctx.user_id,
        )
    except SettlementError as e:
        db.rollback()
        raise to_http_exception(e)


@router.get("/balances", response_model=List[CustomerBalanceResponse])
def list_balances(db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    return balance_service.list_balances(db, ctx.tenant_id)


@router.get("/balances/drift", response_model=List[BalanceDriftResponse])
def balance_drift(db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    """Clients whose cached balance disagrees with the ledger sum."""
    return [
        BalanceDriftResponse(client_id=client_id, cached=cached, ledger=ledger)
        for client_id, cached, ledger in balance_service.find_drift(db, ctx.tenant_id)
    ]


@router.post("/balances/rebuild", response_model=List[CustomerBalanceResponse])
def rebuild_balances(db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    try:
        rows = balance_service.rebuild_tenant_balances(db, ctx.tenant_id, auto_commit=True)
    except SettlementError as e:
        db.rollback()
        raise to_http_exception(e)
    logger.info(f"Balance cache rebuilt for tenant {ctx.tenant_id} by {ctx.user_id}: {len(rows)} clients")
    return rows
