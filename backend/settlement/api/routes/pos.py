"""
POS: cash drawer sessions and counter sales.

One open session per (tenant, branch). Sales ring up against an open session;
closing counts the drawer against opening cash plus settled cash sales.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from settlement.api.deps import TenantContext, get_db, get_tenant_context
from settlement.core.exceptions import BusinessError, SettlementError, to_http_exception
from settlement.schemas.invoices import InvoiceResponse
from settlement.schemas.pos import (
    POSSessionResponse,
    SaleCreate,
    SessionClose,
    SessionOpen,
    SessionReconcile,
    SessionSummaryResponse,
)
from settlement.services import pos_session_service, sale_service
from settlement.services.sale_service import CartItem

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/sessions", response_model=POSSessionResponse, status_code=status.HTTP_201_CREATED)
def open_session(body: SessionOpen, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    if not ctx.user_id:
        raise BusinessError.bad_request("X-User-ID is required to open a drawer")
    try:
        return pos_session_service.open_session(
            db,
            tenant_id=ctx.tenant_id,
            opened_by=ctx.user_id,
            opening_cash=body.opening_cash,
            branch_id=body.branch_id,
            notes=body.notes,
        )
    except SettlementError as e:
        raise to_http_exception(e)


@router.get("/sessions", response_model=List[POSSessionResponse])
def list_sessions(
    branch_id: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    return pos_session_service.list_sessions(db, ctx.tenant_id, branch_id=branch_id, limit=limit)


@router.get("/sessions/open", response_model=Optional[POSSessionResponse])
def get_open_session(
    branch_id: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """The drawer currently open for the branch (or the tenant's branchless drawer), if any."""
    return pos_session_service.get_open_session(db, ctx.tenant_id, branch_id=branch_id)


@router.get("/sessions/{session_id}", response_model=POSSessionResponse)
def get_session(session_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    try:
        return pos_session_service.get_session(db, session_id, ctx.tenant_id)
    except SettlementError as e:
        raise to_http_exception(e)


@router.get("/sessions/{session_id}/summary", response_model=SessionSummaryResponse)
def get_session_summary(
    session_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)
):
    try:
        return pos_session_service.session_summary(db, session_id, ctx.tenant_id)
    except SettlementError as e:
        raise to_http_exception(e)


@router.get("/sessions/{session_id}/expected-cash")
def get_expected_cash(
    session_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)
) -> dict:
    """What the drawer should hold if it were closed now."""
    try:
        expected: Decimal = pos_session_service.preview_expected_cash(db, session_id, ctx.tenant_id)
    except SettlementError as e:
        raise to_http_exception(e)
    return {"session_id": session_id, "expected_cash": str(expected)}


@router.post("/sessions/{session_id}/close", response_model=POSSessionResponse)
def close_session(
    session_id: str,
    body: SessionClose,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    try:
        return pos_session_service.close_session(
            db,
            session_id,
            actual_cash=body.actual_cash,
            closed_by=ctx.user_id or "unknown",
            tenant_id=ctx.tenant_id,
            notes=body.notes,
        )
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/sessions/{session_id}/reconcile", response_model=POSSessionResponse)
def reconcile_session(
    session_id: str,
    body: Optional[SessionReconcile] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    try:
        return pos_session_service.reconcile_session(
            db,
            session_id,
            reconciled_by=ctx.user_id or "unknown",
            tenant_id=ctx.tenant_id,
            notes=body.notes if body else None,
        )
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/sales", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def create_sale(body: SaleCreate, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    """Ring up a cart. Walk-in when client_id is omitted."""
    cart = [CartItem(**item.model_dump()) for item in body.items]
    try:
        return sale_service.create_sale(
            db,
            cart_items=cart,
            tenant_id=ctx.tenant_id,
            session_id=body.session_id,
            created_by=ctx.user_id or "unknown",
            payment_method=body.payment_method,
            client_id=body.client_id,
            client_name=body.client_name,
            discount_amount=body.discount_amount,
            notes=body.notes,
        )
    except SettlementError as e:
        raise to_http_exception(e)
