"""
Invoices: manual billing, lifecycle transitions and payment posting.
Amounts are Decimal end to end; the ledger is the source of truth for what was paid.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from settlement.api.deps import TenantContext, get_db, get_tenant_context
from settlement.core.exceptions import SettlementError, to_http_exception
from settlement.models.invoice import InvoiceStatus
from settlement.schemas.invoices import (
    InvoiceCancel,
    InvoiceCreate,
    InvoicePaymentSummaryResponse,
    InvoiceResponse,
)
from settlement.schemas.payments import PaymentBatchCreate, PostingResultResponse
from settlement.services import invoice_service, payment_service
from settlement.services.invoice_service import LineItem
from settlement.services.payment_service import PaymentInput

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def create_invoice(
    body: InvoiceCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Create a draft; with issue=true the invoice is issued and its receivable posted."""
    lines = [LineItem(**item.model_dump()) for item in body.items]
    try:
        inv = invoice_service.create_invoice(
            db,
            tenant_id=ctx.tenant_id,
            lines=lines,
            client_id=body.client_id,
            client_name=body.client_name,
            status=InvoiceStatus.DRAFT,
            issue_date=body.issue_date,
            due_date=body.due_date,
            discount_amount=body.discount_amount,
            tax_amount=body.tax_amount,
            currency=body.currency,
            notes=body.notes,
            branch_id=body.branch_id,
            created_by=ctx.user_id,
        )
        if body.issue:
            inv = payment_service.issue_and_charge(db, inv.id, ctx.tenant_id, ctx.user_id)
        else:
            db.commit()
            db.refresh(inv)
    except SettlementError as e:
        db.rollback()
        raise to_http_exception(e)
    return inv


@router.get("", response_model=List[InvoiceResponse])
def list_invoices(
    status: Optional[str] = None,
    client_id: Optional[str] = None,
    session_id: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    return invoice_service.list_invoices(
        db, ctx.tenant_id, status=status, client_id=client_id, pos_session_id=session_id, limit=limit
    )


@router.get("/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    try:
        return invoice_service.get_invoice(db, invoice_id, ctx.tenant_id)
    except SettlementError as e:
        raise to_http_exception(e)


@router.get("/{invoice_id}/payments", response_model=InvoicePaymentSummaryResponse)
def get_payment_summary(
    invoice_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)
):
    """Paid / outstanding / payment history, with overdue projected at read time."""
    try:
        return invoice_service.summarize_invoice(db, invoice_id, ctx.tenant_id)
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{invoice_id}/payments", response_model=PostingResultResponse)
def post_payments(
    invoice_id: str,
    body: PaymentBatchCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    """Post a batch of tenders. Retrying with the same payment_session_id is safe."""
    payments = [PaymentInput(**p.model_dump()) for p in body.payments]
    try:
        return payment_service.post_payments(
            db,
            invoice_id=invoice_id,
            tenant_id=ctx.tenant_id,
            payments=payments,
            payment_session_id=body.payment_session_id,
            created_by=ctx.user_id,
        )
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{invoice_id}/issue", response_model=InvoiceResponse)
def issue_invoice(invoice_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    try:
        return payment_service.issue_and_charge(db, invoice_id, ctx.tenant_id, ctx.user_id)
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_id: str,
    body: Optional[InvoiceCancel] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
):
    try:
        return invoice_service.cancel_invoice(
            db, invoice_id, ctx.tenant_id, ctx.user_id, reason=body.reason if body else None, auto_commit=True
        )
    except SettlementError as e:
        db.rollback()
        raise to_http_exception(e)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(invoice_id: str, db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant_context)):
    try:
        invoice_service.delete_invoice(db, invoice_id, ctx.tenant_id, auto_commit=True)
    except SettlementError as e:
        db.rollback()
        raise to_http_exception(e)
    logger.info(f"Invoice {invoice_id} deleted by {ctx.user_id}")
