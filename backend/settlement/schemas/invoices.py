from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class InvoiceItemCreate(BaseModel):
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    total_price: Optional[Decimal] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


class InvoiceCreate(BaseModel):
    """Manual billing. Totals are derived from the items."""
    items: List[InvoiceItemCreate] = Field(min_length=1)
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    issue: bool = False  # create directly as issued (posts the receivable)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    discount_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    currency: Optional[str] = None
    notes: Optional[str] = None
    branch_id: Optional[str] = None


class InvoiceCancel(BaseModel):
    reason: Optional[str] = None


class InvoiceItemResponse(BaseModel):
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: str
    tenant_id: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    invoice_number: str
    status: str
    issue_date: date
    due_date: Optional[date] = None
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    payment_method: Optional[str] = None
    payment_received_at: Optional[datetime] = None
    pos_session_id: Optional[str] = None
    notes: Optional[str] = None
    items: List[InvoiceItemResponse] = []

    class Config:
        from_attributes = True


class PaymentRecordResponse(BaseModel):
    entry_id: int
    amount: Decimal
    payment_method: Optional[str] = None
    payment_session_id: Optional[str] = None
    metadata: dict = {}
    created_at: Optional[datetime] = None
    description: Optional[str] = None

    class Config:
        from_attributes = True


class InvoicePaymentSummaryResponse(BaseModel):
    invoice_id: str
    status: str
    display_status: str
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    is_paid: bool
    is_partial: bool
    payments: List[PaymentRecordResponse] = []

    class Config:
        from_attributes = True
