from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SessionOpen(BaseModel):
    branch_id: Optional[str] = None
    opening_cash: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None


class SessionClose(BaseModel):
    actual_cash: Decimal = Field(ge=0)
    notes: Optional[str] = None


class SessionReconcile(BaseModel):
    notes: Optional[str] = None


class POSSessionResponse(BaseModel):
    id: str
    tenant_id: str
    branch_id: Optional[str] = None
    opened_by: str
    closed_by: Optional[str] = None
    status: str
    opening_cash: Decimal
    closing_cash: Optional[Decimal] = None
    expected_cash: Optional[Decimal] = None
    cash_variance: Optional[Decimal] = None
    notes: Optional[str] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionSummaryResponse(BaseModel):
    session_id: str
    status: str
    opening_cash: Decimal
    invoice_count: int
    total_sales: Decimal
    totals_by_method: Dict[str, Decimal] = {}
    expected_cash: Decimal

    class Config:
        from_attributes = True


class CartItemCreate(BaseModel):
    name: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    total_price: Optional[Decimal] = None
    secondary_name: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


class SaleCreate(BaseModel):
    session_id: str
    items: List[CartItemCreate] = Field(min_length=1)
    payment_method: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None
