from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: str = Field(min_length=1)
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentBatchCreate(BaseModel):
    """payment_session_id is generated by the caller once per checkout and reused on retry."""
    payment_session_id: str = Field(min_length=1, max_length=64)
    payments: List[PaymentCreate] = Field(min_length=1)


class PostingResultResponse(BaseModel):
    invoice_id: str
    paid_amount: Decimal
    outstanding_amount: Decimal
    invoice_status: str
    entry_ids: List[int] = []
    balance_after: Optional[Decimal] = None
    replayed: bool = False

    class Config:
        from_attributes = True
