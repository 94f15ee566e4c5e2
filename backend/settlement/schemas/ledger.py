from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class LedgerEntryResponse(BaseModel):
    id: int
    tenant_id: str
    client_id: str
    entry_type: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    amount: Decimal
    balance_after: Decimal
    payment_method: Optional[str] = None
    payment_session_id: Optional[str] = None
    description: Optional[str] = None
    metadata: dict = Field(default_factory=dict, validation_alias="entry_metadata")
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ManualEntryCreate(BaseModel):
    """Credits are negative, adjustments any non-zero amount."""
    client_id: str
    entry_type: Literal["credit", "adjustment"]
    amount: Decimal
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None


class CustomerBalanceResponse(BaseModel):
    tenant_id: str
    client_id: str
    balance: Decimal
    currency: str
    last_updated: Optional[datetime] = None

    class Config:
        from_attributes = True


class BalanceDriftResponse(BaseModel):
    client_id: str
    cached: Decimal
    ledger: Decimal
