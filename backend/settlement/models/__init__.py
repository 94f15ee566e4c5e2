from settlement.models.tenant import Tenant, Branch
from settlement.models.client import Client
from settlement.models.invoice import Invoice, InvoiceItem, InvoiceStatus, PaymentMethod
from settlement.models.ledger import LedgerEntry, EntryType
from settlement.models.balance import CustomerBalance
from settlement.models.pos_session import POSSession, SessionStatus

__all__ = [
    "Tenant",
    "Branch",
    "Client",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "PaymentMethod",
    "LedgerEntry",
    "EntryType",
    "CustomerBalance",
    "POSSession",
    "SessionStatus",
]
