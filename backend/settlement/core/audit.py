"""
Audit logging for money movement and cash drawer events.

One JSON line per event on the "audit" logger, so it can be shipped
separately from application logs. Amounts are written as strings to keep
Decimal precision.
"""
import logging
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _emit(event_type: str, level: int = logging.INFO, **fields: Any) -> None:
    log_entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
    }
    for key, value in fields.items():
        if value is None:
            continue
        log_entry[key] = str(value) if isinstance(value, Decimal) else value
    audit_logger.log(level, json.dumps(log_entry, default=str))


class AuditLog:
    """Central audit logging for settlement events."""

    @staticmethod
    def log_ledger_posting(
        entry_type: str,  # "invoice", "payment", "credit", "adjustment"
        tenant_id: str,
        client_id: str,
        entry_ids: List[int],
        amount: Decimal,
        balance_after: Decimal,
        reference_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        """
        Log postings appended to the ledger in one unit of work.

        Usage:
            AuditLog.log_ledger_posting("payment", tenant.id, client.id, [41, 42], Decimal("-100"), Decimal("0"))
        """
        _emit(
            f"ledger.{entry_type}",
            tenant_id=tenant_id,
            client_id=client_id,
            entry_ids=entry_ids,
            amount=amount,
            balance_after=balance_after,
            reference_id=reference_id,
            user_id=user_id,
        )

    @staticmethod
    def log_payment_batch(
        invoice_id: str,
        payment_session_id: str,
        methods: List[str],
        total: Decimal,
        invoice_status: str,
        replayed: bool = False,
    ):
        _emit(
            "payment.batch_replayed" if replayed else "payment.batch_posted",
            invoice_id=invoice_id,
            payment_session_id=payment_session_id,
            methods=methods,
            total=total,
            invoice_status=invoice_status,
        )

    @staticmethod
    def log_rejection(
        operation: str,  # "post_payments", "open_session", "create_sale"
        reason: str,
        tenant_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        """
        Log rejected operations. Nothing was written when this fires.

        Usage:
            AuditLog.log_rejection("post_payments", "overpayment", tenant_id, invoice_id)
        """
        _emit(
            f"rejected.{operation}",
            level=logging.WARNING,
            reason=reason,
            tenant_id=tenant_id,
            resource_id=resource_id,
        )

    @staticmethod
    def log_invoice_status(
        invoice_id: str,
        old_status: str,
        new_status: str,
        user_id: Optional[str] = None,
    ):
        if old_status == new_status:
            return
        _emit(
            "invoice.status_changed",
            invoice_id=invoice_id,
            old_status=old_status,
            new_status=new_status,
            user_id=user_id,
        )

    @staticmethod
    def log_session_event(
        action: str,  # "open", "close", "reconcile"
        session_id: str,
        tenant_id: str,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Log cash drawer lifecycle events.

        Usage:
            AuditLog.log_session_event("close", session.id, tenant_id, user_id, details={"cash_variance": "-10.00"})
        """
        _emit(
            f"pos_session.{action}",
            session_id=session_id,
            tenant_id=tenant_id,
            user_id=user_id,
            details=details,
        )

    @staticmethod
    def log_balance_rebuild(tenant_id: str, client_id: str, cached: Decimal, ledger: Decimal):
        _emit(
            "balance.rebuilt",
            level=logging.WARNING if cached != ledger else logging.INFO,
            tenant_id=tenant_id,
            client_id=client_id,
            cached=cached,
            ledger=ledger,
        )
