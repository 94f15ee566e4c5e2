"""
Domain errors for the settlement engine and their HTTP translation.

Three families matter to callers:
- ValidationError: input was wrong. Nothing was written. Do not retry as-is.
- ConflictError: another writer got there first. Re-read and retry if it still makes sense.
- StorageError: the database failed. State may be uncertain, re-query before retrying.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class SettlementError(Exception):
    """Base class. `details` is safe to return to the caller."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------

class ValidationError(SettlementError):
    pass


class EmptyPaymentBatchError(ValidationError):
    pass


class InvalidAmountError(ValidationError):
    pass


class OverpaymentError(ValidationError):
    pass


class WalkInInvoiceError(ValidationError):
    pass


class InvalidTransitionError(ValidationError):
    pass


class LedgerConstraintError(ValidationError):
    pass


class InvalidSaleError(ValidationError):
    pass


class NotFoundError(ValidationError):
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class SessionNotFoundError(NotFoundError):
    pass


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------

class ConflictError(SettlementError):
    pass


class SessionAlreadyOpenError(ConflictError):
    pass


class SessionStateError(ConflictError):
    pass


class ConcurrentPostingError(ConflictError):
    pass


class PaymentSessionConflictError(ConflictError):
    pass


# ------------------------------------------------------------------
# Storage
# ------------------------------------------------------------------

class StorageError(SettlementError):
    pass


class PostingStorageError(StorageError):
    """A payment batch failed at the storage layer.

    committed_entry_ids lists the ledger entries found committed afterwards.
    None means the lookup itself failed and the caller must re-query.
    """

    def __init__(self, message: str, committed_entry_ids: Optional[List[int]] = None, **details: Any):
        super().__init__(message, committed_entry_ids=committed_entry_ids, **details)
        self.committed_entry_ids = committed_entry_ids


class LedgerImmutableError(SettlementError):
    """Raised when something tries to update or delete a ledger entry."""


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def not_found(resource: str = "Resource", reason: str = "") -> HTTPException:
        """
        Same response whether the row does not exist or belongs to another tenant.
        """
        if reason:
            logger.warning(f"Not found: {resource} - {reason}")
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )

    @staticmethod
    def bad_request(detail: str, extra: Optional[Dict[str, Any]] = None) -> HTTPException:
        """
        400 for input validation / business rule errors.
        OK to include specifics here since the caller caused the issue.
        """
        logger.info(f"Bad request: {detail}")
        body: Dict[str, Any] = {"error": detail}
        if extra:
            body.update(extra)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=body)

    @staticmethod
    def conflict(detail: str, extra: Optional[Dict[str, Any]] = None) -> HTTPException:
        """409: re-read and retry."""
        logger.warning(f"Conflict: {detail}")
        body: Dict[str, Any] = {"error": detail}
        if extra:
            body.update(extra)
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=body)

    @staticmethod
    def unavailable(original_error: Optional[Exception] = None, extra: Optional[Dict[str, Any]] = None) -> HTTPException:
        """
        503 for storage failures. State may be uncertain, so the caller is told to re-query.
        Never exposes driver messages.
        """
        if original_error:
            logger.error(
                f"Storage failure: {type(original_error).__name__}: {original_error}",
                exc_info=original_error,
            )
        body: Dict[str, Any] = {"error": "Storage unavailable; state is uncertain, re-query before retrying."}
        if extra:
            body.update(extra)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=body)

    @staticmethod
    def server_error(original_error: Optional[Exception] = None) -> HTTPException:
        """Generic 500 - logs the real error, hides it from the caller."""
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {original_error}",
                exc_info=original_error,
            )
        else:
            logger.error("Internal server error occurred")
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )


def to_http_exception(exc: SettlementError) -> HTTPException:
    """Map a domain error onto the response the API returns."""
    details = jsonable_encoder({k: v for k, v in exc.details.items() if v is not None})
    if isinstance(exc, NotFoundError):
        return BusinessError.not_found(details.get("resource", "Resource"), exc.message)
    if isinstance(exc, ValidationError):
        return BusinessError.bad_request(exc.message, details)
    if isinstance(exc, ConflictError):
        return BusinessError.conflict(exc.message, details)
    if isinstance(exc, StorageError):
        # committed_entry_ids=None is meaningful here: nobody knows what landed
        return BusinessError.unavailable(exc, jsonable_encoder(exc.details))
    return BusinessError.server_error(exc)
