"""
Custom exceptions for GarageBoard.

Exception Hierarchy:
    GarageBoardError (base)
    ├── ValidationError           - rule violation, nothing was changed
    │   ├── InvalidTransitionError  - illegal job status move
    │   ├── PaymentRequiredError    - completion with an outstanding balance
    │   ├── EstimateLockedError     - estimate edit after invoicing
    │   ├── InvalidItemError        - malformed estimate line item
    │   ├── InvalidPaymentError     - non-positive payment amount
    │   └── OverpaymentError        - payment larger than the balance
    ├── NotFoundError             - entity missing for this tenant
    │   ├── JobNotFoundError
    │   ├── EstimateNotFoundError
    │   └── InvoiceNotFoundError
    ├── PersistenceError          - gateway failure (transient, retryable)
    │   └── PersistenceTimeoutError
    └── DeliveryError             - PDF/WhatsApp delivery failure (best effort)

Usage:
    Validation errors are raised synchronously and shown to the user as-is,
    so their messages say which rule failed. PersistenceError is the only
    family the UI offers to retry.
"""

from decimal import Decimal
from typing import Optional, Dict, Any


class GarageBoardError(Exception):
    """
    Base exception for all GarageBoard errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for the UI
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


def _money(amount: Decimal, currency: str) -> str:
    return f"{currency}{Decimal(amount):.2f}"


# =============================================================================
# VALIDATION ERRORS - rejected before any state changed
# =============================================================================

class ValidationError(GarageBoardError):
    """A business rule rejected the request. Nothing was mutated."""


class InvalidTransitionError(ValidationError):
    """The requested job status move is not in the transition table."""

    def __init__(self, from_status: str, to_status: str, reason: Optional[str] = None):
        message = reason or f"Cannot move job from '{from_status}' to '{to_status}'"
        details = {
            "from_status": from_status,
            "to_status": to_status,
            "resolution": "Move the job one column at a time; completed jobs are final",
        }
        super().__init__(message, details)
        self.from_status = from_status
        self.to_status = to_status


class PaymentRequiredError(ValidationError):
    """
    A job cannot be completed while its invoice is missing or unpaid.

    Carries the outstanding balance so the UI can offer a "mark paid" path
    instead of a generic failure.
    """

    def __init__(
        self,
        job_id: str,
        balance: Decimal,
        invoice_id: Optional[str] = None,
        job_number: Optional[str] = None,
        currency: str = "₹",
    ):
        label = job_number or job_id[:8]
        if invoice_id is None:
            message = f"Cannot complete job {label}: no invoice has been generated"
        else:
            message = f"Cannot complete job {label}: {_money(balance, currency)} outstanding"
        details = {
            "job_id": job_id,
            "job_number": job_number,
            "invoice_id": invoice_id,
            "balance": str(balance),
            "resolution": "Record the outstanding payment, then complete the job",
        }
        super().__init__(message, details)
        self.job_id = job_id
        self.invoice_id = invoice_id
        self.balance = balance
        self.job_number = job_number


class EstimateLockedError(ValidationError):
    """The estimate was frozen into an invoice (or its job completed)."""

    def __init__(self, estimate_id: str, job_id: Optional[str] = None):
        message = f"Estimate {estimate_id[:8]} is locked and can no longer be edited"
        details = {
            "estimate_id": estimate_id,
            "job_id": job_id,
            "resolution": "An invoice already exists for this job",
        }
        super().__init__(message, details)
        self.estimate_id = estimate_id
        self.job_id = job_id


class InvalidItemError(ValidationError):
    """An estimate line item violates its input contract."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        details = {"field": field, "value": None if value is None else str(value)}
        super().__init__(message, details)
        self.field = field
        self.value = value


class InvalidPaymentError(ValidationError):
    """Payment amount is zero, negative or not a number."""

    def __init__(self, amount: Any):
        super().__init__(
            f"Payment amount must be greater than zero (got {amount})",
            {"amount": str(amount)},
        )
        self.amount = amount


class OverpaymentError(ValidationError):
    """The payment would push the invoice balance below zero."""

    def __init__(self, invoice_id: str, amount: Decimal, balance: Decimal, currency: str = "₹"):
        message = (
            f"Payment of {_money(amount, currency)} exceeds the outstanding "
            f"balance of {_money(balance, currency)}"
        )
        details = {
            "invoice_id": invoice_id,
            "amount": str(amount),
            "balance": str(balance),
            "resolution": "Enter an amount no larger than the outstanding balance",
        }
        super().__init__(message, details)
        self.invoice_id = invoice_id
        self.amount = amount
        self.balance = balance


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(GarageBoardError):
    """Requested entity does not exist for the given tenant."""

    entity = "Entity"

    def __init__(self, entity_id: str, tenant_id: Optional[str] = None):
        super().__init__(
            f"{self.entity} {entity_id} not found",
            {"id": entity_id, "tenant_id": tenant_id},
        )
        self.entity_id = entity_id
        self.tenant_id = tenant_id


class JobNotFoundError(NotFoundError):
    entity = "Job"


class EstimateNotFoundError(NotFoundError):
    entity = "Estimate"


class InvoiceNotFoundError(NotFoundError):
    entity = "Invoice"


# =============================================================================
# RUNTIME ERRORS - transient, user may retry
# =============================================================================

class PersistenceError(GarageBoardError):
    """
    The persistence gateway failed.

    Optimistic board moves roll back on this error. The operation can be
    retried once the backend is reachable again.
    """

    retryable = True

    def __init__(self, operation: str, message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        error_details["operation"] = operation
        error_details.setdefault("resolution", "Try again in a moment")
        super().__init__(message or f"Persistence call '{operation}' failed", error_details)
        self.operation = operation


class PersistenceTimeoutError(PersistenceError):
    """
    A gateway call did not answer within the configured timeout.

    The call itself may still be running. ``pending_call`` (when set) lets
    the caller wait for it and find out whether it landed after all.
    """

    def __init__(self, operation: str, timeout_seconds: float, pending_call: Any = None):
        super().__init__(
            operation,
            f"Persistence call '{operation}' timed out after {timeout_seconds:.1f}s",
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds
        self.pending_call = pending_call


class DeliveryError(GarageBoardError):
    """Invoice delivery (PDF export, WhatsApp) failed. The invoice stands."""

    retryable = True

    def __init__(self, channel: str, invoice_id: str, reason: str):
        super().__init__(
            f"Could not deliver invoice via {channel}: {reason}",
            {"channel": channel, "invoice_id": invoice_id},
        )
        self.channel = channel
        self.invoice_id = invoice_id
