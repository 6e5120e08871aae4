"""
Data models for GarageBoard.

This module contains the typed entities the core works with:
- Job: a job card on the board (frozen, replaced on every status change)
- Estimate / EstimateItem / EstimateTotals: pre-invoice costing
- Invoice / InvoiceLine / Payment: frozen billing documents
- OperationResult: typed success/failure envelope for the UI

Rows coming from the persistence gateway are mapped into these types with
``from_row()`` at the boundary; nothing past the gateway handles raw dicts.
"""

from .job import Job, JobStatus, BOARD_ORDER
from .estimate import Estimate, EstimateItem, EstimateTotals
from .invoice import Invoice, InvoiceLine, InvoiceStatus, Payment, PaymentMethod
from .result import OperationResult, ResultStatus

__all__ = [
    # Job models
    "Job",
    "JobStatus",
    "BOARD_ORDER",
    # Estimate models
    "Estimate",
    "EstimateItem",
    "EstimateTotals",
    # Billing models
    "Invoice",
    "InvoiceLine",
    "InvoiceStatus",
    "Payment",
    "PaymentMethod",
    # Results
    "OperationResult",
    "ResultStatus",
]
