"""
Services layer for GarageBoard.

This module contains the business logic services:
- BoardCoordinator: Optimistic job board with thread-per-commit persistence
- EstimateService: Estimate item edits with eager total recomputation
- InvoiceService: Estimate-to-invoice freezing and delivery
- PaymentService: Payment recording and invoice reconciliation
- LifecycleService: Typed-result facade used by the routes

Thread Model:
    Main Thread (Flask)
    └── Commit threads (one per applied board move, named Commit-<job id>)

Every service reaches storage through a GatewayClient, which bounds each call
with the configured timeout.
"""

from .board_service import BoardCoordinator, BoardEvent, MoveTicket
from .estimate_service import EstimateService
from .invoice_service import InvoiceService
from .job_locks import JobLocks
from .payment_service import PaymentService
from .lifecycle_service import LifecycleService, LifecycleEvent

__all__ = [
    "BoardCoordinator",
    "BoardEvent",
    "MoveTicket",
    "EstimateService",
    "InvoiceService",
    "JobLocks",
    "PaymentService",
    "LifecycleService",
    "LifecycleEvent",
]
