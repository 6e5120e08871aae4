"""
Job lifecycle facade.

The outward contract used by the HTTP layer. Every operation returns an
OperationResult instead of raising, so the board UI renders success and
failure the same way. Application errors (GarageBoardError) become FAILED
results carrying the error's message and details; anything else is logged
with its traceback and re-raised.

The facade also reacts to board events:
    - a move to READY that commits generates the job's invoice
    - a move to COMPLETED that commits locks the job's estimate

and republishes what happened as lifecycle events:

    job.status_changed   a move committed
    job.move_reverted    a move failed to commit and was rolled back
    invoice.generated    an invoice was created (or auto-created)
    invoice.failed       auto-invoicing on READY failed
    payment.received     a payment was recorded

Usage:
    lifecycle = LifecycleService(board, estimates, invoices, payments)
    lifecycle.subscribe(lambda event: print(event.type, event.payload))

    result = lifecycle.move_job(tenant_id, job_id, "working", "ready")
    result.status       # ResultStatus.PENDING until the commit settles
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import GarageBoardError, InvalidTransitionError
from models.invoice import Invoice, PaymentMethod
from models.job import JobStatus
from models.result import OperationResult
from modules.transitions import ensure_valid_transition
from services.board_service import BoardCoordinator, BoardEvent, MoveTicket
from services.estimate_service import EstimateService
from services.invoice_service import InvoiceService
from services.payment_service import PaymentService
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


@dataclass(frozen=True)
class LifecycleEvent:
    type: str
    tenant_id: str
    job_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


LifecycleListener = Callable[[LifecycleEvent], None]


class LifecycleService:
    """Typed-result facade over the board, estimate, invoice and payment services."""

    def __init__(
        self,
        board: BoardCoordinator,
        estimates: EstimateService,
        invoices: InvoiceService,
        payments: PaymentService,
        auto_invoice: bool = True
    ):
        """
        Args:
            board: Board coordinator (sole writer of board state)
            estimates: Estimate editing service
            invoices: Invoice generator
            payments: Payment reconciler
            auto_invoice: Generate the invoice when a move to READY commits
        """
        self.board = board
        self.estimates = estimates
        self.invoices = invoices
        self.payments = payments
        self._auto_invoice = auto_invoice
        self._listeners: List[LifecycleListener] = []
        self._listeners_lock = threading.Lock()

        board.subscribe(self._on_board_event)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: LifecycleListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def _publish(self, event_type: str, tenant_id: str, job_id: Optional[str],
                 payload: Optional[Dict[str, Any]] = None) -> None:
        event = LifecycleEvent(event_type, tenant_id, job_id, payload or {})
        with self._listeners_lock:
            listeners = list(self._listeners)
        logger.debug(f"Event {event_type} for job {(job_id or '-')[:8]}")
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.error(f"Lifecycle listener failed on '{event_type}'", exc_info=True)

    def _on_board_event(self, event: BoardEvent) -> None:
        job = event.job

        if event.kind == "reverted":
            self._publish("job.move_reverted", job.tenant_id, job.id, {
                "job": job.to_dict(),
                "attempted_status": event.previous_status.value,
                "error": event.error.message if event.error else None,
            })
            return

        if event.kind != "committed":
            return

        self._publish("job.status_changed", job.tenant_id, job.id, {
            "job": job.to_dict(),
            "from_status": event.previous_status.value,
            "to_status": job.status.value,
        })

        if job.status is JobStatus.READY and self._auto_invoice:
            try:
                invoice = self.invoices.generate_invoice(job.tenant_id, job.id)
            except GarageBoardError as e:
                logger.error(f"Auto-invoice for job {job.display_number} failed: {e.message}")
                self._publish("invoice.failed", job.tenant_id, job.id, {
                    "error": e.message,
                    "details": dict(e.details),
                })
            else:
                self._publish("invoice.generated", job.tenant_id, job.id, {"invoice": invoice.to_dict()})

        elif job.status is JobStatus.COMPLETED:
            try:
                self.estimates.lock_estimate(job.tenant_id, job.id)
            except GarageBoardError as e:
                logger.error(f"Could not lock estimate of completed job {job.display_number}: {e.message}")

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[], Any],
             to_payload: Callable[[Any], Dict[str, Any]]) -> OperationResult:
        try:
            value = fn()
        except GarageBoardError as e:
            logger.info(f"{operation} rejected: {e.message}")
            return OperationResult.create_failed(operation, e)
        except Exception:
            logger.error(f"{operation} failed unexpectedly", exc_info=True)
            raise
        return OperationResult.create_succeeded(operation, to_payload(value))

    @staticmethod
    def _parse_status(value: Any, from_value: Any, to_value: Any) -> JobStatus:
        try:
            return JobStatus.parse(value)
        except ValueError:
            raise InvalidTransitionError(str(from_value), str(to_value), f"Unknown status '{value}'")

    def _ticket_result(self, ticket: MoveTicket, wait_seconds: Optional[float]) -> OperationResult:
        if wait_seconds is not None:
            ticket.wait(wait_seconds)
        if ticket.result is not None:
            return ticket.result
        job = self.board.get_job(ticket.tenant_id, ticket.job_id)
        payload = job.to_dict()
        payload["version"] = ticket.version
        return OperationResult.create_pending(BoardCoordinator.OPERATION, payload)

    # ------------------------------------------------------------------
    # Board
    # ------------------------------------------------------------------

    def load_board(self, tenant_id: str) -> OperationResult:
        def load():
            self.board.load_board(tenant_id)
            return self.board.board_columns(tenant_id)

        return self._run("load_board", load, lambda columns: {
            "columns": {
                status.value: [job.to_dict() for job in jobs]
                for status, jobs in columns.items()
            },
        })

    def move_job(
        self,
        tenant_id: str,
        job_id: str,
        from_status: Any,
        to_status: Any,
        wait_seconds: Optional[float] = None
    ) -> OperationResult:
        """
        Move a job between board columns.

        Returns immediately with a PENDING result carrying the optimistic
        job, unless ``wait_seconds`` is given, in which case it waits that
        long for the commit to settle.
        """
        try:
            source = self._parse_status(from_status, from_status, to_status)
            target = self._parse_status(to_status, from_status, to_status)
            ticket = self.board.move_job(tenant_id, job_id, source, target)
        except GarageBoardError as e:
            logger.info(f"move_job rejected: {e.message}")
            return OperationResult.create_failed(BoardCoordinator.OPERATION, e)
        return self._ticket_result(ticket, wait_seconds)

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------

    def get_estimate(self, tenant_id: str, job_id: str) -> OperationResult:
        return self._run(
            "get_estimate",
            lambda: self.estimates.get_estimate(tenant_id, job_id),
            lambda estimate: estimate.to_dict(),
        )

    def add_estimate_item(self, tenant_id: str, job_id: str, **item: Any) -> OperationResult:
        return self._run(
            "add_estimate_item",
            lambda: self.estimates.add_estimate_item(tenant_id, job_id, **item),
            lambda estimate: estimate.to_dict(),
        )

    def update_estimate_item(self, tenant_id: str, job_id: str, item_id: str,
                             changes: Dict[str, Any]) -> OperationResult:
        return self._run(
            "update_estimate_item",
            lambda: self.estimates.update_estimate_item(tenant_id, job_id, item_id, changes),
            lambda estimate: estimate.to_dict(),
        )

    def remove_estimate_item(self, tenant_id: str, job_id: str, item_id: str) -> OperationResult:
        return self._run(
            "remove_estimate_item",
            lambda: self.estimates.remove_estimate_item(tenant_id, job_id, item_id),
            lambda estimate: estimate.to_dict(),
        )

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    def generate_invoice(self, tenant_id: str, job_id: str) -> OperationResult:
        existed = self.invoices.find_invoice(tenant_id, job_id) is not None

        def generate():
            invoice = self.invoices.generate_invoice(tenant_id, job_id)
            if not existed:
                self._publish("invoice.generated", tenant_id, job_id, {"invoice": invoice.to_dict()})
            return invoice

        return self._run("generate_invoice", generate, lambda invoice: invoice.to_dict())

    def deliver_invoice(self, tenant_id: str, job_id: str, channel: str) -> OperationResult:
        return self._run(
            "deliver_invoice",
            lambda: self.invoices.deliver_invoice(tenant_id, job_id, channel),
            lambda receipt: receipt,
        )

    def apply_payment(
        self,
        tenant_id: str,
        invoice_id: str,
        amount: Any,
        method: PaymentMethod = PaymentMethod.CASH,
        reference: Optional[str] = None
    ) -> OperationResult:
        return self._run(
            "apply_payment",
            lambda: self._receive(tenant_id, invoice_id, amount, method, reference),
            lambda invoice: invoice.to_dict(),
        )

    def _receive(self, tenant_id: str, invoice_id: str, amount: Any,
                 method: PaymentMethod, reference: Optional[str] = None) -> Invoice:
        invoice, payment = self.payments.receive_payment(tenant_id, invoice_id, amount, method, reference)
        if payment is not None:
            self._publish("payment.received", tenant_id, invoice.job_id, {
                "invoice": invoice.to_dict(),
                "payment_id": payment.id,
                "amount": str(payment.amount),
                "method": payment.method.value,
            })
        return invoice

    def reconcile_invoice(self, tenant_id: str, invoice_id: str) -> OperationResult:
        return self._run(
            "reconcile_invoice",
            lambda: self.payments.reconcile_invoice(tenant_id, invoice_id),
            lambda invoice: invoice.to_dict(),
        )

    def settle_and_complete(
        self,
        tenant_id: str,
        job_id: str,
        method: PaymentMethod = PaymentMethod.CASH,
        wait_seconds: Optional[float] = None
    ) -> OperationResult:
        """
        Pay whatever is outstanding, then complete the job.

        The "mark paid" path offered by PaymentRequiredError. The move is
        checked before any money is recorded, so a job that cannot be
        completed is not charged.
        """
        try:
            job = self.board.get_job(tenant_id, job_id)
            ensure_valid_transition(job.status, JobStatus.COMPLETED)

            invoice = self.invoices.generate_invoice(tenant_id, job_id)
            invoice = self.payments.reconcile_invoice(tenant_id, invoice.id)
            if not invoice.is_paid:
                invoice = self._receive(tenant_id, invoice.id, invoice.balance, method)

            ticket = self.board.move_job(tenant_id, job_id, job.status, JobStatus.COMPLETED)
        except GarageBoardError as e:
            logger.info(f"settle_and_complete rejected: {e.message}")
            return OperationResult.create_failed("settle_and_complete", e)

        return self._ticket_result(ticket, wait_seconds)
