"""
Typed, time-bounded client over a PersistenceGateway.

Every service goes through a GatewayClient instead of calling the gateway
directly. The client:
    - bounds each call with a timeout (a call that does not answer in time
      raises PersistenceTimeoutError carrying a PendingCall, so a writer
      can wait for the late answer and undo a write that landed anyway)
    - turns any gateway exception into PersistenceError
    - maps rows into typed entities at the boundary

Usage:
    client = GatewayClient(InMemoryGateway(), timeout_seconds=10.0)
    job = client.load_job(tenant_id, job_id)
    invoice = client.find_invoice_by_job(tenant_id, job_id)
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .exceptions import (
    GarageBoardError,
    PersistenceError,
    PersistenceTimeoutError,
    JobNotFoundError,
    EstimateNotFoundError,
    InvoiceNotFoundError,
)
from .gateway import PersistenceGateway
from models.job import Job
from models.estimate import Estimate
from models.invoice import Invoice, Payment, PaymentMethod


class PendingCall:
    """A gateway call that outlived its timeout and may still complete."""

    def __init__(self, operation: str, worker: threading.Thread, outcome: Dict[str, Any]):
        self.operation = operation
        self._worker = worker
        self._outcome = outcome

    @property
    def finished(self) -> bool:
        return not self._worker.is_alive()

    @property
    def succeeded(self) -> bool:
        """True once the call has returned without raising."""
        return self.finished and "error" not in self._outcome

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the call returns. Returns False if ``timeout`` expires first."""
        self._worker.join(timeout)
        return self.finished


class GatewayClient:
    """
    Wrapper for a PersistenceGateway.

    Thread Safety:
        Safe to share between the request thread and commit workers, provided
        the wrapped gateway is. Each bounded call runs on its own short-lived
        daemon thread.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        timeout_seconds: Optional[float] = 10.0,
        logger: Optional[logging.Logger] = None
    ):
        """
        Args:
            gateway: Storage backend
            timeout_seconds: Upper bound per call; None disables the bound
            logger: Logger instance (creates default if not provided)
        """
        if gateway is None:
            raise ValueError("gateway is required")
        self._gateway = gateway
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger("garage_board.core.gateway_client")

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self._timeout

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run one gateway call with the configured timeout.

        Raises:
            PersistenceTimeoutError: If the call did not return in time
            PersistenceError: If the gateway raised
        """
        if self._timeout is None:
            return self._invoke(operation, fn, *args)

        outcome: Dict[str, Any] = {}

        def runner():
            try:
                outcome["value"] = fn(*args)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=runner, name=f"Gateway-{operation}", daemon=True)
        worker.start()
        worker.join(self._timeout)

        if worker.is_alive():
            self._logger.error(f"{operation} timed out after {self._timeout:.1f}s")
            raise PersistenceTimeoutError(
                operation, self._timeout, PendingCall(operation, worker, outcome)
            )

        if "error" in outcome:
            raise self._translate(operation, outcome["error"])
        return outcome.get("value")

    def _invoke(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception as e:
            raise self._translate(operation, e)

    def _translate(self, operation: str, error: Exception) -> GarageBoardError:
        if isinstance(error, GarageBoardError):
            return error
        self._logger.error(f"{operation} failed: {error}")
        translated = PersistenceError(operation, f"Persistence call '{operation}' failed: {error}")
        translated.__cause__ = error
        return translated

    def _map(self, operation: str, mapper: Callable[[Dict[str, Any]], Any], row: Dict[str, Any]) -> Any:
        try:
            return mapper(row)
        except (KeyError, ValueError, TypeError) as e:
            self._logger.error(f"{operation} returned a malformed row: {e}")
            raise PersistenceError(operation, f"Malformed row from '{operation}': {e}") from e

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def list_jobs(self, tenant_id: str) -> List[Job]:
        rows = self._call("list_jobs", self._gateway.list_jobs, tenant_id) or []
        return [self._map("list_jobs", Job.from_row, row) for row in rows]

    def load_job(self, tenant_id: str, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: If the job does not exist for this tenant
        """
        row = self._call("load_job", self._gateway.load_job, tenant_id, job_id)
        if row is None:
            raise JobNotFoundError(job_id, tenant_id)
        return self._map("load_job", Job.from_row, row)

    def save_job_status(self, job: Job) -> Job:
        """Persist ``job.status`` and its lifecycle timestamps."""
        stamps = {
            "updated_at": job.updated_at,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
        }
        row = self._call(
            "save_job_status", self._gateway.save_job_status,
            job.tenant_id, job.id, job.status.value, stamps,
        )
        if not row:
            return job
        return self._map("save_job_status", Job.from_row, row)

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------

    def load_estimate(self, tenant_id: str, job_id: str) -> Estimate:
        """
        Raises:
            EstimateNotFoundError: If the job has no estimate
        """
        row = self._call("load_estimate", self._gateway.load_estimate, tenant_id, job_id)
        if row is None:
            raise EstimateNotFoundError(f"for job {job_id}", tenant_id)
        return self._map("load_estimate", Estimate.from_row, row)

    def save_estimate(self, estimate: Estimate) -> None:
        """Write items first, then the header totals computed from them."""
        items = [
            {
                "id": item.id,
                "estimate_id": item.estimate_id,
                "name": item.name,
                "part_number": item.part_number,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "labor_cost": item.labor_cost,
            }
            for item in estimate.items
        ]
        self._call("save_estimate_items", self._gateway.save_estimate_items,
                   estimate.tenant_id, estimate.id, items)
        self.save_estimate_header(estimate)

    def save_estimate_header(self, estimate: Estimate) -> None:
        self._call("save_estimate", self._gateway.save_estimate, estimate.tenant_id, estimate.to_row())

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    def find_invoice_by_job(self, tenant_id: str, job_id: str) -> Optional[Invoice]:
        row = self._call("load_invoice_by_job", self._gateway.load_invoice_by_job, tenant_id, job_id)
        if row is None:
            return None
        return self._map("load_invoice_by_job", Invoice.from_row, row)

    def load_invoice(self, tenant_id: str, invoice_id: str) -> Invoice:
        """
        Raises:
            InvoiceNotFoundError: If the invoice does not exist for this tenant
        """
        row = self._call("load_invoice", self._gateway.load_invoice, tenant_id, invoice_id)
        if row is None:
            raise InvoiceNotFoundError(invoice_id, tenant_id)
        return self._map("load_invoice", Invoice.from_row, row)

    def save_invoice(self, invoice: Invoice) -> Invoice:
        """Upsert keyed on job id; returns what storage now holds for the job."""
        row = self._call("save_invoice", self._gateway.save_invoice, invoice.tenant_id, invoice.to_row())
        return self._map("save_invoice", Invoice.from_row, row)

    def record_payment(self, tenant_id: str, invoice_id: str, amount: Decimal,
                       method: PaymentMethod, reference: Optional[str] = None) -> Payment:
        row = self._call(
            "record_payment", self._gateway.record_payment,
            tenant_id, invoice_id, amount, method.value, reference,
        )
        return self._map("record_payment", Payment.from_row, row)

    def list_payments(self, tenant_id: str, invoice_id: str) -> List[Payment]:
        rows = self._call("list_payments", self._gateway.list_payments, tenant_id, invoice_id) or []
        return [self._map("list_payments", Payment.from_row, row) for row in rows]


