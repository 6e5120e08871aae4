"""
Persistence gateway interface and in-memory implementation.

The gateway is the only way the core reaches storage. It speaks in plain
row dictionaries, the way a database client does; ``GatewayClient`` maps
those rows into typed entities, so nothing past it handles raw rows.

Every call takes the tenant id explicitly. A row that belongs to another
tenant is invisible (the call behaves as if it did not exist).

InMemoryGateway is thread-safe and is used by the development server and the
test-suite. Its ``save_invoice`` is an upsert keyed on job id: saving a
second, different invoice for the same job returns the stored one instead of
creating a duplicate.
"""

from __future__ import annotations

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any, List, Optional

Row = Dict[str, Any]


class PersistenceGateway(ABC):
    """
    Storage operations used by the core.

    Implementations raise any exception on failure; GatewayClient converts
    them to PersistenceError.
    """

    @abstractmethod
    def list_jobs(self, tenant_id: str) -> List[Row]:
        """All jobs of a tenant (board hydration)."""

    @abstractmethod
    def load_job(self, tenant_id: str, job_id: str) -> Optional[Row]:
        ...

    @abstractmethod
    def save_job_status(self, tenant_id: str, job_id: str, status: str,
                        stamps: Optional[Row] = None) -> Row:
        """Persist a status change (plus lifecycle timestamps) and return the row."""

    @abstractmethod
    def load_estimate(self, tenant_id: str, job_id: str) -> Optional[Row]:
        """Estimate header of a job with its ordered ``items`` rows."""

    @abstractmethod
    def save_estimate_items(self, tenant_id: str, estimate_id: str, items: List[Row]) -> None:
        """Replace the ordered item list of an estimate."""

    @abstractmethod
    def save_estimate(self, tenant_id: str, estimate: Row) -> None:
        """Persist estimate header columns (totals, lock flag)."""

    @abstractmethod
    def load_invoice_by_job(self, tenant_id: str, job_id: str) -> Optional[Row]:
        ...

    @abstractmethod
    def load_invoice(self, tenant_id: str, invoice_id: str) -> Optional[Row]:
        ...

    @abstractmethod
    def save_invoice(self, tenant_id: str, invoice: Row) -> Row:
        """
        Upsert keyed on job id.

        No invoice for the job yet: insert and return it. Same invoice id:
        update paid/balance/status and return it. A different invoice already
        stored for the job: return the stored one untouched.
        """

    @abstractmethod
    def record_payment(self, tenant_id: str, invoice_id: str, amount: Decimal,
                       method: str, reference: Optional[str] = None) -> Row:
        ...

    @abstractmethod
    def list_payments(self, tenant_id: str, invoice_id: str) -> List[Row]:
        ...


class InMemoryGateway(PersistenceGateway):
    """Dictionary-backed gateway. Rows are copied in and out."""

    _INVOICE_MUTABLE = ("paid_amount", "balance", "status")

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[str, Row] = {}
        self._estimates: Dict[str, Row] = {}          # estimate_id -> header
        self._estimate_by_job: Dict[str, str] = {}    # job_id -> estimate_id
        self._items: Dict[str, List[Row]] = {}        # estimate_id -> items
        self._invoices: Dict[str, Row] = {}           # invoice_id -> row
        self._invoice_by_job: Dict[str, str] = {}     # job_id -> invoice_id
        self._payments: Dict[str, List[Row]] = {}     # invoice_id -> payments

    # ------------------------------------------------------------------
    # Seeding (job intake is handled outside the core)
    # ------------------------------------------------------------------

    def create_job(self, tenant_id: str, customer_id: str, vehicle_id: str,
                   status: str = "received", **fields: Any) -> Row:
        """Insert a job together with its empty estimate."""
        now = datetime.now(timezone.utc)
        job_id = fields.pop("id", None) or str(uuid.uuid4())
        with self._lock:
            row = {
                "id": job_id,
                "tenant_id": tenant_id,
                "customer_id": customer_id,
                "vehicle_id": vehicle_id,
                "status": status,
                "job_number": fields.pop("job_number", f"JC-{len(self._jobs) + 1:04d}"),
                "created_at": now,
                "updated_at": now,
            }
            row.update(fields)
            self._jobs[job_id] = row

            estimate_id = str(uuid.uuid4())
            self._estimates[estimate_id] = {
                "id": estimate_id,
                "tenant_id": tenant_id,
                "job_id": job_id,
                "estimate_number": f"EST-{row['job_number']}",
                "locked": False,
                "parts_total": Decimal("0.00"),
                "labor_total": Decimal("0.00"),
                "subtotal": Decimal("0.00"),
                "tax_amount": Decimal("0.00"),
                "total_amount": Decimal("0.00"),
            }
            self._estimate_by_job[job_id] = estimate_id
            self._items[estimate_id] = []
            return copy.deepcopy(row)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def list_jobs(self, tenant_id: str) -> List[Row]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._jobs.values() if r["tenant_id"] == tenant_id]

    def load_job(self, tenant_id: str, job_id: str) -> Optional[Row]:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row["tenant_id"] != tenant_id:
                return None
            return copy.deepcopy(row)

    def save_job_status(self, tenant_id: str, job_id: str, status: str,
                        stamps: Optional[Row] = None) -> Row:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row["tenant_id"] != tenant_id:
                raise LookupError(f"job {job_id} does not exist")
            row["status"] = status
            row["updated_at"] = datetime.now(timezone.utc)
            row.update(stamps or {})
            return copy.deepcopy(row)

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------

    def load_estimate(self, tenant_id: str, job_id: str) -> Optional[Row]:
        with self._lock:
            estimate_id = self._estimate_by_job.get(job_id)
            if estimate_id is None:
                return None
            header = self._estimates[estimate_id]
            if header["tenant_id"] != tenant_id:
                return None
            row = copy.deepcopy(header)
            row["items"] = copy.deepcopy(self._items.get(estimate_id, []))
            return row

    def save_estimate_items(self, tenant_id: str, estimate_id: str, items: List[Row]) -> None:
        with self._lock:
            self._require_estimate(tenant_id, estimate_id)
            self._items[estimate_id] = copy.deepcopy(items)

    def save_estimate(self, tenant_id: str, estimate: Row) -> None:
        with self._lock:
            header = self._require_estimate(tenant_id, estimate["id"])
            for key, value in estimate.items():
                if key not in ("id", "tenant_id", "job_id", "items"):
                    header[key] = copy.deepcopy(value)

    def _require_estimate(self, tenant_id: str, estimate_id: str) -> Row:
        header = self._estimates.get(estimate_id)
        if header is None or header["tenant_id"] != tenant_id:
            raise LookupError(f"estimate {estimate_id} does not exist")
        return header

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    def load_invoice_by_job(self, tenant_id: str, job_id: str) -> Optional[Row]:
        with self._lock:
            invoice_id = self._invoice_by_job.get(job_id)
            if invoice_id is None:
                return None
            return self.load_invoice(tenant_id, invoice_id)

    def load_invoice(self, tenant_id: str, invoice_id: str) -> Optional[Row]:
        with self._lock:
            row = self._invoices.get(invoice_id)
            if row is None or row["tenant_id"] != tenant_id:
                return None
            return copy.deepcopy(row)

    def save_invoice(self, tenant_id: str, invoice: Row) -> Row:
        with self._lock:
            job_id = invoice["job_id"]
            existing_id = self._invoice_by_job.get(job_id)

            if existing_id is None:
                row = copy.deepcopy(invoice)
                row["tenant_id"] = tenant_id
                self._invoices[row["id"]] = row
                self._invoice_by_job[job_id] = row["id"]
                self._payments.setdefault(row["id"], [])
                return copy.deepcopy(row)

            stored = self._invoices[existing_id]
            if stored["tenant_id"] != tenant_id:
                raise LookupError(f"invoice for job {job_id} does not exist")
            if existing_id == invoice["id"]:
                for key in self._INVOICE_MUTABLE:
                    stored[key] = copy.deepcopy(invoice[key])
            return copy.deepcopy(stored)

    def record_payment(self, tenant_id: str, invoice_id: str, amount: Decimal,
                       method: str, reference: Optional[str] = None) -> Row:
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            if invoice is None or invoice["tenant_id"] != tenant_id:
                raise LookupError(f"invoice {invoice_id} does not exist")
            row = {
                "id": str(uuid.uuid4()),
                "tenant_id": tenant_id,
                "invoice_id": invoice_id,
                "amount": amount,
                "method": method,
                "reference": reference,
                "paid_at": datetime.now(timezone.utc),
            }
            self._payments.setdefault(invoice_id, []).append(row)
            return copy.deepcopy(row)

    def list_payments(self, tenant_id: str, invoice_id: str) -> List[Row]:
        with self._lock:
            return [
                copy.deepcopy(p) for p in self._payments.get(invoice_id, [])
                if p["tenant_id"] == tenant_id
            ]
