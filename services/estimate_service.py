"""
Estimate editing service.

Every item mutation follows the same path, under a per-job lock so that edits
of one job are applied in the order they were submitted:

    1. Load the estimate (and refuse if it is locked)
    2. Build the new item list (append / replace in place / remove)
    3. Recompute totals with the EstimateAggregator
    4. Persist items, then the header totals

Totals are never recomputed lazily: a mutation that returns has written its
recomputed totals. Nothing is cached in memory, so a failed write leaves the
caller with the estimate as storage last had it; the next mutation recomputes
totals from the stored items.
"""

from __future__ import annotations

import threading
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from core.exceptions import EstimateLockedError, InvalidItemError
from core.gateway_client import GatewayClient
from models.estimate import Estimate, EstimateItem
from models.job import JobStatus
from models.money import ZERO
from modules.estimator import (
    EstimateAggregator,
    parse_amount,
    parse_quantity,
    validate_item,
)
from services.job_locks import JobLocks
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

EDITABLE_FIELDS = ("name", "quantity", "unit_price", "labor_cost", "part_number")


class EstimateService:
    """Adds, edits and removes estimate items with eager total recomputation."""

    def __init__(
        self,
        client: GatewayClient,
        aggregator: Optional[EstimateAggregator] = None,
        job_locks: Optional[JobLocks] = None
    ):
        """
        Args:
            client: Gateway client
            aggregator: Totals calculator (default tax rate from config)
            job_locks: Lock registry shared with the InvoiceService
        """
        self._client = client
        self._aggregator = aggregator or EstimateAggregator()
        self.job_locks = job_locks or JobLocks()

    def _job_lock(self, tenant_id: str, job_id: str) -> threading.Lock:
        return self.job_locks.for_job(tenant_id, job_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_estimate(self, tenant_id: str, job_id: str) -> Estimate:
        return self._client.load_estimate(tenant_id, job_id)

    def is_locked(self, estimate: Estimate) -> bool:
        """
        Locked if flagged, if an invoice exists for the job, or if the job
        has been completed.
        """
        if estimate.locked:
            return True
        if self._client.find_invoice_by_job(estimate.tenant_id, estimate.job_id) is not None:
            return True
        job = self._client.load_job(estimate.tenant_id, estimate.job_id)
        return job.status is JobStatus.COMPLETED

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_estimate_item(
        self,
        tenant_id: str,
        job_id: str,
        name: str,
        quantity: Any,
        unit_price: Any,
        labor_cost: Any = ZERO,
        part_number: Optional[str] = None
    ) -> Estimate:
        """
        Append a line item and persist recomputed totals.

        Raises:
            EstimateLockedError: If the estimate can no longer be edited
            InvalidItemError: If the item breaks its input contract
            PersistenceError: If the gateway fails
        """
        with self._job_lock(tenant_id, job_id):
            estimate = self._load_editable(tenant_id, job_id)
            item = EstimateItem(
                id=str(uuid.uuid4()),
                estimate_id=estimate.id,
                name=(name or "").strip(),
                quantity=parse_quantity(quantity),
                unit_price=parse_amount(unit_price, "unit_price"),
                labor_cost=parse_amount(labor_cost, "labor_cost"),
                part_number=part_number or None,
            )
            validate_item(item)

            updated = self._persist(estimate, estimate.items + (item,))
            logger.info(
                f"Estimate {estimate.id[:8]}: added '{item.name}' x{item.quantity}, "
                f"total now {updated.total_amount}"
            )
            return updated

    def update_estimate_item(
        self,
        tenant_id: str,
        job_id: str,
        item_id: str,
        changes: Dict[str, Any]
    ) -> Estimate:
        """
        Edit fields of one item in place (its position is kept).

        Args:
            changes: Subset of name, quantity, unit_price, labor_cost, part_number

        Raises:
            EstimateLockedError: If the estimate can no longer be edited
            InvalidItemError: Unknown item, unknown field or invalid value
            PersistenceError: If the gateway fails
        """
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise InvalidItemError(f"Fields cannot be edited: {', '.join(unknown)}", unknown[0])

        with self._job_lock(tenant_id, job_id):
            estimate = self._load_editable(tenant_id, job_id)
            current = self._require_item(estimate, item_id)

            fields: Dict[str, Any] = {}
            if "name" in changes:
                fields["name"] = (changes["name"] or "").strip()
            if "quantity" in changes:
                fields["quantity"] = parse_quantity(changes["quantity"])
            if "unit_price" in changes:
                fields["unit_price"] = parse_amount(changes["unit_price"], "unit_price")
            if "labor_cost" in changes:
                fields["labor_cost"] = parse_amount(changes["labor_cost"], "labor_cost")
            if "part_number" in changes:
                fields["part_number"] = changes["part_number"] or None

            edited = EstimateItem(
                id=current.id,
                estimate_id=current.estimate_id,
                name=fields.get("name", current.name),
                quantity=fields.get("quantity", current.quantity),
                unit_price=fields.get("unit_price", current.unit_price),
                labor_cost=fields.get("labor_cost", current.labor_cost),
                part_number=fields.get("part_number", current.part_number),
            )
            validate_item(edited)

            items = tuple(edited if i.id == item_id else i for i in estimate.items)
            updated = self._persist(estimate, items)
            logger.info(
                f"Estimate {estimate.id[:8]}: updated item {item_id[:8]} "
                f"({', '.join(sorted(fields))}), total now {updated.total_amount}"
            )
            return updated

    def remove_estimate_item(self, tenant_id: str, job_id: str, item_id: str) -> Estimate:
        """
        Raises:
            EstimateLockedError: If the estimate can no longer be edited
            InvalidItemError: If the item is not on the estimate
            PersistenceError: If the gateway fails
        """
        with self._job_lock(tenant_id, job_id):
            estimate = self._load_editable(tenant_id, job_id)
            self._require_item(estimate, item_id)

            items = tuple(i for i in estimate.items if i.id != item_id)
            updated = self._persist(estimate, items)
            logger.info(
                f"Estimate {estimate.id[:8]}: removed item {item_id[:8]}, "
                f"total now {updated.total_amount}"
            )
            return updated

    def lock_estimate(self, tenant_id: str, job_id: str) -> Estimate:
        """Flag the job's estimate read-only. No-op if already locked."""
        with self._job_lock(tenant_id, job_id):
            estimate = self._client.load_estimate(tenant_id, job_id)
            if estimate.locked:
                return estimate
            locked = estimate.as_locked()
            self._client.save_estimate_header(locked)
            logger.info(f"Estimate {estimate.id[:8]} locked")
            return locked

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_editable(self, tenant_id: str, job_id: str) -> Estimate:
        estimate = self._client.load_estimate(tenant_id, job_id)
        if self.is_locked(estimate):
            logger.info(f"Edit refused: estimate {estimate.id[:8]} of job {job_id[:8]} is locked")
            raise EstimateLockedError(estimate.id, job_id)
        return estimate

    def _require_item(self, estimate: Estimate, item_id: str) -> EstimateItem:
        item = estimate.find_item(item_id)
        if item is None:
            raise InvalidItemError(f"Item {item_id} is not on this estimate", "id", item_id)
        return item

    def _persist(self, estimate: Estimate, items: Tuple[EstimateItem, ...]) -> Estimate:
        # An invoice cut by a writer outside this process freezes the items too
        if self._client.find_invoice_by_job(estimate.tenant_id, estimate.job_id) is not None:
            logger.info(f"Edit refused: job {estimate.job_id[:8]} was invoiced during the edit")
            raise EstimateLockedError(estimate.id, estimate.job_id)
        totals = self._aggregator.totals_for(estimate.tenant_id, items)
        updated = estimate.with_items(items, totals)
        self._client.save_estimate(updated)
        return updated

    def tax_rate_for(self, tenant_id: str) -> Decimal:
        return self._aggregator.tax_rate_for(tenant_id)
