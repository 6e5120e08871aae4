"""
Estimate data models.

An Estimate is the mutable, pre-invoice costing document of a job. It is
stored as an immutable value: every item mutation produces a new Estimate
whose totals were recomputed by ``modules.estimator.compute_totals``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, Any, Optional, Tuple

from .money import ZERO, to_decimal, quantize_money


@dataclass(frozen=True)
class EstimateItem:
    """A single line of an estimate: a part (quantity x unit price) plus labor."""

    id: str
    estimate_id: str
    name: str
    quantity: int
    unit_price: Decimal
    labor_cost: Decimal = ZERO
    part_number: Optional[str] = None

    @property
    def parts_amount(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def line_total(self) -> Decimal:
        """Parts plus labor for this line, before tax."""
        return self.parts_amount + self.labor_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "estimate_id": self.estimate_id,
            "name": self.name,
            "part_number": self.part_number,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "labor_cost": str(self.labor_cost),
            "line_total": str(quantize_money(self.line_total)),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EstimateItem":
        """Map a persistence row (``qty`` is accepted for ``quantity``)."""
        quantity = row.get("quantity", row.get("qty", 0))
        return cls(
            id=str(row["id"]),
            estimate_id=str(row["estimate_id"]),
            name=row.get("name") or row.get("custom_name") or "",
            quantity=int(quantity),
            unit_price=to_decimal(row.get("unit_price", 0)),
            labor_cost=to_decimal(row.get("labor_cost") or 0),
            part_number=row.get("part_number") or None,
        )


@dataclass(frozen=True)
class EstimateTotals:
    """
    Aggregated amounts of an estimate.

    Values produced by the aggregator are exact; call ``quantized()`` right
    before persisting so rounding happens once, not at every addition.
    """

    parts_total: Decimal = ZERO
    labor_total: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO

    @property
    def subtotal(self) -> Decimal:
        return self.parts_total + self.labor_total

    def quantized(self) -> "EstimateTotals":
        """
        Round every amount half-up to 2 places.

        The total is re-derived from the rounded components so that
        parts + labor + tax == total holds on the persisted values.
        """
        parts = quantize_money(self.parts_total)
        labor = quantize_money(self.labor_total)
        tax = quantize_money(self.tax_amount)
        return EstimateTotals(
            parts_total=parts,
            labor_total=labor,
            tax_amount=tax,
            total_amount=parts + labor + tax,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parts_total": str(self.parts_total),
            "labor_total": str(self.labor_total),
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "total_amount": str(self.total_amount),
        }


@dataclass(frozen=True)
class Estimate:
    """
    Costing document owned by exactly one job.

    ``locked`` becomes True once an invoice has been generated from it or its
    job was completed. Locked estimates are read-only.
    """

    id: str
    tenant_id: str
    job_id: str
    items: Tuple[EstimateItem, ...] = ()
    totals: EstimateTotals = field(default_factory=EstimateTotals)
    locked: bool = False
    estimate_number: str = ""

    @property
    def parts_total(self) -> Decimal:
        return self.totals.parts_total

    @property
    def labor_total(self) -> Decimal:
        return self.totals.labor_total

    @property
    def tax_amount(self) -> Decimal:
        return self.totals.tax_amount

    @property
    def total_amount(self) -> Decimal:
        return self.totals.total_amount

    def find_item(self, item_id: str) -> Optional[EstimateItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def with_items(self, items: Tuple[EstimateItem, ...], totals: EstimateTotals) -> "Estimate":
        return replace(self, items=tuple(items), totals=totals)

    def as_locked(self) -> "Estimate":
        return replace(self, locked=True)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job_id": self.job_id,
            "estimate_number": self.estimate_number,
            "locked": self.locked,
            "items": [item.to_dict() for item in self.items],
        }
        data.update(self.totals.to_dict())
        return data

    def to_row(self) -> Dict[str, Any]:
        """Header columns written by ``save_estimate`` (items are saved separately)."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job_id": self.job_id,
            "estimate_number": self.estimate_number,
            "locked": self.locked,
            "parts_total": self.parts_total,
            "labor_total": self.labor_total,
            "subtotal": self.totals.subtotal,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Estimate":
        """Map an estimate row with its nested ``items`` rows."""
        items = tuple(EstimateItem.from_row(r) for r in row.get("items") or [])
        totals = EstimateTotals(
            parts_total=to_decimal(row.get("parts_total") or 0),
            labor_total=to_decimal(row.get("labor_total") or 0),
            tax_amount=to_decimal(row.get("tax_amount") or 0),
            total_amount=to_decimal(row.get("total_amount") or 0),
        )
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            job_id=str(row["job_id"]),
            items=items,
            totals=totals,
            locked=bool(row.get("locked", False)),
            estimate_number=row.get("estimate_number") or "",
        )
