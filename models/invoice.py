"""
Invoice and payment data models.

An Invoice is a frozen copy of an estimate: its lines are value copies, not
references, so later estimate edits never change it. Only ``paid_amount``,
``balance`` and ``status`` move after creation, and only through
``Invoice.with_payments()``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Iterable, List, Optional, Tuple

from .estimate import Estimate, EstimateItem
from .job import parse_timestamp, utcnow
from .money import ZERO, to_decimal, quantize_money


class InvoiceStatus(Enum):
    """
    Payment state of an invoice.

    Lifecycle:
        PENDING -> PARTIAL -> PAID
    """

    PENDING = "pending"
    """Nothing paid yet."""

    PARTIAL = "partial"
    """Some payments recorded, balance outstanding."""

    PAID = "paid"
    """Balance is zero."""


class PaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    GATEWAY = "gateway"


def status_for(paid_amount: Decimal, balance: Decimal) -> InvoiceStatus:
    """Invoice status implied by its paid amount and balance."""
    if balance <= ZERO:
        return InvoiceStatus.PAID
    if paid_amount > ZERO:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


@dataclass(frozen=True)
class InvoiceLine:
    """Value copy of an estimate item at the moment of invoicing."""

    name: str
    quantity: int
    unit_price: Decimal
    labor_cost: Decimal
    part_number: Optional[str] = None
    source_item_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price + self.labor_cost

    @classmethod
    def from_item(cls, item: EstimateItem) -> "InvoiceLine":
        return cls(
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            labor_cost=item.labor_cost,
            part_number=item.part_number,
            source_item_id=item.id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "part_number": self.part_number,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "labor_cost": str(self.labor_cost),
            "line_total": str(quantize_money(self.line_total)),
            "source_item_id": self.source_item_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvoiceLine":
        return cls(
            name=data.get("name", ""),
            quantity=int(data.get("quantity", 0)),
            unit_price=to_decimal(data.get("unit_price", 0)),
            labor_cost=to_decimal(data.get("labor_cost", 0)),
            part_number=data.get("part_number"),
            source_item_id=data.get("source_item_id"),
        )


@dataclass(frozen=True)
class Payment:
    """A recorded payment. Append-only."""

    id: str
    tenant_id: str
    invoice_id: str
    amount: Decimal
    method: PaymentMethod
    paid_at: datetime
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "invoice_id": self.invoice_id,
            "amount": str(self.amount),
            "method": self.method.value,
            "paid_at": self.paid_at.isoformat(),
            "reference": self.reference,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Payment":
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            invoice_id=str(row["invoice_id"]),
            amount=to_decimal(row["amount"]),
            method=PaymentMethod(row.get("method", "cash")),
            paid_at=parse_timestamp(row.get("paid_at")) or utcnow(),
            reference=row.get("reference"),
        )


@dataclass(frozen=True)
class Invoice:
    """Billable document frozen from an estimate, at most one per job."""

    id: str
    tenant_id: str
    job_id: str
    estimate_id: str
    invoice_number: str
    lines: Tuple[InvoiceLine, ...]
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    issued_at: datetime
    due_date: datetime
    paid_amount: Decimal = ZERO
    balance: Decimal = ZERO
    status: InvoiceStatus = InvoiceStatus.PENDING

    @property
    def is_paid(self) -> bool:
        return self.balance <= ZERO

    @classmethod
    def from_estimate(
        cls,
        invoice_id: str,
        estimate: Estimate,
        due_days: int = 7,
        issued_at: Optional[datetime] = None,
    ) -> "Invoice":
        """
        Freeze an estimate into a new, unpaid invoice.

        Totals are copied from the estimate as persisted (already rounded).
        """
        issued_at = issued_at or utcnow()
        return cls(
            id=invoice_id,
            tenant_id=estimate.tenant_id,
            job_id=estimate.job_id,
            estimate_id=estimate.id,
            invoice_number=f"INV-{issued_at:%Y%m%d}-{invoice_id[:6].upper()}",
            lines=tuple(InvoiceLine.from_item(item) for item in estimate.items),
            subtotal=estimate.totals.subtotal,
            tax_amount=estimate.tax_amount,
            total_amount=estimate.total_amount,
            issued_at=issued_at,
            due_date=issued_at + timedelta(days=due_days),
            paid_amount=ZERO,
            balance=estimate.total_amount,
            status=InvoiceStatus.PENDING,
        )

    def with_payments(self, payments: Iterable[Payment]) -> "Invoice":
        """
        Derive paid amount, balance and status from the recorded payments.

        The paid amount is always the sum of the payments, never an
        incrementally maintained counter, so re-running this is harmless.
        """
        paid = sum((p.amount for p in payments), ZERO)
        balance = self.total_amount - paid
        return replace(
            self,
            paid_amount=paid,
            balance=balance,
            status=status_for(paid, balance),
        )

    def payment_state(self) -> Tuple[Decimal, Decimal, InvoiceStatus]:
        return self.paid_amount, self.balance, self.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job_id": self.job_id,
            "estimate_id": self.estimate_id,
            "invoice_number": self.invoice_number,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "total_amount": str(self.total_amount),
            "paid_amount": str(self.paid_amount),
            "balance": str(self.balance),
            "status": self.status.value,
            "issued_at": self.issued_at.isoformat(),
            "due_date": self.due_date.isoformat(),
        }

    def to_row(self) -> Dict[str, Any]:
        """Row written by ``save_invoice``; lines travel as plain dicts."""
        row = self.to_dict()
        row.update({
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "paid_amount": self.paid_amount,
            "balance": self.balance,
            "issued_at": self.issued_at,
            "due_date": self.due_date,
        })
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Invoice":
        lines: List[InvoiceLine] = [InvoiceLine.from_dict(d) for d in row.get("lines") or []]
        total = to_decimal(row.get("total_amount") or 0)
        paid = to_decimal(row.get("paid_amount") or 0)
        balance = row.get("balance")
        issued_at = parse_timestamp(row.get("issued_at")) or utcnow()
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            job_id=str(row["job_id"]),
            estimate_id=str(row["estimate_id"]),
            invoice_number=row.get("invoice_number") or "",
            lines=tuple(lines),
            subtotal=to_decimal(row.get("subtotal") or 0),
            tax_amount=to_decimal(row.get("tax_amount") or 0),
            total_amount=total,
            issued_at=issued_at,
            due_date=parse_timestamp(row.get("due_date")) or issued_at,
            paid_amount=paid,
            balance=to_decimal(balance) if balance is not None else total - paid,
            status=InvoiceStatus(row.get("status", "pending")),
        )
