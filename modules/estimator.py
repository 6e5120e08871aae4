"""Estimate aggregation: line items to parts, labor, tax and total."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, Optional
import logging

from config import Config
from core.exceptions import InvalidItemError
from models.estimate import EstimateItem, EstimateTotals
from models.money import ZERO, to_decimal

logger = logging.getLogger(__name__)


def validate_item(item: EstimateItem) -> None:
    """
    Check an item's input contract.

    Raises:
        InvalidItemError: Zero/negative quantity, negative price or labor,
            or a blank name
    """
    if isinstance(item.quantity, bool) or not isinstance(item.quantity, int):
        raise InvalidItemError(
            f"Quantity of '{item.name}' must be a whole number", "quantity", item.quantity
        )
    if item.quantity < 1:
        raise InvalidItemError(
            f"Quantity of '{item.name}' must be at least 1 (got {item.quantity})",
            "quantity", item.quantity,
        )
    if item.unit_price < ZERO:
        raise InvalidItemError(
            f"Unit price of '{item.name}' cannot be negative", "unit_price", item.unit_price
        )
    if item.labor_cost < ZERO:
        raise InvalidItemError(
            f"Labor cost of '{item.name}' cannot be negative", "labor_cost", item.labor_cost
        )
    if not item.name.strip():
        raise InvalidItemError("Item name is required", "name", item.name)


def compute_totals(items: Iterable[EstimateItem], tax_rate: Decimal) -> EstimateTotals:
    """
    Aggregate line items into estimate totals.

    parts = sum(quantity * unit_price), labor = sum(labor_cost),
    tax = (parts + labor) * tax_rate, total = parts + labor + tax.

    Arithmetic is exact Decimal; nothing is rounded here. Call
    ``EstimateTotals.quantized()`` when persisting. The function has no side
    effects, so calling it twice on the same items gives identical totals.

    Args:
        items: Estimate line items (validated, never coerced)
        tax_rate: Fraction, e.g. Decimal("0.18")

    Raises:
        InvalidItemError: If any item breaks its contract
    """
    tax_rate = to_decimal(tax_rate)
    if tax_rate < ZERO:
        raise InvalidItemError("Tax rate cannot be negative", "tax_rate", tax_rate)

    parts_total = ZERO
    labor_total = ZERO
    for item in items:
        validate_item(item)
        parts_total += item.quantity * item.unit_price
        labor_total += item.labor_cost

    tax_amount = (parts_total + labor_total) * tax_rate
    return EstimateTotals(
        parts_total=parts_total,
        labor_total=labor_total,
        tax_amount=tax_amount,
        total_amount=parts_total + labor_total + tax_amount,
    )


def parse_quantity(value: Any) -> int:
    """
    Parse a quantity from form/JSON input without silent truncation.

    "2" and 2 are accepted; "2.5", 2.5 and "two" are rejected.

    Raises:
        InvalidItemError: If the value is not a whole number
    """
    if isinstance(value, bool):
        raise InvalidItemError("Quantity must be a whole number", "quantity", value)
    if isinstance(value, int):
        return value
    try:
        number = to_decimal(value)
    except ValueError:
        raise InvalidItemError("Quantity must be a whole number", "quantity", value)
    if number != number.to_integral_value():
        raise InvalidItemError("Quantity must be a whole number", "quantity", value)
    return int(number)


def parse_amount(value: Any, field: str) -> Decimal:
    """
    Raises:
        InvalidItemError: If the value is not a finite number
    """
    if value is None or value == "":
        return ZERO
    try:
        return to_decimal(value)
    except ValueError:
        raise InvalidItemError(f"{field.replace('_', ' ').capitalize()} must be a number", field, value)


class EstimateAggregator:
    """
    Computes estimate totals with the tax rate that applies to a tenant.

    The default rate comes from configuration (TAX_RATE). Per-tenant
    overrides can be supplied; ``compute_totals`` itself never hard-codes a
    rate.
    """

    def __init__(self, default_tax_rate: Optional[Decimal] = None,
                 tenant_tax_rates: Optional[Dict[str, Decimal]] = None) -> None:
        self._default_rate = to_decimal(
            default_tax_rate if default_tax_rate is not None else Config.TAX_RATE
        )
        self._tenant_rates = {
            tenant: to_decimal(rate) for tenant, rate in (tenant_tax_rates or {}).items()
        }

    def tax_rate_for(self, tenant_id: str) -> Decimal:
        return self._tenant_rates.get(tenant_id, self._default_rate)

    def totals_for(self, tenant_id: str, items: Iterable[EstimateItem]) -> EstimateTotals:
        """Exact totals for ``items`` at the tenant's rate, rounded for persistence."""
        items = list(items)
        rate = self.tax_rate_for(tenant_id)
        totals = compute_totals(items, rate).quantized()
        logger.debug(
            f"Totals for {len(items)} items at {rate}: "
            f"parts={totals.parts_total} labor={totals.labor_total} "
            f"tax={totals.tax_amount} total={totals.total_amount}"
        )
        return totals
