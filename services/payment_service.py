"""
Payment reconciliation.

The paid amount of an invoice is never incremented in place. After a payment
is recorded, the invoice's paid amount, balance and status are re-derived
from the full list of recorded payments. If the invoice write fails after the
payment was recorded, the stored invoice lags behind its payments until
reconcile_invoice() (or the next apply_payment()) re-derives it.

Rules:
    - amount must be > 0                           (InvalidPaymentError)
    - amount must not exceed balance + tolerance   (OverpaymentError)
    - a rejected payment writes nothing
    - a payment whose reference is already recorded is not recorded again
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from core.exceptions import InvalidPaymentError, OverpaymentError
from core.gateway_client import GatewayClient
from models.invoice import Invoice, Payment, PaymentMethod
from models.money import ZERO, to_decimal
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


def parse_payment_amount(value: Any) -> Decimal:
    """
    Raises:
        InvalidPaymentError: If the value is not a number greater than zero
    """
    if isinstance(value, bool):
        raise InvalidPaymentError(value)
    try:
        amount = to_decimal(value)
    except ValueError:
        raise InvalidPaymentError(value)
    if amount <= ZERO:
        raise InvalidPaymentError(value)
    return amount


class PaymentService:
    """Records payments and keeps invoices consistent with them."""

    def __init__(
        self,
        client: GatewayClient,
        tolerance: Optional[Decimal] = None,
        currency: Optional[str] = None
    ):
        """
        Args:
            client: Gateway client
            tolerance: Overpayment allowed past the balance (default PAYMENT_TOLERANCE)
            currency: Symbol used in error messages (default CURRENCY_SYMBOL)
        """
        self._client = client
        self._tolerance = to_decimal(Config.PAYMENT_TOLERANCE if tolerance is None else tolerance)
        self._currency = currency or Config.CURRENCY_SYMBOL
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def tolerance(self) -> Decimal:
        return self._tolerance

    def _invoice_lock(self, tenant_id: str, invoice_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((tenant_id, invoice_id), threading.Lock())

    def apply_payment(
        self,
        tenant_id: str,
        invoice_id: str,
        amount: Any,
        method: PaymentMethod = PaymentMethod.CASH,
        reference: Optional[str] = None
    ) -> Invoice:
        """
        Record a payment against an invoice and return the updated invoice.

        Args:
            tenant_id: Tenant that owns the invoice
            invoice_id: Invoice being paid
            amount: Amount paid (Decimal, int or numeric string)
            method: How it was paid
            reference: Provider/receipt reference; makes retries safe

        Raises:
            InvalidPaymentError: amount <= 0 or not a number
            OverpaymentError: amount exceeds the balance plus tolerance
            InvoiceNotFoundError: Unknown invoice
            PersistenceError: If the gateway fails
        """
        invoice, _ = self.receive_payment(tenant_id, invoice_id, amount, method, reference)
        return invoice

    def receive_payment(
        self,
        tenant_id: str,
        invoice_id: str,
        amount: Any,
        method: PaymentMethod = PaymentMethod.CASH,
        reference: Optional[str] = None
    ) -> Tuple[Invoice, Optional[Payment]]:
        """
        Same as apply_payment(), also returning the recorded Payment.

        The payment is None when ``reference`` was already recorded.
        """
        amount = parse_payment_amount(amount)

        with self._invoice_lock(tenant_id, invoice_id):
            stored = self._client.load_invoice(tenant_id, invoice_id)
            payments = self._client.list_payments(tenant_id, invoice_id)

            if reference and any(p.reference == reference for p in payments):
                logger.info(
                    f"Payment {reference} already recorded on {stored.invoice_number}; not recording again"
                )
                return self._save_if_changed(stored, payments), None

            current = stored.with_payments(payments)
            if amount > current.balance + self._tolerance:
                logger.info(
                    f"Overpayment refused on {stored.invoice_number}: "
                    f"{amount} against balance {current.balance}"
                )
                raise OverpaymentError(invoice_id, amount, current.balance, self._currency)

            payment = self._client.record_payment(tenant_id, invoice_id, amount, method, reference)
            logger.info(
                f"Payment {payment.id[:8]} of {amount} ({method.value}) recorded on {stored.invoice_number}"
            )

            payments = self._client.list_payments(tenant_id, invoice_id)
            updated = self._save_if_changed(stored, payments)
            logger.info(
                f"Invoice {updated.invoice_number}: paid {updated.paid_amount}, "
                f"balance {updated.balance}, {updated.status.value}"
            )
            return updated, payment

    def reconcile_invoice(self, tenant_id: str, invoice_id: str) -> Invoice:
        """
        Re-derive an invoice from its recorded payments.

        Writes only when the stored paid amount, balance or status disagree
        with the payments. Safe to run any number of times.
        """
        with self._invoice_lock(tenant_id, invoice_id):
            stored = self._client.load_invoice(tenant_id, invoice_id)
            payments = self._client.list_payments(tenant_id, invoice_id)
            return self._save_if_changed(stored, payments)

    def list_payments(self, tenant_id: str, invoice_id: str) -> List[Payment]:
        return self._client.list_payments(tenant_id, invoice_id)

    def _save_if_changed(self, stored: Invoice, payments: List[Payment]) -> Invoice:
        derived = stored.with_payments(payments)
        if derived.payment_state() == stored.payment_state():
            return stored
        logger.debug(
            f"Invoice {stored.invoice_number}: stored paid {stored.paid_amount}, "
            f"payments sum to {derived.paid_amount}; saving"
        )
        return self._client.save_invoice(derived)
