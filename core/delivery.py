"""
Invoice delivery gateway (PDF export, WhatsApp send).

Delivery is best effort: it is only attempted for an invoice that already
exists, and a failure is reported to the caller without touching the invoice.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from models.invoice import Invoice

SUPPORTED_CHANNELS = ("pdf", "whatsapp")


class DeliveryGateway(ABC):
    """Sends an invoice to the customer over one channel."""

    @abstractmethod
    def deliver(self, invoice: Invoice, channel: str) -> Dict[str, Any]:
        """
        Deliver ``invoice`` via ``channel``.

        Returns:
            Provider receipt (e.g. message id, document url)

        Raises:
            Exception: Any provider failure; callers wrap it in DeliveryError
        """


class LoggingDeliveryGateway(DeliveryGateway):
    """Development gateway: logs the delivery instead of sending anything."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("garage_board.core.delivery")

    def deliver(self, invoice: Invoice, channel: str) -> Dict[str, Any]:
        self._logger.info(
            f"[{channel}] invoice {invoice.invoice_number} "
            f"total={invoice.total_amount} balance={invoice.balance}"
        )
        return {"channel": channel, "invoice_number": invoice.invoice_number, "queued": True}
