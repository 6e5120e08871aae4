"""
Invoice generation and delivery.

generate_invoice() freezes a job's estimate into an invoice at most once:

    - an existing invoice for the job is returned unchanged
    - creation is serialized per job in-process, and the gateway's
      save_invoice is an upsert keyed on job id, so a concurrent writer in
      another process still cannot produce a second invoice
    - the source estimate is locked afterwards

The generator does not look at the job status; callers decide when to invoice
(normally when a move to READY commits).
"""

from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, Optional

from config import Config
from core.delivery import DeliveryGateway, LoggingDeliveryGateway, SUPPORTED_CHANNELS
from core.exceptions import DeliveryError, GarageBoardError, InvoiceNotFoundError
from core.gateway_client import GatewayClient
from models.invoice import Invoice
from services.job_locks import JobLocks
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class InvoiceService:
    """Creates invoices from estimates and hands them to the delivery gateway."""

    def __init__(
        self,
        client: GatewayClient,
        delivery: Optional[DeliveryGateway] = None,
        due_days: Optional[int] = None,
        job_locks: Optional[JobLocks] = None
    ):
        """
        Args:
            client: Gateway client
            delivery: Delivery gateway (defaults to LoggingDeliveryGateway)
            due_days: Days from issue to due date (default INVOICE_DUE_DAYS)
            job_locks: Lock registry shared with the EstimateService, so an
                invoice is never cut while an item edit is being written
        """
        self._client = client
        self._delivery = delivery or LoggingDeliveryGateway()
        self._due_days = Config.INVOICE_DUE_DAYS if due_days is None else int(due_days)
        self._job_locks = job_locks or JobLocks()

    def _job_lock(self, tenant_id: str, job_id: str) -> threading.Lock:
        return self._job_locks.for_job(tenant_id, job_id)

    def find_invoice(self, tenant_id: str, job_id: str) -> Optional[Invoice]:
        return self._client.find_invoice_by_job(tenant_id, job_id)

    def generate_invoice(self, tenant_id: str, job_id: str) -> Invoice:
        """
        Freeze the job's estimate into an invoice, or return the existing one.

        Returns:
            The job's single invoice

        Raises:
            EstimateNotFoundError: If the job has no estimate
            PersistenceError: If the gateway fails
        """
        with self._job_lock(tenant_id, job_id):
            existing = self._client.find_invoice_by_job(tenant_id, job_id)
            if existing is not None:
                logger.debug(f"Invoice {existing.invoice_number} already exists for job {job_id[:8]}")
                self._ensure_estimate_locked(tenant_id, job_id)
                return existing

            estimate = self._client.load_estimate(tenant_id, job_id)
            draft = Invoice.from_estimate(str(uuid.uuid4()), estimate, due_days=self._due_days)
            stored = self._client.save_invoice(draft)

            if stored.id != draft.id:
                logger.warning(
                    f"Invoice for job {job_id[:8]} was created concurrently; "
                    f"using {stored.invoice_number}"
                )
            else:
                logger.info(
                    f"Invoice {stored.invoice_number} generated for job {job_id[:8]}: "
                    f"total {stored.total_amount}"
                )

            if not estimate.locked:
                self._client.save_estimate_header(estimate.as_locked())
                logger.info(f"Estimate {estimate.id[:8]} locked by {stored.invoice_number}")

            return stored

    def _ensure_estimate_locked(self, tenant_id: str, job_id: str) -> None:
        # Repairs a lock write that failed after the invoice was saved
        estimate = self._client.load_estimate(tenant_id, job_id)
        if not estimate.locked:
            self._client.save_estimate_header(estimate.as_locked())
            logger.warning(f"Estimate {estimate.id[:8]} was unlocked behind an invoice; locked now")

    def deliver_invoice(self, tenant_id: str, job_id: str, channel: str) -> Dict[str, Any]:
        """
        Send the job's invoice over ``channel`` ("pdf" or "whatsapp").

        Best effort: a failure never touches the invoice.

        Raises:
            InvoiceNotFoundError: If the job has not been invoiced
            DeliveryError: Unsupported channel or provider failure
        """
        invoice = self._client.find_invoice_by_job(tenant_id, job_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"for job {job_id}", tenant_id)

        channel = (channel or "").strip().lower()
        if channel not in SUPPORTED_CHANNELS:
            raise DeliveryError(channel, invoice.id, f"unsupported channel (use {', '.join(SUPPORTED_CHANNELS)})")

        try:
            receipt = self._delivery.deliver(invoice, channel)
        except GarageBoardError:
            raise
        except Exception as e:
            logger.error(f"Delivery of {invoice.invoice_number} via {channel} failed: {e}", exc_info=True)
            raise DeliveryError(channel, invoice.id, str(e)) from e

        logger.info(f"Invoice {invoice.invoice_number} sent via {channel}")
        return {"invoice": invoice.to_dict(), "receipt": receipt or {}}
