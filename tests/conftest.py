"""
Shared fixtures for the GarageBoard test-suite.

Storage is an InMemoryGateway subclass whose job-status writes can be held
open (to observe the optimistic state before a commit resolves) or made to
fail (to observe the rollback). Estimate item writes can be held the same
way, to interleave an edit with invoice generation.
"""

import threading
from decimal import Decimal

import pytest

from core.gateway import InMemoryGateway
from core.gateway_client import GatewayClient
from modules.estimator import EstimateAggregator
from services.board_service import BoardCoordinator
from services.estimate_service import EstimateService
from services.invoice_service import InvoiceService
from services.job_locks import JobLocks
from services.payment_service import PaymentService
from services.lifecycle_service import LifecycleService
from core.delivery import LoggingDeliveryGateway


TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class ControlledGateway(InMemoryGateway):
    """InMemoryGateway whose status and estimate-item writes can be paused."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.release.set()
        self.entered = threading.Event()
        self.fail_status_writes = False
        self.status_writes = []
        self.items_release = threading.Event()
        self.items_release.set()
        self.items_entered = threading.Event()

    def save_job_status(self, tenant_id, job_id, status, stamps=None):
        self.entered.set()
        self.release.wait(5.0)
        if self.fail_status_writes:
            raise ConnectionError("database unavailable")
        self.status_writes.append((job_id, status))
        return super().save_job_status(tenant_id, job_id, status, stamps)

    def save_estimate_items(self, tenant_id, estimate_id, items):
        self.items_entered.set()
        self.items_release.wait(5.0)
        return super().save_estimate_items(tenant_id, estimate_id, items)


class RecordingDeliveryGateway(LoggingDeliveryGateway):
    """Delivery double that remembers what it sent."""

    def __init__(self):
        super().__init__()
        self.sent = []

    def deliver(self, invoice, channel):
        receipt = super().deliver(invoice, channel)
        self.sent.append((invoice.id, channel))
        return receipt


# Fixtures

@pytest.fixture
def gateway():
    gw = ControlledGateway()
    yield gw
    # Never leave a paused commit thread behind
    gw.release.set()
    gw.items_release.set()


@pytest.fixture
def client(gateway):
    return GatewayClient(gateway, timeout_seconds=2.0)


@pytest.fixture
def aggregator():
    return EstimateAggregator(default_tax_rate=Decimal("0.18"))


@pytest.fixture
def board(client):
    coordinator = BoardCoordinator(client, currency="₹")
    yield coordinator
    coordinator.shutdown(timeout_per_thread=2.0)


@pytest.fixture
def job_locks():
    return JobLocks()


@pytest.fixture
def estimates(client, aggregator, job_locks):
    return EstimateService(client, aggregator, job_locks=job_locks)


@pytest.fixture
def delivery():
    return RecordingDeliveryGateway()


@pytest.fixture
def invoices(client, delivery, job_locks):
    return InvoiceService(client, delivery=delivery, due_days=7, job_locks=job_locks)


@pytest.fixture
def payments(client):
    return PaymentService(client, tolerance=Decimal("0.00"), currency="₹")


@pytest.fixture
def lifecycle(board, estimates, invoices, payments):
    return LifecycleService(board, estimates, invoices, payments)


@pytest.fixture
def make_job(gateway):
    """Factory: seed a job (with its empty estimate) and return its id."""
    def _make(status="received", tenant_id=TENANT, **fields):
        row = gateway.create_job(tenant_id, "cust-1", "veh-1", status=status, **fields)
        return row["id"]
    return _make


@pytest.fixture
def invoiced_job(make_job, client):
    """
    Factory: job in ``status`` whose invoice totals exactly ``total``.

    Uses a zero tax rate so the invoice total equals the single item price.
    """
    zero_tax = EstimateService(client, EstimateAggregator(default_tax_rate=Decimal("0")))
    generator = InvoiceService(client, due_days=7)

    def _make(total="150.00", status="ready"):
        job_id = make_job(status=status)
        zero_tax.add_estimate_item(TENANT, job_id, name="Service kit", quantity=1, unit_price=total)
        invoice = generator.generate_invoice(TENANT, job_id)
        return job_id, invoice
    return _make
