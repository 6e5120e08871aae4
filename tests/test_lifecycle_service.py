"""
Unit tests for the lifecycle facade: typed results, auto-invoicing and events.
"""

import threading
from decimal import Decimal
from unittest.mock import patch

import pytest

from core.exceptions import PersistenceError
from models.invoice import InvoiceStatus, PaymentMethod
from models.job import JobStatus
from models.result import ResultStatus

from conftest import TENANT


class EventRecorder:
    """Collects lifecycle events; wait_for() blocks until a type shows up."""

    def __init__(self):
        self.events = []
        self._changed = threading.Condition()

    def __call__(self, event):
        with self._changed:
            self.events.append(event)
            self._changed.notify_all()

    @property
    def types(self):
        return [e.type for e in self.events]

    def wait_for(self, event_type, timeout=2.0):
        with self._changed:
            return self._changed.wait_for(lambda: event_type in self.types, timeout)


@pytest.fixture
def recorder(lifecycle):
    rec = EventRecorder()
    lifecycle.subscribe(rec)
    return rec


class TestMoveJob:

    def test_pending_then_committed(self, lifecycle, gateway, make_job):
        job_id = make_job(status="received")
        gateway.release.clear()

        result = lifecycle.move_job(TENANT, job_id, "received", "working")

        assert result.status is ResultStatus.PENDING
        assert result.payload["status"] == "working"
        assert result.payload["version"] == 1

        gateway.release.set()
        lifecycle.board.shutdown(timeout_per_thread=2.0)
        assert lifecycle.board.committed_job(TENANT, job_id).status is JobStatus.WORKING

    def test_wait_returns_final_result(self, lifecycle, make_job):
        job_id = make_job(status="received")

        result = lifecycle.move_job(TENANT, job_id, "received", "working", wait_seconds=2.0)

        assert result.status is ResultStatus.SUCCEEDED

    def test_invalid_move_is_a_failed_result(self, lifecycle, make_job):
        job_id = make_job(status="received")

        result = lifecycle.move_job(TENANT, job_id, "received", "completed")

        assert result.status is ResultStatus.FAILED
        assert result.error_code == "InvalidTransitionError"
        assert result.details["to_status"] == "completed"

    def test_unknown_status_value(self, lifecycle, make_job):
        job_id = make_job(status="received")

        result = lifecycle.move_job(TENANT, job_id, "received", "cancelled")

        assert result.error_code == "InvalidTransitionError"
        assert "cancelled" in result.message

    def test_payment_required_carries_balance(self, lifecycle, invoiced_job):
        job_id, invoice = invoiced_job(total="150.00")

        result = lifecycle.move_job(TENANT, job_id, "ready", "completed")

        assert result.error_code == "PaymentRequiredError"
        assert result.details["balance"] == "150.00"
        assert result.details["invoice_id"] == invoice.id
        assert "₹150.00 outstanding" in result.message
        assert lifecycle.board.get_job(TENANT, job_id).status is JobStatus.READY

    def test_failed_commit_result(self, lifecycle, gateway, make_job, recorder):
        job_id = make_job(status="received")
        gateway.fail_status_writes = True

        result = lifecycle.move_job(TENANT, job_id, "received", "working", wait_seconds=2.0)

        assert result.status is ResultStatus.FAILED
        assert result.retryable is True
        assert recorder.wait_for("job.move_reverted")

    def test_load_board(self, lifecycle, make_job):
        make_job(status="received")
        make_job(status="ready")

        result = lifecycle.load_board(TENANT)

        assert result.ok
        columns = result.payload["columns"]
        assert list(columns) == ["received", "working", "ready", "completed"]
        assert len(columns["received"]) == 1
        assert len(columns["ready"]) == 1


class TestAutoInvoice:

    def test_invoice_generated_when_ready_commits(self, lifecycle, client, make_job, recorder):
        job_id = make_job(status="working")
        lifecycle.add_estimate_item(TENANT, job_id, name="Clutch", quantity=1, unit_price="1000")

        result = lifecycle.move_job(TENANT, job_id, "working", "ready", wait_seconds=2.0)

        assert result.ok
        invoice = client.find_invoice_by_job(TENANT, job_id)
        assert invoice is not None
        assert invoice.total_amount == Decimal("1180.00")
        assert client.load_estimate(TENANT, job_id).locked is True
        assert recorder.types[:2] == ["job.status_changed", "invoice.generated"]

    def test_invoice_failure_is_published(self, lifecycle, make_job, recorder):
        job_id = make_job(status="working")

        with patch.object(lifecycle.invoices, "generate_invoice",
                          side_effect=PersistenceError("save_invoice")):
            result = lifecycle.move_job(TENANT, job_id, "working", "ready", wait_seconds=2.0)

        # The move itself stands
        assert result.ok
        assert recorder.wait_for("invoice.failed")
        assert lifecycle.board.get_job(TENANT, job_id).status is JobStatus.READY

    def test_no_invoice_for_other_columns(self, lifecycle, client, make_job):
        job_id = make_job(status="received")

        lifecycle.move_job(TENANT, job_id, "received", "working", wait_seconds=2.0)

        assert client.find_invoice_by_job(TENANT, job_id) is None


class TestEstimateAndBilling:

    def test_estimate_operations_return_results(self, lifecycle, make_job):
        job_id = make_job()

        added = lifecycle.add_estimate_item(
            TENANT, job_id, name="Brake pad", quantity=2, unit_price="100", labor_cost="50"
        )
        assert added.ok
        assert added.payload["total_amount"] == "295.00"

        item_id = added.payload["items"][0]["id"]
        updated = lifecycle.update_estimate_item(TENANT, job_id, item_id, {"labor_cost": "0"})
        assert updated.payload["total_amount"] == "236.00"

        removed = lifecycle.remove_estimate_item(TENANT, job_id, item_id)
        assert removed.payload["items"] == []
        assert removed.payload["total_amount"] == "0.00"

    def test_locked_estimate_result(self, lifecycle, make_job):
        job_id = make_job(status="ready")
        lifecycle.generate_invoice(TENANT, job_id)

        result = lifecycle.add_estimate_item(TENANT, job_id, name="Bulb", quantity=1, unit_price="80")

        assert result.error_code == "EstimateLockedError"

    def test_generate_invoice_publishes_once(self, lifecycle, make_job, recorder):
        job_id = make_job(status="ready")

        first = lifecycle.generate_invoice(TENANT, job_id)
        second = lifecycle.generate_invoice(TENANT, job_id)

        assert first.payload["id"] == second.payload["id"]
        assert recorder.types.count("invoice.generated") == 1

    def test_payment_results(self, lifecycle, invoiced_job, recorder):
        _, invoice = invoiced_job(total="150.00")

        over = lifecycle.apply_payment(TENANT, invoice.id, "200")
        assert over.error_code == "OverpaymentError"

        paid = lifecycle.apply_payment(TENANT, invoice.id, "150", PaymentMethod.CASH)
        assert paid.ok
        assert paid.payload["status"] == "paid"
        assert recorder.types == ["payment.received"]

    def test_payment_event_reports_recorded_amount(self, lifecycle, invoiced_job, recorder):
        _, invoice = invoiced_job(total="150.00")

        assert lifecycle.apply_payment(TENANT, invoice.id, 49.5, PaymentMethod.UPI, "upi-771").ok
        assert lifecycle.apply_payment(TENANT, invoice.id, " 49.5 ", PaymentMethod.UPI, "upi-771").ok

        assert recorder.types == ["payment.received"]
        payload = recorder.events[0].payload
        assert payload["amount"] == "49.5"
        assert payload["method"] == "upi"
        assert payload["payment_id"]

    def test_deliver_invoice(self, lifecycle, delivery, invoiced_job):
        _, invoice = invoiced_job()

        result = lifecycle.deliver_invoice(TENANT, invoice.job_id, "pdf")

        assert result.ok
        assert delivery.sent == [(invoice.id, "pdf")]

    def test_unexpected_errors_propagate(self, lifecycle, make_job):
        job_id = make_job()
        with patch.object(lifecycle.estimates, "get_estimate", side_effect=RuntimeError("bug")):
            with pytest.raises(RuntimeError):
                lifecycle.get_estimate(TENANT, job_id)


class TestSettleAndComplete:

    def test_pays_balance_and_completes(self, lifecycle, client, invoiced_job, recorder):
        job_id, invoice = invoiced_job(total="150.00")

        result = lifecycle.settle_and_complete(TENANT, job_id, PaymentMethod.UPI, wait_seconds=2.0)

        assert result.ok
        assert lifecycle.board.get_job(TENANT, job_id).status is JobStatus.COMPLETED
        stored = client.load_invoice(TENANT, invoice.id)
        assert stored.status is InvoiceStatus.PAID
        assert stored.balance == Decimal("0")
        assert [p.method for p in client.list_payments(TENANT, invoice.id)] == [PaymentMethod.UPI]
        assert "payment.received" in recorder.types

    def test_partial_payment_topped_up(self, lifecycle, payments, client, invoiced_job):
        job_id, invoice = invoiced_job(total="150.00")
        payments.apply_payment(TENANT, invoice.id, "100")

        result = lifecycle.settle_and_complete(TENANT, job_id, wait_seconds=2.0)

        assert result.ok
        amounts = [p.amount for p in client.list_payments(TENANT, invoice.id)]
        assert amounts == [Decimal("100"), Decimal("50.00")]

    def test_job_not_ready_is_not_charged(self, lifecycle, client, make_job):
        job_id = make_job(status="working")
        lifecycle.add_estimate_item(TENANT, job_id, name="Clutch", quantity=1, unit_price="1000")

        result = lifecycle.settle_and_complete(TENANT, job_id)

        assert result.error_code == "InvalidTransitionError"
        assert client.find_invoice_by_job(TENANT, job_id) is None
