"""
Unit tests for estimate editing.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from core.exceptions import (
    EstimateLockedError,
    EstimateNotFoundError,
    InvalidItemError,
)
from models.job import JobStatus
from services.invoice_service import InvoiceService

from conftest import TENANT


class TestAddItem:

    def test_totals_recomputed_and_persisted(self, estimates, client, make_job):
        job_id = make_job()

        estimate = estimates.add_estimate_item(
            TENANT, job_id, name="Brake pad", quantity=2, unit_price="100", labor_cost="50"
        )

        assert estimate.parts_total == Decimal("200.00")
        assert estimate.labor_total == Decimal("50.00")
        assert estimate.tax_amount == Decimal("45.00")
        assert estimate.total_amount == Decimal("295.00")

        stored = client.load_estimate(TENANT, job_id)
        assert stored.total_amount == Decimal("295.00")
        assert [i.name for i in stored.items] == ["Brake pad"]

    def test_items_keep_submission_order(self, estimates, make_job):
        job_id = make_job()
        for name in ("Oil filter", "Engine oil", "Wiper blade"):
            estimates.add_estimate_item(TENANT, job_id, name=name, quantity=1, unit_price="10")

        estimate = estimates.get_estimate(TENANT, job_id)
        assert [i.name for i in estimate.items] == ["Oil filter", "Engine oil", "Wiper blade"]

    def test_invalid_item_writes_nothing(self, estimates, client, make_job):
        job_id = make_job()

        with patch.object(client, "save_estimate", wraps=client.save_estimate) as save:
            with pytest.raises(InvalidItemError):
                estimates.add_estimate_item(TENANT, job_id, name="Bolt", quantity=0, unit_price="5")
            save.assert_not_called()

        assert client.load_estimate(TENANT, job_id).items == ()

    def test_fractional_quantity_rejected(self, estimates, make_job):
        job_id = make_job()
        with pytest.raises(InvalidItemError):
            estimates.add_estimate_item(TENANT, job_id, name="Bolt", quantity="1.5", unit_price="5")

    def test_unknown_job(self, estimates):
        with pytest.raises(EstimateNotFoundError):
            estimates.add_estimate_item(TENANT, "missing", name="Bolt", quantity=1, unit_price="5")


class TestUpdateAndRemove:

    @pytest.fixture
    def filled(self, estimates, make_job):
        job_id = make_job()
        estimates.add_estimate_item(TENANT, job_id, name="Clutch plate", quantity=1, unit_price="1000")
        estimate = estimates.add_estimate_item(
            TENANT, job_id, name="Labour", quantity=1, unit_price="0", labor_cost="500"
        )
        return job_id, estimate

    def test_update_in_place(self, estimates, filled):
        job_id, estimate = filled
        first = estimate.items[0]

        updated = estimates.update_estimate_item(TENANT, job_id, first.id, {"quantity": 2})

        assert updated.items[0].id == first.id
        assert updated.items[0].quantity == 2
        assert updated.parts_total == Decimal("2000.00")
        assert updated.total_amount == Decimal("2950.00")

    def test_update_rejects_unknown_field(self, estimates, filled):
        job_id, estimate = filled
        with pytest.raises(InvalidItemError):
            estimates.update_estimate_item(TENANT, job_id, estimate.items[0].id, {"estimate_id": "x"})

    def test_update_rejects_invalid_value(self, estimates, filled):
        job_id, estimate = filled
        with pytest.raises(InvalidItemError):
            estimates.update_estimate_item(TENANT, job_id, estimate.items[0].id, {"unit_price": "-1"})

        assert estimates.get_estimate(TENANT, job_id).total_amount == estimate.total_amount

    def test_remove_recomputes(self, estimates, filled):
        job_id, estimate = filled

        updated = estimates.remove_estimate_item(TENANT, job_id, estimate.items[1].id)

        assert len(updated.items) == 1
        assert updated.labor_total == Decimal("0.00")
        assert updated.total_amount == Decimal("1180.00")

    def test_remove_unknown_item(self, estimates, filled):
        job_id, _ = filled
        with pytest.raises(InvalidItemError):
            estimates.remove_estimate_item(TENANT, job_id, "no-such-item")


class TestLocking:

    def test_edits_rejected_after_invoice(self, estimates, invoices, make_job):
        job_id = make_job(status="ready")
        estimate = estimates.add_estimate_item(TENANT, job_id, name="Battery", quantity=1, unit_price="4000")
        item_id = estimate.items[0].id

        invoices.generate_invoice(TENANT, job_id)

        with pytest.raises(EstimateLockedError):
            estimates.add_estimate_item(TENANT, job_id, name="Terminal", quantity=1, unit_price="50")
        with pytest.raises(EstimateLockedError):
            estimates.update_estimate_item(TENANT, job_id, item_id, {"quantity": 2})
        with pytest.raises(EstimateLockedError):
            estimates.remove_estimate_item(TENANT, job_id, item_id)

    def test_lock_survives_job_regression(self, estimates, invoices, board, make_job):
        job_id = make_job(status="ready")
        estimates.add_estimate_item(TENANT, job_id, name="Battery", quantity=1, unit_price="4000")
        invoices.generate_invoice(TENANT, job_id)

        assert board.move_job(TENANT, job_id, JobStatus.READY, JobStatus.WORKING).wait(2.0).ok

        with pytest.raises(EstimateLockedError):
            estimates.add_estimate_item(TENANT, job_id, name="Terminal", quantity=1, unit_price="50")

    def test_completed_job_estimate_is_read_only(self, estimates, make_job):
        job_id = make_job(status="completed")
        with pytest.raises(EstimateLockedError):
            estimates.add_estimate_item(TENANT, job_id, name="Bulb", quantity=1, unit_price="80")

    def test_lock_estimate(self, estimates, client, make_job):
        job_id = make_job()

        estimates.lock_estimate(TENANT, job_id)

        assert client.load_estimate(TENANT, job_id).locked is True
        with pytest.raises(EstimateLockedError):
            estimates.add_estimate_item(TENANT, job_id, name="Bulb", quantity=1, unit_price="80")

    def test_invoice_cut_mid_edit_blocks_the_write(self, estimates, client, make_job):
        job_id = make_job(status="ready")
        estimates.add_estimate_item(TENANT, job_id, name="Battery", quantity=1, unit_price="4000")
        # Invoiced by a writer that does not share this service's locks
        InvoiceService(client).generate_invoice(TENANT, job_id)

        with patch.object(estimates, "is_locked", return_value=False):
            with pytest.raises(EstimateLockedError):
                estimates.add_estimate_item(TENANT, job_id, name="Terminal", quantity=1, unit_price="50")

        estimate = client.load_estimate(TENANT, job_id)
        assert len(estimate.items) == 1
        assert estimate.locked is True
