"""
Unit tests for the optimistic board coordinator.

The ControlledGateway (see conftest) lets a test hold a commit open to look at
the board while it is in flight, or make it fail to watch the rollback.
"""

from decimal import Decimal

import pytest

from core.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    PaymentRequiredError,
)
from core.gateway_client import GatewayClient
from models.job import BOARD_ORDER, JobStatus
from models.result import ResultStatus
from services.board_service import BoardCoordinator

from conftest import OTHER_TENANT, TENANT


RECEIVED = JobStatus.RECEIVED
WORKING = JobStatus.WORKING
READY = JobStatus.READY
COMPLETED = JobStatus.COMPLETED


class TestOptimisticMove:

    def test_move_visible_before_commit(self, board, gateway, make_job):
        job_id = make_job(status="working")
        gateway.release.clear()

        ticket = board.move_job(TENANT, job_id, WORKING, READY)

        assert gateway.entered.wait(2.0)
        assert board.get_job(TENANT, job_id).status is READY
        assert board.committed_job(TENANT, job_id).status is WORKING
        assert board.is_reconciling(TENANT, job_id)
        assert not ticket.done

        gateway.release.set()
        result = ticket.wait(2.0)

        assert result.status is ResultStatus.SUCCEEDED
        assert result.payload["status"] == "ready"
        assert board.committed_job(TENANT, job_id).status is READY
        assert not board.is_reconciling(TENANT, job_id)
        assert gateway.load_job(TENANT, job_id)["status"] == "ready"

    def test_failed_commit_reverts(self, board, gateway, make_job):
        job_id = make_job(status="working")
        gateway.fail_status_writes = True

        ticket = board.move_job(TENANT, job_id, WORKING, READY)
        result = ticket.wait(2.0)

        assert result.status is ResultStatus.FAILED
        assert result.error_code == "PersistenceError"
        assert result.retryable is True
        assert board.get_job(TENANT, job_id).status is WORKING
        assert not board.is_reconciling(TENANT, job_id)
        assert gateway.load_job(TENANT, job_id)["status"] == "working"

    def test_revert_restores_exact_snapshot(self, board, gateway, make_job):
        job_id = make_job(status="received")
        before = board.get_job(TENANT, job_id)
        gateway.fail_status_writes = True

        board.move_job(TENANT, job_id, RECEIVED, WORKING).wait(2.0)

        after = board.get_job(TENANT, job_id)
        assert after == before
        assert after.started_at is None

    def test_timeout_reverts(self, gateway, make_job):
        job_id = make_job(status="working")
        board = BoardCoordinator(GatewayClient(gateway, timeout_seconds=0.2))
        board.load_board(TENANT)
        gateway.release.clear()

        result = board.move_job(TENANT, job_id, WORKING, READY).wait(3.0)

        assert result.status is ResultStatus.FAILED
        assert result.error_code == "PersistenceTimeoutError"
        assert board.get_job(TENANT, job_id).status is WORKING
        gateway.release.set()

    def test_late_write_after_timeout_is_undone(self, gateway, make_job):
        job_id = make_job(status="working")
        board = BoardCoordinator(GatewayClient(gateway, timeout_seconds=0.2))
        board.load_board(TENANT)
        gateway.release.clear()

        result = board.move_job(TENANT, job_id, WORKING, READY).wait(3.0)
        assert result.status is ResultStatus.FAILED
        assert board.is_reconciling(TENANT, job_id)

        gateway.release.set()
        board.shutdown(timeout_per_thread=3.0)

        assert not board.is_reconciling(TENANT, job_id)
        assert board.get_job(TENANT, job_id).status is WORKING
        assert gateway.load_job(TENANT, job_id)["status"] == "working"
        assert gateway.status_writes == [(job_id, "ready"), (job_id, "working")]

    def test_move_waits_for_timed_out_write(self, gateway, make_job):
        job_id = make_job(status="working")
        board = BoardCoordinator(GatewayClient(gateway, timeout_seconds=0.2))
        board.load_board(TENANT)
        gateway.release.clear()

        assert board.move_job(TENANT, job_id, WORKING, READY).wait(3.0).status is ResultStatus.FAILED
        retry = board.move_job(TENANT, job_id, WORKING, READY)
        assert not retry.done

        gateway.release.set()
        result = retry.wait(3.0)
        board.shutdown(timeout_per_thread=3.0)

        assert result.status is ResultStatus.SUCCEEDED
        assert gateway.load_job(TENANT, job_id)["status"] == "ready"
        assert board.get_job(TENANT, job_id).status is READY

    def test_started_and_completed_stamps(self, board, make_job, invoiced_job, payments):
        job_id = make_job(status="received")
        board.move_job(TENANT, job_id, RECEIVED, WORKING).wait(2.0)
        assert board.get_job(TENANT, job_id).started_at is not None

        paid_job, invoice = invoiced_job(total="100.00")
        payments.apply_payment(TENANT, invoice.id, Decimal("100.00"))
        board.move_job(TENANT, paid_job, READY, COMPLETED).wait(2.0)
        assert board.get_job(TENANT, paid_job).completed_at is not None


class TestValidation:

    def test_invalid_transition_has_no_side_effects(self, board, gateway, make_job):
        job_id = make_job(status="received")

        with pytest.raises(InvalidTransitionError) as exc_info:
            board.move_job(TENANT, job_id, RECEIVED, READY)

        assert exc_info.value.from_status == "received"
        assert exc_info.value.to_status == "ready"
        assert board.get_job(TENANT, job_id).status is RECEIVED
        assert not board.is_reconciling(TENANT, job_id)
        assert gateway.status_writes == []

    def test_stale_from_status_rejected(self, board, gateway, make_job):
        job_id = make_job(status="working")

        with pytest.raises(InvalidTransitionError) as exc_info:
            board.move_job(TENANT, job_id, RECEIVED, WORKING)

        assert "currently 'working'" in exc_info.value.message
        assert gateway.status_writes == []

    def test_completion_with_balance_requires_payment(self, board, gateway, invoiced_job):
        job_id, invoice = invoiced_job(total="150.00")

        with pytest.raises(PaymentRequiredError) as exc_info:
            board.move_job(TENANT, job_id, READY, COMPLETED)

        error = exc_info.value
        assert error.balance == Decimal("150.00")
        assert error.invoice_id == invoice.id
        assert "₹150.00 outstanding" in error.message
        assert error.details["balance"] == "150.00"
        assert board.get_job(TENANT, job_id).status is READY
        assert gateway.status_writes == []

    def test_completion_without_invoice(self, board, make_job):
        job_id = make_job(status="ready")

        with pytest.raises(PaymentRequiredError) as exc_info:
            board.move_job(TENANT, job_id, READY, COMPLETED)

        assert exc_info.value.invoice_id is None
        assert board.get_job(TENANT, job_id).status is READY

    def test_completion_when_paid(self, board, invoiced_job, payments):
        job_id, invoice = invoiced_job(total="150.00")
        payments.apply_payment(TENANT, invoice.id, Decimal("150.00"))

        result = board.move_job(TENANT, job_id, READY, COMPLETED).wait(2.0)

        assert result.ok
        assert board.get_job(TENANT, job_id).status is COMPLETED

    def test_completed_job_cannot_move(self, board, make_job):
        job_id = make_job(status="completed")

        with pytest.raises(InvalidTransitionError):
            board.move_job(TENANT, job_id, COMPLETED, READY)

    def test_same_column_drop_resolves_immediately(self, board, gateway, make_job):
        job_id = make_job(status="working")

        ticket = board.move_job(TENANT, job_id, WORKING, WORKING)

        assert ticket.done
        assert ticket.result.ok
        assert gateway.status_writes == []

    def test_unknown_job(self, board):
        with pytest.raises(JobNotFoundError):
            board.move_job(TENANT, "missing", RECEIVED, WORKING)

    def test_other_tenant_job_is_invisible(self, board, make_job):
        job_id = make_job(status="received", tenant_id=OTHER_TENANT)

        with pytest.raises(JobNotFoundError):
            board.get_job(TENANT, job_id)


class TestSerialization:

    def test_second_move_is_queued_not_interleaved(self, board, gateway, make_job):
        job_id = make_job(status="working")
        gateway.release.clear()

        first = board.move_job(TENANT, job_id, WORKING, READY)
        assert gateway.entered.wait(2.0)
        second = board.move_job(TENANT, job_id, READY, WORKING)

        # Queued moves are not applied while the first is in flight
        assert board.get_job(TENANT, job_id).status is READY
        assert not second.done

        gateway.release.set()
        assert first.wait(2.0).ok
        assert second.wait(2.0).ok
        assert board.get_job(TENANT, job_id).status is WORKING
        assert gateway.status_writes == [(job_id, "ready"), (job_id, "working")]

    def test_latest_queued_move_wins(self, board, gateway, make_job):
        job_id = make_job(status="working")
        gateway.release.clear()

        first = board.move_job(TENANT, job_id, WORKING, READY)
        assert gateway.entered.wait(2.0)
        older = board.move_job(TENANT, job_id, READY, WORKING)
        newer = board.move_job(TENANT, job_id, READY, READY)

        assert newer.done  # same-column drop
        newest = board.move_job(TENANT, job_id, READY, WORKING)

        assert older.wait(1.0).status is ResultStatus.SUPERSEDED

        gateway.release.set()
        assert first.wait(2.0).ok
        assert newest.wait(2.0).ok
        assert gateway.status_writes == [(job_id, "ready"), (job_id, "working")]

    def test_queued_move_rejected_after_revert(self, board, gateway, make_job):
        job_id = make_job(status="working")
        gateway.release.clear()
        gateway.fail_status_writes = True

        first = board.move_job(TENANT, job_id, WORKING, READY)
        assert gateway.entered.wait(2.0)
        queued = board.move_job(TENANT, job_id, READY, WORKING)

        gateway.release.set()
        assert first.wait(2.0).status is ResultStatus.FAILED
        result = queued.wait(2.0)

        assert result.status is ResultStatus.FAILED
        assert result.error_code == "InvalidTransitionError"
        assert board.get_job(TENANT, job_id).status is WORKING

    def test_different_jobs_commit_concurrently(self, board, gateway, make_job):
        job_a = make_job(status="received")
        job_b = make_job(status="working")
        gateway.release.clear()

        ticket_a = board.move_job(TENANT, job_a, RECEIVED, WORKING)
        ticket_b = board.move_job(TENANT, job_b, WORKING, READY)

        assert board.is_reconciling(TENANT, job_a)
        assert board.is_reconciling(TENANT, job_b)

        gateway.release.set()
        assert ticket_a.wait(2.0).ok
        assert ticket_b.wait(2.0).ok

    def test_version_increases_per_applied_move(self, board, make_job):
        job_id = make_job(status="received")
        start = board.version_of(TENANT, job_id)

        ticket = board.move_job(TENANT, job_id, RECEIVED, WORKING)
        ticket.wait(2.0)

        assert ticket.version == start + 1
        assert board.version_of(TENANT, job_id) == start + 1


class TestEventsAndHydration:

    def test_events_on_commit(self, board, make_job):
        job_id = make_job(status="received")
        events = []
        board.subscribe(events.append)

        board.move_job(TENANT, job_id, RECEIVED, WORKING).wait(2.0)

        assert [e.kind for e in events] == ["applied", "committed"]
        assert events[1].previous_status is RECEIVED
        assert events[1].job.status is WORKING

    def test_events_on_revert(self, board, gateway, make_job):
        job_id = make_job(status="received")
        gateway.fail_status_writes = True
        events = []
        board.subscribe(events.append)

        board.move_job(TENANT, job_id, RECEIVED, WORKING).wait(2.0)

        assert [e.kind for e in events] == ["applied", "reverted"]
        assert events[1].job.status is RECEIVED
        assert events[1].error is not None

    def test_failing_listener_does_not_block_commit(self, board, make_job):
        job_id = make_job(status="received")

        def broken(event):
            raise RuntimeError("listener bug")

        board.subscribe(broken)
        assert board.move_job(TENANT, job_id, RECEIVED, WORKING).wait(2.0).ok

    def test_load_board_groups_columns(self, board, make_job):
        make_job(status="received")
        make_job(status="working")
        make_job(status="working")
        make_job(status="ready", tenant_id=OTHER_TENANT)

        jobs = board.load_board(TENANT)
        columns = board.board_columns(TENANT)

        assert len(jobs) == 3
        assert list(columns) == list(BOARD_ORDER)
        assert len(columns[RECEIVED]) == 1
        assert len(columns[WORKING]) == 2
        assert columns[READY] == []

    def test_reload_keeps_reconciling_job(self, board, gateway, make_job):
        job_id = make_job(status="working")
        board.load_board(TENANT)
        gateway.release.clear()

        ticket = board.move_job(TENANT, job_id, WORKING, READY)
        assert gateway.entered.wait(2.0)
        board.load_board(TENANT)

        assert board.get_job(TENANT, job_id).status is READY
        gateway.release.set()
        assert ticket.wait(2.0).ok
