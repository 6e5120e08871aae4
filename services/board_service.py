"""
Optimistic board coordinator with thread-per-commit persistence.

The coordinator owns the in-memory shadow copy of the job board. A move is
applied to the shadow copy immediately, so the board shows it with no
latency, and is then committed to the persistence gateway on a worker
thread. If the commit fails (or times out), the exact pre-move snapshot is
restored.

SNAPSHOTS:
    Each job has two frozen Job values: ``committed`` (last state the gateway
    confirmed) and ``working`` (what the board shows). A move replaces
    ``working``; a successful commit promotes it to ``committed``; a failed
    commit puts the pre-move snapshot back. Nothing is refetched on failure.
    A commit that timed out keeps the job reconciling until the late write
    either fails or lands; a landed write is undone by writing the pre-move
    status back, so storage ends up matching the board.

ORDERING:
    - At most one commit per job is in flight.
    - A move requested while the job is reconciling is queued, not applied.
      Only the latest queued move survives; older queued moves resolve as
      SUPERSEDED. The queued move runs once the in-flight commit settles.
    - Moves of different jobs commit concurrently, in any order.
    - Each applied move bumps a per-job version. A commit outcome whose
      version no longer matches is stale and is discarded.

Thread Safety:
    - All shadow-state mutation happens under one threading.Lock
    - Gateway calls never run under the lock
    - Subscribers are notified outside the lock

Flow:
    1. Caller invokes move_job(tenant, job, from, to)
    2. Transition policy validates (raises InvalidTransitionError)
    3. Moves to COMPLETED require a fully paid invoice (PaymentRequiredError)
    4. Shadow copy updated, job marked reconciling, "applied" event
    5. Commit thread calls save_job_status with the gateway timeout
    6. Success: "committed" event / failure: rollback + "reverted" event
    7. The returned MoveTicket resolves with an OperationResult

Usage:
    board = BoardCoordinator(gateway_client)
    board.load_board(tenant_id)

    ticket = board.move_job(tenant_id, job_id, JobStatus.WORKING, JobStatus.READY)
    board.get_job(tenant_id, job_id).status     # READY already
    result = ticket.wait(timeout=5.0)           # OperationResult
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from config import Config
from core.exceptions import (
    GarageBoardError,
    InvalidTransitionError,
    PaymentRequiredError,
    PersistenceError,
    PersistenceTimeoutError,
)
from core.gateway_client import GatewayClient, PendingCall
from models.job import Job, JobStatus, BOARD_ORDER
from models.money import ZERO
from models.result import OperationResult
from modules.transitions import ensure_valid_transition, is_valid_transition
from logging_config import get_logger, get_job_logger, set_thread_name


# Module logger
logger = get_logger(__name__)

BoardKey = Tuple[str, str]


@dataclass(frozen=True)
class BoardEvent:
    """
    Change notification for board subscribers.

    kind is one of: "applied", "committed", "reverted", "superseded".
    """

    kind: str
    job: Job
    previous_status: JobStatus
    version: int
    error: Optional[GarageBoardError] = None


BoardListener = Callable[[BoardEvent], None]


class MoveTicket:
    """
    Handle for one requested move.

    Resolves exactly once with an OperationResult: SUCCEEDED after the
    commit, FAILED after a rollback or a rejected queued move, SUPERSEDED if
    a newer move of the same job replaced it while queued.
    """

    def __init__(self, tenant_id: str, job_id: str, from_status: JobStatus, to_status: JobStatus):
        self.tenant_id = tenant_id
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        self.version: Optional[int] = None
        self.error: Optional[GarageBoardError] = None
        self._snapshot: Optional[Job] = None
        self._target: Optional[Job] = None
        self._result: Optional[OperationResult] = None
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def result(self) -> Optional[OperationResult]:
        """Result if resolved, None while the move is pending."""
        return self._result

    def wait(self, timeout: Optional[float] = None) -> Optional[OperationResult]:
        """Block until resolved. Returns None if ``timeout`` expires first."""
        self._done.wait(timeout)
        return self._result

    def _resolve(self, result: OperationResult, error: Optional[GarageBoardError] = None) -> None:
        self.error = error
        self._result = result
        self._done.set()


@dataclass
class _BoardEntry:
    committed: Job
    working: Job
    version: int = 0
    in_flight: Optional[MoveTicket] = None
    queued: Optional[MoveTicket] = None

    @property
    def reconciling(self) -> bool:
        return self.in_flight is not None


class BoardCoordinator:
    """
    Sole writer of the shadow board state.

    Other components read jobs through get_job()/board_columns() and react
    to changes through subscribe().
    """

    OPERATION = "move_job"

    def __init__(self, client: GatewayClient, currency: Optional[str] = None):
        """
        Args:
            client: Gateway client used for hydration, invoice checks and commits
            currency: Symbol used in PaymentRequiredError messages
        """
        self._client = client
        self._currency = currency or Config.CURRENCY_SYMBOL
        self._lock = threading.Lock()
        self._entries: Dict[BoardKey, _BoardEntry] = {}
        self._listeners: List[BoardListener] = []

        # Track active commit threads for shutdown
        self._active_threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

        logger.info("BoardCoordinator initialized")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: BoardListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: BoardListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, events: List[BoardEvent]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.error(
                        f"Board listener failed on '{event.kind}' for job {event.job.id[:8]}",
                        exc_info=True,
                    )

    # ------------------------------------------------------------------
    # Reading the board
    # ------------------------------------------------------------------

    def load_board(self, tenant_id: str) -> List[Job]:
        """
        Hydrate the shadow board with every job of a tenant.

        Jobs that are reconciling keep their optimistic state.

        Raises:
            PersistenceError: If the gateway fails
        """
        jobs = self._client.list_jobs(tenant_id)
        with self._lock:
            for job in jobs:
                key = (tenant_id, job.id)
                entry = self._entries.get(key)
                if entry is not None and entry.reconciling:
                    continue
                version = entry.version if entry else 0
                self._entries[key] = _BoardEntry(committed=job, working=job, version=version)
        logger.info(f"Board loaded for tenant {tenant_id}: {len(jobs)} jobs")
        return [self.get_job(tenant_id, job.id) for job in jobs]

    def get_job(self, tenant_id: str, job_id: str) -> Job:
        """
        Current (possibly optimistic) state of a job.

        Raises:
            JobNotFoundError: If the job is unknown to the board and the gateway
        """
        return self._ensure_entry(tenant_id, job_id).working

    def committed_job(self, tenant_id: str, job_id: str) -> Job:
        """Last state confirmed by the gateway."""
        return self._ensure_entry(tenant_id, job_id).committed

    def version_of(self, tenant_id: str, job_id: str) -> int:
        return self._ensure_entry(tenant_id, job_id).version

    def is_reconciling(self, tenant_id: str, job_id: str) -> bool:
        with self._lock:
            entry = self._entries.get((tenant_id, job_id))
            return entry is not None and entry.reconciling

    def board_columns(self, tenant_id: str) -> Dict[JobStatus, List[Job]]:
        """Jobs of a tenant grouped by status, columns in board order."""
        columns: Dict[JobStatus, List[Job]] = {status: [] for status in BOARD_ORDER}
        with self._lock:
            jobs = [e.working for (tenant, _), e in self._entries.items() if tenant == tenant_id]
        for job in sorted(jobs, key=lambda j: j.created_at):
            columns[job.status].append(job)
        return columns

    def _ensure_entry(self, tenant_id: str, job_id: str) -> _BoardEntry:
        key = (tenant_id, job_id)
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None:
            return entry

        job = self._client.load_job(tenant_id, job_id)
        with self._lock:
            return self._entries.setdefault(key, _BoardEntry(committed=job, working=job))

    # ------------------------------------------------------------------
    # Moving jobs
    # ------------------------------------------------------------------

    def move_job(
        self,
        tenant_id: str,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus
    ) -> MoveTicket:
        """
        Move a job to another column, optimistically.

        Validation failures are raised synchronously and change nothing.
        Otherwise the board reflects the move before this returns, and the
        returned ticket resolves once the commit settles.

        Args:
            tenant_id: Tenant that owns the job
            job_id: Job to move
            from_status: Column the job was dragged from
            to_status: Column it was dropped on

        Returns:
            MoveTicket (already resolved for same-column drops)

        Raises:
            InvalidTransitionError: Illegal move, or the job is not in from_status
            PaymentRequiredError: Completion without a fully paid invoice
            JobNotFoundError: Unknown job
            PersistenceError: Gateway failure while loading the job or invoice
        """
        ensure_valid_transition(from_status, to_status)
        entry = self._ensure_entry(tenant_id, job_id)
        self._check_current(entry, from_status, to_status)

        ticket = MoveTicket(tenant_id, job_id, from_status, to_status)

        if from_status is to_status:
            ticket._resolve(OperationResult.create_succeeded(
                self.OPERATION, entry.working.to_dict(), message="Job already in this column"
            ))
            return ticket

        if to_status is JobStatus.COMPLETED:
            self._ensure_paid(entry.working)

        events: List[BoardEvent] = []
        superseded: Optional[MoveTicket] = None
        start_commit = False

        with self._lock:
            # Status may have moved while the invoice was being checked
            self._check_current(entry, from_status, to_status, locked=True)

            if entry.reconciling:
                superseded = entry.queued
                entry.queued = ticket
                logger.info(
                    f"Job {job_id[:8]} is reconciling; queued move "
                    f"{from_status.value} -> {to_status.value}"
                )
            else:
                events.append(self._apply_locked(entry, ticket))
                start_commit = True

        if superseded is not None:
            self._supersede(superseded, entry)

        self._emit(events)

        if start_commit:
            self._start_commit(ticket)

        return ticket

    def _check_current(self, entry: _BoardEntry, from_status: JobStatus,
                       to_status: JobStatus, locked: bool = False) -> None:
        current = entry.working if locked else self._read_working(entry)
        if current.status is not from_status:
            raise InvalidTransitionError(
                from_status.value,
                to_status.value,
                f"Cannot move job {current.display_number} from '{from_status.value}': "
                f"it is currently '{current.status.value}'",
            )

    def _read_working(self, entry: _BoardEntry) -> Job:
        with self._lock:
            return entry.working

    def _ensure_paid(self, job: Job) -> None:
        """
        Completion gate: the job's invoice must exist with zero balance.

        Raises:
            PaymentRequiredError: With the outstanding balance and invoice id
        """
        invoice = self._client.find_invoice_by_job(job.tenant_id, job.id)
        if invoice is None:
            logger.info(f"Completion of job {job.id[:8]} refused: no invoice")
            raise PaymentRequiredError(
                job.id, ZERO, invoice_id=None, job_number=job.job_number or None,
                currency=self._currency,
            )
        if not invoice.is_paid:
            logger.info(
                f"Completion of job {job.id[:8]} refused: balance {invoice.balance} outstanding"
            )
            raise PaymentRequiredError(
                job.id, invoice.balance, invoice_id=invoice.id,
                job_number=job.job_number or None, currency=self._currency,
            )

    def _apply_locked(self, entry: _BoardEntry, ticket: MoveTicket) -> BoardEvent:
        """Optimistic apply. Caller holds the lock."""
        previous = entry.working
        target = previous.with_status(ticket.to_status)

        entry.working = target
        entry.version += 1
        entry.in_flight = ticket

        ticket.version = entry.version
        ticket._snapshot = previous
        ticket._target = target

        return BoardEvent("applied", target, previous.status, entry.version)

    def _supersede(self, ticket: MoveTicket, entry: _BoardEntry) -> None:
        logger.info(
            f"Queued move {ticket.from_status.value} -> {ticket.to_status.value} "
            f"of job {ticket.job_id[:8]} superseded"
        )
        job = self._read_working(entry)
        self._emit([BoardEvent("superseded", job, ticket.from_status, entry.version)])
        ticket._resolve(OperationResult.create_superseded(self.OPERATION, job.to_dict()))

    # ------------------------------------------------------------------
    # Commit threads
    # ------------------------------------------------------------------

    def _start_commit(self, ticket: MoveTicket) -> None:
        name = f"Commit-{ticket.job_id[:8]}"
        thread = threading.Thread(
            target=self._commit_thread_main,
            args=(ticket,),
            name=name,
            daemon=True
        )
        with self._threads_lock:
            self._active_threads[f"{ticket.job_id}:{ticket.version}"] = thread
        thread.start()

    def _commit_thread_main(self, ticket: MoveTicket) -> None:
        """
        Persist one applied move, then settle it.

        Runs on its own thread. Never raises: every outcome is turned into a
        settle() call so the job cannot stay reconciling forever.
        """
        set_thread_name(f"Commit-{ticket.job_id[:8]}")
        job_logger = get_job_logger(ticket.job_id)
        job_logger.info(
            f"Committing {ticket.from_status.value} -> {ticket.to_status.value} (v{ticket.version})"
        )

        error: Optional[GarageBoardError] = None
        pending: Optional[PendingCall] = None
        try:
            self._client.save_job_status(ticket._target)
        except PersistenceTimeoutError as e:
            error = e
            pending = e.pending_call
        except GarageBoardError as e:
            error = e
        except Exception as e:
            job_logger.error(f"Unexpected commit failure: {e}", exc_info=True)
            error = PersistenceError("save_job_status", f"Unexpected commit failure: {e}")

        try:
            self._settle(ticket, error, hold=pending is not None)
            if pending is not None:
                self._resolve_late_write(ticket, pending)
        finally:
            with self._threads_lock:
                self._active_threads.pop(f"{ticket.job_id}:{ticket.version}", None)

    def _settle(self, ticket: MoveTicket, error: Optional[GarageBoardError], hold: bool = False) -> None:
        """
        Commit or roll back the shadow state, then resolve the ticket.

        With ``hold`` the job stays reconciling after the rollback: a timed-out
        write may still land, and queued moves wait until it is resolved.
        """
        job_logger = get_job_logger(ticket.job_id)
        key = (ticket.tenant_id, ticket.job_id)
        events: List[BoardEvent] = []
        next_ticket: Optional[MoveTicket] = None
        rejected: Optional[Tuple[MoveTicket, InvalidTransitionError]] = None

        with self._lock:
            entry = self._entries.get(key)

            if entry is None or entry.in_flight is not ticket or entry.version != ticket.version:
                job_logger.warning(
                    f"Discarding stale commit outcome for v{ticket.version}"
                )
                stale = True
            else:
                stale = False
                if error is None:
                    entry.committed = entry.working
                    events.append(BoardEvent(
                        "committed", entry.working, ticket.from_status, entry.version
                    ))
                    job_logger.info(f"Commit ok: now {entry.working.status.value}")
                else:
                    # Restore the exact pre-move snapshot, never a refetch
                    entry.working = ticket._snapshot
                    entry.committed = ticket._snapshot
                    entry.version += 1
                    events.append(BoardEvent(
                        "reverted", entry.working, ticket.to_status, entry.version, error
                    ))
                    job_logger.warning(
                        f"Commit failed, reverted to {entry.working.status.value}: {error.message}"
                    )

                if hold:
                    job_logger.info("Holding job until the timed-out write resolves")
                else:
                    entry.in_flight = None
                    next_ticket, rejected = self._dequeue_locked(entry, events)

            final_job = entry.working if entry is not None else ticket._snapshot

        self._emit(events)

        if stale:
            ticket._resolve(OperationResult.create_superseded(self.OPERATION, final_job.to_dict()))
        elif error is None:
            ticket._resolve(OperationResult.create_succeeded(self.OPERATION, ticket._target.to_dict()))
        else:
            ticket._resolve(OperationResult.create_failed(self.OPERATION, error), error)

        self._run_dequeued(next_ticket, rejected)

    def _dequeue_locked(
        self, entry: _BoardEntry, events: List[BoardEvent]
    ) -> Tuple[Optional[MoveTicket], Optional[Tuple[MoveTicket, InvalidTransitionError]]]:
        """Apply or reject the queued move of a settled job. Caller holds the lock."""
        queued, entry.queued = entry.queued, None
        if queued is None:
            return None, None

        current = entry.working.status
        if queued.from_status is current and is_valid_transition(current, queued.to_status):
            events.append(self._apply_locked(entry, queued))
            return queued, None

        return None, (queued, InvalidTransitionError(
            queued.from_status.value,
            queued.to_status.value,
            f"Cannot move job from '{queued.from_status.value}': "
            f"it is currently '{current.value}'",
        ))

    def _run_dequeued(
        self,
        next_ticket: Optional[MoveTicket],
        rejected: Optional[Tuple[MoveTicket, InvalidTransitionError]],
    ) -> None:
        if rejected is not None:
            queued_ticket, reason = rejected
            get_job_logger(queued_ticket.job_id).info(
                f"Queued move rejected after settle: {reason.message}"
            )
            queued_ticket._resolve(OperationResult.create_failed(self.OPERATION, reason), reason)

        if next_ticket is not None:
            self._start_commit(next_ticket)

    def _resolve_late_write(self, ticket: MoveTicket, pending: PendingCall) -> None:
        """
        Wait for a timed-out status write and make storage match the board.

        If the write landed after the rollback, the pre-move status is
        written back. If that also fails, storage holds the moved status, so
        the board adopts it and reports it as committed.
        """
        job_logger = get_job_logger(ticket.job_id)
        pending.wait()

        adopted: Optional[Job] = None
        if pending.succeeded:
            job_logger.warning(
                f"Timed-out write of '{ticket.to_status.value}' landed late; "
                f"restoring '{ticket._snapshot.status.value}'"
            )
            if not self._write_back(ticket._snapshot):
                job_logger.error(
                    f"Could not restore '{ticket._snapshot.status.value}'; "
                    f"keeping stored '{ticket.to_status.value}'"
                )
                adopted = ticket._target
        else:
            job_logger.info("Timed-out write did not land")

        key = (ticket.tenant_id, ticket.job_id)
        events: List[BoardEvent] = []
        next_ticket: Optional[MoveTicket] = None
        rejected: Optional[Tuple[MoveTicket, InvalidTransitionError]] = None

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.in_flight is ticket:
                if adopted is not None:
                    entry.working = adopted
                    entry.committed = adopted
                    entry.version += 1
                    events.append(BoardEvent(
                        "committed", adopted, ticket.from_status, entry.version
                    ))
                entry.in_flight = None
                next_ticket, rejected = self._dequeue_locked(entry, events)

        self._emit(events)
        self._run_dequeued(next_ticket, rejected)

    def _write_back(self, job: Job) -> bool:
        """Persist ``job``'s status. True only if the write is known to have landed."""
        try:
            self._client.save_job_status(job)
            return True
        except PersistenceTimeoutError as e:
            if e.pending_call is None:
                return False
            e.pending_call.wait()
            return e.pending_call.succeeded
        except GarageBoardError as e:
            get_job_logger(job.id).error(f"Write-back failed: {e.message}")
            return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def pending_commits(self) -> int:
        with self._threads_lock:
            return sum(1 for t in self._active_threads.values() if t.is_alive())

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """
        Wait for in-flight commits to settle.

        Args:
            timeout_per_thread: Max seconds to wait per commit thread
        """
        with self._threads_lock:
            active = list(self._active_threads.items())

        if not active:
            logger.info("No commits in flight")
            return

        logger.info(f"Waiting for {len(active)} commits to settle...")
        for name, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Commit {name[:8]} did not settle in time")

        logger.info("Board coordinator shutdown complete")
