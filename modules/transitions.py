"""
Job status transition policy.

Pure rules, no I/O: which status moves are legal on the board. Jobs move one
column at a time, forward or back, except that COMPLETED is final. Staying in
the same column is always allowed.

The policy only looks at statuses. Whether a job may actually be COMPLETED
(invoice exists and is fully paid) is checked by the board coordinator
before it asks for the transition.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from core.exceptions import InvalidTransitionError
from models.job import JobStatus

RECEIVED = JobStatus.RECEIVED
WORKING = JobStatus.WORKING
READY = JobStatus.READY
COMPLETED = JobStatus.COMPLETED

VALID_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    RECEIVED: frozenset({RECEIVED, WORKING}),
    WORKING: frozenset({RECEIVED, WORKING, READY}),
    READY: frozenset({WORKING, READY, COMPLETED}),
    COMPLETED: frozenset({COMPLETED}),
}


def is_valid_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Return True if a job in ``from_status`` may be moved to ``to_status``."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def allowed_targets(status: JobStatus) -> FrozenSet[JobStatus]:
    """Columns a job in ``status`` may be dropped on."""
    return VALID_TRANSITIONS.get(status, frozenset())


def ensure_valid_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Raise if the move is not allowed.

    Raises:
        InvalidTransitionError: Naming both endpoints
    """
    if is_valid_transition(from_status, to_status):
        return
    if from_status is COMPLETED:
        reason = f"Cannot move job from 'completed' to '{to_status.value}': completed jobs are final"
    else:
        reason = None
    raise InvalidTransitionError(from_status.value, to_status.value, reason)
