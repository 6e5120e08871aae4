"""
Job data models.

A Job is one vehicle-service engagement, tracked on the board from intake to
payment. Jobs held by the board are frozen dataclasses: a status change
produces a new Job via ``with_status()``, so the previous snapshot can be
restored verbatim on rollback.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional


class JobStatus(Enum):
    """
    Status of a job on the board.

    Lifecycle:
        RECEIVED <-> WORKING <-> READY -> COMPLETED
    """

    RECEIVED = "received"
    """Vehicle checked in, work not started."""

    WORKING = "working"
    """Mechanic is working on the vehicle."""

    READY = "ready"
    """Work done, vehicle ready for delivery. Invoice is generated here."""

    COMPLETED = "completed"
    """Delivered and paid. Terminal."""

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        """
        Parse a status from a row or request value.

        Raises:
            ValueError: If the value is not a known status
        """
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


_STATUS_LABELS = {
    JobStatus.RECEIVED: "Received",
    JobStatus.WORKING: "Working",
    JobStatus.READY: "Ready for Delivery",
    JobStatus.COMPLETED: "Completed",
}

BOARD_ORDER = (JobStatus.RECEIVED, JobStatus.WORKING, JobStatus.READY, JobStatus.COMPLETED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept datetime objects or ISO strings (with or without 'Z')."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Job:
    """A job card. Belongs to exactly one tenant and one customer/vehicle pair."""

    id: str
    tenant_id: str
    customer_id: str
    vehicle_id: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    mechanic_id: Optional[str] = None
    job_number: str = ""
    complaint: str = ""
    notes: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is JobStatus.COMPLETED

    @property
    def display_number(self) -> str:
        return self.job_number or self.id[:8]

    def with_status(self, status: JobStatus, at: Optional[datetime] = None) -> "Job":
        """
        Return a copy moved to ``status``, stamping lifecycle timestamps.

        ``started_at`` is set the first time the job enters WORKING and
        ``completed_at`` when it enters COMPLETED.
        """
        at = at or utcnow()
        changes: Dict[str, Any] = {"status": status, "updated_at": at}
        if status is JobStatus.WORKING and self.started_at is None:
            changes["started_at"] = at
        if status is JobStatus.COMPLETED and self.completed_at is None:
            changes["completed_at"] = at
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job_number": self.job_number,
            "customer_id": self.customer_id,
            "vehicle_id": self.vehicle_id,
            "mechanic_id": self.mechanic_id,
            "status": self.status.value,
            "status_label": self.status.label,
            "complaint": self.complaint,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        """
        Map a persistence row into a Job.

        Raises:
            KeyError: If an identity column is missing
            ValueError: If the status is unknown
        """
        created_at = parse_timestamp(row.get("created_at")) or utcnow()
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            customer_id=str(row["customer_id"]),
            vehicle_id=str(row["vehicle_id"]),
            status=JobStatus.parse(row.get("status", "received")),
            created_at=created_at,
            updated_at=parse_timestamp(row.get("updated_at")) or created_at,
            mechanic_id=row.get("mechanic_id"),
            job_number=row.get("job_number") or "",
            complaint=row.get("complaint") or "",
            notes=row.get("notes") or "",
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
        )
