"""
Operation result models.

Every outward operation of the lifecycle service returns an OperationResult
so the UI layer can render success and failure the same way, without
catching exceptions itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

from core.exceptions import GarageBoardError


class ResultStatus(Enum):
    """
    Outcome of an operation.

    Lifecycle (board moves only):
        PENDING -> (SUCCEEDED | FAILED | SUPERSEDED)
    """

    PENDING = "pending"
    """Applied optimistically, commit still in flight."""

    SUCCEEDED = "succeeded"
    """Operation completed and was persisted."""

    FAILED = "failed"
    """Operation rejected or persistence failed; state unchanged."""

    SUPERSEDED = "superseded"
    """A newer move of the same job replaced this one before it ran."""


@dataclass
class OperationResult:
    """
    Typed success/failure envelope.

    ``payload`` holds the affected entity as a dict on success. On failure,
    ``error_code`` is the exception class name and ``details`` carries the
    context the UI needs (e.g. outstanding balance for PaymentRequiredError).
    """

    operation: str
    status: ResultStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCEEDED

    @classmethod
    def create_succeeded(cls, operation: str, payload: Optional[Dict[str, Any]] = None,
                         message: str = "") -> "OperationResult":
        return cls(
            operation=operation,
            status=ResultStatus.SUCCEEDED,
            payload=payload or {},
            message=message,
        )

    @classmethod
    def create_failed(cls, operation: str, error: GarageBoardError) -> "OperationResult":
        """
        Wrap an application error.

        Args:
            operation: Name of the operation that failed
            error: The raised GarageBoardError

        Returns:
            OperationResult in FAILED status
        """
        return cls(
            operation=operation,
            status=ResultStatus.FAILED,
            error_code=type(error).__name__,
            message=error.message,
            details=dict(error.details),
            retryable=error.retryable,
        )

    @classmethod
    def create_pending(cls, operation: str, payload: Optional[Dict[str, Any]] = None) -> "OperationResult":
        return cls(operation=operation, status=ResultStatus.PENDING, payload=payload or {})

    @classmethod
    def create_superseded(cls, operation: str, payload: Optional[Dict[str, Any]] = None) -> "OperationResult":
        return cls(
            operation=operation,
            status=ResultStatus.SUPERSEDED,
            payload=payload or {},
            message="Replaced by a newer move of the same job",
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON response body."""
        data: Dict[str, Any] = {
            "operation": self.operation,
            "status": self.status.value,
            "ok": self.ok,
            "payload": self.payload,
            "finished_at": self.finished_at.isoformat(),
        }
        if self.error_code:
            data["error"] = {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
                "retryable": self.retryable,
            }
        elif self.message:
            data["message"] = self.message
        return data
