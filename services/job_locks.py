"""
Per-job lock registry.

Estimate edits, estimate locking and invoice generation all write the same
estimate. Services that share one JobLocks instance serialize those writes
per job, so an invoice can never be cut while an item edit is half-written.
"""

import threading
from typing import Dict, Tuple


class JobLocks:
    """Lazily created lock per (tenant, job). Safe to share between services."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def for_job(self, tenant_id: str, job_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault((tenant_id, job_id), threading.Lock())
