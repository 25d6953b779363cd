"""
Storage interfaces consumed by the screening core.

The orchestrator and job runner only depend on these protocols, so the
pipeline runs against the SQLAlchemy repositories in production and the
in-memory stores in tests.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from screening.models import (
    JobState,
    ScreeningJob,
    ScreeningResult,
    Watchlist,
)


class WatchlistStore(Protocol):
    """Read access to reference lists plus wholesale replacement."""

    def list_all(self) -> List[Watchlist]:
        ...

    def bulk_import(
        self,
        watchlist_type: str,
        source: str,
        entries: Iterable[Dict[str, Any]],
        name: Optional[str] = None
    ) -> Watchlist:
        """Replace the watchlist identified by (type, source) in one commit."""
        ...


class ResultStore(Protocol):
    """Persistence for screening results and their matches."""

    def save(self, result: ScreeningResult) -> ScreeningResult:
        """Persist a result and all of its matches atomically."""
        ...

    def get(self, result_id: str) -> Optional[ScreeningResult]:
        ...

    def update_review(
        self,
        result_id: str,
        reviewed_by: str,
        review_notes: Optional[str],
        reviewed_at: datetime
    ) -> Optional[ScreeningResult]:
        """Flag a result as a false positive. Returns None if unknown."""
        ...

    def list_by_entity(self, entity_id: str) -> List[ScreeningResult]:
        """All results for an entity, most recent first."""
        ...


class JobStore(Protocol):
    """Durable, ordered queue of screening jobs."""

    def enqueue(self, job_name: str, payload: Dict[str, Any], max_attempts: int) -> ScreeningJob:
        ...

    def claim_next(self, job_name: str) -> Optional[ScreeningJob]:
        """Atomically move the oldest submitted job to running and return it."""
        ...

    def record_attempt(self, job_id: str) -> int:
        """Increment and return the attempt counter."""
        ...

    def complete(self, job_id: str, result_id: Optional[str]) -> None:
        ...

    def fail(self, job_id: str, error: str) -> None:
        ...

    def get(self, job_id: str) -> Optional[ScreeningJob]:
        ...

    def list_by_state(self, state: JobState, limit: int = 100) -> List[ScreeningJob]:
        ...

    def requeue_stuck(self, started_before: datetime) -> int:
        """Return running jobs started before the cutoff to the queue."""
        ...

    def remove(self, job_id: str) -> bool:
        """Delete a job that has not started. False if it is not removable."""
        ...


class AuditTrail(Protocol):
    """Append-only record of screening actions."""

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        ...

    def search(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Most recent entries first, optionally filtered by resource."""
        ...
