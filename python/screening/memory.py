"""In-memory implementations of the screening stores.

Used by the test-suite and for running the API without a database. All
data lives in process memory and is lost on restart.
"""

import copy
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from screening.models import (
    JobState,
    ScreeningJob,
    ScreeningResult,
    Watchlist,
    parse_watchlist_entries,
    utcnow,
)


class MemoryWatchlistStore:
    """Watchlists keyed by (type, source); re-import swaps the whole list."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._watchlists: Dict[tuple, Watchlist] = {}

    def list_all(self) -> List[Watchlist]:
        with self._lock:
            return sorted(self._watchlists.values(), key=lambda w: (w.type, w.source))

    def bulk_import(
        self,
        watchlist_type: str,
        source: str,
        entries: Iterable[Dict[str, Any]],
        name: Optional[str] = None
    ) -> Watchlist:
        # Parse everything before touching the store so a bad entry leaves
        # the previous list in place.
        parsed = parse_watchlist_entries(entries)
        watchlist = Watchlist(
            name=name or f"{watchlist_type}_{source}",
            type=watchlist_type,
            source=source,
            entries=parsed,
        )
        with self._lock:
            self._watchlists[(watchlist_type, source)] = watchlist
        return watchlist


class MemoryResultStore:
    """Screening results indexed by id, in insertion order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: Dict[str, ScreeningResult] = {}

    def save(self, result: ScreeningResult) -> ScreeningResult:
        stored = copy.deepcopy(result)
        with self._lock:
            self._results[stored.id] = stored
        return copy.deepcopy(stored)

    def get(self, result_id: str) -> Optional[ScreeningResult]:
        with self._lock:
            result = self._results.get(result_id)
            return copy.deepcopy(result) if result else None

    def update_review(
        self,
        result_id: str,
        reviewed_by: str,
        review_notes: Optional[str],
        reviewed_at: datetime
    ) -> Optional[ScreeningResult]:
        with self._lock:
            result = self._results.get(result_id)
            if result is None:
                return None
            result.is_false_positive = True
            result.reviewed_by = reviewed_by
            result.review_notes = review_notes
            result.reviewed_at = reviewed_at
            return copy.deepcopy(result)

    def list_by_entity(self, entity_id: str) -> List[ScreeningResult]:
        with self._lock:
            results = [r for r in self._results.values() if r.entity_id == entity_id]
        # Newest insertion first, then a stable sort on timestamp
        results.reverse()
        results.sort(key=lambda r: r.screened_at, reverse=True)
        return [copy.deepcopy(r) for r in results]


class MemoryJobStore:
    """FIFO job queue guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: Dict[str, ScreeningJob] = {}

    def enqueue(self, job_name: str, payload: Dict[str, Any], max_attempts: int) -> ScreeningJob:
        job = ScreeningJob(job_name=job_name, payload=copy.deepcopy(payload), max_attempts=max_attempts)
        with self._lock:
            self._jobs[job.id] = job
        return copy.deepcopy(job)

    def claim_next(self, job_name: str) -> Optional[ScreeningJob]:
        with self._lock:
            for job in self._jobs.values():
                if job.job_name == job_name and job.state == JobState.SUBMITTED:
                    job.state = JobState.RUNNING
                    job.started_at = utcnow()
                    return copy.deepcopy(job)
        return None

    def record_attempt(self, job_id: str) -> int:
        with self._lock:
            job = self._jobs[job_id]
            job.attempts += 1
            return job.attempts

    def complete(self, job_id: str, result_id: Optional[str]) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.state = JobState.COMPLETED
            job.result_id = result_id
            job.last_error = None
            job.finished_at = utcnow()

    def fail(self, job_id: str, error: str) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.state = JobState.FAILED
            job.last_error = error
            job.finished_at = utcnow()

    def get(self, job_id: str) -> Optional[ScreeningJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_by_state(self, state: JobState, limit: int = 100) -> List[ScreeningJob]:
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values() if j.state == state]
        return jobs[:limit]

    def requeue_stuck(self, started_before: datetime) -> int:
        requeued = 0
        with self._lock:
            for job in self._jobs.values():
                if job.state != JobState.RUNNING or job.started_at is None:
                    continue
                if job.started_at >= started_before:
                    continue
                if job.attempts < job.max_attempts:
                    job.state = JobState.SUBMITTED
                    job.started_at = None
                    requeued += 1
                else:
                    job.state = JobState.FAILED
                    job.last_error = "Job exceeded its running time and has no attempts left"
                    job.finished_at = utcnow()
        return requeued

    def remove(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state != JobState.SUBMITTED:
                return False
            del self._jobs[job_id]
            return True


class MemoryAuditTrail:
    """Audit entries kept in a list, oldest first."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.entries: List[Dict[str, Any]] = []

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        with self._lock:
            self.entries.append({
                "timestamp": utcnow(),
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "actor": actor,
                "details": copy.deepcopy(details) if details else None,
            })

    def search(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        with self._lock:
            found = [
                copy.deepcopy(entry) for entry in reversed(self.entries)
                if (not resource_type or entry["resource_type"] == resource_type)
                and (not resource_id or entry["resource_id"] == resource_id)
            ]
        return found[:limit]
