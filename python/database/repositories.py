"""
Repository Pattern for Screening Database Operations

SQLAlchemy implementations of the store protocols in screening.stores.
Each public method runs in its own session_scope, so every call is one
transaction. Driver and pool failures surface as TransientStoreError.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

from sqlalchemy import select, func, update, delete, and_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from database.connection import DatabaseSessionProvider
from database.models import (
    WatchlistRecord,
    WatchlistEntryRecord,
    ScreeningResultRecord,
    ScreeningMatchRecord,
    ScreeningJobRecord,
    AuditLogRecord,
)
from screening.errors import TransientStoreError
from screening.models import (
    JobState,
    ScreeningJob,
    ScreeningMatch,
    ScreeningResult,
    Watchlist,
    WatchlistEntry,
    parse_watchlist_entries,
    utcnow,
)

logger = logging.getLogger(__name__)


def _to_uuid(value: Any) -> Optional[uuid.UUID]:
    """Parse an id string; None for anything that is not a UUID."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _str_or_none(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class _SqlStore:
    """Shared session handling and error translation."""

    def __init__(self, provider: DatabaseSessionProvider):
        self.provider = provider

    @contextmanager
    def _session(self, operation: str) -> Generator[Session, None, None]:
        try:
            with self.provider.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            raise TransientStoreError(f"Database error during {operation}: {e}") from e


# ============================================
# WATCHLIST REPOSITORY
# ============================================

class SqlWatchlistStore(_SqlStore):
    """Repository for watchlists and their entries."""

    def list_all(self) -> List[Watchlist]:
        with self._session("watchlist load") as session:
            query = select(WatchlistRecord).order_by(WatchlistRecord.type, WatchlistRecord.source)
            return [self._to_domain(r) for r in session.execute(query).scalars().all()]

    def bulk_import(
        self,
        watchlist_type: str,
        source: str,
        entries: Iterable[Dict[str, Any]],
        name: Optional[str] = None
    ) -> Watchlist:
        """
        Replace the watchlist for (type, source) with a new set of entries.

        The old list and its entries are deleted and the new ones inserted
        in a single transaction; readers see either the old list or the new
        one.

        Raises:
            ValidationError: If any entry is malformed (nothing is changed)
            TransientStoreError: On database failure (nothing is changed)
        """
        parsed = parse_watchlist_entries(entries)

        with self._session("watchlist import") as session:
            existing = session.execute(
                select(WatchlistRecord).where(and_(
                    WatchlistRecord.type == watchlist_type,
                    WatchlistRecord.source == source
                ))
            ).scalar_one_or_none()
            if existing is not None:
                session.delete(existing)
                session.flush()

            record = WatchlistRecord(
                name=name or f"{watchlist_type}_{source}",
                type=watchlist_type,
                source=source,
                entry_count=len(parsed),
                created_at=utcnow(),
            )
            record.entries = [
                WatchlistEntryRecord(
                    entry_ref=entry.id,
                    position=position,
                    name=entry.name,
                    country=entry.country,
                    role=entry.role,
                    attributes=dict(entry.attributes) or None,
                )
                for position, entry in enumerate(parsed)
            ]
            session.add(record)
            session.flush()

            logger.info(
                f"Imported watchlist {record.name}: type={watchlist_type} source={source} "
                f"entries={len(parsed)} replaced={existing is not None}"
            )
            return self._to_domain(record)

    @staticmethod
    def _to_domain(record: WatchlistRecord) -> Watchlist:
        return Watchlist(
            id=str(record.id),
            name=record.name,
            type=record.type,
            source=record.source,
            created_at=_as_utc(record.created_at),
            entries=tuple(
                WatchlistEntry(
                    id=e.entry_ref,
                    name=e.name,
                    country=e.country,
                    role=e.role,
                    attributes=dict(e.attributes or {}),
                )
                for e in record.entries
            ),
        )


# ============================================
# SCREENING RESULT REPOSITORY
# ============================================

class SqlResultStore(_SqlStore):
    """Repository for screening results and match evidence."""

    def save(self, result: ScreeningResult) -> ScreeningResult:
        """Insert a result with all of its matches in one transaction."""
        with self._session("result save") as session:
            record = ScreeningResultRecord(
                id=_to_uuid(result.id),
                entity_id=result.entity_id,
                entity_type=result.entity_type,
                screening_data=result.screening_data,
                overall_risk_score=result.overall_risk_score,
                status=result.status,
                is_false_positive=result.is_false_positive,
                reviewed_by=result.reviewed_by,
                review_notes=result.review_notes,
                reviewed_at=result.reviewed_at,
                job_id=_to_uuid(result.job_id),
                screened_at=result.screened_at,
            )
            record.matches = [
                ScreeningMatchRecord(
                    id=_to_uuid(match.id),
                    position=position,
                    watchlist_id=match.watchlist_id,
                    matched_field=match.matched_field,
                    match_score=match.match_score,
                    risk_level=match.risk_level,
                    match_details=match.match_details,
                )
                for position, match in enumerate(result.matches)
            ]
            session.add(record)
            session.flush()
            return self._to_domain(record)

    def get(self, result_id: str) -> Optional[ScreeningResult]:
        key = _to_uuid(result_id)
        if key is None:
            return None
        with self._session("result lookup") as session:
            record = session.get(ScreeningResultRecord, key)
            return self._to_domain(record) if record else None

    def update_review(
        self,
        result_id: str,
        reviewed_by: str,
        review_notes: Optional[str],
        reviewed_at: datetime
    ) -> Optional[ScreeningResult]:
        key = _to_uuid(result_id)
        if key is None:
            return None
        with self._session("result review") as session:
            record = session.get(ScreeningResultRecord, key)
            if record is None:
                return None
            record.is_false_positive = True
            record.reviewed_by = reviewed_by
            record.review_notes = review_notes
            record.reviewed_at = reviewed_at
            session.flush()
            return self._to_domain(record)

    def list_by_entity(self, entity_id: str) -> List[ScreeningResult]:
        with self._session("history lookup") as session:
            query = (
                select(ScreeningResultRecord)
                .where(ScreeningResultRecord.entity_id == entity_id)
                .order_by(ScreeningResultRecord.screened_at.desc(), ScreeningResultRecord.created_at.desc())
            )
            return [self._to_domain(r) for r in session.execute(query).scalars().all()]

    @staticmethod
    def _to_domain(record: ScreeningResultRecord) -> ScreeningResult:
        return ScreeningResult(
            id=str(record.id),
            entity_id=record.entity_id,
            entity_type=record.entity_type,
            screening_data=dict(record.screening_data or {}),
            overall_risk_score=record.overall_risk_score,
            status=record.status,
            is_false_positive=record.is_false_positive,
            reviewed_by=record.reviewed_by,
            review_notes=record.review_notes,
            reviewed_at=_as_utc(record.reviewed_at),
            job_id=_str_or_none(record.job_id),
            screened_at=_as_utc(record.screened_at),
            matches=[
                ScreeningMatch(
                    id=str(m.id),
                    screening_result_id=str(record.id),
                    watchlist_id=m.watchlist_id,
                    matched_field=m.matched_field,
                    match_score=m.match_score,
                    risk_level=m.risk_level,
                    match_details=dict(m.match_details or {}),
                )
                for m in record.matches
            ],
        )


# ============================================
# JOB QUEUE REPOSITORY
# ============================================

class SqlJobStore(_SqlStore):
    """Durable screening job queue backed by the screening_jobs table."""

    def enqueue(self, job_name: str, payload: Dict[str, Any], max_attempts: int) -> ScreeningJob:
        with self._session("job enqueue") as session:
            last = session.execute(select(func.max(ScreeningJobRecord.sequence))).scalar()
            record = ScreeningJobRecord(
                job_name=job_name,
                payload=payload,
                state=JobState.SUBMITTED,
                attempts=0,
                max_attempts=max_attempts,
                sequence=(last or 0) + 1,
                submitted_at=utcnow(),
            )
            session.add(record)
            session.flush()
            return self._to_domain(record)

    def claim_next(self, job_name: str) -> Optional[ScreeningJob]:
        """
        Claim the oldest submitted job.

        The state change is a conditional UPDATE so two workers never run
        the same job; on PostgreSQL the candidate row is also locked with
        SKIP LOCKED to avoid contention.
        """
        with self._session("job claim") as session:
            while True:
                candidate = session.execute(
                    select(ScreeningJobRecord.id)
                    .where(and_(
                        ScreeningJobRecord.job_name == job_name,
                        ScreeningJobRecord.state == JobState.SUBMITTED
                    ))
                    .order_by(ScreeningJobRecord.sequence, ScreeningJobRecord.submitted_at)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).scalar_one_or_none()
                if candidate is None:
                    return None

                claimed = session.execute(
                    update(ScreeningJobRecord)
                    .where(and_(
                        ScreeningJobRecord.id == candidate,
                        ScreeningJobRecord.state == JobState.SUBMITTED
                    ))
                    .values(state=JobState.RUNNING, started_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 1:
                    record = session.get(ScreeningJobRecord, candidate, populate_existing=True)
                    return self._to_domain(record)

    def record_attempt(self, job_id: str) -> int:
        key = _to_uuid(job_id)
        with self._session("job attempt") as session:
            session.execute(
                update(ScreeningJobRecord)
                .where(ScreeningJobRecord.id == key)
                .values(attempts=ScreeningJobRecord.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            return session.execute(
                select(ScreeningJobRecord.attempts).where(ScreeningJobRecord.id == key)
            ).scalar_one()

    def complete(self, job_id: str, result_id: Optional[str]) -> None:
        self._finish(job_id, JobState.COMPLETED, result_id=_to_uuid(result_id), last_error=None)

    def fail(self, job_id: str, error: str) -> None:
        self._finish(job_id, JobState.FAILED, last_error=error)

    def _finish(self, job_id: str, state: JobState, **values) -> None:
        with self._session(f"job {state.value}") as session:
            session.execute(
                update(ScreeningJobRecord)
                .where(ScreeningJobRecord.id == _to_uuid(job_id))
                .values(state=state, finished_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )

    def get(self, job_id: str) -> Optional[ScreeningJob]:
        key = _to_uuid(job_id)
        if key is None:
            return None
        with self._session("job lookup") as session:
            record = session.get(ScreeningJobRecord, key)
            return self._to_domain(record) if record else None

    def list_by_state(self, state: JobState, limit: int = 100) -> List[ScreeningJob]:
        with self._session("job listing") as session:
            query = (
                select(ScreeningJobRecord)
                .where(ScreeningJobRecord.state == state)
                .order_by(ScreeningJobRecord.sequence)
                .limit(limit)
            )
            return [self._to_domain(r) for r in session.execute(query).scalars().all()]

    def requeue_stuck(self, started_before: datetime) -> int:
        with self._session("stuck job requeue") as session:
            stuck = session.execute(
                select(ScreeningJobRecord).where(and_(
                    ScreeningJobRecord.state == JobState.RUNNING,
                    ScreeningJobRecord.started_at < started_before
                ))
            ).scalars().all()

            requeued = 0
            for record in stuck:
                if record.attempts < record.max_attempts:
                    record.state = JobState.SUBMITTED
                    record.started_at = None
                    requeued += 1
                else:
                    record.state = JobState.FAILED
                    record.last_error = "Job exceeded its running time and has no attempts left"
                    record.finished_at = utcnow()
            return requeued

    def remove(self, job_id: str) -> bool:
        key = _to_uuid(job_id)
        if key is None:
            return False
        with self._session("job removal") as session:
            deleted = session.execute(
                delete(ScreeningJobRecord)
                .where(and_(
                    ScreeningJobRecord.id == key,
                    ScreeningJobRecord.state == JobState.SUBMITTED
                ))
                .execution_options(synchronize_session=False)
            )
            return deleted.rowcount == 1

    @staticmethod
    def _to_domain(record: ScreeningJobRecord) -> ScreeningJob:
        return ScreeningJob(
            id=str(record.id),
            job_name=record.job_name,
            payload=dict(record.payload or {}),
            state=record.state,
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            last_error=record.last_error,
            result_id=_str_or_none(record.result_id),
            submitted_at=_as_utc(record.submitted_at),
            started_at=_as_utc(record.started_at),
            finished_at=_as_utc(record.finished_at),
        )


# ============================================
# AUDIT REPOSITORY
# ============================================

class SqlAuditTrail(_SqlStore):
    """Append-only audit log."""

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        with self._session("audit log") as session:
            session.add(AuditLogRecord(
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                actor=actor,
                details=details,
                timestamp=utcnow(),
            ))

    def search(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Most recent audit entries, optionally filtered by resource."""
        conditions = []
        if resource_type:
            conditions.append(AuditLogRecord.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLogRecord.resource_id == resource_id)

        with self._session("audit search") as session:
            query = select(AuditLogRecord)
            if conditions:
                query = query.where(and_(*conditions))
            query = query.order_by(AuditLogRecord.timestamp.desc()).limit(limit)
            return [
                {
                    "timestamp": _as_utc(log.timestamp),
                    "action": log.action,
                    "resource_type": log.resource_type,
                    "resource_id": log.resource_id,
                    "actor": log.actor,
                    "details": log.details,
                }
                for log in session.execute(query).scalars().all()
            ]
