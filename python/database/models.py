"""
SQLAlchemy ORM Models for the KYC Entity Screening Service

Column types are portable (Uuid, JSON) so the same schema runs on
PostgreSQL in production and SQLite in tests.

Tables:
1. watchlists - Named reference lists, one per (type, source)
2. watchlist_entries - Listed persons/organizations (many-to-one)
3. screening_results - Verdict of one screening execution
4. screening_matches - Match evidence for a result (immutable once written)
5. screening_jobs - Durable queue of submitted screenings
6. audit_logs - System-wide audit trail
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Enum,
    JSON, Uuid
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

from screening.models import JobState, RiskLevel, ScreeningStatus

# Base class for all models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False
    )


# ============================================
# WATCHLIST MODELS
# ============================================

class WatchlistRecord(Base, TimestampMixin):
    """
    A named reference list of sanctioned persons, PEPs or adverse-media
    subjects. Re-importing the same (type, source) replaces the row and all
    of its entries.
    """
    __tablename__ = "watchlists"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Raw strings; unrecognized values score with the UNKNOWN weight
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entries: Mapped[List["WatchlistEntryRecord"]] = relationship(
        "WatchlistEntryRecord",
        back_populates="watchlist",
        cascade="all, delete-orphan",
        order_by="WatchlistEntryRecord.position",
        lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint('type', 'source', name='uq_watchlist_type_source'),
    )

    def __repr__(self) -> str:
        return f"<WatchlistRecord(id={self.id}, type='{self.type}', source='{self.source}')>"


class WatchlistEntryRecord(Base):
    """A single listed person or organization."""
    __tablename__ = "watchlist_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    watchlist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("watchlists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Identifier from the imported list (or generated)
    entry_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    # Order within the imported list; ties in match scores keep this order
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    attributes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    watchlist: Mapped["WatchlistRecord"] = relationship(
        "WatchlistRecord",
        back_populates="entries"
    )

    __table_args__ = (
        Index('ix_watchlist_entry_position', 'watchlist_id', 'position'),
    )

    def __repr__(self) -> str:
        return f"<WatchlistEntryRecord(id={self.id}, name='{self.name}')>"


# ============================================
# SCREENING MODELS
# ============================================

class ScreeningResultRecord(Base, TimestampMixin):
    """
    Verdict of one screening execution.
    Only the review columns change after insert.
    """
    __tablename__ = "screening_results"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    entity_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Subject attributes as submitted (recognized fields plus extras)
    screening_data: Mapped[dict] = mapped_column(JSON, nullable=False)

    overall_risk_score: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[ScreeningStatus] = mapped_column(
        Enum(ScreeningStatus),
        nullable=False,
        index=True
    )

    # Review disposition
    is_false_positive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Job that produced this result (duplicates on re-delivery share it)
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)

    screened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )

    matches: Mapped[List["ScreeningMatchRecord"]] = relationship(
        "ScreeningMatchRecord",
        back_populates="result",
        cascade="all, delete-orphan",
        order_by="ScreeningMatchRecord.position",
        lazy="selectin"
    )

    __table_args__ = (
        Index('ix_screening_result_entity_time', 'entity_id', 'screened_at'),
        CheckConstraint(
            'overall_risk_score >= 0 AND overall_risk_score <= 100',
            name='ck_result_score_range'
        ),
    )

    def __repr__(self) -> str:
        return f"<ScreeningResultRecord(id={self.id}, entity_id='{self.entity_id}', status={self.status})>"


class ScreeningMatchRecord(Base):
    """
    Evidence for one candidate match.
    Carries a snapshot of the matched entry so it survives watchlist re-imports.
    """
    __tablename__ = "screening_matches"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    screening_result_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("screening_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Not a foreign key: the watchlist may be replaced after the screening
    watchlist_id: Mapped[str] = mapped_column(String(100), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    matched_field: Mapped[str] = mapped_column(String(50), nullable=False)
    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    risk_level: Mapped[RiskLevel] = mapped_column(Enum(RiskLevel), nullable=False)
    match_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    result: Mapped["ScreeningResultRecord"] = relationship(
        "ScreeningResultRecord",
        back_populates="matches"
    )

    __table_args__ = (
        CheckConstraint('match_score >= 0 AND match_score <= 100', name='ck_match_score_range'),
    )

    def __repr__(self) -> str:
        return f"<ScreeningMatchRecord(id={self.id}, field='{self.matched_field}', score={self.match_score})>"


class ScreeningJobRecord(Base, TimestampMixin):
    """
    Durable queue record for a submitted screening.
    Jobs are claimed in submission order.
    """
    __tablename__ = "screening_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    state: Mapped[JobState] = mapped_column(
        Enum(JobState),
        nullable=False,
        default=JobState.SUBMITTED,
        index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    # Monotonic submission order for FIFO claiming
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_job_claim', 'job_name', 'state', 'sequence'),
        CheckConstraint('attempts >= 0', name='ck_job_attempts'),
    )

    def __repr__(self) -> str:
        return f"<ScreeningJobRecord(id={self.id}, state={self.state}, attempts={self.attempts})>"


# ============================================
# AUDIT MODELS
# ============================================

class AuditLogRecord(Base):
    """
    System-wide audit trail.
    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Timestamp (no updated_at - audit logs are immutable)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
    )

    def __repr__(self) -> str:
        return f"<AuditLogRecord(id={self.id}, action={self.action}, resource='{self.resource_type}')>"
