"""
Domain types for the screening pipeline.

These are plain dataclasses shared by the matching core, the stores and the
API layer. Persistence classes live in database.models and convert to and
from these types.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from screening.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================
# ENUMS
# ============================================

class WatchlistType(str, PyEnum):
    """Risk category of a watchlist"""
    SANCTIONS = "sanctions"
    PEP = "pep"
    ADVERSE_MEDIA = "adverse_media"
    CUSTOM = "custom"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'WatchlistType':
        """Map a raw type string to a member, UNKNOWN when unrecognized."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class WatchlistSource(str, PyEnum):
    """Publishing authority of a watchlist"""
    OFAC = "ofac"
    UN = "un"
    EU = "eu"
    CUSTOM = "custom"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'WatchlistSource':
        """Map a raw source string to a member, UNKNOWN when unrecognized."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class RiskLevel(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ScreeningStatus(str, PyEnum):
    """Verdict of a completed screening"""
    CLEAR = "clear"
    POTENTIAL_MATCH = "potential_match"
    BLOCKED = "blocked"


class JobState(str, PyEnum):
    """Lifecycle of a queued screening job"""
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================
# WATCHLISTS
# ============================================

@dataclass(frozen=True)
class WatchlistEntry:
    """A single listed person or organization used as a match target."""
    name: str
    id: str = field(default_factory=new_id)
    country: Optional[str] = None
    role: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WatchlistEntry':
        """Build an entry from a parsed list record.

        `name` is required; `country` and `role` (or `position`) are lifted
        out, everything else is kept in `attributes`.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Watchlist entry must be a mapping, got {type(data).__name__}")
        record = dict(data)
        name = record.pop("name", None)
        if not name or not str(name).strip():
            raise ValueError("Watchlist entry is missing a name")
        role = record.pop("role", None) or record.pop("position", None)
        return cls(
            name=str(name),
            id=str(record.pop("id", None) or new_id()),
            country=record.pop("country", None),
            role=role,
            attributes=record,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "country": self.country,
            "role": self.role,
            "attributes": dict(self.attributes),
        }


def parse_watchlist_entries(entries: Iterable[Dict[str, Any]]) -> Tuple[WatchlistEntry, ...]:
    """Parse raw list records, failing on the first malformed one.

    Raises:
        ValidationError: Naming the position of the bad record
    """
    if entries is None or isinstance(entries, (str, bytes, dict)):
        raise ValidationError(
            "Watchlist entries must be a list of records",
            field="entries",
            code="INVALID_WATCHLIST_ENTRIES"
        )
    parsed = []
    for index, record in enumerate(entries):
        try:
            parsed.append(WatchlistEntry.from_dict(record))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid watchlist entry at position {index}: {e}",
                field=f"entries[{index}]",
                code="INVALID_WATCHLIST_ENTRY",
                suggestion="Every entry needs at least a non-empty 'name'"
            ) from e
    return tuple(parsed)


@dataclass(frozen=True)
class Watchlist:
    """Named collection of entries, replaced wholesale on re-import."""
    name: str
    type: str
    source: str
    entries: Tuple[WatchlistEntry, ...] = ()
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def watchlist_type(self) -> WatchlistType:
        return WatchlistType.parse(self.type)

    @property
    def watchlist_source(self) -> WatchlistSource:
        return WatchlistSource.parse(self.source)

    def to_dict(self, include_entries: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "source": self.source,
            "entry_count": len(self.entries),
            "created_at": self.created_at.isoformat(),
        }
        if include_entries:
            data["entries"] = [e.to_dict() for e in self.entries]
        return data


# ============================================
# MATCHING
# ============================================

@dataclass(frozen=True)
class SearchTerm:
    field: str
    value: str


@dataclass(frozen=True)
class CandidateMatch:
    """A watchlist entry whose name scored above the threshold for one term."""
    watchlist_id: str
    watchlist_type: str
    watchlist_source: str
    matched_field: str
    search_value: str
    similarity_score: float
    source_entry: WatchlistEntry

    def with_watchlist(self, watchlist: Watchlist) -> 'CandidateMatch':
        return CandidateMatch(
            watchlist_id=watchlist.id,
            watchlist_type=watchlist.type,
            watchlist_source=watchlist.source,
            matched_field=self.matched_field,
            search_value=self.search_value,
            similarity_score=self.similarity_score,
            source_entry=self.source_entry,
        )


# ============================================
# RESULTS
# ============================================

@dataclass
class ScreeningMatch:
    """Persisted evidence for one candidate match. Immutable once saved."""
    screening_result_id: str
    watchlist_id: str
    matched_field: str
    match_score: float
    risk_level: RiskLevel
    match_details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "screening_result_id": self.screening_result_id,
            "watchlist_id": self.watchlist_id,
            "matched_field": self.matched_field,
            "match_score": round(self.match_score, 2),
            "risk_level": self.risk_level.value,
            "match_details": self.match_details,
        }


@dataclass
class ScreeningResult:
    """Verdict of one screening execution."""
    entity_id: str
    entity_type: str
    screening_data: Dict[str, Any]
    overall_risk_score: float
    status: ScreeningStatus
    id: str = field(default_factory=new_id)
    is_false_positive: bool = False
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    job_id: Optional[str] = None
    screened_at: datetime = field(default_factory=utcnow)
    matches: List[ScreeningMatch] = field(default_factory=list)

    def to_dict(self, include_matches: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "screening_data": self.screening_data,
            "overall_risk_score": round(self.overall_risk_score, 2),
            "status": self.status.value,
            "is_false_positive": self.is_false_positive,
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "job_id": self.job_id,
            "screened_at": self.screened_at.isoformat(),
            "match_count": len(self.matches),
        }
        if include_matches:
            data["matches"] = [m.to_dict() for m in self.matches]
        return data


@dataclass
class ScreeningJob:
    """Durable queue record for one submitted screening."""
    job_name: str
    payload: Dict[str, Any]
    id: str = field(default_factory=new_id)
    state: JobState = JobState.SUBMITTED
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    result_id: Optional[str] = None
    submitted_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_name": self.job_name,
            "payload": self.payload,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "result_id": self.result_id,
            "submitted_at": self.submitted_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
