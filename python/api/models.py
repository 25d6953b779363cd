"""
Pydantic request/response schemas for the Entity Screening API

Subject attributes are accepted as a free-form object; the screening
service decides which attributes are recognized and rejects empty or
malformed subjects with the standard error envelope.
"""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


class ScreeningRequest(BaseModel):
    """Request schema for submitting a screening."""
    entity_id: str = Field(
        ...,
        max_length=200,
        description="Id of the user or organization being screened"
    )
    entity_type: str = Field(
        default="user",
        max_length=50,
        description="Kind of entity (e.g., 'user', 'company')"
    )
    subject: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Identifying attributes: firstName, lastName, fullName, passportNumber"
    )

    @field_validator('entity_id', 'entity_type')
    @classmethod
    def strip_identifiers(cls, v: str) -> str:
        return v.strip()


class ScreeningSubmittedResponse(BaseModel):
    """Response schema for an accepted screening submission."""
    job_id: str = Field(..., description="Queue job identifier (UUID)")
    state: str = Field(default="submitted", description="Job state")
    status_url: str = Field(..., description="Where to poll for the job outcome")


class ScreeningMatchResponse(BaseModel):
    """Evidence for one watchlist match."""
    id: str
    watchlist_id: str
    matched_field: str = Field(..., description="Subject attribute that matched")
    match_score: float = Field(..., ge=0, le=100, description="Raw similarity (0-100)")
    risk_level: str = Field(..., description="low, medium or high")
    match_details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Watchlist type/source, search value, entry snapshot and weights"
    )


class ScreeningResultResponse(BaseModel):
    """A persisted screening verdict."""
    id: str = Field(..., description="Screening result identifier (UUID)")
    entity_id: str
    entity_type: str
    screening_data: Dict[str, Any] = Field(default_factory=dict)
    overall_risk_score: float = Field(..., ge=0, le=100)
    status: str = Field(..., description="clear, potential_match or blocked")
    is_false_positive: bool = False
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[str] = None
    job_id: Optional[str] = None
    screened_at: str = Field(..., description="Screening timestamp (ISO 8601)")
    match_count: int = Field(..., ge=0)
    matches: List[ScreeningMatchResponse] = Field(default_factory=list)


class ScreeningHistoryResponse(BaseModel):
    """All results for one entity, most recent first."""
    entity_id: str
    total: int = Field(..., ge=0)
    results: List[ScreeningResultResponse] = Field(default_factory=list)


class FalsePositiveRequest(BaseModel):
    """Reviewer disposition for a screening result."""
    reviewed_by: str = Field(..., max_length=200, description="Reviewing analyst")
    notes: Optional[str] = Field(default=None, max_length=2000, description="Review notes")


class JobResponse(BaseModel):
    """State of a queued screening job."""
    id: str
    job_name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    state: str = Field(..., description="submitted, running, completed or failed")
    attempts: int = Field(..., ge=0)
    max_attempts: int = Field(..., ge=1)
    last_error: Optional[str] = None
    result_id: Optional[str] = None
    submitted_at: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class JobListResponse(BaseModel):
    total: int = Field(..., ge=0)
    jobs: List[JobResponse] = Field(default_factory=list)


class JobRemovedResponse(BaseModel):
    job_id: str
    removed: bool


class WatchlistImportRequest(BaseModel):
    """Replace the watchlist for (type, source) with the given entries."""
    type: str = Field(..., min_length=1, max_length=50, description="sanctions, pep, adverse_media, custom")
    source: str = Field(..., min_length=1, max_length=50, description="ofac, un, eu, custom")
    name: Optional[str] = Field(default=None, max_length=200)
    entries: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Entries with at least a 'name'; optional id, country, role/position"
    )


class WatchlistSummary(BaseModel):
    id: str
    name: str
    type: str
    source: str
    entry_count: int = Field(..., ge=0)
    created_at: str


class WatchlistListResponse(BaseModel):
    total: int = Field(..., ge=0)
    watchlists: List[WatchlistSummary] = Field(default_factory=list)


class AuditLogEntry(BaseModel):
    """One recorded action."""
    timestamp: str
    action: str = Field(..., description="SCREEN, FALSE_POSITIVE or DATA_UPDATE")
    resource_type: str
    resource_id: Optional[str] = None
    actor: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class AuditLogResponse(BaseModel):
    total: int = Field(..., ge=0)
    entries: List[AuditLogEntry] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    backend: str = Field(..., description="Storage backend (database or memory)")
    store_available: bool = Field(..., description="Whether the store answered a health query")
    watchlists_loaded: int = Field(default=0, ge=0)
    entries_loaded: int = Field(default=0, ge=0)
    workers_running: bool = Field(default=False)
    algorithm_version: str = Field(..., description="Algorithm version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
