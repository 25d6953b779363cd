"""
FastAPI Entity Screening API Server

Provides REST API endpoints for submitting screenings, reading verdicts,
recording false-positive reviews, administering the job queue and
importing watchlists.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import RedirectResponse

from api.models import (
    AuditLogResponse,
    ErrorResponse,
    FalsePositiveRequest,
    HealthResponse,
    JobListResponse,
    JobRemovedResponse,
    JobResponse,
    ScreeningHistoryResponse,
    ScreeningRequest,
    ScreeningResultResponse,
    ScreeningSubmittedResponse,
    WatchlistImportRequest,
    WatchlistListResponse,
    WatchlistSummary,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from bootstrap import ScreeningService, build_service
from config_manager import get_config, ConfigurationError
from log_utils import sanitize_for_logging, setup_logging
from screening.errors import TransientStoreError

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH") or None
RUN_WORKERS = os.getenv("RUN_WORKERS", "true").lower() == "true"

# Global state
_service: Optional[ScreeningService] = None
_startup_time: Optional[datetime] = None


def get_service() -> ScreeningService:
    """Dependency to get the screening service."""
    if _service is None:
        raise HTTPException(
            status_code=503, detail="Screening service not initialized. Service is starting up."
        )
    return _service


# Create FastAPI application
app = FastAPI(
    title="Entity Screening API",
    description="KYC screening of users and organizations against sanctions, PEP and adverse-media watchlists",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)

ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Not found"},
    422: {"model": ErrorResponse, "description": "Validation error"},
    503: {"model": ErrorResponse, "description": "Store unavailable"},
}


@app.on_event("startup")
def startup():
    """Load configuration, wire stores and start queue workers."""
    global _service, _startup_time

    try:
        config = get_config(CONFIG_PATH)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise

    setup_logging(config.logging)
    logger.info("Starting Entity Screening API...")

    _service = build_service(config)
    if RUN_WORKERS:
        _service.start_workers()

    _startup_time = datetime.now(timezone.utc)
    logger.info(f"API ready: backend={_service.backend} workers={RUN_WORKERS}")


@app.on_event("shutdown")
def shutdown():
    """Stop workers and release database connections."""
    global _service
    logger.info("Shutting down Entity Screening API...")
    if _service is not None:
        _service.shutdown()
        _service = None


# ============================================
# SCREENINGS
# ============================================

@app.post(
    "/api/v1/screenings",
    status_code=202,
    response_model=ScreeningSubmittedResponse,
    responses=ERROR_RESPONSES,
    summary="Submit a screening",
    description="Queue a screening of an entity's identifying attributes. Returns immediately with a job id.",
)
def submit_screening(request: ScreeningRequest, service: ScreeningService = Depends(get_service)):
    job_id = service.orchestrator.submit_screening(request.entity_id, request.entity_type, request.subject)
    return ScreeningSubmittedResponse(job_id=job_id, status_url=f"/api/v1/jobs/{job_id}")


@app.get(
    "/api/v1/screenings/results/{result_id}",
    response_model=ScreeningResultResponse,
    responses=ERROR_RESPONSES,
    summary="Get a screening result",
)
def get_result(result_id: str, service: ScreeningService = Depends(get_service)):
    return service.orchestrator.get_result(result_id).to_dict()


@app.post(
    "/api/v1/screenings/results/{result_id}/false-positive",
    response_model=ScreeningResultResponse,
    responses=ERROR_RESPONSES,
    summary="Mark a result as a false positive",
    description="Records the reviewer's disposition. The score, status and matches are left unchanged.",
)
def mark_false_positive(
    result_id: str,
    request: FalsePositiveRequest,
    service: ScreeningService = Depends(get_service),
):
    result = service.orchestrator.mark_as_false_positive(result_id, request.reviewed_by, request.notes)
    return result.to_dict()


@app.get(
    "/api/v1/screenings/history/{entity_id}",
    response_model=ScreeningHistoryResponse,
    responses=ERROR_RESPONSES,
    summary="Screening history of an entity",
)
def get_history(entity_id: str, service: ScreeningService = Depends(get_service)):
    results = service.orchestrator.get_screening_history(entity_id)
    return ScreeningHistoryResponse(
        entity_id=entity_id,
        total=len(results),
        results=[r.to_dict() for r in results],
    )


# ============================================
# JOB QUEUE
# ============================================

@app.get(
    "/api/v1/jobs/failed",
    response_model=JobListResponse,
    responses=ERROR_RESPONSES,
    summary="List failed jobs",
)
def list_failed_jobs(
    limit: int = Query(default=100, ge=1, le=1000),
    service: ScreeningService = Depends(get_service),
):
    jobs = service.runner.list_failed_jobs(limit=limit)
    return JobListResponse(total=len(jobs), jobs=[j.to_dict() for j in jobs])


@app.get(
    "/api/v1/jobs/{job_id}",
    response_model=JobResponse,
    responses=ERROR_RESPONSES,
    summary="Get a job",
)
def get_job(job_id: str, service: ScreeningService = Depends(get_service)):
    return service.orchestrator.get_job(job_id).to_dict()


@app.delete(
    "/api/v1/jobs/{job_id}",
    response_model=JobRemovedResponse,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse, "description": "Job already started"}},
    summary="Remove a job that has not started",
)
def remove_job(job_id: str, service: ScreeningService = Depends(get_service)):
    if not service.runner.remove_job(job_id):
        raise HTTPException(status_code=409, detail="Job has already started and cannot be removed")
    return JobRemovedResponse(job_id=job_id, removed=True)


# ============================================
# WATCHLISTS
# ============================================

@app.post(
    "/api/v1/watchlists/import",
    response_model=WatchlistSummary,
    responses=ERROR_RESPONSES,
    summary="Import a watchlist",
    description="Replaces the watchlist identified by (type, source) in a single transaction.",
)
def import_watchlist(request: WatchlistImportRequest, service: ScreeningService = Depends(get_service)):
    watchlist = service.watchlists.bulk_import(request.type, request.source, request.entries, request.name)
    service.audit.record(
        "DATA_UPDATE",
        "watchlist",
        resource_id=watchlist.id,
        details={"type": watchlist.type, "source": watchlist.source, "entry_count": len(watchlist.entries)},
    )
    logger.info(
        "Watchlist imported: type=%s source=%s entries=%d",
        sanitize_for_logging(watchlist.type), sanitize_for_logging(watchlist.source), len(watchlist.entries)
    )
    return watchlist.to_dict()


@app.get(
    "/api/v1/watchlists",
    response_model=WatchlistListResponse,
    responses=ERROR_RESPONSES,
    summary="List watchlists",
)
def list_watchlists(service: ScreeningService = Depends(get_service)):
    watchlists = service.watchlists.list_all()
    return WatchlistListResponse(
        total=len(watchlists),
        watchlists=[w.to_dict() for w in watchlists],
    )


# ============================================
# AUDIT
# ============================================

@app.get(
    "/api/v1/audit",
    response_model=AuditLogResponse,
    responses=ERROR_RESPONSES,
    summary="Search the audit trail",
    description="Most recent entries first, optionally filtered by resource type and id.",
)
def search_audit(
    resource_type: Optional[str] = Query(default=None, max_length=50),
    resource_id: Optional[str] = Query(default=None, max_length=200),
    limit: int = Query(default=100, ge=1, le=1000),
    service: ScreeningService = Depends(get_service),
):
    entries = service.audit.search(resource_type=resource_type, resource_id=resource_id, limit=limit)
    return AuditLogResponse(
        total=len(entries),
        entries=[{**entry, "timestamp": entry["timestamp"].isoformat()} for entry in entries],
    )


# ============================================
# HEALTH
# ============================================

@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check store connectivity and loaded watchlists",
)
def health_check(service: ScreeningService = Depends(get_service)):
    """Return health status. Always returns HTTP 200; problems are reported in the body."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    available = service.store_available()
    watchlists = []
    if available:
        try:
            watchlists = service.watchlists.list_all()
        except TransientStoreError as e:
            logger.warning(f"Health check could not load watchlists: {e}")
            available = False

    return HealthResponse(
        status="healthy" if available else "degraded",
        backend=service.backend,
        store_available=available,
        watchlists_loaded=len(watchlists),
        entries_loaded=sum(len(w.entries) for w in watchlists),
        workers_running=service.runner.is_running,
        algorithm_version=service.config.algorithm.version,
        uptime_seconds=uptime_seconds,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
