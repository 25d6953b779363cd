"""
Service wiring shared by the API server, the worker and the CLI tools.

Builds the stores, job runner and orchestrator for one of two backends:

- ``database``: SQLAlchemy repositories on DATABASE_URL / DB_* settings
- ``memory``: in-process stores, for local runs and tests

The backend is selected with the SCREENING_BACKEND environment variable.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from config_manager import ConfigManager
from database.connection import DatabaseSessionProvider, init_db
from database.repositories import SqlAuditTrail, SqlJobStore, SqlResultStore, SqlWatchlistStore
from screening.jobs import AsyncJobRunner
from screening.memory import MemoryAuditTrail, MemoryJobStore, MemoryResultStore, MemoryWatchlistStore
from screening.orchestrator import ScreeningOrchestrator
from screening.stores import AuditTrail, JobStore, ResultStore, WatchlistStore

logger = logging.getLogger(__name__)

BACKEND_DATABASE = "database"
BACKEND_MEMORY = "memory"


@dataclass
class ScreeningService:
    """Everything a process needs to submit, run and query screenings."""
    config: ConfigManager
    backend: str
    watchlists: WatchlistStore
    results: ResultStore
    jobs: JobStore
    audit: AuditTrail
    runner: AsyncJobRunner
    orchestrator: ScreeningOrchestrator
    provider: Optional[DatabaseSessionProvider] = None

    def store_available(self) -> bool:
        if self.provider is None:
            return True
        return self.provider.health_check()

    def start_workers(self, workers: Optional[int] = None) -> None:
        self.runner.start(self.config.queue.job_name, workers)

    def shutdown(self) -> None:
        self.runner.stop()
        if self.provider is not None:
            self.provider.close()


def get_backend() -> str:
    backend = os.getenv("SCREENING_BACKEND", BACKEND_DATABASE).strip().lower()
    if backend not in (BACKEND_DATABASE, BACKEND_MEMORY):
        raise ValueError(f"Unknown SCREENING_BACKEND: {backend!r} (expected 'database' or 'memory')")
    return backend


def build_service(
    config: ConfigManager,
    backend: Optional[str] = None,
    provider: Optional[DatabaseSessionProvider] = None
) -> ScreeningService:
    """
    Wire stores, runner and orchestrator for the chosen backend.

    Args:
        config: Loaded configuration
        backend: 'database' or 'memory' (defaults to SCREENING_BACKEND)
        provider: Pre-initialized session provider (database backend only)
    """
    backend = backend or get_backend()

    if backend == BACKEND_MEMORY:
        watchlists = MemoryWatchlistStore()
        results = MemoryResultStore()
        jobs = MemoryJobStore()
        audit = MemoryAuditTrail()
        provider = None
    else:
        if provider is None:
            provider = init_db()
        watchlists = SqlWatchlistStore(provider)
        results = SqlResultStore(provider)
        jobs = SqlJobStore(provider)
        audit = SqlAuditTrail(provider)

    runner = AsyncJobRunner(jobs, config.queue)
    orchestrator = ScreeningOrchestrator.from_config(config, watchlists, results, runner, audit=audit)
    runner.consume(config.queue.job_name, orchestrator.handle_job)

    logger.info(f"Screening service ready: backend={backend} threshold={config.matching.threshold}")
    return ScreeningService(
        config=config,
        backend=backend,
        watchlists=watchlists,
        results=results,
        jobs=jobs,
        audit=audit,
        runner=runner,
        orchestrator=orchestrator,
        provider=provider,
    )
