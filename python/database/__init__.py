"""
Database Package for the KYC Entity Screening Service

This package provides:
- SQLAlchemy ORM models for watchlists, results, jobs and audit logs
- Session provider with per-call transactions (session_scope)
- Repository implementations of the screening store protocols
"""

from database.models import (
    Base,
    WatchlistRecord,
    WatchlistEntryRecord,
    ScreeningResultRecord,
    ScreeningMatchRecord,
    ScreeningJobRecord,
    AuditLogRecord,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    get_db_provider,
    init_db,
    close_db,
    create_test_provider,
)
from database.repositories import (
    SqlWatchlistStore,
    SqlResultStore,
    SqlJobStore,
    SqlAuditTrail,
)

__all__ = [
    # Base
    'Base',
    # Models
    'WatchlistRecord',
    'WatchlistEntryRecord',
    'ScreeningResultRecord',
    'ScreeningMatchRecord',
    'ScreeningJobRecord',
    'AuditLogRecord',
    # Provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Repositories
    'SqlWatchlistStore',
    'SqlResultStore',
    'SqlJobStore',
    'SqlAuditTrail',
]
