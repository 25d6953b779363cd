"""
Entity screening core.

Normalization, fuzzy matching, risk aggregation, orchestration and the
durable job runner. Storage is injected through the protocols in
screening.stores.
"""

from screening.errors import (
    AggregationInvariantError,
    NotFoundError,
    ScreeningError,
    TransientStoreError,
    ValidationError,
)
from screening.jobs import AsyncJobRunner
from screening.matcher import DEFAULT_THRESHOLD, find_matches
from screening.models import (
    CandidateMatch,
    JobState,
    RiskLevel,
    ScreeningJob,
    ScreeningMatch,
    ScreeningResult,
    ScreeningStatus,
    Watchlist,
    WatchlistEntry,
    WatchlistSource,
    WatchlistType,
)
from screening.normalizer import normalize
from screening.orchestrator import SCREENING_JOB_NAME, ScreeningOrchestrator
from screening.risk import RiskAggregator
from screening.similarity import similarity
from screening.subject import ScreeningSubject, extract_search_terms

__all__ = [
    'AggregationInvariantError',
    'NotFoundError',
    'ScreeningError',
    'TransientStoreError',
    'ValidationError',
    'AsyncJobRunner',
    'DEFAULT_THRESHOLD',
    'find_matches',
    'CandidateMatch',
    'JobState',
    'RiskLevel',
    'ScreeningJob',
    'ScreeningMatch',
    'ScreeningResult',
    'ScreeningStatus',
    'Watchlist',
    'WatchlistEntry',
    'WatchlistSource',
    'WatchlistType',
    'normalize',
    'SCREENING_JOB_NAME',
    'ScreeningOrchestrator',
    'RiskAggregator',
    'similarity',
    'ScreeningSubject',
    'extract_search_terms',
]
