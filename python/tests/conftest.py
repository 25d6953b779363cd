"""
Shared fixtures for the screening test-suite.

The screening core is exercised against the in-memory stores; repository
tests build their own SQLite engine.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import QueueConfig
from screening.jobs import AsyncJobRunner
from screening.memory import MemoryAuditTrail, MemoryJobStore, MemoryResultStore, MemoryWatchlistStore
from screening.orchestrator import SCREENING_JOB_NAME, ScreeningOrchestrator
from screening.risk import RiskAggregator


OFAC_ENTRIES = [
    {"id": "OFAC-1", "name": "John Doe", "country": "XX"},
    {"id": "OFAC-2", "name": "Acme Trading Company", "country": "YY"},
]

PEP_ENTRIES = [
    {"id": "PEP-1", "name": "Jane Roe", "country": "ZZ", "position": "Minister of Finance"},
]


@pytest.fixture
def queue_config():
    """Queue settings with the default backoff and a fast poll loop."""
    return QueueConfig(
        max_attempts=3,
        backoff_min_seconds=1,
        backoff_max_seconds=30,
        backoff_multiplier=1,
        workers=1,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def sleeps():
    """Records retry waits instead of sleeping."""
    return []


@pytest.fixture
def watchlist_store():
    store = MemoryWatchlistStore()
    store.bulk_import("sanctions", "ofac", OFAC_ENTRIES, name="OFAC SDN")
    store.bulk_import("pep", "custom", PEP_ENTRIES, name="Internal PEPs")
    return store


@pytest.fixture
def result_store():
    return MemoryResultStore()


@pytest.fixture
def job_store():
    return MemoryJobStore()


@pytest.fixture
def audit():
    return MemoryAuditTrail()


@pytest.fixture
def runner(job_store, queue_config, sleeps):
    return AsyncJobRunner(job_store, queue_config, sleep=sleeps.append)


@pytest.fixture
def orchestrator(watchlist_store, result_store, runner, audit):
    orchestrator = ScreeningOrchestrator(
        watchlist_store,
        result_store,
        runner,
        aggregator=RiskAggregator(),
        threshold=75.0,
        audit=audit,
    )
    runner.consume(SCREENING_JOB_NAME, orchestrator.handle_job)
    return orchestrator
