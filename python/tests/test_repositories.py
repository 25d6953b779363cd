"""
Repository tests against an in-memory SQLite database.

The same schema runs on PostgreSQL in production; these tests cover the
transactional behaviour of every store plus an end-to-end screening
through the SQL backend.
"""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from database.connection import create_test_provider
from database.repositories import SqlAuditTrail, SqlJobStore, SqlResultStore, SqlWatchlistStore
from screening.errors import TransientStoreError, ValidationError
from screening.jobs import AsyncJobRunner
from screening.models import (
    JobState,
    RiskLevel,
    ScreeningMatch,
    ScreeningResult,
    ScreeningStatus,
    utcnow,
)
from screening.orchestrator import SCREENING_JOB_NAME, ScreeningOrchestrator
from conftest import OFAC_ENTRIES, PEP_ENTRIES


@pytest.fixture
def provider():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    provider = create_test_provider(engine)
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def watchlists(provider):
    return SqlWatchlistStore(provider)


@pytest.fixture
def results(provider):
    return SqlResultStore(provider)


@pytest.fixture
def jobs(provider):
    return SqlJobStore(provider)


@pytest.fixture
def audit_trail(provider):
    return SqlAuditTrail(provider)


def make_result(entity_id="user-1", score=100.0, match_scores=(100.0,), **kwargs):
    result = ScreeningResult(
        entity_id=entity_id,
        entity_type="user",
        screening_data={"full_name": "John Doe"},
        overall_risk_score=score,
        status=ScreeningStatus.BLOCKED if match_scores else ScreeningStatus.CLEAR,
        **kwargs
    )
    result.matches = [
        ScreeningMatch(
            screening_result_id=result.id,
            watchlist_id="wl-1",
            matched_field="full_name",
            match_score=match_score,
            risk_level=RiskLevel.HIGH,
            match_details={"entry": {"id": f"E-{i}", "name": "John Doe"}},
        )
        for i, match_score in enumerate(match_scores)
    ]
    return result


class TestSqlWatchlistStore:
    """Tests for watchlist import and load."""

    def test_import_and_list(self, watchlists):
        watchlists.bulk_import("sanctions", "ofac", OFAC_ENTRIES, name="OFAC SDN")
        watchlists.bulk_import("pep", "custom", PEP_ENTRIES)

        loaded = watchlists.list_all()
        assert [(w.type, w.source) for w in loaded] == [("pep", "custom"), ("sanctions", "ofac")]

        ofac = loaded[1]
        assert ofac.name == "OFAC SDN"
        assert [e.id for e in ofac.entries] == ["OFAC-1", "OFAC-2"]
        assert ofac.entries[0].country == "XX"
        assert loaded[0].name == "pep_custom"
        assert loaded[0].entries[0].role == "Minister of Finance"

    def test_reimport_replaces_entries(self, watchlists):
        first = watchlists.bulk_import("sanctions", "ofac", OFAC_ENTRIES)
        second = watchlists.bulk_import("sanctions", "ofac", [{"id": "NEW-1", "name": "Richard Roe"}])

        loaded = watchlists.list_all()
        assert len(loaded) == 1
        assert loaded[0].id == second.id != first.id
        assert [e.name for e in loaded[0].entries] == ["Richard Roe"]

    def test_invalid_entry_leaves_list_unchanged(self, watchlists):
        watchlists.bulk_import("sanctions", "ofac", OFAC_ENTRIES)
        with pytest.raises(ValidationError):
            watchlists.bulk_import("sanctions", "ofac", [{"id": "X", "name": "Valid"}, {"id": "Y"}])

        loaded = watchlists.list_all()
        assert [e.id for e in loaded[0].entries] == ["OFAC-1", "OFAC-2"]

    def test_attributes_round_trip(self, watchlists):
        watchlists.bulk_import("custom", "custom", [{"id": "C-1", "name": "Jane Roe", "dob": "1960-01-01"}])
        entry = watchlists.list_all()[0].entries[0]
        assert entry.attributes == {"dob": "1960-01-01"}

    def test_empty_store(self, watchlists):
        assert watchlists.list_all() == []


class TestSqlResultStore:
    """Tests for result persistence, review and history."""

    def test_save_and_get(self, results):
        saved = results.save(make_result(match_scores=(100.0, 87.5)))
        loaded = results.get(saved.id)

        assert loaded.id == saved.id
        assert loaded.status == ScreeningStatus.BLOCKED
        assert loaded.screening_data == {"full_name": "John Doe"}
        assert [m.match_score for m in loaded.matches] == [100.0, 87.5]
        assert all(m.screening_result_id == saved.id for m in loaded.matches)
        assert loaded.screened_at.tzinfo is not None

    def test_get_unknown_or_malformed_id(self, results):
        assert results.get("not-a-uuid") is None
        assert results.get("00000000-0000-0000-0000-000000000000") is None

    def test_failed_save_persists_nothing(self, results):
        bad = make_result(match_scores=(100.0, 150.0))
        with pytest.raises(TransientStoreError):
            results.save(bad)

        assert results.get(bad.id) is None
        assert results.list_by_entity("user-1") == []

    def test_update_review_keeps_evidence(self, results):
        saved = results.save(make_result())
        reviewed = results.update_review(saved.id, "analyst-1", "Different person", utcnow())

        assert reviewed.is_false_positive is True
        assert reviewed.reviewed_by == "analyst-1"
        assert reviewed.review_notes == "Different person"
        assert reviewed.overall_risk_score == saved.overall_risk_score
        assert reviewed.status == saved.status
        assert [m.id for m in reviewed.matches] == [m.id for m in saved.matches]
        assert results.get(saved.id).is_false_positive is True

    def test_update_review_unknown(self, results):
        assert results.update_review("00000000-0000-0000-0000-000000000000", "a", None, utcnow()) is None

    def test_history_newest_first(self, results):
        now = utcnow()
        oldest = results.save(make_result(screened_at=now - timedelta(hours=2)))
        newest = results.save(make_result(screened_at=now))
        middle = results.save(make_result(screened_at=now - timedelta(hours=1)))
        results.save(make_result(entity_id="other", screened_at=now))

        history = results.list_by_entity("user-1")
        assert [r.id for r in history] == [newest.id, middle.id, oldest.id]

    def test_store_unavailable(self, provider, results):
        provider.drop_tables()
        with pytest.raises(TransientStoreError):
            results.list_by_entity("user-1")


class TestSqlJobStore:
    """Tests for the durable queue."""

    def test_enqueue_and_claim_in_order(self, jobs):
        first = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-1"}, 3)
        second = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-2"}, 3)

        claimed = jobs.claim_next(SCREENING_JOB_NAME)
        assert claimed.id == first.id
        assert claimed.state == JobState.RUNNING
        assert claimed.started_at is not None
        assert jobs.claim_next(SCREENING_JOB_NAME).id == second.id
        assert jobs.claim_next(SCREENING_JOB_NAME) is None

    def test_claim_filters_by_name(self, jobs):
        jobs.enqueue("other-job", {"entity_id": "u-1"}, 3)
        assert jobs.claim_next(SCREENING_JOB_NAME) is None

    def test_attempts_and_outcome(self, jobs):
        job = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-1"}, 3)
        jobs.claim_next(SCREENING_JOB_NAME)
        assert jobs.record_attempt(job.id) == 1
        assert jobs.record_attempt(job.id) == 2

        jobs.fail(job.id, "TransientStoreError: connection reset")
        failed = jobs.get(job.id)
        assert failed.state == JobState.FAILED
        assert failed.attempts == 2
        assert failed.last_error == "TransientStoreError: connection reset"
        assert failed.finished_at is not None
        assert [j.id for j in jobs.list_by_state(JobState.FAILED)] == [job.id]

    def test_complete_links_result(self, jobs):
        job = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-1"}, 3)
        jobs.claim_next(SCREENING_JOB_NAME)
        result_id = "12345678-1234-5678-1234-567812345678"
        jobs.complete(job.id, result_id)

        completed = jobs.get(job.id)
        assert completed.state == JobState.COMPLETED
        assert completed.result_id == result_id

    def test_payload_round_trip(self, jobs):
        payload = {"entity_id": "u-1", "entity_type": "user", "screening_data": {"full_name": "John Doe"}}
        job = jobs.enqueue(SCREENING_JOB_NAME, payload, 3)
        assert jobs.get(job.id).payload == payload

    def test_remove_only_submitted(self, jobs):
        running = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-1"}, 3)
        assert jobs.claim_next(SCREENING_JOB_NAME).id == running.id
        waiting = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-2"}, 3)

        assert jobs.remove(running.id) is False
        assert jobs.remove(waiting.id) is True
        assert jobs.get(waiting.id) is None
        assert jobs.remove("not-a-uuid") is False

    def test_requeue_stuck(self, jobs):
        retryable = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-1"}, 3)
        exhausted = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-2"}, 1)
        jobs.claim_next(SCREENING_JOB_NAME)
        jobs.claim_next(SCREENING_JOB_NAME)
        jobs.record_attempt(retryable.id)
        jobs.record_attempt(exhausted.id)

        assert jobs.requeue_stuck(utcnow() + timedelta(seconds=1)) == 1
        assert jobs.get(retryable.id).state == JobState.SUBMITTED
        assert jobs.get(retryable.id).started_at is None
        assert jobs.get(exhausted.id).state == JobState.FAILED

    def test_requeue_ignores_recent(self, jobs):
        job = jobs.enqueue(SCREENING_JOB_NAME, {"entity_id": "u-1"}, 3)
        jobs.claim_next(SCREENING_JOB_NAME)
        assert jobs.requeue_stuck(utcnow() - timedelta(minutes=10)) == 0
        assert jobs.get(job.id).state == JobState.RUNNING


class TestSqlAuditTrail:
    """Tests for the audit log."""

    def test_record_and_search(self, audit_trail):
        audit_trail.record("SCREEN", "screening_result", resource_id="r-1", details={"status": "clear"})
        audit_trail.record("FALSE_POSITIVE", "screening_result", resource_id="r-1", actor="analyst-1")
        audit_trail.record("DATA_UPDATE", "watchlist", resource_id="w-1")

        entries = audit_trail.search(resource_id="r-1")
        assert {e["action"] for e in entries} == {"SCREEN", "FALSE_POSITIVE"}
        assert len(audit_trail.search(resource_type="watchlist")) == 1
        assert len(audit_trail.search(limit=2)) == 2


class TestSqlScreeningEndToEnd:
    """Submission through the SQL queue to a persisted verdict."""

    def test_screening_through_sql_backend(self, watchlists, results, jobs, audit_trail, queue_config, sleeps):
        watchlists.bulk_import("sanctions", "ofac", OFAC_ENTRIES)
        watchlists.bulk_import("pep", "custom", PEP_ENTRIES)

        runner = AsyncJobRunner(jobs, queue_config, sleep=sleeps.append)
        orchestrator = ScreeningOrchestrator(watchlists, results, runner, audit=audit_trail)
        runner.consume(SCREENING_JOB_NAME, orchestrator.handle_job)

        job_id = orchestrator.screen_entity("user-1", "user", {"fullName": "John Doe"})
        assert runner.drain(SCREENING_JOB_NAME) == 1

        job = orchestrator.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.attempts == 1

        result = orchestrator.get_result(job.result_id)
        assert result.status == ScreeningStatus.BLOCKED
        assert result.overall_risk_score == 100.0
        assert result.job_id == job_id
        assert result.matches[0].match_details["entry"]["id"] == "OFAC-1"

        history = orchestrator.get_screening_history("user-1")
        assert [r.id for r in history] == [result.id]

        reviewed = orchestrator.mark_as_false_positive(result.id, "analyst-1")
        assert reviewed.is_false_positive is True
        assert reviewed.status == ScreeningStatus.BLOCKED


class TestSessionProvider:
    """Tests for the session provider."""

    def test_health_check(self, provider):
        assert provider.health_check() is True

    def test_session_scope_rolls_back(self, provider, audit_trail):
        from database.models import AuditLogRecord

        with pytest.raises(RuntimeError):
            with provider.session_scope() as session:
                session.add(AuditLogRecord(action="SCREEN", resource_type="screening_result", timestamp=utcnow()))
                session.flush()
                raise RuntimeError("abort")

        assert audit_trail.search() == []

    def test_sqlite_has_no_pool_settings(self):
        from database.connection import DatabaseSettings

        assert DatabaseSettings(url="sqlite://").get_pool_settings() == {}
        assert DatabaseSettings().get_url().startswith("postgresql+psycopg2://")
