"""
Tests for the durable job runner: retries, failure handling, ordering
and the worker pool.
"""

import time
from datetime import timedelta

import pytest

from screening.errors import AggregationInvariantError, NotFoundError, TransientStoreError
from screening.jobs import AsyncJobRunner
from screening.memory import MemoryJobStore
from screening.models import JobState, utcnow

JOB = "test-job"


class FlakyHandler:
    """Raises TransientStoreError for the first `failures` calls."""

    def __init__(self, failures, result="result-1"):
        self.failures = failures
        self.result = result
        self.calls = []

    def __call__(self, job):
        self.calls.append(job.id)
        if len(self.calls) <= self.failures:
            raise TransientStoreError("database connection lost")
        return self.result


class BrokenOnceJobStore(MemoryJobStore):
    """Job store whose first claim raises a non-transient error."""

    def __init__(self):
        super().__init__()
        self.claim_calls = 0

    def claim_next(self, job_name):
        self.claim_calls += 1
        if self.claim_calls == 1:
            raise RuntimeError("cursor closed unexpectedly")
        return super().claim_next(job_name)


class TestSubmission:
    """Tests for enqueue and job administration."""

    def test_enqueue_does_not_execute(self, runner, job_store):
        handler = FlakyHandler(0)
        runner.consume(JOB, handler)
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})

        job = runner.get_job(job_id)
        assert job.state == JobState.SUBMITTED
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert handler.calls == []

    def test_get_unknown_job(self, runner):
        with pytest.raises(NotFoundError):
            runner.get_job("missing")

    def test_remove_submitted_job(self, runner, job_store):
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})
        assert runner.remove_job(job_id) is True
        assert job_store.get(job_id) is None

    def test_remove_finished_job_refused(self, runner):
        runner.consume(JOB, FlakyHandler(0))
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})
        runner.drain(JOB)
        assert runner.remove_job(job_id) is False
        assert runner.get_job(job_id).state == JobState.COMPLETED

    def test_remove_unknown_job(self, runner):
        with pytest.raises(NotFoundError):
            runner.remove_job("missing")

    def test_no_handler_registered(self, runner):
        runner.enqueue(JOB, {"entity_id": "u-1"})
        with pytest.raises(KeyError):
            runner.run_once(JOB)


class TestExecution:
    """Tests for retry and failure semantics."""

    def test_success_first_attempt(self, runner, sleeps):
        runner.consume(JOB, FlakyHandler(0))
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})

        job = runner.run_once(JOB)
        assert job.id == job_id
        assert job.state == JobState.COMPLETED
        assert job.attempts == 1
        assert job.result_id == "result-1"
        assert job.finished_at is not None
        assert sleeps == []

    def test_empty_queue(self, runner):
        runner.consume(JOB, FlakyHandler(0))
        assert runner.run_once(JOB) is None
        assert runner.drain(JOB) == 0

    def test_transient_then_success(self, runner, sleeps):
        handler = FlakyHandler(1)
        runner.consume(JOB, handler)
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})
        runner.drain(JOB)

        job = runner.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.attempts == 2
        assert job.last_error is None
        assert len(handler.calls) == 2
        assert len(sleeps) == 1

    def test_transient_exhausts_attempts(self, runner, sleeps):
        handler = FlakyHandler(10)
        runner.consume(JOB, handler)
        job_id = runner.enqueue(JOB, {"entity_id": "u-1", "screening_data": {"full_name": "John Doe"}})
        runner.drain(JOB)

        job = runner.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempts == 3
        assert len(handler.calls) == 3
        assert "database connection lost" in job.last_error
        assert "after 3 attempt(s), 3 in this run" in job.last_error
        assert "u-1" in job.last_error
        assert [j.id for j in runner.list_failed_jobs()] == [job_id]

    def test_backoff_grows(self, runner, sleeps):
        runner.consume(JOB, FlakyHandler(10))
        runner.enqueue(JOB, {"entity_id": "u-1"})
        runner.drain(JOB)

        assert len(sleeps) == 2
        assert sleeps[0] >= 1
        assert sleeps[0] < sleeps[1] <= 30

    def test_aggregation_error_not_retried(self, runner, sleeps):
        calls = []

        def handler(job):
            calls.append(job.id)
            raise AggregationInvariantError("source weight out of range")

        runner.consume(JOB, handler)
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})
        runner.drain(JOB)

        job = runner.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempts == 1
        assert "AggregationInvariantError" in job.last_error
        assert len(calls) == 1
        assert sleeps == []

    def test_unexpected_error_fails_job(self, runner, sleeps):
        def handler(job):
            raise RuntimeError("boom")

        runner.consume(JOB, handler)
        job_id = runner.enqueue(JOB, {"entity_id": "u-1"})
        runner.drain(JOB)

        job = runner.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempts == 1
        assert job.last_error == "RuntimeError: boom"
        assert sleeps == []

    def test_fifo_order(self, runner):
        seen = []

        def handler(job):
            seen.append(job.payload["entity_id"])

        runner.consume(JOB, handler)
        for entity_id in ("u-1", "u-2", "u-3"):
            runner.enqueue(JOB, {"entity_id": entity_id})

        assert runner.drain(JOB) == 3
        assert seen == ["u-1", "u-2", "u-3"]

    def test_job_names_are_separate(self, runner):
        runner.consume(JOB, FlakyHandler(0))
        runner.consume("other-job", FlakyHandler(0))
        other_id = runner.enqueue("other-job", {"entity_id": "u-1"})

        assert runner.drain(JOB) == 0
        assert runner.get_job(other_id).state == JobState.SUBMITTED


class TestStuckJobs:
    """Tests for recovering jobs abandoned by a crashed worker."""

    def test_requeue_running_job(self, job_store):
        job = job_store.enqueue(JOB, {"entity_id": "u-1"}, 3)
        job_store.claim_next(JOB)
        job_store.record_attempt(job.id)

        assert job_store.requeue_stuck(utcnow() + timedelta(seconds=1)) == 1
        requeued = job_store.get(job.id)
        assert requeued.state == JobState.SUBMITTED
        assert requeued.attempts == 1

    def test_recent_job_left_alone(self, job_store):
        job = job_store.enqueue(JOB, {"entity_id": "u-1"}, 3)
        job_store.claim_next(JOB)

        assert job_store.requeue_stuck(utcnow() - timedelta(minutes=10)) == 0
        assert job_store.get(job.id).state == JobState.RUNNING

    def test_exhausted_job_fails(self, job_store):
        job = job_store.enqueue(JOB, {"entity_id": "u-1"}, 3)
        job_store.claim_next(JOB)
        for _ in range(3):
            job_store.record_attempt(job.id)

        assert job_store.requeue_stuck(utcnow() + timedelta(seconds=1)) == 0
        failed = job_store.get(job.id)
        assert failed.state == JobState.FAILED
        assert failed.last_error

    def test_requeued_job_keeps_attempt_budget(self, runner, job_store, sleeps):
        handler = FlakyHandler(10)
        runner.consume(JOB, handler)
        job = job_store.enqueue(JOB, {"entity_id": "u-1"}, 3)
        job_store.claim_next(JOB)
        job_store.record_attempt(job.id)
        job_store.requeue_stuck(utcnow() + timedelta(seconds=1))

        runner.drain(JOB)
        finished = runner.get_job(job.id)
        assert finished.state == JobState.FAILED
        assert finished.attempts == 3
        assert len(handler.calls) == 2
        assert "after 3 attempt(s), 2 in this run" in finished.last_error


class TestWorkerPool:
    """Tests for background consumer threads."""

    def test_workers_complete_jobs(self, runner):
        runner.consume(JOB, FlakyHandler(0))
        runner.start(JOB, workers=2)
        try:
            assert runner.is_running
            job_ids = [runner.enqueue(JOB, {"entity_id": f"u-{i}"}) for i in range(5)]

            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                states = {runner.get_job(job_id).state for job_id in job_ids}
                if states == {JobState.COMPLETED}:
                    break
                time.sleep(0.01)
        finally:
            runner.stop()

        assert {runner.get_job(job_id).state for job_id in job_ids} == {JobState.COMPLETED}
        assert not runner.is_running

    def test_worker_survives_unexpected_store_error(self, queue_config):
        store = BrokenOnceJobStore()
        runner = AsyncJobRunner(store, queue_config, sleep=lambda seconds: None)
        runner.consume(JOB, FlakyHandler(0))
        runner.start(JOB, workers=1)
        try:
            job_id = runner.enqueue(JOB, {"entity_id": "u-1"})

            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if runner.get_job(job_id).state == JobState.COMPLETED:
                    break
                time.sleep(0.01)

            assert runner.is_running
        finally:
            runner.stop()

        assert runner.get_job(job_id).state == JobState.COMPLETED
        assert store.claim_calls >= 2

    def test_start_requires_handler(self, runner):
        with pytest.raises(KeyError):
            runner.start(JOB)
