"""
Asynchronous job runner for screening execution.

Submission only writes a job record to the durable queue and returns its
id. Worker threads claim jobs in submission order, run the registered
handler and record the outcome:

- TransientStoreError is retried in-process with exponential backoff
  (tenacity) until the job's attempt budget is spent, then the job is
  marked failed and stays queryable for operators.
- Any other exception fails the job immediately.
- Jobs left running by a crashed worker are returned to the queue by
  stuck-job detection on the next poll.

Usage:
    runner = AsyncJobRunner(job_store, queue_config)
    runner.consume("screen-entity", orchestrator.handle_job)
    runner.start()
    job_id = runner.enqueue("screen-entity", {"entity_id": "u-1", ...})
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from log_utils import sanitize_for_logging
from screening.errors import AggregationInvariantError, NotFoundError, TransientStoreError
from screening.models import JobState, ScreeningJob, utcnow
from screening.stores import JobStore

logger = logging.getLogger(__name__)

JobHandler = Callable[[ScreeningJob], Any]


class AsyncJobRunner:
    """Durable queue front-end plus a pool of consumer threads."""

    def __init__(self, store: JobStore, queue_config, sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            store: Durable job store
            queue_config: QueueConfig section from ConfigManager
            sleep: Sleep function used between retries (overridable in tests)
        """
        self.store = store
        self.config = queue_config
        self._sleep = sleep
        self._handlers: Dict[str, JobHandler] = {}
        self._stop = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Future] = []

    # ------------------------------------------------------------------
    # Submission and administration
    # ------------------------------------------------------------------

    def enqueue(self, job_name: str, payload: Dict[str, Any]) -> str:
        """Persist a job and return its id without waiting for execution."""
        job = self.store.enqueue(job_name, payload, self.config.max_attempts)
        logger.info("Job submitted: job_id=%s job_name=%s", job.id, job_name)
        return job.id

    def get_job(self, job_id: str) -> ScreeningJob:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError("ScreeningJob", job_id)
        return job

    def list_failed_jobs(self, limit: int = 100) -> List[ScreeningJob]:
        return self.store.list_by_state(JobState.FAILED, limit=limit)

    def remove_job(self, job_id: str) -> bool:
        """Drop a job that has not started yet.

        Raises:
            NotFoundError: If the job does not exist

        Returns:
            False if the job has already started or finished
        """
        self.get_job(job_id)
        removed = self.store.remove(job_id)
        if removed:
            logger.info("Job removed from queue: job_id=%s", job_id)
        return removed

    def consume(self, job_name: str, handler: JobHandler) -> None:
        """Register the handler executed for jobs named job_name."""
        self._handlers[job_name] = handler

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def requeue_stuck_jobs(self) -> int:
        cutoff = utcnow() - timedelta(seconds=self.config.stuck_job_timeout_seconds)
        requeued = self.store.requeue_stuck(cutoff)
        if requeued:
            logger.warning("Requeued %d stuck job(s) started before %s", requeued, cutoff.isoformat())
        return requeued

    def run_once(self, job_name: str) -> Optional[ScreeningJob]:
        """Claim and execute a single job.

        Returns:
            The job record after execution, or None if the queue was empty
        """
        handler = self._handlers.get(job_name)
        if handler is None:
            raise KeyError(f"No handler registered for job name: {job_name}")

        job = self.store.claim_next(job_name)
        if job is None:
            return None

        self._execute(job, handler)
        return self.store.get(job.id)

    def drain(self, job_name: str) -> int:
        """Run jobs until the queue is empty. Returns the number executed."""
        executed = 0
        while self.run_once(job_name) is not None:
            executed += 1
        return executed

    def _execute(self, job: ScreeningJob, handler: JobHandler) -> None:
        remaining = job.max_attempts - job.attempts
        if remaining <= 0:
            self._fail(job, "No attempts left")
            return

        logger.info("Job started: job_id=%s attempt=%d/%d", job.id, job.attempts + 1, job.max_attempts)

        retryer = Retrying(
            stop=stop_after_attempt(remaining),
            wait=wait_exponential(
                multiplier=self.config.backoff_multiplier,
                min=self.config.backoff_min_seconds,
                max=self.config.backoff_max_seconds
            ),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True
        )

        attempts, run_attempts = job.attempts, 0
        try:
            for attempt in retryer:
                with attempt:
                    run_attempts += 1
                    attempts = self.store.record_attempt(job.id)
                    outcome = handler(job)
        except TransientStoreError as e:
            self._fail(job, self._describe_transient(e, job, attempts, run_attempts))
            return
        except AggregationInvariantError as e:
            logger.critical(
                "Scoring policy violated, job not retried: job_id=%s error=%s",
                job.id, sanitize_for_logging(str(e))
            )
            self._fail(job, f"AggregationInvariantError: {e}")
            return
        except Exception as e:
            logger.exception("Job handler crashed: job_id=%s", job.id)
            self._fail(job, f"{type(e).__name__}: {e}")
            return

        result_id = outcome if isinstance(outcome, str) or outcome is None else getattr(outcome, "id", None)
        self.store.complete(job.id, result_id)
        logger.info("Job completed: job_id=%s result_id=%s", job.id, result_id)

    def _describe_transient(self, error: TransientStoreError, job: ScreeningJob,
                            attempts: int, run_attempts: int) -> str:
        entity_id = error.entity_id or job.payload.get("entity_id")
        payload = error.payload if error.payload is not None else job.payload
        return (
            f"TransientStoreError after {attempts} attempt(s), {run_attempts} in this run: {error} "
            f"(entity_id={entity_id}, payload={payload})"
        )

    def _fail(self, job: ScreeningJob, error: str) -> None:
        self.store.fail(job.id, error)
        logger.error("Job failed: job_id=%s error=%s", job.id, sanitize_for_logging(error))

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    def start(self, job_name: str, workers: Optional[int] = None) -> None:
        """Start consumer threads for job_name."""
        if self._executor is not None:
            return
        if job_name not in self._handlers:
            raise KeyError(f"No handler registered for job name: {job_name}")

        count = workers or self.config.workers
        self._stop.clear()
        self._executor = ThreadPoolExecutor(max_workers=count, thread_name_prefix="screening-worker")
        self._futures = [
            self._executor.submit(self._worker_loop, job_name, index)
            for index in range(count)
        ]
        logger.info("Started %d screening worker(s) for %s", count, job_name)

    @property
    def is_running(self) -> bool:
        """True while the pool is started and at least one worker thread is alive."""
        if self._executor is None or self._stop.is_set():
            return False
        return any(not future.done() for future in self._futures)

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
            self._futures = []
            logger.info("Screening workers stopped")

    def _worker_loop(self, job_name: str, index: int) -> None:
        while not self._stop.is_set():
            try:
                if index == 0:
                    self.requeue_stuck_jobs()
                job = self.run_once(job_name)
            except TransientStoreError as e:
                # Queue bookkeeping itself failed; the job stays running and
                # will be picked up again by stuck-job detection.
                logger.error("Queue store unavailable: %s", sanitize_for_logging(str(e)))
                job = None
            except Exception:
                logger.exception("Screening worker %d hit an unexpected error, continuing", index)
                job = None
            if job is None:
                self._stop.wait(self.config.poll_interval_seconds)
