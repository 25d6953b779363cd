"""
Screening orchestration: submission, execution, disposition and history.

Key Features:
- Non-blocking submission through the durable job queue
- Per-watchlist, per-term fuzzy matching with a configurable threshold
- Weighted risk aggregation into a score, risk level and status
- Atomic persistence of a result together with its match evidence
- False-positive disposition that never alters the original evidence

Usage:
    orchestrator = ScreeningOrchestrator(watchlists, results, runner, aggregator)
    runner.consume(SCREENING_JOB_NAME, orchestrator.handle_job)

    job_id = orchestrator.screen_entity("user-42", "user", {"fullName": "John Doe"})
"""

import logging
from typing import Any, Dict, List, Optional, Union

from log_utils import sanitize_for_logging
from screening.errors import NotFoundError, TransientStoreError, ValidationError
from screening.jobs import AsyncJobRunner
from screening.matcher import DEFAULT_THRESHOLD, find_matches
from screening.models import (
    CandidateMatch,
    ScreeningJob,
    ScreeningMatch,
    ScreeningResult,
    Watchlist,
    utcnow,
)
from screening.risk import RiskAggregator
from screening.stores import AuditTrail, ResultStore, WatchlistStore
from screening.subject import ScreeningSubject, extract_search_terms, validate_field_names

logger = logging.getLogger(__name__)

SCREENING_JOB_NAME = "screen-entity"


class ScreeningOrchestrator:
    """
    Drives a screening from submission to a persisted verdict.

    All collaborators are injected so the pipeline can be exercised without
    a database.
    """

    def __init__(
        self,
        watchlist_store: WatchlistStore,
        result_store: ResultStore,
        job_runner: AsyncJobRunner,
        aggregator: Optional[RiskAggregator] = None,
        threshold: float = DEFAULT_THRESHOLD,
        audit: Optional[AuditTrail] = None,
        job_name: str = SCREENING_JOB_NAME,
        algorithm_version: Optional[str] = None,
        recognized_fields: Optional[List[str]] = None
    ):
        self.watchlists = watchlist_store
        self.results = result_store
        self.runner = job_runner
        self.aggregator = aggregator or RiskAggregator()
        self.threshold = threshold
        self.audit = audit
        self.job_name = job_name
        self.algorithm_version = algorithm_version
        self.recognized_fields = (
            None if recognized_fields is None else validate_field_names(recognized_fields)
        )

    @classmethod
    def from_config(
        cls,
        config,
        watchlist_store: WatchlistStore,
        result_store: ResultStore,
        job_runner: AsyncJobRunner,
        audit: Optional[AuditTrail] = None
    ) -> 'ScreeningOrchestrator':
        return cls(
            watchlist_store,
            result_store,
            job_runner,
            aggregator=RiskAggregator.from_config(config),
            threshold=config.matching.threshold,
            audit=audit,
            job_name=config.queue.job_name,
            algorithm_version=config.algorithm.version,
            recognized_fields=config.matching.recognized_fields,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def screen_entity(
        self,
        entity_id: str,
        entity_type: str,
        subject: Union[ScreeningSubject, Dict[str, Any], None]
    ) -> str:
        """
        Validate a screening request and queue it.

        Returns as soon as the job is stored; scoring happens on a worker.

        Raises:
            ValidationError: If the entity id or subject is empty. Nothing
                is enqueued in that case.
        """
        if not entity_id or not str(entity_id).strip():
            raise ValidationError(
                "Entity id is required",
                field="entity_id",
                code="ENTITY_ID_REQUIRED",
                suggestion="Provide the id of the user or organization being screened"
            )
        if not entity_type or not str(entity_type).strip():
            raise ValidationError(
                "Entity type is required",
                field="entity_type",
                code="ENTITY_TYPE_REQUIRED",
                suggestion="Use a type such as 'user' or 'company'"
            )

        if not isinstance(subject, ScreeningSubject):
            subject = ScreeningSubject.from_dict(subject)
        if subject.is_empty():
            raise ValidationError(
                "Screening subject has no attributes",
                field="subject",
                code="EMPTY_SUBJECT",
                suggestion="Provide at least one of firstName, lastName, fullName, passportNumber"
            )

        payload = {
            "entity_id": str(entity_id),
            "entity_type": str(entity_type),
            "screening_data": subject.to_dict(),
        }
        job_id = self.runner.enqueue(self.job_name, payload)
        logger.info(
            "Screening submitted: entity_id=%s job_id=%s",
            sanitize_for_logging(str(entity_id)), job_id
        )
        return job_id

    submit_screening = screen_entity

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def handle_job(self, job: ScreeningJob) -> ScreeningResult:
        """Queue consumer entry point for screening jobs."""
        payload = job.payload
        try:
            return self.perform_screening(
                payload["entity_id"],
                payload["entity_type"],
                payload.get("screening_data") or {},
                job_id=job.id,
            )
        except TransientStoreError as e:
            raise e.with_context(payload.get("entity_id"), payload)

    def perform_screening(
        self,
        entity_id: str,
        entity_type: str,
        subject: Union[ScreeningSubject, Dict[str, Any]],
        job_id: Optional[str] = None
    ) -> ScreeningResult:
        """
        Screen a subject against every watchlist and persist the verdict.

        The result and its matches are written as one unit. Store failures
        propagate as TransientStoreError so the queue can retry; running
        this twice on the same input produces two results with the same
        score and status.
        """
        if not isinstance(subject, ScreeningSubject):
            subject = ScreeningSubject.from_dict(subject)

        terms = extract_search_terms(subject, self.recognized_fields)
        watchlists = self.watchlists.list_all()

        candidates: List[CandidateMatch] = []
        for watchlist in watchlists:
            candidates.extend(self._screen_against_watchlist(terms, watchlist))

        risk_score = self.aggregator.score(candidates)
        status = self.aggregator.status(risk_score, candidates)

        result = ScreeningResult(
            entity_id=entity_id,
            entity_type=entity_type,
            screening_data=subject.to_dict(),
            overall_risk_score=risk_score,
            status=status,
            job_id=job_id,
        )
        result.matches = [self._to_screening_match(result.id, c) for c in candidates]

        saved = self.results.save(result)

        logger.info(
            "Screening completed: entity_id=%s result_id=%s status=%s score=%.2f "
            "terms=%d watchlists=%d matches=%d",
            sanitize_for_logging(entity_id), saved.id, status.value, risk_score,
            len(terms), len(watchlists), len(candidates)
        )
        if self.audit is not None:
            self.audit.record(
                "SCREEN",
                "screening_result",
                resource_id=saved.id,
                details={
                    "entity_id": entity_id,
                    "status": status.value,
                    "overall_risk_score": risk_score,
                    "match_count": len(candidates),
                    "job_id": job_id,
                }
            )
        return saved

    def _screen_against_watchlist(self, terms, watchlist: Watchlist) -> List[CandidateMatch]:
        matches = []
        for term in terms:
            for match in find_matches(term.value, watchlist.entries, self.threshold, term.field):
                matches.append(match.with_watchlist(watchlist))
        return matches

    def _to_screening_match(self, result_id: str, candidate: CandidateMatch) -> ScreeningMatch:
        type_weight = self.aggregator.type_weight(candidate.watchlist_type)
        source_weight = self.aggregator.source_weight(candidate.watchlist_source)
        return ScreeningMatch(
            screening_result_id=result_id,
            watchlist_id=candidate.watchlist_id,
            matched_field=candidate.matched_field,
            match_score=candidate.similarity_score,
            risk_level=self.aggregator.risk_level(candidate.similarity_score),
            match_details={
                "watchlist_type": candidate.watchlist_type,
                "watchlist_source": candidate.watchlist_source,
                "search_value": candidate.search_value,
                "entry": candidate.source_entry.to_dict(),
                "type_weight": type_weight,
                "source_weight": source_weight,
                "adjusted_score": candidate.similarity_score * type_weight * source_weight,
                "threshold": self.threshold,
                "algorithm_version": self.algorithm_version,
            },
        )

    # ------------------------------------------------------------------
    # Queries and disposition
    # ------------------------------------------------------------------

    def get_result(self, result_id: str) -> ScreeningResult:
        result = self.results.get(result_id)
        if result is None:
            raise NotFoundError("ScreeningResult", result_id)
        return result

    def mark_as_false_positive(self, result_id: str, reviewer: str, notes: Optional[str] = None) -> ScreeningResult:
        """
        Record a reviewer's false-positive disposition.

        Only the review fields change; score, status and matches keep the
        original evidence.

        Raises:
            ValidationError: If reviewer is empty
            NotFoundError: If the result does not exist
        """
        if not reviewer or not reviewer.strip():
            raise ValidationError(
                "Reviewer is required",
                field="reviewed_by",
                code="REVIEWER_REQUIRED",
                suggestion="Provide the name or id of the reviewing analyst"
            )

        result = self.results.update_review(result_id, reviewer, notes, utcnow())
        if result is None:
            raise NotFoundError("ScreeningResult", result_id)

        logger.info(
            "Result marked as false positive: result_id=%s reviewer=%s",
            result_id, sanitize_for_logging(reviewer)
        )
        if self.audit is not None:
            self.audit.record(
                "FALSE_POSITIVE",
                "screening_result",
                resource_id=result_id,
                actor=reviewer,
                details={"notes": notes}
            )
        return result

    mark_false_positive = mark_as_false_positive

    def get_screening_history(self, entity_id: str) -> List[ScreeningResult]:
        """All results for an entity, most recent first."""
        return self.results.list_by_entity(entity_id)

    get_history = get_screening_history

    def get_job(self, job_id: str) -> ScreeningJob:
        return self.runner.get_job(job_id)
