"""
Weighted risk aggregation over candidate matches.

Each match contributes its similarity scaled by the weight of its
watchlist type and source. The aggregate is normalized against the
theoretical maximum (100 per match) so corroborating hits raise
confidence without volume alone dominating it.
"""

import logging
import math
from typing import Dict, Mapping, Optional, Sequence

from screening.errors import AggregationInvariantError
from screening.models import (
    CandidateMatch,
    RiskLevel,
    ScreeningStatus,
    WatchlistSource,
    WatchlistType,
)

logger = logging.getLogger(__name__)

DEFAULT_TYPE_WEIGHTS: Dict[WatchlistType, float] = {
    WatchlistType.SANCTIONS: 1.0,
    WatchlistType.PEP: 0.8,
    WatchlistType.ADVERSE_MEDIA: 0.6,
    WatchlistType.CUSTOM: 0.7,
    WatchlistType.UNKNOWN: 0.5,
}

DEFAULT_SOURCE_WEIGHTS: Dict[WatchlistSource, float] = {
    WatchlistSource.OFAC: 1.0,
    WatchlistSource.UN: 0.9,
    WatchlistSource.EU: 0.9,
    WatchlistSource.CUSTOM: 0.6,
    WatchlistSource.UNKNOWN: 0.5,
}

HIGH_RISK_THRESHOLD = 80.0
MEDIUM_RISK_THRESHOLD = 50.0


def _closed_table(table: Mapping, enum_cls, label: str) -> Dict:
    """Build a weight table keyed by every member of enum_cls.

    Keys may be members or their string values. A missing member or a
    weight outside [0, 1] is a policy bug.
    """
    resolved = {}
    for key, weight in table.items():
        try:
            member = enum_cls(key)
        except ValueError:
            raise AggregationInvariantError(f"Unknown {label} weight key: {key!r}")
        try:
            weight = float(weight)
        except (TypeError, ValueError):
            raise AggregationInvariantError(f"{label} weight for {member.value} is not a number: {weight!r}")
        if math.isnan(weight) or not 0.0 <= weight <= 1.0:
            raise AggregationInvariantError(
                f"{label} weight for {member.value} must be within [0, 1], got {weight}"
            )
        resolved[member] = weight

    missing = [m.value for m in enum_cls if m not in resolved]
    if missing:
        raise AggregationInvariantError(f"{label} weight table is missing: {', '.join(missing)}")
    return resolved


class RiskAggregator:
    """Turns a list of candidate matches into one score and verdict."""

    def __init__(
        self,
        type_weights: Optional[Mapping] = None,
        source_weights: Optional[Mapping] = None,
        high_threshold: float = HIGH_RISK_THRESHOLD,
        medium_threshold: float = MEDIUM_RISK_THRESHOLD
    ):
        self.type_weights = _closed_table(
            DEFAULT_TYPE_WEIGHTS if type_weights is None else type_weights,
            WatchlistType, "type"
        )
        self.source_weights = _closed_table(
            DEFAULT_SOURCE_WEIGHTS if source_weights is None else source_weights,
            WatchlistSource, "source"
        )
        if not 0 <= medium_threshold <= high_threshold <= 100:
            raise AggregationInvariantError(
                f"Risk thresholds must satisfy 0 <= medium ({medium_threshold}) "
                f"<= high ({high_threshold}) <= 100"
            )
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold

    @classmethod
    def from_config(cls, config) -> 'RiskAggregator':
        """Create an aggregator from a ConfigManager's risk section."""
        risk = config.risk
        return cls(
            type_weights=risk.type_weights,
            source_weights=risk.source_weights,
            high_threshold=risk.high_threshold,
            medium_threshold=risk.medium_threshold,
        )

    def type_weight(self, watchlist_type: str) -> float:
        return self.type_weights[WatchlistType.parse(watchlist_type)]

    def source_weight(self, watchlist_source: str) -> float:
        return self.source_weights[WatchlistSource.parse(watchlist_source)]

    def adjusted_score(self, match: CandidateMatch) -> float:
        """Similarity scaled by the watchlist's type and source weights."""
        score = match.similarity_score
        if math.isnan(score) or not 0.0 <= score <= 100.0:
            raise AggregationInvariantError(
                f"Similarity score out of range for watchlist {match.watchlist_id}: {score}"
            )
        return score * self.type_weight(match.watchlist_type) * self.source_weight(match.watchlist_source)

    def score(self, matches: Sequence[CandidateMatch]) -> float:
        """
        Overall risk score in [0, 100].

        Returns 0 for no matches; otherwise the sum of adjusted scores over
        the maximum attainable (100 per match), as a percentage capped at 100.
        """
        if not matches:
            return 0.0

        weighted = sum(self.adjusted_score(m) for m in matches)
        maximum = 100.0 * len(matches)
        aggregate = weighted / maximum * 100.0

        if not math.isfinite(aggregate) or aggregate < 0:
            raise AggregationInvariantError(f"Aggregate risk score is invalid: {aggregate}")
        return min(100.0, aggregate)

    def risk_level(self, score: float) -> RiskLevel:
        if score >= self.high_threshold:
            return RiskLevel.HIGH
        if score >= self.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def status(self, score: float, matches: Sequence[CandidateMatch]) -> ScreeningStatus:
        """
        Verdict for a screening.

        Any textual hit is flagged for review even when its weighted score
        is 0; only a screening with no matches at all is clear.
        """
        if not matches:
            return ScreeningStatus.CLEAR
        if score >= self.high_threshold:
            return ScreeningStatus.BLOCKED
        return ScreeningStatus.POTENTIAL_MATCH
