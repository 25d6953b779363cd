"""
Fuzzy name matching of one search term against watchlist entries.
"""

import logging
from typing import Iterable, List

from screening.models import CandidateMatch, WatchlistEntry
from screening.normalizer import normalize
from screening.similarity import similarity

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 75.0


def find_matches(
    term: str,
    entries: Iterable[WatchlistEntry],
    threshold: float = DEFAULT_THRESHOLD,
    matched_field: str = "name"
) -> List[CandidateMatch]:
    """
    Scan entries for names similar to a search term.

    The term and each entry name are normalized before scoring. Entries
    scoring at or above the threshold are returned, highest score first;
    equal scores keep the order in which the entries were given. The
    returned candidates carry no watchlist identity yet, callers attach it
    with CandidateMatch.with_watchlist().

    Args:
        term: Raw search value from the subject
        entries: Watchlist entries to scan (never modified)
        threshold: Inclusive minimum similarity (0-100)
        matched_field: Subject attribute the term came from

    Returns:
        List of CandidateMatch sorted by descending similarity
    """
    if not 0 <= threshold <= 100:
        raise ValueError(f"Threshold must be between 0 and 100, got {threshold}")

    normalized_term = normalize(term)
    if not normalized_term:
        return []

    matches = []
    for entry in entries:
        score = similarity(normalized_term, normalize(entry.name))
        if score >= threshold:
            matches.append(CandidateMatch(
                watchlist_id="",
                watchlist_type="",
                watchlist_source="",
                matched_field=matched_field,
                search_value=term,
                similarity_score=score,
                source_entry=entry,
            ))

    # list.sort is stable, so ties stay in entry order
    matches.sort(key=lambda m: m.similarity_score, reverse=True)
    return matches
