"""
Bounded similarity metric built on Levenshtein edit distance.
"""

from rapidfuzz.distance import Levenshtein


def similarity(a: str, b: str) -> float:
    """
    Similarity of two normalized strings on a 0-100 scale.

    Uses unit-cost Levenshtein distance ``d`` (insert, delete and substitute
    all cost 1)::

        (max(len(a), len(b)) - d) / max(len(a), len(b)) * 100

    Two empty strings are identical and score 100. The metric is symmetric
    and never leaves [0, 100].
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 100.0

    distance = Levenshtein.distance(a, b)
    return (longest - distance) / longest * 100.0
