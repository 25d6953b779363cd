"""
Text canonicalization applied to both sides of every comparison.
"""

import re
from typing import Optional

# Anything that is not a letter, digit or whitespace. `\w` also admits the
# underscore, which is punctuation here.
_PUNCTUATION_RE = re.compile(r'[^\w\s]|_')
_WHITESPACE_RE = re.compile(r'\s+')


def normalize(text: Optional[str]) -> str:
    """
    Normalize free text for approximate matching.

    Lower-cases, strips punctuation (keeping letters, digits and internal
    whitespace), collapses whitespace runs to a single space and trims.
    Total and idempotent; None and empty input give an empty string.

    Args:
        text: The text to normalize (can be None)

    Returns:
        Normalized string
    """
    if not text:
        return ""

    normalized = str(text).lower()
    normalized = _PUNCTUATION_RE.sub('', normalized)
    normalized = _WHITESPACE_RE.sub(' ', normalized)
    return normalized.strip()
