"""Import transaction matching engine."""

from .confidence import (
    DuplicateGrouping,
    MatchingOptions,
    MatchingResult,
    MatchResult,
    MatchType,
    classify_similarity,
)
from .fuzzy import FuzzyMatcher, clean_description, description_similarity, normalize_date

__all__ = [
    "FuzzyMatcher",
    "MatchingOptions",
    "MatchingResult",
    "MatchResult",
    "MatchType",
    "DuplicateGrouping",
    "classify_similarity",
    "clean_description",
    "description_similarity",
    "normalize_date",
]
