"""Fuzzy matching of claimed fields against the administrator corpus."""

from vericred.matching.fuzzy import (
    FuzzyMatcher,
    composite_score,
    percentage_similarity,
    score_candidate,
    string_similarity,
)

__all__ = [
    "FuzzyMatcher",
    "composite_score",
    "percentage_similarity",
    "score_candidate",
    "string_similarity",
]
