"""Weighted edit-distance matching of a claimed triple against the corpus.

Scoring per candidate::

    name_score, institute_score = 1 - lev(a, b) / max(len(a), len(b))
    score_score                 = banded percentage similarity
    composite                   = 0.52 * name + 0.38 * institute + 0.10 * score

A candidate is accepted when the composite clears the threshold, or at a
slightly relaxed bar when name and institute alone are convincing, since
the percentage is the least reliable field to extract. Among accepted
candidates the highest composite wins.
"""

from __future__ import annotations

import logging
from typing import Protocol

from rapidfuzz.distance import Levenshtein

from vericred.models import CorpusRecord, MatchResult
from vericred.normalization import normalize_institute, normalize_name, normalize_percentage

logger = logging.getLogger(__name__)

NAME_WEIGHT = 0.52
INSTITUTE_WEIGHT = 0.38
SCORE_WEIGHT = 0.10

EARLY_ACCEPT_AVERAGE = 0.78
EARLY_ACCEPT_SINGLE = 0.72
EARLY_ACCEPT_RELAXATION = 0.02

DEFAULT_THRESHOLD = 0.80


class CandidateSource(Protocol):
    def candidates(self, institute_tokens: list[str], norm_score: str, limit: int) -> list[CorpusRecord]: ...

    def recent(self, limit: int) -> list[CorpusRecord]: ...


def string_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]; 1.0 when both are empty."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def percentage_similarity(a: str, b: str) -> float:
    """Banded similarity of two normalized percentage strings."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    try:
        diff = abs(float(a) - float(b))
    except ValueError:
        return 1.0 if a == b else 0.0
    if diff == 0:
        return 1.0
    if diff <= 1:
        return 0.9
    if diff <= 2:
        return 0.75
    return 0.0


def composite_score(name_score: float, institute_score: float, score_score: float) -> float:
    return NAME_WEIGHT * name_score + INSTITUTE_WEIGHT * institute_score + SCORE_WEIGHT * score_score


def score_candidate(
    name: str,
    institute: str,
    score: str,
    record: CorpusRecord,
    threshold: float = DEFAULT_THRESHOLD,
) -> tuple[MatchResult, bool]:
    """Score one candidate against already-normalized claim fields.

    Returns the scored result and whether it clears the acceptance bar.
    """
    name_score = string_similarity(name, normalize_name(record.name))
    institute_score = string_similarity(institute, normalize_institute(record.institute))
    score_score = percentage_similarity(score, normalize_percentage(record.score))
    composite = composite_score(name_score, institute_score, score_score)

    average = (name_score + institute_score) / 2
    early = average >= EARLY_ACCEPT_AVERAGE and max(name_score, institute_score) >= EARLY_ACCEPT_SINGLE
    if early and composite >= threshold - EARLY_ACCEPT_RELAXATION:
        accepted_by = "composite" if composite >= threshold else "early_accept"
        accepted = True
    else:
        accepted_by = "composite"
        accepted = composite >= threshold

    result = MatchResult(
        record=record,
        match_score=composite,
        name_score=name_score,
        institute_score=institute_score,
        score_score=score_score,
        accepted_by=accepted_by,
    )
    return result, accepted


class FuzzyMatcher:
    """Bounded candidate retrieval plus best-match scoring."""

    def __init__(
        self,
        corpus: CandidateSource,
        threshold: float = DEFAULT_THRESHOLD,
        candidate_limit: int = 500,
        institute_tokens: int = 3,
    ) -> None:
        self._corpus = corpus
        self.threshold = threshold
        self.candidate_limit = candidate_limit
        self.institute_tokens = institute_tokens

    def _candidates(self, norm_institute: str, norm_score: str) -> list[CorpusRecord]:
        tokens = norm_institute.split()[: self.institute_tokens]
        found = self._corpus.candidates(tokens, norm_score, self.candidate_limit)
        if found:
            return found
        logger.debug("No filtered candidates; falling back to the %d most recent records", self.candidate_limit)
        return self._corpus.recent(self.candidate_limit)

    def match(
        self,
        name: str | None,
        institute: str | None,
        score: str | None,
        threshold: float | None = None,
    ) -> MatchResult | None:
        """Return the best accepted candidate, or None."""
        bar = self.threshold if threshold is None else threshold
        norm_name = normalize_name(name)
        norm_institute = normalize_institute(institute)
        norm_score = normalize_percentage(score)
        if not (norm_name or norm_institute or norm_score):
            return None

        candidates = self._candidates(norm_institute, norm_score)
        best: MatchResult | None = None
        for record in candidates:
            result, accepted = score_candidate(norm_name, norm_institute, norm_score, record, bar)
            if accepted and (best is None or result.match_score > best.match_score):
                best = result

        if best is not None:
            logger.info(
                "Fuzzy match: record=%s score=%.3f (%s) over %d candidate(s)",
                best.record.record_id, best.match_score, best.accepted_by, len(candidates),
            )
        else:
            logger.info("Fuzzy match: no candidate cleared %.2f over %d candidate(s)", bar, len(candidates))
        return best
