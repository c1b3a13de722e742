"""Canonical forms for names, institutes and percentages.

Used by both the exact-hash path (corpus import, exact lookup) and fuzzy
scoring. The two paths must normalize identically, otherwise a record that
hashes equal could score below the fuzzy threshold.
"""

from __future__ import annotations

import re

from vericred.utils import compute_string_hash

HONORIFICS = frozenset({
    "mr", "mrs", "ms", "miss", "mx", "dr", "prof", "professor",
    "shri", "sri", "smt", "kumari", "km", "master", "sir", "madam",
})

INSTITUTE_SUFFIXES = frozenset({
    "university", "college", "institute", "school", "department",
    "centre", "center",
})

_WS_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def normalize_text(text: str | None) -> str:
    """Collapse whitespace to single spaces, trim, lower-case."""
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip().lower()


def normalize_name(name: str | None) -> str:
    """Lower-cased name without honorifics, in "first last" order.

    >>> normalize_name("Doe,  Jane")
    'jane doe'
    >>> normalize_name("Dr. Jane  Doe")
    'jane doe'
    """
    if not name:
        return ""
    value = _WS_RE.sub(" ", name).strip()
    if value.count(",") == 1:
        last, first = (part.strip() for part in value.split(","))
        if last and first:
            value = f"{first} {last}"
    tokens = [t for t in value.replace(",", " ").split(" ") if t]
    kept = [t for t in tokens if t.lower().rstrip(".") not in HONORIFICS]
    return " ".join(kept).lower()


def normalize_institute(institute: str | None) -> str:
    """Lower-cased institute name with common suffix words removed."""
    if not institute:
        return ""
    value = _NON_WORD_RE.sub(" ", institute.lower())
    tokens = [t for t in value.split() if t not in INSTITUTE_SUFFIXES]
    return " ".join(tokens)


def normalize_percentage(score: str | float | int | None) -> str:
    """Strip everything except digits, '.' and '-'."""
    if score is None:
        return ""
    return _NON_NUMERIC_RE.sub("", str(score))


def canonical_triple(name: str | None, institute: str | None, score: str | None) -> str:
    """``name|institute|score`` of the normalized fields."""
    return "|".join((
        normalize_name(name),
        normalize_institute(institute),
        normalize_percentage(score),
    ))


def corpus_hash(name: str | None, institute: str | None, score: str | None) -> str:
    """Exact-match fingerprint of a (name, institute, score) triple."""
    return compute_string_hash(canonical_triple(name, institute, score))
