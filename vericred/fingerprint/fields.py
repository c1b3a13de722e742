"""Heuristic (name, institute, score) extraction from recognized text.

Labeled patterns are tried first; unlabeled line scanning fills whatever is
still missing. Any subset of the three fields may come back empty.
"""

from __future__ import annotations

import re

from vericred.models import ExtractedFields

_LABEL_SEP = r"\s*[:\-–]\s*"
# A score, not the first digits of a year or the numerator of "456 / 600"
_SCORE_VALUE = r"(\d{1,3}(?:\.\d{1,2})?)(?![\d.])(?!\s*/)\s*%?"

LABELED_PATTERNS: dict[str, list[re.Pattern]] = {
    "name": [
        re.compile(r"(?:student|candidate|learner)(?:'s)?\s+name" + _LABEL_SEP + r"(.+)", re.IGNORECASE),
        re.compile(r"^\s*name(?:\s+of\s+(?:the\s+)?(?:student|candidate))?" + _LABEL_SEP + r"(.+)", re.IGNORECASE | re.MULTILINE),
    ],
    "institute": [
        re.compile(r"(?:name\s+of\s+(?:the\s+)?)?(?:institute|institution|college|university|school)(?:\s+name)?" + _LABEL_SEP + r"(.+)", re.IGNORECASE),
    ],
    # Percentage labels outrank aggregate/overall, which often label raw totals
    "score": [
        re.compile(r"\bpercent(?:age)?(?:\s+(?:of\s+)?marks)?(?:\s+(?:obtained|secured))?\s*[:\-–]?\s*" + _SCORE_VALUE, re.IGNORECASE),
        re.compile(r"\b(?:aggregate|overall)(?:\s+(?:percentage|percent))?(?:\s+(?:of\s+)?marks)?\s*[:\-–]?\s*" + _SCORE_VALUE, re.IGNORECASE),
    ],
}

_PERCENT_RE = re.compile(r"\b(\d{1,3}(?:\.\d{1,2})?)\s*%")


def _is_percentage(value: str) -> bool:
    try:
        return 0 <= float(value) <= 100
    except ValueError:
        return False


INSTITUTE_KEYWORDS = ("college", "institute", "university", "school", "department", "academy", "polytechnic")

# Lines that look like names but are document headings
HEADING_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\bcertificate\b", r"\bmarks?\s*(?:sheet|card|statement)\b", r"\bstatement\s+of\b",
        r"\btranscript\b", r"\bexamination\b", r"\bboard\b", r"\bgovernment\b",
        r"\bsemester\b", r"\bdegree\b", r"\bbachelor\b", r"\bmaster\s+of\b",
        r"\bcontroller\b", r"\bregistrar\b", r"\bprincipal\b", r"\bresult\b",
        r"\bgrade\b", r"\bsubject\b", r"\btotal\b",
    )
]

_NAME_TOKEN_RE = re.compile(r"^[A-Z][A-Za-z.'\-]*$")


def _clean_value(value: str) -> str:
    value = re.split(r"\s{3,}|\t|\|", value.strip())[0]
    return value.strip(" .,:;-")


def _is_heading(line: str) -> bool:
    return any(p.search(line) for p in HEADING_PATTERNS)


def _looks_like_name(line: str) -> bool:
    tokens = line.split()
    if not 2 <= len(tokens) <= 6:
        return False
    if any(ch.isdigit() for ch in line):
        return False
    if _is_heading(line) or any(k in line.lower() for k in INSTITUTE_KEYWORDS):
        return False
    return all(_NAME_TOKEN_RE.match(t) for t in tokens)


def _labeled(text: str) -> dict[str, str]:
    found: dict[str, str] = {}
    for field_name, patterns in LABELED_PATTERNS.items():
        for pattern in patterns:
            value = next(
                (v for v in (_clean_value(m.group(1)) for m in pattern.finditer(text))
                 if v and (field_name != "score" or _is_percentage(v))),
                None,
            )
            if value:
                found[field_name] = value
                break
    return found


def extract_fields(text: str | None) -> ExtractedFields:
    """Extract whatever of (name, institute, score) the text reveals."""
    if not text or not text.strip():
        return ExtractedFields()

    values: dict[str, str] = {}
    sources: dict[str, str] = {}

    for key, value in _labeled(text).items():
        values[key] = value
        sources[key] = "label"

    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    for line in lines:
        if "score" not in values:
            match = _PERCENT_RE.search(line)
            if match and _is_percentage(match.group(1)):
                values["score"] = match.group(1)
                sources["score"] = "percent_token"
        if "institute" not in values and any(k in line.lower() for k in INSTITUTE_KEYWORDS):
            values["institute"] = _clean_value(line)
            sources["institute"] = "keyword_line"
        if "name" not in values and _looks_like_name(line):
            values["name"] = line
            sources["name"] = "name_like_line"
        if len(values) == 3:
            break

    return ExtractedFields(
        name=values.get("name") or None,
        institute=values.get("institute") or None,
        score=values.get("score") or None,
        sources=sources,
    )
