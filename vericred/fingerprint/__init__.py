"""Document fingerprinting and heuristic field extraction."""

from vericred.fingerprint.extractor import (
    digest_bytes,
    digest_text,
    extract_text,
    fingerprint,
)
from vericred.fingerprint.fields import extract_fields

__all__ = [
    "digest_bytes",
    "digest_text",
    "extract_text",
    "extract_fields",
    "fingerprint",
]
