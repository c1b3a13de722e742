"""Data objects shared across fingerprinting, matching, ledger and orchestration."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from vericred.utils import utc_now


@dataclass(frozen=True)
class DocumentFingerprint:
    """Content fingerprint of one uploaded document.

    ``binary_hash`` is always present; ``text_hash`` only when text could be
    extracted or recognized.
    """

    binary_hash: str
    text_hash: str | None = None
    source_name: str = ""
    produced_at: str = field(default_factory=utc_now)

    def hashes(self) -> list[str]:
        """Non-empty hashes in exact-lookup order."""
        return [h for h in (self.binary_hash, self.text_hash) if h]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExtractedFields:
    """Best-effort (name, institute, score) triple; any field may be missing."""

    name: str | None = None
    institute: str | None = None
    score: str | None = None
    sources: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.name or self.institute or self.score)

    def merged_with(
        self,
        name: str | None = None,
        institute: str | None = None,
        score: str | None = None,
    ) -> "ExtractedFields":
        """Return a copy where caller-supplied values replace extracted ones."""
        sources = dict(self.sources)
        for key, value in (("name", name), ("institute", institute), ("score", score)):
            if value:
                sources[key] = "supplied"
        return ExtractedFields(
            name=name or self.name,
            institute=institute or self.institute,
            score=score or self.score,
            sources=sources,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "institute": self.institute, "score": self.score}


@dataclass(frozen=True)
class CorpusRecord:
    """Administrator dataset entry used as ground truth for matching."""

    record_id: int
    name: str
    institute: str
    score: str
    normalized_hash: str
    uploaded_by: str = ""
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AdminDocument:
    """Persisted fingerprint of an administrator-uploaded document."""

    document_id: int
    source_name: str
    binary_hash: str
    text_hash: str | None = None
    uploaded_by: str = ""
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AttestationToken:
    """A non-transferable attestation minted to an identity."""

    token_id: int
    owner_identity: str
    fingerprint: str
    token_uri: str = ""
    issued_at: str = field(default_factory=utc_now)
    tx_ref: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AuditKind(str, Enum):
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"
    MINT_FAILED = "mint_failed"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    VERIFICATION_ERROR = "verification_error"
    CORPUS_IMPORTED = "corpus_imported"
    DOCUMENTS_IMPORTED = "documents_imported"
    IMPORT_FAILED = "import_failed"


@dataclass
class AuditEvent:
    """Append-only administrator notification. Only ``read`` ever changes."""

    event_id: str
    kind: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)
    read: bool = False
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Identity:
    """Claimed identity: a wallet-like address and/or an account email."""

    wallet: str | None = None
    email: str | None = None

    @property
    def owner(self) -> str:
        """Ledger owner for minted tokens (wallet preferred)."""
        return self.wallet or self.email or ""

    def is_empty(self) -> bool:
        return not (self.wallet or self.email)

    def to_dict(self) -> dict[str, Any]:
        return {"wallet": self.wallet, "email": self.email}


@dataclass(frozen=True)
class MatchResult:
    """An accepted fuzzy candidate with its per-field scores."""

    record: CorpusRecord
    match_score: float
    name_score: float
    institute_score: float
    score_score: float
    accepted_by: str = "composite"

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record.record_id,
            "match_score": round(self.match_score, 4),
            "name_score": round(self.name_score, 4),
            "institute_score": round(self.institute_score, 4),
            "score_score": round(self.score_score, 4),
            "accepted_by": self.accepted_by,
        }


class VerificationState(str, Enum):
    RECEIVED = "RECEIVED"
    EXTRACTING = "EXTRACTING"
    HASH_COMPUTED = "HASH_COMPUTED"
    EXACT_LOOKUP = "EXACT_LOOKUP"
    FOUND_EXACT = "FOUND_EXACT"
    LOOKUP_MISS = "LOOKUP_MISS"
    FUZZY_LOOKUP = "FUZZY_LOOKUP"
    FOUND_FUZZY = "FOUND_FUZZY"
    NO_MATCH = "NO_MATCH"
    MINTING = "MINTING"
    VERIFIED = "VERIFIED"
    MINT_FAILED = "MINT_FAILED"


@dataclass
class VerificationOutcome:
    """Result of one pass through the verification workflow."""

    verified: bool
    mode: str = "none"
    state: VerificationState = VerificationState.NO_MATCH
    matched_record: CorpusRecord | None = None
    token: AttestationToken | None = None
    fingerprint: str | None = None
    fields: ExtractedFields = field(default_factory=ExtractedFields)
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "mode": self.mode,
            "state": self.state.value,
            "matched_record": self.matched_record.to_dict() if self.matched_record else None,
            "token": self.token.to_dict() if self.token else None,
            "fingerprint": self.fingerprint,
            "fields": self.fields.to_dict(),
            "diagnostics": self.diagnostics,
        }
