"""Verification workflow: extraction, exact lookup, fuzzy fallback, minting.

One ``_VerificationRun`` walks the states

    RECEIVED -> EXTRACTING -> HASH_COMPUTED -> EXACT_LOOKUP
        -> FOUND_EXACT | LOOKUP_MISS -> FUZZY_LOOKUP -> FOUND_FUZZY | NO_MATCH
        -> MINTING -> VERIFIED | MINT_FAILED

and every terminal state records exactly one audit event. Misses come back
as ``VerificationOutcome(verified=False)``; ledger failures are re-raised
after their audit event so callers can tell "try again later"
(``LedgerUnavailable``) from "will not succeed as submitted" (``MintFailed``).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union

from vericred.audit import AuditSink, SQLiteAuditLog, new_event
from vericred.corpus import CorpusStore, parse_csv_rows, row_score
from vericred.fingerprint.extractor import extract_text, fingerprint
from vericred.fingerprint.fields import extract_fields
from vericred.identity import IdentityStore, InMemoryIdentityStore
from vericred.ledger import create_ledger
from vericred.ledger.base import AttestationLedger
from vericred.matching.fuzzy import FuzzyMatcher
from vericred.models import (
    AttestationToken,
    AuditKind,
    CorpusRecord,
    DocumentFingerprint,
    ExtractedFields,
    Identity,
    VerificationOutcome,
    VerificationState,
)
from vericred.normalization import corpus_hash
from vericred.settings import VeriCredSettings, get_config
from vericred.utils import InvalidInput, LedgerError, MintFailed, ensure_dir

logger = logging.getLogger(__name__)

S = VerificationState


def _failure_kind(exc: Exception) -> AuditKind:
    if isinstance(exc, MintFailed):
        return AuditKind.MINT_FAILED
    if isinstance(exc, LedgerError):
        return AuditKind.LEDGER_UNAVAILABLE
    return AuditKind.VERIFICATION_ERROR


# ---------------------------------------------------------------------------
# Administrator selections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CorpusSelection:
    record_id: int


@dataclass(frozen=True)
class DocumentSelection:
    document_id: int


@dataclass(frozen=True)
class FingerprintSelection:
    fingerprint: str


@dataclass(frozen=True)
class PayloadSelection:
    data: bytes
    filename: str = "document"
    fields: ExtractedFields | None = None


AdminSelection = Union[CorpusSelection, DocumentSelection, FingerprintSelection, PayloadSelection]


def coerce_fields(fields: ExtractedFields | Mapping[str, Any] | None) -> ExtractedFields:
    """Accept caller-supplied fields as a dataclass or a plain mapping."""
    if fields is None:
        return ExtractedFields()
    if isinstance(fields, ExtractedFields):
        return fields
    name = (fields.get("name") or "").strip() or None
    institute = (fields.get("institute") or "").strip() or None
    score = row_score(dict(fields)) or None
    return ExtractedFields().merged_with(name=name, institute=institute, score=score)


class _VerificationRun:
    """State tracker for a single request."""

    def __init__(self, channel: str, actor: str) -> None:
        self.request_id = uuid.uuid4().hex[:12]
        self.channel = channel
        self.actor = actor
        self.state = S.RECEIVED
        self.history: list[str] = [S.RECEIVED.value]
        self.diagnostics: dict[str, Any] = {"request_id": self.request_id, "channel": channel}

    def advance(self, state: VerificationState) -> None:
        logger.debug("[%s] %s -> %s", self.request_id, self.state.value, state.value)
        self.state = state
        self.history.append(state.value)

    def finish(self) -> dict[str, Any]:
        self.diagnostics["states"] = list(self.history)
        return self.diagnostics


class VerificationOrchestrator:
    """Entry point for every verification and import operation."""

    def __init__(
        self,
        corpus: CorpusStore,
        ledger: AttestationLedger,
        audit: AuditSink,
        identities: IdentityStore,
        settings: VeriCredSettings | None = None,
        matcher: FuzzyMatcher | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self.corpus = corpus
        self.ledger = ledger
        self.audit = audit
        self.identities = identities
        self.matcher = matcher or FuzzyMatcher(
            corpus,
            threshold=self.settings.fuzzy_threshold,
            candidate_limit=self.settings.fuzzy_candidate_limit,
            institute_tokens=self.settings.fuzzy_institute_tokens,
        )

    @classmethod
    def from_settings(cls, settings: VeriCredSettings | None = None) -> "VerificationOrchestrator":
        """Wire the corpus store, ledger backend, durable audit log and identity store from configuration."""
        cfg = settings or get_config()
        ensure_dir(cfg.data_dir)
        return cls(
            corpus=CorpusStore(cfg.corpus_db_path),
            ledger=create_ledger(cfg),
            audit=SQLiteAuditLog(cfg.audit_db_path),
            identities=InMemoryIdentityStore(),
            settings=cfg,
        )

    # -- Collaborator-facing operations ---------------------------------------

    def verify_document(
        self,
        payload: bytes | None,
        identity: Identity,
        filename: str = "document",
        fields: ExtractedFields | Mapping[str, Any] | None = None,
        binary_hash: str | None = None,
    ) -> VerificationOutcome:
        """Self-service verification of a user's own document or fields."""
        if identity is None or identity.is_empty():
            raise InvalidInput("A wallet address or account email is required")
        claimed = coerce_fields(fields)
        if not payload and not binary_hash and claimed.is_empty():
            raise InvalidInput("Provide a document or at least one of name, institute, percentage")

        run = _VerificationRun(channel="self_service", actor=identity.owner)
        return self._run(run, identity, payload, filename, claimed, binary_hash)

    def verify_public(
        self,
        payload: bytes | None,
        claimant_email: str,
        identity: Identity | None = None,
        filename: str = "document",
        fields: ExtractedFields | Mapping[str, Any] | None = None,
    ) -> VerificationOutcome:
        """Unauthenticated verification gated by possession of an account email."""
        if not claimant_email or not claimant_email.strip():
            raise InvalidInput("An account email is required")
        account = self.identities.find_by_email(claimant_email)
        if account is None:
            raise InvalidInput(f"No account is registered for {claimant_email}")
        claimed = coerce_fields(fields)
        if not payload and claimed.is_empty():
            raise InvalidInput("Provide a document or at least one of name, institute, percentage")

        wallet = (identity.wallet if identity else None) or account.wallet
        claimant = Identity(wallet=wallet, email=account.email)
        run = _VerificationRun(channel="public", actor=f"public:{account.email}")
        return self._run(run, claimant, payload, filename, claimed, None)

    def admin_verify(
        self,
        selection: AdminSelection,
        identity: Identity,
        actor: str = "admin",
    ) -> VerificationOutcome:
        """Administrator-triggered verification.

        Corpus and document selections skip extraction and go straight to
        exact lookup with the stored fingerprint(s).
        """
        if identity is None or identity.is_empty():
            raise InvalidInput("A wallet address or account email is required")

        run = _VerificationRun(channel="admin", actor=actor)

        if isinstance(selection, PayloadSelection):
            if not selection.data:
                raise InvalidInput("Uploaded document is empty")
            return self._run(run, identity, selection.data, selection.filename,
                             coerce_fields(selection.fields), None)

        record: CorpusRecord | None = None
        if isinstance(selection, CorpusSelection):
            record = self.corpus.get_record(selection.record_id)
            if record is None:
                raise InvalidInput(f"Corpus record {selection.record_id} does not exist")
            hashes = [record.normalized_hash]
            run.diagnostics["selection"] = {"record_id": record.record_id}
        elif isinstance(selection, DocumentSelection):
            document = self.corpus.get_document(selection.document_id)
            if document is None:
                raise InvalidInput(f"Admin document {selection.document_id} does not exist")
            hashes = [h for h in (document.binary_hash, document.text_hash) if h]
            run.diagnostics["selection"] = {"document_id": document.document_id}
        elif isinstance(selection, FingerprintSelection):
            if not selection.fingerprint:
                raise InvalidInput("Fingerprint is empty")
            hashes = [selection.fingerprint]
            run.diagnostics["selection"] = {"fingerprint": selection.fingerprint}
        else:
            raise InvalidInput(f"Unsupported selection: {selection!r}")

        fields = ExtractedFields()
        if record is not None:
            fields = ExtractedFields(name=record.name, institute=record.institute, score=record.score)
        return self._guarded(run, identity, fields, lambda: self._lookup_and_mint(run, identity, hashes, fields))

    def preview_fields(self, payload: bytes, filename: str = "document") -> dict[str, Any]:
        """Run extraction only, so a human can review fields before submitting."""
        if not payload:
            raise InvalidInput("Document payload is empty")
        text = extract_text(payload, filename, self.settings)
        fields = extract_fields(text)
        fp = fingerprint(payload, filename, self.settings, text=text or "")
        return {
            "fields": fields.to_dict(),
            "fingerprint": fp.to_dict(),
            "diagnostics": {
                "text_extracted": bool(text),
                "text_length": len(text or ""),
                "field_sources": dict(fields.sources),
                "ocr_enabled": self.settings.ocr_enabled,
            },
        }

    # -- Imports --------------------------------------------------------------

    def import_corpus(
        self,
        rows: Iterable[Mapping[str, Any]],
        uploaded_by: str = "admin",
    ) -> list[CorpusRecord]:
        """Normalize, persist and register administrator dataset rows."""
        valid: list[tuple[str, str, str]] = []
        skipped = 0
        for row in rows:
            name = str(row.get("name") or "").strip()
            institute = str(row.get("institute") or "").strip()
            if not name or not institute:
                skipped += 1
                continue
            valid.append((name, institute, row_score(dict(row))))
        if not valid:
            raise InvalidInput("No usable rows: each row needs a name and an institute")

        records: list[CorpusRecord] = []
        newly_registered = 0
        try:
            records = self.corpus.add_records(valid, uploaded_by=uploaded_by)
            for record in records:
                if not self.ledger.register(record.normalized_hash).already_present:
                    newly_registered += 1
        except Exception as exc:
            self._import_failed("corpus", uploaded_by, exc, stored=len(records), newly_registered=newly_registered)
            raise

        self.audit.record(new_event(
            AuditKind.CORPUS_IMPORTED,
            f"Imported {len(records)} corpus record(s)",
            {
                "uploaded_by": uploaded_by,
                "records": len(records),
                "newly_registered": newly_registered,
                "skipped_rows": skipped,
            },
        ))
        logger.info(
            "Corpus import by %s: %d record(s), %d newly registered, %d skipped",
            uploaded_by, len(records), newly_registered, skipped,
        )
        return records

    def import_corpus_csv(self, text: str, uploaded_by: str = "admin") -> list[CorpusRecord]:
        rows, skipped = parse_csv_rows(text)
        if skipped:
            logger.warning("CSV import skipped %d row(s) without name or institute", skipped)
        return self.import_corpus(rows, uploaded_by=uploaded_by)

    def import_document_set(
        self,
        files: Iterable[bytes | tuple[str, bytes]],
        uploaded_by: str = "admin",
    ) -> list[DocumentFingerprint]:
        """Fingerprint, persist and register administrator documents."""
        fingerprints: list[DocumentFingerprint] = []
        for i, item in enumerate(files):
            filename, data = item if isinstance(item, tuple) else (f"document-{i + 1}", item)
            if not data:
                logger.warning("Skipping empty document %s", filename)
                continue
            fingerprints.append(fingerprint(data, filename, self.settings))
        if not fingerprints:
            raise InvalidInput("No non-empty documents were supplied")

        stored = 0
        newly_registered = 0
        try:
            stored = len(self.corpus.add_documents(fingerprints, uploaded_by=uploaded_by))
            for fp in fingerprints:
                for digest in fp.hashes():
                    if not self.ledger.register(digest).already_present:
                        newly_registered += 1
        except Exception as exc:
            # Stored documents still match through the corpus; re-importing registers the rest
            self._import_failed("documents", uploaded_by, exc, stored=stored, newly_registered=newly_registered)
            raise

        self.audit.record(new_event(
            AuditKind.DOCUMENTS_IMPORTED,
            f"Imported {len(fingerprints)} document(s)",
            {
                "uploaded_by": uploaded_by,
                "documents": len(fingerprints),
                "with_text_hash": sum(1 for fp in fingerprints if fp.text_hash),
                "newly_registered": newly_registered,
            },
        ))
        return fingerprints

    def _import_failed(self, what: str, uploaded_by: str, exc: Exception, **counts: int) -> None:
        self.audit.record(new_event(
            AuditKind.IMPORT_FAILED,
            f"{what.capitalize()} import by {uploaded_by} stopped: {exc}",
            {
                "import": what,
                "uploaded_by": uploaded_by,
                "error": str(exc),
                "error_type": type(exc).__name__,
                **counts,
            },
        ))
        logger.error("%s import by %s stopped after %s: %s", what, uploaded_by, counts, exc)

    # -- Workflow -------------------------------------------------------------

    def _run(
        self,
        run: _VerificationRun,
        identity: Identity,
        payload: bytes | None,
        filename: str,
        claimed: ExtractedFields,
        binary_hash: str | None,
    ) -> VerificationOutcome:
        run.advance(S.EXTRACTING)
        fp: DocumentFingerprint | None = None
        fields = claimed
        if payload:
            text = extract_text(payload, filename, self.settings)
            extracted = extract_fields(text)
            fields = extracted.merged_with(name=claimed.name, institute=claimed.institute, score=claimed.score)
            fp = fingerprint(payload, filename, self.settings, text=text or "")
            run.diagnostics["text_extracted"] = bool(text)
        run.diagnostics["field_sources"] = dict(fields.sources)

        run.advance(S.HASH_COMPUTED)
        hashes: list[str] = []
        if fp is not None:
            hashes.extend(fp.hashes())
        if binary_hash and binary_hash not in hashes:
            hashes.insert(0, binary_hash)
        if not fields.is_empty():
            hashes.append(corpus_hash(fields.name, fields.institute, fields.score))

        return self._guarded(run, identity, fields, lambda: self._lookup_and_mint(run, identity, hashes, fields))

    def _guarded(self, run, identity, fields, step) -> VerificationOutcome:
        """Run ``step``; any failure is recorded as one audit event and re-raised."""
        try:
            return step()
        except Exception as exc:
            if isinstance(exc, LedgerError) and run.state == S.MINTING:
                run.advance(S.MINT_FAILED)
            self.audit.record(new_event(
                _failure_kind(exc),
                f"Verification halted at {run.state.value}: {exc}",
                {
                    "actor": run.actor,
                    "identity": identity.to_dict(),
                    "fields": fields.to_dict(),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "diagnostics": run.finish(),
                },
            ))
            logger.error("[%s] verification halted at %s: %s", run.request_id, run.state.value, exc)
            raise

    def _exact_lookup(self, hashes: list[str]) -> tuple[str, CorpusRecord | None] | None:
        """First hash that is a corpus record, an admin document or ledger-registered."""
        for digest in hashes:
            record = self.corpus.find_by_hash(digest)
            if (
                record is not None
                or self.corpus.find_document_by_hash(digest) is not None
                or self.ledger.is_registered(digest)
            ):
                return digest, record
        return None

    def _lookup_and_mint(
        self,
        run: _VerificationRun,
        identity: Identity,
        hashes: list[str],
        fields: ExtractedFields,
    ) -> VerificationOutcome:
        run.advance(S.EXACT_LOOKUP)
        run.diagnostics["hashes_checked"] = list(hashes)

        hit = self._exact_lookup(hashes)
        if hit is not None:
            run.advance(S.FOUND_EXACT)
            digest, record = hit
            return self._mint(run, identity, digest, "exact", record, fields)

        run.advance(S.LOOKUP_MISS)
        if not fields.is_empty():
            run.advance(S.FUZZY_LOOKUP)
            match = self.matcher.match(fields.name, fields.institute, fields.score)
            if match is not None:
                run.advance(S.FOUND_FUZZY)
                run.diagnostics["match"] = match.to_dict()
                return self._mint(run, identity, match.record.normalized_hash, "fuzzy", match.record, fields)

        run.advance(S.NO_MATCH)
        diagnostics = run.finish()
        self.audit.record(new_event(
            AuditKind.VERIFICATION_FAILED,
            "Verification failed: no matching record or registered fingerprint",
            {
                "actor": run.actor,
                "identity": identity.to_dict(),
                "fields": fields.to_dict(),
                "diagnostics": diagnostics,
            },
        ))
        return VerificationOutcome(
            verified=False,
            mode="none",
            state=S.NO_MATCH,
            fields=fields,
            diagnostics=diagnostics,
        )

    def _mint(
        self,
        run: _VerificationRun,
        identity: Identity,
        digest: str,
        mode: str,
        record: CorpusRecord | None,
        fields: ExtractedFields,
    ) -> VerificationOutcome:
        run.advance(S.MINTING)
        owner = identity.owner
        token: AttestationToken | None = None
        if self.settings.mint_idempotent:
            existing = self.ledger.tokens_for(owner=owner, fingerprint=digest)
            if existing:
                token = existing[0]
                run.diagnostics["reused_token"] = True
        if token is None:
            token = self.ledger.mint(owner, self.settings.token_uri_for(digest), digest)
        run.diagnostics["token_id"] = token.token_id

        run.advance(S.VERIFIED)
        marked = self.identities.mark_verified(identity, token.token_id)
        if not marked:
            logger.warning("[%s] no identity record to mark verified for %s", run.request_id, owner)
        run.diagnostics["identity_marked"] = marked

        diagnostics = run.finish()
        self.audit.record(new_event(
            AuditKind.VERIFIED,
            f"Verified {owner} via {mode} match",
            {
                "mode": mode,
                "actor": run.actor,
                "identity": identity.to_dict(),
                "fingerprint": digest,
                "token_id": token.token_id,
                "record_id": record.record_id if record else None,
                "request_id": run.request_id,
            },
        ))
        return VerificationOutcome(
            verified=True,
            mode=mode,
            state=S.VERIFIED,
            matched_record=record,
            token=token,
            fingerprint=digest,
            fields=fields,
            diagnostics=diagnostics,
        )


__all__ = [
    "AdminSelection",
    "CorpusSelection",
    "DocumentSelection",
    "FingerprintSelection",
    "PayloadSelection",
    "VerificationOrchestrator",
    "coerce_fields",
]
