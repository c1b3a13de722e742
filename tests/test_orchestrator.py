"""Tests for the verification workflow and administrator imports."""

import pytest
from unittest.mock import MagicMock, patch

from tests.conftest import SAMPLE_ROWS
from vericred.models import AuditKind, Identity, VerificationState
from vericred.normalization import corpus_hash
from vericred.orchestrator import (
    CorpusSelection,
    DocumentSelection,
    FingerprintSelection,
    PayloadSelection,
    VerificationOrchestrator,
)
from vericred.audit import SQLiteAuditLog
from vericred.utils import InvalidInput, LedgerUnavailable, MintFailed, StorageUnavailable

JANE = Identity(wallet="0xjanewallet", email="jane@example.edu")
JANE_FIELDS = {"name": "Jane Doe", "institute": "ABC College", "score": "72"}


def _events(orchestrator, kind=None, unread_only=True):
    return orchestrator.audit.list_events(kind=kind, unread_only=unread_only)


class TestExactPath:
    def test_fields_only_exact_match(self, seeded):
        outcome = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        assert outcome.verified is True
        assert outcome.mode == "exact"
        assert outcome.state == VerificationState.VERIFIED
        assert outcome.fingerprint == corpus_hash("Doe, Jane", "ABC College", "72%")
        assert outcome.matched_record.name == "Doe, Jane"
        assert outcome.token.token_id == 1
        assert outcome.token.owner_identity == "0xjanewallet"
        assert outcome.token.token_uri == f"https://tokens.example.test/{outcome.fingerprint}.json"

    def test_state_trail(self, seeded):
        outcome = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        assert outcome.diagnostics["states"] == [
            "RECEIVED", "EXTRACTING", "HASH_COMPUTED", "EXACT_LOOKUP",
            "FOUND_EXACT", "MINTING", "VERIFIED",
        ]

    def test_exact_hit_never_reaches_fuzzy(self, seeded):
        seeded.matcher = MagicMock()
        outcome = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        assert outcome.mode == "exact"
        seeded.matcher.match.assert_not_called()

    def test_marks_identity_and_emits_one_event(self, seeded, identities):
        outcome = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        record = identities.find_by_email("jane@example.edu")
        assert record.verified is True
        assert record.token_id == outcome.token.token_id

        [event] = _events(seeded)
        assert event.kind == AuditKind.VERIFIED.value
        assert event.payload["mode"] == "exact"
        assert event.payload["fingerprint"] == outcome.fingerprint
        assert event.payload["actor"] == "0xjanewallet"

    def test_document_text_hash_match(self, orchestrator):
        """A re-saved copy of an imported document verifies through its text hash."""
        orchestrator.import_document_set([("original.txt", b"Jane Doe\nABC College\n72%")])
        outcome = orchestrator.verify_document(b"JANE  DOE   abc college 72%", JANE, filename="copy.txt")
        assert outcome.verified is True
        assert outcome.mode == "exact"
        assert outcome.diagnostics["hashes_checked"].index(outcome.fingerprint) == 1

    def test_document_binary_hash_match(self, orchestrator):
        [fp] = orchestrator.import_document_set([("scan.bin", b"\x89binary-scan")])
        outcome = orchestrator.verify_document(b"\x89binary-scan", JANE, filename="scan.bin")
        assert outcome.verified is True
        assert outcome.fingerprint == fp.binary_hash

    def test_supplied_binary_hash(self, orchestrator):
        [fp] = orchestrator.import_document_set([("scan.bin", b"\x89binary-scan")])
        outcome = orchestrator.verify_document(None, JANE, binary_hash=fp.binary_hash)
        assert outcome.verified is True
        assert outcome.fingerprint == fp.binary_hash

    def test_extracted_fields_hit_corpus_hash(self, seeded):
        payload = b"Student Name: Jane Doe\nCollege: ABC College\nPercentage: 72%\n"
        outcome = seeded.verify_document(payload, JANE, filename="marks.txt")
        assert outcome.mode == "exact"
        assert outcome.fields.name == "Jane Doe"
        assert outcome.matched_record is not None


class TestFuzzyPath:
    def test_typo_matches_fuzzily(self, seeded):
        outcome = seeded.verify_document(
            None, JANE, fields={"name": "Jane Do", "institute": "ABC College", "score": "73"},
        )
        assert outcome.verified is True
        assert outcome.mode == "fuzzy"
        assert outcome.state == VerificationState.VERIFIED
        assert outcome.fingerprint == outcome.matched_record.normalized_hash
        assert "FUZZY_LOOKUP" in outcome.diagnostics["states"]
        assert outcome.diagnostics["match"]["record_id"] == outcome.matched_record.record_id
        [event] = _events(seeded)
        assert event.payload["mode"] == "fuzzy"

    def test_supplied_fields_override_extracted(self, seeded):
        payload = b"Student Name: Jane Doe\nCollege: ABC College\nPercentage: 40%\n"
        outcome = seeded.verify_document(payload, JANE, filename="marks.txt", fields={"score": "72"})
        assert outcome.fields.score == "72"
        assert outcome.fields.sources["score"] == "supplied"
        assert outcome.mode == "exact"


class TestFailurePath:
    def test_unregistered_payload_without_fields(self, seeded):
        outcome = seeded.verify_document(b"\x00\x01random-bytes", JANE, filename="photo.bin")
        assert outcome.verified is False
        assert outcome.state == VerificationState.NO_MATCH
        assert outcome.fields.is_empty()
        assert "FUZZY_LOOKUP" not in outcome.diagnostics["states"]
        [event] = _events(seeded)
        assert event.kind == AuditKind.VERIFICATION_FAILED.value

    def test_miss_returns_extracted_fields(self, seeded, identities):
        outcome = seeded.verify_document(
            None, JANE, fields={"name": "Someone Else", "institute": "Unknown Academy", "score": "12"},
        )
        assert outcome.verified is False
        assert outcome.fields.name == "Someone Else"
        [event] = _events(seeded)
        assert event.payload["fields"]["institute"] == "Unknown Academy"
        assert identities.find_by_email("jane@example.edu").verified is False

    def test_mint_failure(self, seeded, identities, ledger):
        with patch.object(ledger, "mint", side_effect=MintFailed("rejected")):
            with pytest.raises(MintFailed):
                seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        [event] = _events(seeded)
        assert event.kind == AuditKind.MINT_FAILED.value
        assert event.payload["diagnostics"]["states"][-1] == "MINT_FAILED"
        assert identities.find_by_email("jane@example.edu").verified is False

    def test_ledger_unavailable_during_mint(self, seeded, identities, ledger):
        with patch.object(ledger, "mint", side_effect=LedgerUnavailable("timeout")):
            with pytest.raises(LedgerUnavailable):
                seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        [event] = _events(seeded)
        assert event.kind == AuditKind.LEDGER_UNAVAILABLE.value
        assert identities.find_by_email("jane@example.edu").verified is False

    def test_ledger_unavailable_during_lookup(self, seeded, ledger):
        with patch.object(ledger, "is_registered", side_effect=LedgerUnavailable("timeout")):
            with pytest.raises(LedgerUnavailable):
                seeded.verify_document(None, JANE, fields={"name": "New Person", "institute": "XYZ", "score": "1"})
        [event] = _events(seeded)
        assert event.kind == AuditKind.LEDGER_UNAVAILABLE.value
        assert event.payload["diagnostics"]["states"][-1] == "EXACT_LOOKUP"


    def test_corpus_storage_failure_is_audited(self, seeded):
        with patch.object(seeded.corpus, "find_by_hash", side_effect=StorageUnavailable("disk I/O error")):
            with pytest.raises(StorageUnavailable):
                seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        [event] = _events(seeded)
        assert event.kind == AuditKind.VERIFICATION_ERROR.value
        assert event.payload["error_type"] == "StorageUnavailable"
        assert event.payload["diagnostics"]["states"][-1] == "EXACT_LOOKUP"

    def test_identity_store_failure_is_audited(self, seeded, identities):
        """The token is already minted, so the event carries its id."""
        with patch.object(identities, "mark_verified", side_effect=RuntimeError("account service down")):
            with pytest.raises(RuntimeError):
                seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        [event] = _events(seeded)
        assert event.kind == AuditKind.VERIFICATION_ERROR.value
        assert event.payload["diagnostics"]["token_id"] == 1


class TestInvalidInput:
    def test_missing_identity(self, seeded):
        with pytest.raises(InvalidInput):
            seeded.verify_document(None, Identity(), fields=JANE_FIELDS)
        assert seeded.audit.count(unread_only=True) == 0

    def test_missing_payload_and_fields(self, seeded):
        with pytest.raises(InvalidInput):
            seeded.verify_document(None, JANE)
        assert seeded.audit.count(unread_only=True) == 0


class TestMintIdempotency:
    def test_default_mints_again(self, seeded):
        first = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        second = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        assert second.token.token_id == first.token.token_id + 1

    def test_idempotent_setting_reuses_token(self, seeded, settings):
        settings.mint_idempotent = True
        first = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        second = seeded.verify_document(None, JANE, fields=JANE_FIELDS)
        assert second.token.token_id == first.token.token_id
        assert second.diagnostics["reused_token"] is True
        assert seeded.ledger.last_token_id() == 1


class TestPublic:
    def test_unknown_email(self, seeded):
        with pytest.raises(InvalidInput):
            seeded.verify_public(None, "stranger@example.edu", fields=JANE_FIELDS)

    def test_uses_account_wallet(self, seeded):
        outcome = seeded.verify_public(None, "jane@example.edu", fields=JANE_FIELDS)
        assert outcome.verified is True
        assert outcome.token.owner_identity == "0xjanewallet"
        [event] = _events(seeded)
        assert event.payload["actor"] == "public:jane@example.edu"

    def test_account_without_wallet_owns_by_email(self, seeded, identities):
        outcome = seeded.verify_public(None, "noel@example.edu", fields=JANE_FIELDS)
        assert outcome.token.owner_identity == "noel@example.edu"
        assert identities.find_by_email("noel@example.edu").verified is True


class TestAdminVerify:
    def test_corpus_selection_skips_extraction(self, seeded):
        record = seeded.corpus.find_by_hash(corpus_hash("Jane Doe", "ABC College", "72"))
        outcome = seeded.admin_verify(CorpusSelection(record.record_id), JANE, actor="registrar")
        assert outcome.verified is True
        assert outcome.mode == "exact"
        assert "EXTRACTING" not in outcome.diagnostics["states"]
        [event] = _events(seeded)
        assert event.payload["actor"] == "registrar"

    def test_missing_record(self, seeded):
        with pytest.raises(InvalidInput):
            seeded.admin_verify(CorpusSelection(999), JANE)

    def test_document_selection(self, orchestrator):
        orchestrator.import_document_set([("original.txt", b"Jane Doe\nABC College\n72%")])
        [doc] = orchestrator.corpus.list_documents()
        outcome = orchestrator.admin_verify(DocumentSelection(doc.document_id), JANE)
        assert outcome.verified is True
        assert outcome.fingerprint == doc.binary_hash

    def test_unknown_fingerprint_is_no_match(self, seeded):
        outcome = seeded.admin_verify(FingerprintSelection("0xdeadbeef"), JANE)
        assert outcome.verified is False
        assert outcome.state == VerificationState.NO_MATCH
        assert "FUZZY_LOOKUP" not in outcome.diagnostics["states"]
        [event] = _events(seeded)
        assert event.kind == AuditKind.VERIFICATION_FAILED.value

    def test_payload_selection_runs_full_pipeline(self, seeded):
        payload = b"Student Name: Jane Doe\nCollege: ABC College\nPercentage: 72%\n"
        outcome = seeded.admin_verify(PayloadSelection(payload, "marks.txt"), JANE)
        assert outcome.verified is True
        assert "EXTRACTING" in outcome.diagnostics["states"]


class TestImports:
    def test_import_registers_every_hash(self, orchestrator, ledger):
        records = orchestrator.import_corpus(SAMPLE_ROWS, uploaded_by="registrar")
        assert len(records) == 3
        assert all(ledger.is_registered(r.normalized_hash) for r in records)
        [event] = _events(orchestrator, kind="corpus_imported")
        assert event.payload["newly_registered"] == 3

    def test_reimport_is_idempotent(self, orchestrator, ledger):
        orchestrator.import_corpus(SAMPLE_ROWS)
        orchestrator.import_corpus(SAMPLE_ROWS)
        assert ledger.registered_count() == 3
        assert orchestrator.corpus.count_records() == 3
        latest = orchestrator.audit.list_events(kind="corpus_imported")[0]
        assert latest.payload["newly_registered"] == 0

    def test_rows_without_name_are_skipped(self, orchestrator):
        records = orchestrator.import_corpus([
            {"name": "Jane Doe", "institute": "ABC College", "score": "72"},
            {"name": "", "institute": "ABC College", "score": "80"},
        ])
        assert len(records) == 1
        [event] = _events(orchestrator)
        assert event.payload["skipped_rows"] == 1

    def test_empty_batch(self, orchestrator):
        with pytest.raises(InvalidInput):
            orchestrator.import_corpus([])

    def test_csv_import(self, orchestrator):
        records = orchestrator.import_corpus_csv("name,institute,percentage\nJane Doe,ABC College,72\n")
        assert records[0].score == "72"

    def test_document_set_registers_both_hashes(self, orchestrator, ledger):
        fps = orchestrator.import_document_set([("a.txt", b"Jane Doe ABC College"), b"\x00raw"])
        assert len(fps) == 2
        assert ledger.registered_count() == 3
        assert fps[1].source_name == "document-2"
        [event] = _events(orchestrator, kind="documents_imported")
        assert event.payload["with_text_hash"] == 1

    def test_document_set_requires_content(self, orchestrator):
        with pytest.raises(InvalidInput):
            orchestrator.import_document_set([("empty.txt", b"")])

    def test_interrupted_document_import(self, orchestrator, ledger):
        """Stored documents stay matchable when registration stops partway."""
        register = ledger.register
        calls = []

        def flaky_register(digest):
            calls.append(digest)
            if len(calls) > 1:
                raise LedgerUnavailable("timeout")
            return register(digest)

        with patch.object(ledger, "register", side_effect=flaky_register):
            with pytest.raises(LedgerUnavailable):
                orchestrator.import_document_set([("original.txt", b"Jane Doe\nABC College\n72%")])

        [event] = _events(orchestrator)
        assert event.kind == AuditKind.IMPORT_FAILED.value
        assert event.payload["stored"] == 1
        assert event.payload["newly_registered"] == 1

        outcome = orchestrator.verify_document(b"JANE  DOE   abc college 72%", JANE, filename="copy.txt")
        assert outcome.verified is True
        assert not ledger.is_registered(outcome.fingerprint)

    def test_interrupted_corpus_import(self, orchestrator, ledger):
        with patch.object(ledger, "register", side_effect=LedgerUnavailable("timeout")):
            with pytest.raises(LedgerUnavailable):
                orchestrator.import_corpus(SAMPLE_ROWS, uploaded_by="registrar")
        [event] = _events(orchestrator)
        assert event.kind == AuditKind.IMPORT_FAILED.value
        assert event.payload["import"] == "corpus"
        assert event.payload["stored"] == 3

        records = orchestrator.import_corpus(SAMPLE_ROWS, uploaded_by="registrar")
        assert all(ledger.is_registered(r.normalized_hash) for r in records)


class TestPreview:
    def test_preview_has_no_side_effects(self, orchestrator):
        preview = orchestrator.preview_fields(b"Student Name: Jane Doe\nPercentage: 72%\n", "marks.txt")
        assert preview["fields"]["name"] == "Jane Doe"
        assert preview["fields"]["institute"] is None
        assert preview["diagnostics"]["text_extracted"] is True
        assert preview["fingerprint"]["text_hash"].startswith("0x")
        assert orchestrator.audit.count() == 0
        assert orchestrator.ledger.registered_count() == 0

    def test_preview_requires_payload(self, orchestrator):
        with pytest.raises(InvalidInput):
            orchestrator.preview_fields(b"", "marks.txt")


def test_from_settings_wires_local_backend(settings):
    orchestrator = VerificationOrchestrator.from_settings(settings)
    try:
        assert orchestrator.ledger.mode == "local"
        assert orchestrator.corpus.path == settings.corpus_db_path
    finally:
        orchestrator.ledger.close()


def test_from_settings_keeps_audit_trail_across_restarts(settings):
    first = VerificationOrchestrator.from_settings(settings)
    try:
        assert isinstance(first.audit, SQLiteAuditLog)
        first.import_corpus(SAMPLE_ROWS, uploaded_by="registrar")
    finally:
        first.ledger.close()

    restarted = VerificationOrchestrator.from_settings(settings)
    try:
        [event] = restarted.audit.list_events()
        assert event.kind == AuditKind.CORPUS_IMPORTED.value
        assert event.payload["records"] == 3
    finally:
        restarted.ledger.close()
