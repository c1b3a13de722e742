"""Shared test fixtures for the VeriCred test suite."""

import os

import pytest

# Ensure test environment variables are set before any settings import
os.environ.setdefault("VERICRED_API_KEY", "test-api-key")
os.environ.setdefault("VERICRED_DEMO_MODE", "true")
os.environ.setdefault("VERICRED_OCR_ENABLED", "false")
os.environ.setdefault("VERICRED_LEDGER_URL", "")

from vericred.audit import AuditLog
from vericred.corpus import CorpusStore
from vericred.identity import InMemoryIdentityStore
from vericred.ledger.local import LocalLedger
from vericred.orchestrator import VerificationOrchestrator
from vericred.settings import VeriCredSettings


SAMPLE_ROWS = [
    {"name": "Doe, Jane", "institute": "ABC College", "percentage": "72%"},
    {"name": "John Smith", "institute": "Greenfield Institute of Technology", "percentage": "85"},
    {"name": "Priya Raman", "institute": "St. Mary's School", "percentage": "91.5"},
]


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a per-test temporary directory."""
    return VeriCredSettings(
        data_dir=tmp_path,
        ledger_url="",
        ocr_enabled=False,
        token_uri_template="https://tokens.example.test/{fingerprint}.json",
        mint_idempotent=False,
    )


@pytest.fixture
def corpus_store(settings):
    return CorpusStore(settings.corpus_db_path)


@pytest.fixture
def ledger(settings):
    backend = LocalLedger(settings.ledger_store_path)
    yield backend
    backend.close()


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def identities():
    store = InMemoryIdentityStore()
    store.add("jane@example.edu", wallet="0xjanewallet")
    store.add("noel@example.edu")
    return store


@pytest.fixture
def orchestrator(settings, corpus_store, ledger, audit_log, identities):
    return VerificationOrchestrator(
        corpus=corpus_store,
        ledger=ledger,
        audit=audit_log,
        identities=identities,
        settings=settings,
    )


@pytest.fixture
def seeded(orchestrator):
    """Orchestrator with SAMPLE_ROWS imported (and its import event cleared)."""
    orchestrator.import_corpus(SAMPLE_ROWS, uploaded_by="registrar")
    for event in orchestrator.audit.list_events():
        orchestrator.audit.mark_read(event.event_id)
    return orchestrator
