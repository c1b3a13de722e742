"""Tests for the audit sinks and the in-memory identity store."""

import sqlite3

import pytest

from vericred.audit import AuditLog, SQLiteAuditLog, new_event
from vericred.identity import InMemoryIdentityStore
from vericred.models import AuditKind, Identity
from vericred.utils import StorageUnavailable


@pytest.fixture(params=["memory", "sqlite"])
def log(request, tmp_path):
    if request.param == "memory":
        return AuditLog()
    return SQLiteAuditLog(tmp_path / "audit.db")


class TestAuditLog:
    def test_new_event_defaults(self):
        event = new_event(AuditKind.VERIFIED, "ok", {"mode": "exact"})
        assert event.event_id.startswith("evt:")
        assert event.kind == "verified"
        assert event.read is False

    def test_newest_first_and_paging(self, log):
        for i in range(5):
            log.record(new_event(AuditKind.VERIFIED, f"event {i}"))
        messages = [e.message for e in log.list_events(limit=2, offset=1)]
        assert messages == ["event 3", "event 2"]

    def test_mark_read_and_unread_filter(self, log):
        first = new_event(AuditKind.VERIFICATION_FAILED, "miss")
        second = new_event(AuditKind.VERIFIED, "hit")
        log.record(first)
        log.record(second)
        assert log.mark_read(first.event_id) is True
        assert [e.event_id for e in log.list_events(unread_only=True)] == [second.event_id]
        assert log.count() == 2
        assert log.count(unread_only=True) == 1

    def test_mark_read_unknown(self, log):
        assert log.mark_read("evt:missing") is False

    def test_count_and_filter_by_kind(self, log):
        log.record(new_event(AuditKind.VERIFIED, "a"))
        log.record(new_event(AuditKind.MINT_FAILED, "b"))
        assert log.count(kind="mint_failed") == 1
        assert [e.message for e in log.list_events(kind="verified")] == ["a"]

    def test_returned_events_are_copies(self, log):
        event = new_event(AuditKind.VERIFIED, "ok", {"mode": "exact"})
        log.record(event)
        fetched = log.get(event.event_id)
        fetched.payload["mode"] = "tampered"
        fetched.read = True
        stored = log.get(event.event_id)
        assert stored.payload["mode"] == "exact"
        assert stored.read is False

    def test_payload_round_trips(self, log):
        event = new_event(AuditKind.VERIFIED, "ok", {"token_id": 3, "identity": {"wallet": "0xw", "email": None}})
        log.record(event)
        assert log.get(event.event_id).payload == {"token_id": 3, "identity": {"wallet": "0xw", "email": None}}


class TestSQLiteAuditDurability:
    def test_events_survive_restart(self, tmp_path):
        path = tmp_path / "audit.db"
        first = SQLiteAuditLog(path)
        kept = new_event(AuditKind.VERIFIED, "hit", {"token_id": 1})
        first.record(kept)
        first.record(new_event(AuditKind.VERIFICATION_FAILED, "miss"))
        first.mark_read(kept.event_id)

        restarted = SQLiteAuditLog(path)
        assert restarted.count() == 2
        assert restarted.count(unread_only=True) == 1
        stored = restarted.get(kept.event_id)
        assert stored.read is True
        assert stored.payload == {"token_id": 1}
        assert stored.created_at == kept.created_at

    def test_duplicate_event_id_is_rejected(self, tmp_path):
        log = SQLiteAuditLog(tmp_path / "audit.db")
        event = new_event(AuditKind.VERIFIED, "once")
        log.record(event)
        with pytest.raises(StorageUnavailable):
            log.record(event)
        assert log.count() == 1

    def test_unreadable_database(self, tmp_path):
        log = SQLiteAuditLog(tmp_path / "audit.db")
        with sqlite3.connect(log.path) as conn:
            conn.execute("DROP TABLE audit_events")
        with pytest.raises(StorageUnavailable):
            log.count()


class TestIdentityStore:
    def test_mark_verified_by_email(self):
        store = InMemoryIdentityStore()
        store.add("jane@example.edu")
        assert store.mark_verified(Identity(email="Jane@Example.edu", wallet="0xw"), token_id=3)
        record = store.find_by_email("jane@example.edu")
        assert record.verified is True
        assert record.token_id == 3
        assert record.wallet == "0xw"

    def test_mark_verified_by_wallet(self):
        store = InMemoryIdentityStore()
        store.add("jane@example.edu", wallet="0xABC")
        assert store.mark_verified(Identity(wallet="0xabc"))
        assert store.find_by_wallet("0xabc").verified is True

    def test_unknown_identity(self):
        store = InMemoryIdentityStore()
        assert store.mark_verified(Identity(email="nobody@example.edu")) is False

    def test_set_wallet(self):
        store = InMemoryIdentityStore()
        store.add("jane@example.edu")
        assert store.set_wallet("jane@example.edu", "0xw")
        assert store.find_by_wallet("0xw").email == "jane@example.edu"
        assert store.set_wallet("nobody@example.edu", "0xw") is False
