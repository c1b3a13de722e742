"""Administrator-visible audit trail for verification outcomes.

``SQLiteAuditLog`` is the durable sink the service runs with; ``AuditLog``
keeps events in process memory.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any, Protocol

from vericred.models import AuditEvent, AuditKind
from vericred.utils import sqlite_connection

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Anything that can durably accept an audit event."""

    def record(self, event: AuditEvent) -> None: ...


def new_event(kind: AuditKind | str, message: str, payload: dict[str, Any] | None = None) -> AuditEvent:
    """Build an unread event with a fresh id."""
    return AuditEvent(
        event_id=f"evt:{uuid.uuid4().hex[:12]}",
        kind=kind.value if isinstance(kind, AuditKind) else kind,
        message=message,
        payload=payload or {},
    )


class AuditLog:
    """Thread-safe append-only in-memory audit sink.

    Events are never removed; the only mutation is flipping ``read`` via
    ``mark_read``. Returned events are deep copies.
    """

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._index: dict[str, int] = {}
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._index[event.event_id] = len(self._events)
            self._events.append(copy.deepcopy(event))
        logger.info("audit kind=%s id=%s %s", event.kind, event.event_id, event.message)

    def get(self, event_id: str) -> AuditEvent | None:
        with self._lock:
            pos = self._index.get(event_id)
            return copy.deepcopy(self._events[pos]) if pos is not None else None

    def list_events(
        self,
        unread_only: bool = False,
        kind: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Newest first."""
        with self._lock:
            events = [
                e for e in reversed(self._events)
                if (not unread_only or not e.read) and (kind is None or e.kind == kind)
            ]
            return [copy.deepcopy(e) for e in events[offset:offset + limit]]

    def mark_read(self, event_id: str) -> bool:
        """Mark an event read. Returns False if it does not exist."""
        with self._lock:
            pos = self._index.get(event_id)
            if pos is None:
                return False
            self._events[pos].read = True
            return True

    def count(self, kind: str | None = None, unread_only: bool = False) -> int:
        with self._lock:
            return sum(
                1 for e in self._events
                if (kind is None or e.kind == kind) and (not unread_only or not e.read)
            )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL,
    message TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_kind ON audit_events(kind);
CREATE INDEX IF NOT EXISTS idx_audit_read ON audit_events(read);
"""


def _row_to_event(row: sqlite3.Row) -> AuditEvent:
    return AuditEvent(
        event_id=row["event_id"],
        kind=row["kind"],
        message=row["message"],
        payload=json.loads(row["payload"]),
        read=bool(row["read"]),
        created_at=row["created_at"],
    )


def _filters(kind: str | None, unread_only: bool) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if kind is not None:
        clauses.append("kind = ?")
        params.append(kind)
    if unread_only:
        clauses.append("read = 0")
    return (f"WHERE {' AND '.join(clauses)}" if clauses else ""), params


class SQLiteAuditLog:
    """Durable audit sink stored beside the corpus database.

    Same interface as ``AuditLog``. Rows are only ever inserted; ``mark_read``
    is the single update. Database errors surface as ``StorageUnavailable``.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite_connection(self._path) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: AuditEvent) -> None:
        with sqlite_connection(self._path) as conn, conn:
            conn.execute(
                "INSERT INTO audit_events (event_id, kind, message, payload, read, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    event.event_id, event.kind, event.message,
                    json.dumps(event.payload, default=str), int(event.read), event.created_at,
                ),
            )
        logger.info("audit kind=%s id=%s %s", event.kind, event.event_id, event.message)

    def get(self, event_id: str) -> AuditEvent | None:
        with sqlite_connection(self._path) as conn:
            row = conn.execute("SELECT * FROM audit_events WHERE event_id = ?", (event_id,)).fetchone()
        return _row_to_event(row) if row else None

    def list_events(
        self,
        unread_only: bool = False,
        kind: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Newest first."""
        where, params = _filters(kind, unread_only)
        with sqlite_connection(self._path) as conn:
            rows = conn.execute(
                f"SELECT * FROM audit_events {where} ORDER BY seq DESC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [_row_to_event(r) for r in rows]

    def mark_read(self, event_id: str) -> bool:
        with sqlite_connection(self._path) as conn, conn:
            cur = conn.execute("UPDATE audit_events SET read = 1 WHERE event_id = ?", (event_id,))
            return cur.rowcount == 1

    def count(self, kind: str | None = None, unread_only: bool = False) -> int:
        where, params = _filters(kind, unread_only)
        with sqlite_connection(self._path) as conn:
            return conn.execute(f"SELECT COUNT(*) FROM audit_events {where}", params).fetchone()[0]
