"""Durable local ledger used when no networked ledger is configured.

State lives in a SQLite file: the registered-fingerprint set and the token
log. Every read-then-write runs inside ``BEGIN IMMEDIATE`` while holding
the instance lock, so concurrent requests can neither allocate the same
token id nor double-register a fingerprint. Token ids come from an
``AUTOINCREMENT`` column and therefore survive restarts and are never
reused.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

from vericred.ledger.base import AttestationLedger, RegistrationResult
from vericred.models import AttestationToken
from vericred.utils import LedgerUnavailable, MintFailed, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS registered_fingerprints (
    fingerprint TEXT PRIMARY KEY,
    registered_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tokens (
    token_id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    token_uri TEXT NOT NULL DEFAULT '',
    issued_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tokens_owner_fp ON tokens(owner, fingerprint);
"""


def _row_to_token(row: sqlite3.Row) -> AttestationToken:
    return AttestationToken(
        token_id=row["token_id"],
        owner_identity=row["owner"],
        fingerprint=row["fingerprint"],
        token_uri=row["token_uri"],
        issued_at=row["issued_at"],
        tx_ref=f"local:{row['token_id']}",
    )


class LocalLedger(AttestationLedger):
    """SQLite-backed single-writer ledger."""

    mode = "local"

    def __init__(self, store_path: str | Path, timeout: float = 10.0) -> None:
        self._path = Path(store_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self._path,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.executescript(_SCHEMA)
        logger.info("Local ledger at %s (last token id %d)", self._path, self.last_token_id())

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, fn):
        """Run ``fn(conn)`` in an immediate transaction under the writer lock."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    result = fn(self._conn)
                    self._conn.execute("COMMIT")
                except BaseException:
                    # Also covers a failed COMMIT, which leaves the transaction open
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    raise
                return result
            except sqlite3.OperationalError as exc:
                raise LedgerUnavailable(f"Local ledger store unavailable: {exc}") from exc

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as exc:
                raise LedgerUnavailable(f"Local ledger store unavailable: {exc}") from exc

    # -- Ledger interface -----------------------------------------------------

    def is_registered(self, fingerprint: str) -> bool:
        rows = self._read(
            "SELECT 1 FROM registered_fingerprints WHERE fingerprint = ?", (fingerprint,)
        )
        return bool(rows)

    def register(self, fingerprint: str) -> RegistrationResult:
        def _insert(conn: sqlite3.Connection) -> bool:
            cur = conn.execute(
                "INSERT OR IGNORE INTO registered_fingerprints (fingerprint, registered_at) VALUES (?, ?)",
                (fingerprint, utc_now()),
            )
            return cur.rowcount == 1

        inserted = self._write(_insert)
        if inserted:
            logger.debug("Registered fingerprint %s", fingerprint)
        return RegistrationResult(fingerprint=fingerprint, already_present=not inserted)

    def mint(self, identity: str, token_uri: str, fingerprint: str) -> AttestationToken:
        if not identity:
            raise MintFailed("Cannot mint without an owner identity")

        def _insert(conn: sqlite3.Connection) -> AttestationToken:
            cur = conn.execute(
                "INSERT INTO tokens (owner, fingerprint, token_uri, issued_at) VALUES (?, ?, ?, ?)",
                (identity, fingerprint, token_uri or "", utc_now()),
            )
            row = conn.execute("SELECT * FROM tokens WHERE token_id = ?", (cur.lastrowid,)).fetchone()
            return _row_to_token(row)

        token = self._write(_insert)
        logger.info("Minted local token %d to %s for %s", token.token_id, identity, fingerprint)
        return token

    def tokens_for(
        self,
        owner: str | None = None,
        fingerprint: str | None = None,
    ) -> list[AttestationToken]:
        clauses: list[str] = []
        params: list[str] = []
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner)
        if fingerprint is not None:
            clauses.append("fingerprint = ?")
            params.append(fingerprint)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._read(f"SELECT * FROM tokens {where} ORDER BY token_id", tuple(params))
        return [_row_to_token(r) for r in rows]

    def last_token_id(self) -> int:
        rows = self._read("SELECT seq FROM sqlite_sequence WHERE name = 'tokens'")
        return int(rows[0]["seq"]) if rows else 0

    def registered_count(self) -> int:
        rows = self._read("SELECT COUNT(*) AS n FROM registered_fingerprints")
        return int(rows[0]["n"])

    def close(self) -> None:
        with self._lock:
            self._conn.close()
