"""Administrator corpus: dataset records and uploaded document fingerprints.

Backed by SQLite in WAL mode. Bulk imports run as a single transaction
under a write lock; readers (fuzzy matching, exact lookup) use their own
connections and see the last committed snapshot without waiting on the
import. Database errors surface as ``StorageUnavailable``.
"""

from __future__ import annotations

import csv
import io
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable

from vericred.models import AdminDocument, CorpusRecord, DocumentFingerprint
from vericred.normalization import (
    corpus_hash,
    normalize_institute,
    normalize_name,
    normalize_percentage,
)
from vericred.utils import CorpusImportError, sqlite_connection, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS corpus_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    institute TEXT NOT NULL,
    score TEXT NOT NULL DEFAULT '',
    norm_name TEXT NOT NULL,
    norm_institute TEXT NOT NULL,
    norm_score TEXT NOT NULL,
    normalized_hash TEXT NOT NULL UNIQUE,
    uploaded_by TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_corpus_norm_score ON corpus_records(norm_score);
CREATE INDEX IF NOT EXISTS idx_corpus_created ON corpus_records(created_at);

CREATE TABLE IF NOT EXISTS admin_documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL DEFAULT '',
    binary_hash TEXT NOT NULL UNIQUE,
    text_hash TEXT,
    uploaded_by TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_admin_documents_text ON admin_documents(text_hash);
"""

CSV_COLUMNS = ("name", "institute", "percentage")
_SCORE_ALIASES = ("percentage", "score", "percent", "marks")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_record(row: sqlite3.Row) -> CorpusRecord:
    return CorpusRecord(
        record_id=row["id"],
        name=row["name"],
        institute=row["institute"],
        score=row["score"],
        normalized_hash=row["normalized_hash"],
        uploaded_by=row["uploaded_by"],
        created_at=row["created_at"],
    )


def _row_to_document(row: sqlite3.Row) -> AdminDocument:
    return AdminDocument(
        document_id=row["id"],
        source_name=row["source_name"],
        binary_hash=row["binary_hash"],
        text_hash=row["text_hash"],
        uploaded_by=row["uploaded_by"],
        created_at=row["created_at"],
    )


def row_score(row: dict) -> str:
    """Pick the score column of a dataset row, whatever it is called."""
    lowered = {str(k).strip().lower(): v for k, v in row.items()}
    for alias in _SCORE_ALIASES:
        value = lowered.get(alias)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def parse_csv_rows(text: str) -> tuple[list[dict[str, str]], int]:
    """Parse an administrator CSV dataset.

    The header must contain ``name``, ``institute`` and ``percentage``
    (case-insensitive; ``score`` is accepted for ``percentage``). Rows
    missing a name or institute are skipped.

    Returns:
        (rows, skipped_count)
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise CorpusImportError("CSV is empty or has no header row")

    header = {h.strip().lower() for h in reader.fieldnames if h}
    has_score = any(alias in header for alias in _SCORE_ALIASES)
    if "name" not in header or "institute" not in header or not has_score:
        raise CorpusImportError(
            f"CSV header must contain columns {', '.join(CSV_COLUMNS)} (got: {sorted(header)})"
        )

    rows: list[dict[str, str]] = []
    skipped = 0
    for raw in reader:
        lowered = {str(k).strip().lower(): (v or "").strip() for k, v in raw.items() if k}
        if not lowered.get("name") or not lowered.get("institute"):
            skipped += 1
            continue
        rows.append({
            "name": lowered["name"],
            "institute": lowered["institute"],
            "score": row_score(lowered),
        })
    return rows, skipped


class CorpusStore:
    """SQLite-backed administrator dataset and document registry."""

    def __init__(self, db_path: str | Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        with sqlite_connection(self._path) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()

    @property
    def path(self) -> Path:
        return self._path

    # -- Records --------------------------------------------------------------

    def add_records(
        self,
        rows: Iterable[tuple[str, str, str]],
        uploaded_by: str = "",
    ) -> list[CorpusRecord]:
        """Insert (name, institute, score) rows in one transaction.

        Idempotent on the normalized hash: a row that is already present
        returns the stored record instead of a new one.
        """
        created_at = utc_now()
        hashes: list[str] = []
        with self._write_lock, sqlite_connection(self._path) as conn:
            with conn:
                for name, institute, score in rows:
                    digest = corpus_hash(name, institute, score)
                    conn.execute(
                        "INSERT OR IGNORE INTO corpus_records "
                        "(name, institute, score, norm_name, norm_institute, norm_score, "
                        "normalized_hash, uploaded_by, created_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            name, institute, score or "",
                            normalize_name(name), normalize_institute(institute),
                            normalize_percentage(score),
                            digest, uploaded_by, created_at,
                        ),
                    )
                    hashes.append(digest)
            records = []
            for digest in hashes:
                row = conn.execute(
                    "SELECT * FROM corpus_records WHERE normalized_hash = ?", (digest,)
                ).fetchone()
                records.append(_row_to_record(row))
        logger.info("Corpus import stored %d record(s) from %s", len(records), uploaded_by or "unknown")
        return records

    def get_record(self, record_id: int) -> CorpusRecord | None:
        with sqlite_connection(self._path) as conn:
            row = conn.execute("SELECT * FROM corpus_records WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row) if row else None

    def find_by_hash(self, normalized_hash: str) -> CorpusRecord | None:
        with sqlite_connection(self._path) as conn:
            row = conn.execute(
                "SELECT * FROM corpus_records WHERE normalized_hash = ?", (normalized_hash,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def candidates(
        self,
        institute_tokens: list[str],
        norm_score: str,
        limit: int,
    ) -> list[CorpusRecord]:
        """Bounded candidate set: institute token substrings or an exact score."""
        clauses: list[str] = []
        params: list[str | int] = []
        if institute_tokens:
            token_clause = " AND ".join("norm_institute LIKE ? ESCAPE '\\'" for _ in institute_tokens)
            clauses.append(f"({token_clause})")
            params.extend(f"%{_escape_like(t)}%" for t in institute_tokens)
        if norm_score:
            clauses.append("norm_score = ?")
            params.append(norm_score)
        if not clauses:
            return []
        sql = f"SELECT * FROM corpus_records WHERE {' OR '.join(clauses)} ORDER BY id LIMIT ?"
        params.append(limit)
        with sqlite_connection(self._path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]

    def recent(self, limit: int) -> list[CorpusRecord]:
        """Most recently uploaded records, newest first."""
        with sqlite_connection(self._path) as conn:
            rows = conn.execute(
                "SELECT * FROM corpus_records ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count_records(self) -> int:
        with sqlite_connection(self._path) as conn:
            return conn.execute("SELECT COUNT(*) FROM corpus_records").fetchone()[0]

    # -- Documents ------------------------------------------------------------

    def add_documents(
        self,
        fingerprints: Iterable[DocumentFingerprint],
        uploaded_by: str = "",
    ) -> list[AdminDocument]:
        """Persist document fingerprints, idempotent on the binary hash."""
        created_at = utc_now()
        binary_hashes: list[str] = []
        with self._write_lock, sqlite_connection(self._path) as conn:
            with conn:
                for fp in fingerprints:
                    conn.execute(
                        "INSERT OR IGNORE INTO admin_documents "
                        "(source_name, binary_hash, text_hash, uploaded_by, created_at) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (fp.source_name, fp.binary_hash, fp.text_hash, uploaded_by, created_at),
                    )
                    binary_hashes.append(fp.binary_hash)
            documents = [
                _row_to_document(conn.execute(
                    "SELECT * FROM admin_documents WHERE binary_hash = ?", (h,)
                ).fetchone())
                for h in binary_hashes
            ]
        return documents

    def get_document(self, document_id: int) -> AdminDocument | None:
        with sqlite_connection(self._path) as conn:
            row = conn.execute("SELECT * FROM admin_documents WHERE id = ?", (document_id,)).fetchone()
        return _row_to_document(row) if row else None

    def find_document_by_hash(self, digest: str) -> AdminDocument | None:
        """Match either the binary or the text hash of a stored document."""
        with sqlite_connection(self._path) as conn:
            row = conn.execute(
                "SELECT * FROM admin_documents WHERE binary_hash = ? OR text_hash = ? ORDER BY id LIMIT 1",
                (digest, digest),
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, limit: int = 100, offset: int = 0) -> list[AdminDocument]:
        with sqlite_connection(self._path) as conn:
            rows = conn.execute(
                "SELECT * FROM admin_documents ORDER BY id DESC LIMIT ? OFFSET ?", (limit, offset)
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def count_documents(self) -> int:
        with sqlite_connection(self._path) as conn:
            return conn.execute("SELECT COUNT(*) FROM admin_documents").fetchone()[0]
