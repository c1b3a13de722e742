"""
Utility functions for VeriCred

Provides logging setup, retry logic, hashing and SQLite helpers and the exception hierarchy
"""

import hashlib
import logging
import sqlite3
import time
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Iterator, Optional
from pathlib import Path
from datetime import datetime, timezone


# ═══════════════════════════════════════════════════════════════════
# LOGGING
# ═══════════════════════════════════════════════════════════════════

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for VeriCred"""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers
    )


def get_logger(name: str) -> logging.Logger:
    """Get logger instance for module"""
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════
# RETRY LOGIC
# ═══════════════════════════════════════════════════════════════════

def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
):
    """Decorator for retry logic with exponential backoff.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the first attempt.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            delay = initial_delay
            last_exception = None

            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        logging.warning(
                            "Attempt %d/%d failed: %s. Retrying in %ss...",
                            attempt + 1, max_retries, e, delay,
                        )
                        time.sleep(delay)
                        delay *= backoff_factor

            raise last_exception
        return wrapper
    return decorator


# ═══════════════════════════════════════════════════════════════════
# HASHING
# ═══════════════════════════════════════════════════════════════════

HASH_PREFIX = "0x"


def compute_sha256(content: bytes) -> str:
    """Compute prefixed SHA-256 digest of raw bytes"""
    return HASH_PREFIX + hashlib.sha256(content).hexdigest()


def compute_string_hash(content: str) -> str:
    """Compute prefixed SHA-256 digest of a UTF-8 string"""
    return compute_sha256(content.encode("utf-8"))


def utc_now() -> str:
    """ISO-8601 UTC timestamp"""
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════════
# DIRECTORY UTILITIES
# ═══════════════════════════════════════════════════════════════════

def ensure_dir(path: str | Path) -> Path:
    """Ensure directory exists"""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_project_root() -> Path:
    """Get project root directory"""
    return Path(__file__).parent.parent


# ═══════════════════════════════════════════════════════════════════
# SQLITE
# ═══════════════════════════════════════════════════════════════════

@contextmanager
def sqlite_connection(path: str | Path, timeout: float = 30.0) -> Iterator[sqlite3.Connection]:
    """
    Open a short-lived SQLite connection with ``Row`` access

    Any ``sqlite3.Error`` raised inside the block becomes ``StorageUnavailable``.
    The connection is closed on exit; callers commit explicitly.
    """
    conn = None
    try:
        conn = sqlite3.connect(path, timeout=timeout)
        conn.row_factory = sqlite3.Row
        yield conn
    except sqlite3.Error as e:
        logging.getLogger(__name__).error("SQLite store %s failed: %s", path, e)
        raise StorageUnavailable(f"Storage at {path} unavailable: {e}") from e
    finally:
        if conn is not None:
            conn.close()


# ═══════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════

class VeriCredError(Exception):
    """Base exception for VeriCred"""
    pass


class InvalidInput(VeriCredError):
    """Missing or malformed identity, payload or dataset row"""
    pass


class ExtractionDegraded(VeriCredError):
    """Text extraction failed; callers fall back to a partial result"""
    pass


class CorpusImportError(VeriCredError):
    """Administrator dataset could not be parsed"""
    pass


class LedgerError(VeriCredError):
    """Base class for attestation ledger failures"""
    pass


class LedgerUnavailable(LedgerError):
    """Ledger could not be reached or timed out (retryable)"""
    pass


class MintFailed(LedgerError):
    """Ledger rejected a mint request (not retried automatically)"""
    pass


class StorageUnavailable(VeriCredError):
    """Corpus or audit database could not be read or written (retryable)"""
    pass
