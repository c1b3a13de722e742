"""Identity-record store consumed by the orchestrator.

The real account store belongs to the surrounding application; the
orchestrator only needs ``mark_verified`` and the two lookups.
``InMemoryIdentityStore`` is the implementation used by the API
process and by tests.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Protocol

from vericred.models import Identity


@dataclass
class IdentityRecord:
    email: str
    wallet: str | None = None
    verified: bool = False
    token_id: int | None = None


class IdentityStore(Protocol):
    def mark_verified(self, identity: Identity, token_id: int | None = None) -> bool: ...

    def find_by_wallet(self, wallet: str) -> IdentityRecord | None: ...

    def find_by_email(self, email: str) -> IdentityRecord | None: ...


def _key(value: str) -> str:
    return value.strip().lower()


class InMemoryIdentityStore:
    """Thread-safe dict-backed account store keyed by email."""

    def __init__(self) -> None:
        self._by_email: dict[str, IdentityRecord] = {}
        self._lock = threading.Lock()

    def add(self, email: str, wallet: str | None = None) -> IdentityRecord:
        record = IdentityRecord(email=email, wallet=wallet)
        with self._lock:
            self._by_email[_key(email)] = record
            return copy.copy(record)

    def set_wallet(self, email: str, wallet: str) -> bool:
        with self._lock:
            record = self._by_email.get(_key(email))
            if record is None:
                return False
            record.wallet = wallet
            return True

    def find_by_email(self, email: str) -> IdentityRecord | None:
        with self._lock:
            record = self._by_email.get(_key(email))
            return copy.copy(record) if record else None

    def find_by_wallet(self, wallet: str) -> IdentityRecord | None:
        with self._lock:
            for record in self._by_email.values():
                if record.wallet and _key(record.wallet) == _key(wallet):
                    return copy.copy(record)
        return None

    def mark_verified(self, identity: Identity, token_id: int | None = None) -> bool:
        """Flag the matching account verified. Returns False if none matched."""
        with self._lock:
            record = None
            if identity.email:
                record = self._by_email.get(_key(identity.email))
            if record is None and identity.wallet:
                record = next(
                    (r for r in self._by_email.values() if r.wallet and _key(r.wallet) == _key(identity.wallet)),
                    None,
                )
            if record is None:
                return False
            record.verified = True
            if token_id is not None:
                record.token_id = token_id
            if identity.wallet and not record.wallet:
                record.wallet = identity.wallet
            return True
