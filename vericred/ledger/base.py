"""Attestation ledger interface shared by the networked and local backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from vericred.models import AttestationToken


@dataclass(frozen=True)
class RegistrationResult:
    fingerprint: str
    already_present: bool


class AttestationLedger(ABC):
    """Registered-fingerprint set plus a monotonic token log.

    Implementations must make ``register`` idempotent and allocate token
    ids that strictly increase and are never reused. The ledger does not
    deduplicate mint calls; that is the caller's decision.
    """

    mode: str = "abstract"

    @abstractmethod
    def is_registered(self, fingerprint: str) -> bool:
        """Whether the fingerprint is in the registered set."""

    @abstractmethod
    def register(self, fingerprint: str) -> RegistrationResult:
        """Add a fingerprint; a repeat registration reports already_present."""

    @abstractmethod
    def mint(self, identity: str, token_uri: str, fingerprint: str) -> AttestationToken:
        """Issue the next token for ``fingerprint`` to ``identity``."""

    @abstractmethod
    def tokens_for(
        self,
        owner: str | None = None,
        fingerprint: str | None = None,
    ) -> list[AttestationToken]:
        """Minted tokens, optionally filtered by owner and/or fingerprint."""

    @abstractmethod
    def last_token_id(self) -> int:
        """Highest token id allocated so far (0 when none)."""

    @abstractmethod
    def registered_count(self) -> int:
        """Size of the registered-fingerprint set."""

    def close(self) -> None:
        """Release backend resources."""
