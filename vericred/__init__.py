"""
VeriCred - credential verification and attestation

Fingerprints uploaded documents, matches claimed (name, institute, score)
triples against an administrator corpus, and records successful
verifications as attestation tokens on a ledger.
"""

__version__ = "0.1.0"

from vericred.settings import VeriCredSettings, get_config
from vericred.models import Identity, VerificationOutcome, VerificationState
from vericred.orchestrator import VerificationOrchestrator

__all__ = [
    "VeriCredSettings",
    "get_config",
    "Identity",
    "VerificationOutcome",
    "VerificationState",
    "VerificationOrchestrator",
]
