"""Attestation ledger backends.

    AttestationLedger  - interface shared by both backends
    LocalLedger        - durable SQLite fallback
    RemoteLedger       - networked ledger gateway over HTTP
    create_ledger      - picks one backend from settings, once, at startup
"""

import logging

from vericred.ledger.base import AttestationLedger, RegistrationResult
from vericred.ledger.local import LocalLedger
from vericred.ledger.remote import RemoteLedger
from vericred.settings import VeriCredSettings

logger = logging.getLogger(__name__)


def create_ledger(settings: VeriCredSettings) -> AttestationLedger:
    """Build the ledger backend selected by configuration presence."""
    if settings.ledger_url:
        logger.info("Ledger running in REMOTE mode against %s", settings.ledger_url)
        return RemoteLedger(
            base_url=settings.ledger_url,
            api_key=settings.ledger_api_key,
            contract=settings.ledger_contract,
            timeout=settings.ledger_timeout,
            max_retries=settings.ledger_max_retries,
            retry_delay=settings.ledger_retry_delay,
        )

    logger.warning(
        "Ledger running in LOCAL FALLBACK mode at %s. Set VERICRED_LEDGER_URL to use a networked ledger.",
        settings.ledger_store_path,
    )
    return LocalLedger(settings.ledger_store_path, timeout=settings.ledger_timeout)


__all__ = [
    "AttestationLedger",
    "LocalLedger",
    "RegistrationResult",
    "RemoteLedger",
    "create_ledger",
]
