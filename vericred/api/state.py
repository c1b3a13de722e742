"""Process-wide orchestrator singleton shared by the API routers.

Routes receive it through ``Depends(get_orchestrator)`` so tests can swap it
with ``app.dependency_overrides``.
"""

import logging
import threading

from vericred.orchestrator import VerificationOrchestrator

logger = logging.getLogger(__name__)

_orchestrator: VerificationOrchestrator | None = None
_lock = threading.Lock()


def get_orchestrator() -> VerificationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        with _lock:
            if _orchestrator is None:
                _orchestrator = VerificationOrchestrator.from_settings()
    return _orchestrator


def close_orchestrator() -> None:
    """Release the ledger backend; the next access rebuilds everything."""
    global _orchestrator
    with _lock:
        if _orchestrator is not None:
            _orchestrator.ledger.close()
            logger.info("Ledger backend closed")
        _orchestrator = None
