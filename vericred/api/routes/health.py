"""Health check endpoint."""

import logging

from fastapi import APIRouter, Depends

from vericred.api.models import HealthResponse
from vericred.api.state import get_orchestrator
from vericred.orchestrator import VerificationOrchestrator
from vericred.utils import LedgerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    """Report ledger mode and reachability plus corpus and ledger counts."""
    ledger = orchestrator.ledger
    status = "healthy"
    reachable = False
    registered: int | None = None
    last_token: int | None = None

    try:
        registered = ledger.registered_count()
        last_token = ledger.last_token_id()
        reachable = True
    except LedgerError as exc:
        logger.warning("Ledger health check failed: %s", exc)
        status = "degraded"

    if ledger.mode == "local" and status == "healthy":
        status = "fallback"

    return HealthResponse(
        status=status,
        ledger_mode=ledger.mode,
        ledger_reachable=reachable,
        corpus_records=orchestrator.corpus.count_records(),
        admin_documents=orchestrator.corpus.count_documents(),
        registered_fingerprints=registered,
        last_token_id=last_token,
        ocr_enabled=orchestrator.settings.ocr_enabled,
    )
