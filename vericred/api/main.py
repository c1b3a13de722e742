"""VeriCred FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from vericred.api.auth import request_logging_middleware
from vericred.api.state import close_orchestrator, get_orchestrator
from vericred.settings import get_config
from vericred.utils import (
    CorpusImportError,
    InvalidInput,
    LedgerError,
    LedgerUnavailable,
    MintFailed,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle handler."""
    config = get_config()

    if not config.demo_mode and not config.api_key:
        logger.warning("VERICRED_API_KEY is not set; admin routes will refuse requests. "
                       "Use VERICRED_DEMO_MODE=true to skip authentication.")

    orchestrator = get_orchestrator()
    logger.info("VeriCred API starting - ledger=%s, corpus=%s, ocr=%s",
                orchestrator.ledger.mode, config.corpus_db_path, config.ocr_enabled)
    yield
    close_orchestrator()
    logger.info("VeriCred API shutdown")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

async def _invalid_input(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _mint_failed(request: Request, exc: MintFailed) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": f"Mint rejected by ledger: {exc}"})


async def _ledger_unavailable(request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": f"Ledger unavailable, try again later: {exc}"},
        headers={"Retry-After": "5"},
    )


async def _storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Verification storage unavailable, try again later."},
        headers={"Retry-After": "5"},
    )


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    app = FastAPI(
        title="VeriCred API",
        description="Credential verification against an administrator corpus with ledger attestation",
        version="0.1.0",
        lifespan=lifespan,
    )

    config = get_config()

    # CORS - restricted to configured origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    # Request logging and X-Request-ID middleware
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_logging_middleware)

    app.add_exception_handler(InvalidInput, _invalid_input)
    app.add_exception_handler(CorpusImportError, _invalid_input)
    app.add_exception_handler(MintFailed, _mint_failed)
    app.add_exception_handler(LedgerUnavailable, _ledger_unavailable)
    app.add_exception_handler(LedgerError, _ledger_unavailable)
    app.add_exception_handler(StorageUnavailable, _storage_unavailable)

    from vericred.api.routes.admin import router as admin_router
    from vericred.api.routes.health import router as health_router
    from vericred.api.routes.verification import router as verification_router

    app.include_router(verification_router)
    app.include_router(admin_router)
    app.include_router(health_router)

    return app


app = create_app()
