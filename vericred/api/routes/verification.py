"""Self-service and public verification endpoints."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from vericred.api.auth import read_upload
from vericred.api.models import FieldPreviewResponse, VerificationResponse
from vericred.api.state import get_orchestrator
from vericred.models import Identity
from vericred.orchestrator import VerificationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["verification"])


def _supplied_fields(name: str | None, institute: str | None, percentage: str | None) -> dict:
    return {"name": name, "institute": institute, "score": percentage}


@router.post("/verify", response_model=VerificationResponse)
def verify(
    file: UploadFile | None = File(default=None),
    name: str | None = Form(default=None),
    institute: str | None = Form(default=None),
    percentage: str | None = Form(default=None),
    binary_hash: str | None = Form(default=None),
    wallet: str | None = Form(default=None),
    email: str | None = Form(default=None),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Verify an uploaded document and/or typed fields for the caller's identity.

    A miss is a normal 200 response with ``verified=false``.
    """
    data, filename = read_upload(file)
    outcome = orchestrator.verify_document(
        data,
        Identity(wallet=wallet or None, email=email or None),
        filename=filename,
        fields=_supplied_fields(name, institute, percentage),
        binary_hash=binary_hash or None,
    )
    return outcome.to_dict()


@router.post("/verify/public", response_model=VerificationResponse)
def verify_public(
    email: str = Form(...),
    file: UploadFile | None = File(default=None),
    name: str | None = Form(default=None),
    institute: str | None = Form(default=None),
    percentage: str | None = Form(default=None),
    wallet: str | None = Form(default=None),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Unauthenticated verification for a registered account email."""
    data, filename = read_upload(file)
    outcome = orchestrator.verify_public(
        data,
        email,
        identity=Identity(wallet=wallet, email=email) if wallet else None,
        filename=filename,
        fields=_supplied_fields(name, institute, percentage),
    )
    return outcome.to_dict()


@router.post("/extract-fields", response_model=FieldPreviewResponse)
def extract_fields(
    file: UploadFile = File(...),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Preview the fields that would be extracted, without verifying."""
    data, filename = read_upload(file)
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return orchestrator.preview_fields(data, filename)
