"""Administrator endpoints: corpus and document imports, verification, audit."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from vericred.api.auth import read_upload, require_api_key
from vericred.api.models import (
    AdminVerifyRequest,
    AuditEventListResponse,
    CorpusImportRequest,
    CorpusImportResponse,
    DocumentImportResponse,
    DocumentListResponse,
    IdentityRequest,
    IdentityResponse,
    VerificationResponse,
)
from vericred.api.state import get_orchestrator
from vericred.models import Identity
from vericred.orchestrator import (
    CorpusSelection,
    DocumentSelection,
    FingerprintSelection,
    PayloadSelection,
    VerificationOrchestrator,
    coerce_fields,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_api_key)])


# ---------------------------------------------------------------------------
# Corpus
# ---------------------------------------------------------------------------

@router.post("/corpus", response_model=CorpusImportResponse)
def import_corpus(
    request: CorpusImportRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    records = orchestrator.import_corpus(
        [row.model_dump() for row in request.rows],
        uploaded_by=request.uploaded_by,
    )
    return {"imported": len(records), "records": [r.to_dict() for r in records]}


@router.post("/corpus/csv", response_model=CorpusImportResponse)
def import_corpus_csv(
    file: UploadFile = File(...),
    uploaded_by: str = Form(default="admin"),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Import a CSV with ``name,institute,percentage`` columns."""
    data, _ = read_upload(file)
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded CSV is empty.")
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded.")
    records = orchestrator.import_corpus_csv(text, uploaded_by=uploaded_by)
    return {"imported": len(records), "records": [r.to_dict() for r in records]}


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@router.post("/documents", response_model=DocumentImportResponse)
def import_documents(
    files: list[UploadFile] = File(...),
    uploaded_by: str = Form(default="admin"),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    payloads = []
    for upload in files:
        data, filename = read_upload(upload)
        if data:
            payloads.append((filename, data))
    fingerprints = orchestrator.import_document_set(payloads, uploaded_by=uploaded_by)
    return {"imported": len(fingerprints), "fingerprints": [fp.to_dict() for fp in fingerprints]}


@router.get("/documents", response_model=DocumentListResponse)
def list_documents(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    corpus = orchestrator.corpus
    return {
        "total": corpus.count_documents(),
        "documents": [d.to_dict() for d in corpus.list_documents(limit=limit, offset=offset)],
    }


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@router.post("/verify", response_model=VerificationResponse)
def admin_verify(
    request: AdminVerifyRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Verify a stored corpus record, admin document or raw fingerprint."""
    if request.record_id is not None:
        selection = CorpusSelection(record_id=request.record_id)
    elif request.document_id is not None:
        selection = DocumentSelection(document_id=request.document_id)
    else:
        selection = FingerprintSelection(fingerprint=request.fingerprint)
    outcome = orchestrator.admin_verify(
        selection,
        Identity(wallet=request.wallet, email=request.email),
        actor=request.actor,
    )
    return outcome.to_dict()


@router.post("/verify/document", response_model=VerificationResponse)
def admin_verify_document(
    file: UploadFile = File(...),
    wallet: str | None = Form(default=None),
    email: str | None = Form(default=None),
    name: str | None = Form(default=None),
    institute: str | None = Form(default=None),
    percentage: str | None = Form(default=None),
    actor: str = Form(default="admin"),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Run the full pipeline on an uploaded document for a chosen identity."""
    data, filename = read_upload(file)
    selection = PayloadSelection(
        data=data or b"",
        filename=filename,
        fields=coerce_fields({"name": name, "institute": institute, "score": percentage}),
    )
    outcome = orchestrator.admin_verify(
        selection,
        Identity(wallet=wallet or None, email=email or None),
        actor=actor,
    )
    return outcome.to_dict()


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------

@router.post("/identities", response_model=IdentityResponse)
def register_identity(
    request: IdentityRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Register an account so it can use public verification."""
    record = orchestrator.identities.add(request.email, wallet=request.wallet)
    return record.__dict__


@router.get("/identities/{email}", response_model=IdentityResponse)
def get_identity(
    email: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    record = orchestrator.identities.find_by_email(email)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No account registered for '{email}'")
    return record.__dict__


# ---------------------------------------------------------------------------
# Audit events
# ---------------------------------------------------------------------------

@router.get("/audit-events", response_model=AuditEventListResponse)
def list_audit_events(
    unread_only: bool = False,
    kind: str | None = Query(default=None, max_length=50),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    audit = orchestrator.audit
    events = audit.list_events(unread_only=unread_only, kind=kind, limit=limit, offset=offset)
    return {
        "total": audit.count(kind=kind),
        "unread": audit.count(kind=kind, unread_only=True),
        "events": [e.to_dict() for e in events],
    }


@router.post("/audit-events/{event_id}/read")
def mark_audit_event_read(
    event_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    if not orchestrator.audit.mark_read(event_id):
        raise HTTPException(status_code=404, detail=f"Audit event '{event_id}' not found")
    return {"event_id": event_id, "read": True}
