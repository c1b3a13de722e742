"""Pydantic request/response models for the VeriCred API."""

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class FieldsModel(BaseModel):
    name: str | None = None
    institute: str | None = None
    score: str | None = None


class TokenModel(BaseModel):
    token_id: int
    owner_identity: str
    fingerprint: str
    token_uri: str = ""
    issued_at: str = ""
    tx_ref: str | None = None


class CorpusRecordModel(BaseModel):
    record_id: int
    name: str
    institute: str
    score: str = ""
    normalized_hash: str
    uploaded_by: str = ""
    created_at: str = ""


class VerificationResponse(BaseModel):
    verified: bool
    mode: str = "none"
    state: str
    matched_record: CorpusRecordModel | None = None
    token: TokenModel | None = None
    fingerprint: str | None = None
    fields: FieldsModel = FieldsModel()
    diagnostics: dict = {}


class FieldPreviewResponse(BaseModel):
    fields: FieldsModel
    fingerprint: dict
    diagnostics: dict = {}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class CorpusRow(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    institute: str = Field(..., min_length=1, max_length=300)
    percentage: str = ""

    @field_validator("percentage", mode="before")
    @classmethod
    def coerce_percentage(cls, v):
        return "" if v is None else str(v).strip()


class CorpusImportRequest(BaseModel):
    rows: list[CorpusRow] = Field(..., min_length=1)
    uploaded_by: str = Field(default="admin", max_length=100)


class CorpusImportResponse(BaseModel):
    imported: int
    records: list[CorpusRecordModel] = []


class AdminDocumentModel(BaseModel):
    document_id: int
    source_name: str = ""
    binary_hash: str
    text_hash: str | None = None
    uploaded_by: str = ""
    created_at: str = ""


class DocumentImportResponse(BaseModel):
    imported: int
    fingerprints: list[dict] = []


class DocumentListResponse(BaseModel):
    total: int
    documents: list[AdminDocumentModel] = []


class AdminVerifyRequest(BaseModel):
    """Exactly one of ``record_id``, ``document_id`` or ``fingerprint``."""

    record_id: int | None = None
    document_id: int | None = None
    fingerprint: str | None = Field(default=None, max_length=200)
    wallet: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    actor: str = Field(default="admin", max_length=100)

    @model_validator(mode="after")
    def one_selection(self):
        chosen = [v for v in (self.record_id, self.document_id, self.fingerprint) if v is not None]
        if len(chosen) != 1:
            raise ValueError("Provide exactly one of record_id, document_id, fingerprint.")
        if not (self.wallet or self.email):
            raise ValueError("Provide a wallet or an email for the token owner.")
        return self


class IdentityRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    wallet: str | None = Field(default=None, max_length=200)


class IdentityResponse(BaseModel):
    email: str
    wallet: str | None = None
    verified: bool = False
    token_id: int | None = None


class AuditEventModel(BaseModel):
    event_id: str
    kind: str
    message: str
    payload: dict = {}
    read: bool = False
    created_at: str = ""


class AuditEventListResponse(BaseModel):
    total: int
    unread: int
    events: list[AuditEventModel] = []


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    ledger_mode: str
    ledger_reachable: bool = False
    corpus_records: int = 0
    admin_documents: int = 0
    registered_fingerprints: int | None = None
    last_token_id: int | None = None
    ocr_enabled: bool = False
