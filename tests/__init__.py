"""
Test suite for VeriCred

- Unit tests for normalization, field extraction, fingerprinting and fuzzy scoring
- Corpus store and both ledger backends (local SQLite, mocked HTTP gateway)
- Orchestrator workflow, audit trail and identity updates
- API endpoints through FastAPI's TestClient and the click CLI
"""
