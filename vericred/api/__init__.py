"""VeriCred HTTP API."""
