"""Client for a networked attestation ledger gateway.

The gateway fronts the on-chain soulbound-token contract and exposes a
small JSON API::

    GET  /fingerprints/{fp}   -> {"registered": bool}       (404 = not registered)
    POST /fingerprints        -> {"already_present": bool}  (409 = already present)
    POST /tokens              -> {"token_id": int, "tx_hash": str, "issued_at": str}
    GET  /tokens              -> {"tokens": [...]}
    GET  /stats               -> {"registered": int, "last_token_id": int}

Transport failures, timeouts, 5xx responses and 4xx replies to lookups or
registration become ``LedgerUnavailable``. A 4xx on mint becomes ``MintFailed``. Idempotent calls are retried with a
linear back-off; mint is never retried, so a retried request can never
produce a second token behind the caller's back.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from vericred.ledger.base import AttestationLedger, RegistrationResult
from vericred.models import AttestationToken
from vericred.utils import LedgerUnavailable, MintFailed, utc_now

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10.0
_DEFAULT_MAX_RETRIES = 3
_DEFAULT_RETRY_DELAY = 0.5


def _token_from_json(data: dict[str, Any]) -> AttestationToken:
    return AttestationToken(
        token_id=int(data["token_id"]),
        owner_identity=data.get("to") or data.get("owner", ""),
        fingerprint=data.get("fingerprint", ""),
        token_uri=data.get("token_uri") or "",
        issued_at=data.get("issued_at") or utc_now(),
        tx_ref=data.get("tx_hash"),
    )


class RemoteLedger(AttestationLedger):
    """Networked ledger backend over HTTP."""

    mode = "remote"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        contract: str = "",
        timeout: float = _DEFAULT_TIMEOUT,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_delay: float = _DEFAULT_RETRY_DELAY,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.contract = contract
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        headers = {"User-Agent": "VeriCred-Ledger/1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(base_url=self.base_url, headers=headers, timeout=timeout)

    def _request(
        self,
        method: str,
        path: str,
        *,
        retry: bool,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Issue a request; returns any non-5xx response to the caller."""
        attempts = self.max_retries if retry else 1
        last_exc: Exception | None = None

        for attempt in range(attempts):
            try:
                resp = self._client.request(method, path, json=json, params=params)
                if resp.status_code >= 500:
                    raise httpx.HTTPStatusError(
                        f"Ledger gateway returned {resp.status_code}",
                        request=resp.request,
                        response=resp,
                    )
                return resp
            except (httpx.HTTPStatusError, httpx.RequestError) as exc:
                last_exc = exc
                logger.warning(
                    "Ledger %s %s failed (attempt %d/%d): %s",
                    method, path, attempt + 1, attempts, exc,
                )
                if attempt < attempts - 1:
                    time.sleep(self.retry_delay * (attempt + 1))

        raise LedgerUnavailable(
            f"Ledger gateway unavailable for {method} {path} after {attempts} attempt(s)"
        ) from last_exc

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise LedgerUnavailable(f"Non-JSON response from ledger gateway (status {resp.status_code})") from exc
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _rejected(call: str, resp: httpx.Response) -> LedgerUnavailable:
        """A 4xx outside mint is a gateway or credential fault, not a verdict."""
        logger.error("Ledger %s rejected with %d: %s", call, resp.status_code, resp.text[:200])
        return LedgerUnavailable(f"Ledger {call} rejected ({resp.status_code}): {resp.text}")

    # -- Ledger interface -----------------------------------------------------

    def is_registered(self, fingerprint: str) -> bool:
        resp = self._request("GET", f"/fingerprints/{fingerprint}", retry=True)
        if resp.status_code == 404:
            return False
        if resp.status_code >= 400:
            raise self._rejected("lookup", resp)
        return bool(self._json(resp).get("registered"))

    def register(self, fingerprint: str) -> RegistrationResult:
        resp = self._request(
            "POST",
            "/fingerprints",
            retry=True,
            json={"fingerprint": fingerprint, "contract": self.contract},
        )
        if resp.status_code == 409:
            return RegistrationResult(fingerprint=fingerprint, already_present=True)
        if resp.status_code >= 400:
            raise self._rejected("registration", resp)
        return RegistrationResult(
            fingerprint=fingerprint,
            already_present=bool(self._json(resp).get("already_present", False)),
        )

    def mint(self, identity: str, token_uri: str, fingerprint: str) -> AttestationToken:
        resp = self._request(
            "POST",
            "/tokens",
            retry=False,
            json={
                "to": identity,
                "token_uri": token_uri,
                "fingerprint": fingerprint,
                "contract": self.contract,
            },
        )
        if resp.status_code >= 400:
            raise MintFailed(f"Ledger rejected mint ({resp.status_code}): {resp.text}")
        data = self._json(resp)
        if "token_id" not in data:
            raise MintFailed("Ledger mint response did not include a token id")
        data.setdefault("to", identity)
        data.setdefault("fingerprint", fingerprint)
        data.setdefault("token_uri", token_uri)
        token = _token_from_json(data)
        logger.info("Minted token %d to %s (tx=%s)", token.token_id, identity, token.tx_ref)
        return token

    def tokens_for(
        self,
        owner: str | None = None,
        fingerprint: str | None = None,
    ) -> list[AttestationToken]:
        params = {k: v for k, v in (("owner", owner), ("fingerprint", fingerprint)) if v is not None}
        resp = self._request("GET", "/tokens", retry=True, params=params)
        if resp.status_code >= 400:
            raise self._rejected("token query", resp)
        return [_token_from_json(t) for t in self._json(resp).get("tokens", [])]

    def _stats(self) -> dict[str, Any]:
        resp = self._request("GET", "/stats", retry=True)
        if resp.status_code >= 400:
            raise self._rejected("stats", resp)
        return self._json(resp)

    def last_token_id(self) -> int:
        return int(self._stats().get("last_token_id", 0))

    def registered_count(self) -> int:
        return int(self._stats().get("registered", 0))

    def close(self) -> None:
        self._client.close()
