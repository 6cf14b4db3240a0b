"""Anchoring gateway HTTP client (small, dependency-free).

Talks JSON to a gateway in front of the ledger contract:
  - POST {endpoint}/anchors            {"digest": "0x<hex>"} -> {"tx_ref": "..."}
  - GET  {endpoint}/anchors/0x<hex>    -> {"registered", "owner", "anchored_at"} | 404
"""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .client import LedgerRecord, LedgerRejected, LedgerTimeout, LedgerUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpLedgerConfig:
    endpoint: str
    api_key: str | None = None
    timeout_s: float = 30.0


class HttpLedgerClient:
    """Production ledger client."""

    def __init__(self, cfg: HttpLedgerConfig) -> None:
        self._cfg = cfg
        self._base = cfg.endpoint.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._cfg.api_key:
            headers["Authorization"] = f"Bearer {self._cfg.api_key}"
        return headers

    def _request(self, method: str, url: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = Request(url, data=data, method=method, headers=self._headers())
        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                raw = resp.read().decode("utf-8")
        except HTTPError:
            raise
        except (socket.timeout, TimeoutError) as e:
            raise LedgerTimeout(f"Ledger timed out after {self._cfg.timeout_s}s") from e
        except URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise LedgerTimeout(f"Ledger timed out after {self._cfg.timeout_s}s") from e
            raise LedgerUnavailable(f"Ledger connection error: {e.reason}") from e

        try:
            payload = json.loads(raw) if raw else {}
        except json.JSONDecodeError as e:
            raise LedgerUnavailable(f"Ledger returned invalid JSON: {raw[:200]!r}") from e
        if not isinstance(payload, dict):
            raise LedgerUnavailable("Ledger returned a non-object payload")
        return payload

    def anchor(self, digest: str) -> str:
        url = f"{self._base}/anchors"
        try:
            payload = self._request("POST", url, {"digest": f"0x{digest}"})
        except HTTPError as e:
            if 400 <= e.code < 500:
                raise LedgerRejected(f"Ledger rejected anchor ({e.code}): {_error_message(e)}") from e
            raise LedgerUnavailable(f"Ledger HTTP error {e.code}: {e.reason}") from e

        tx_ref = payload.get("tx_ref")
        if not tx_ref:
            raise LedgerUnavailable("Ledger response missing tx_ref")
        logger.debug("Anchored %s as %s", digest, tx_ref)
        return str(tx_ref)

    def query(self, digest: str) -> LedgerRecord:
        url = f"{self._base}/anchors/0x{digest}"
        try:
            payload = self._request("GET", url)
        except HTTPError as e:
            if e.code == 404:
                return LedgerRecord.unregistered()
            raise LedgerUnavailable(f"Ledger HTTP error {e.code}: {e.reason}") from e

        if not payload.get("registered"):
            return LedgerRecord.unregistered()

        anchored_at = None
        ts = payload.get("anchored_at")
        if ts:
            try:
                anchored_at = datetime.fromtimestamp(int(ts), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError) as e:
                raise LedgerUnavailable(f"Ledger returned invalid anchored_at: {ts!r}") from e
        return LedgerRecord(registered=True, owner=payload.get("owner"), anchored_at=anchored_at)


def _error_message(e: HTTPError) -> str:
    try:
        body = json.loads(e.read().decode("utf-8"))
    except (OSError, ValueError):
        return str(e.reason)
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return str(e.reason)
