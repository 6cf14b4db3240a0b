"""
Deterministic in-process ledger.

Reports success unless told otherwise. Refs are derived from the digest
so the same input always yields the same ref. Anchored digests are
remembered, which keeps query() consistent with anchor().
"""

from __future__ import annotations

import hashlib
import threading
import time
from datetime import datetime, timezone

from .client import LedgerRecord, LedgerRejected, LedgerUnavailable

MOCK_OWNER_ADDRESS = "0xMOCK_OWNER_ADDRESS"


def mock_ref(digest: str) -> str:
    return "0xMOCK_TX_" + hashlib.sha256(digest.encode("ascii")).hexdigest()[:32]


class MockLedgerClient:
    """
    Test double for the ledger.

    Args:
        refs: Fixed refs to return for specific digests
        rejections: digest -> reason; anchor() raises LedgerRejected
        unavailable: digests for which anchor() raises LedgerUnavailable
        delay_s: Artificial latency for anchor()
        owner_address: Ledger-side owner reported by query()
        always_registered: query() reports every digest as registered
    """

    def __init__(
        self,
        *,
        refs: dict[str, str] | None = None,
        rejections: dict[str, str] | None = None,
        unavailable: set[str] | None = None,
        delay_s: float = 0.0,
        owner_address: str = MOCK_OWNER_ADDRESS,
        always_registered: bool = False,
    ):
        self.refs = dict(refs or {})
        self.rejections = dict(rejections or {})
        self.unavailable = set(unavailable or ())
        self.delay_s = delay_s
        self.owner_address = owner_address
        self.always_registered = always_registered

        self._lock = threading.Lock()
        self._registry: dict[str, tuple[str, datetime]] = {}
        self.anchor_calls: list[str] = []

    def anchor(self, digest: str) -> str:
        with self._lock:
            self.anchor_calls.append(digest)

        if self.delay_s:
            time.sleep(self.delay_s)

        if digest in self.unavailable:
            raise LedgerUnavailable(f"mock ledger unavailable for {digest[:12]}")
        if digest in self.rejections:
            raise LedgerRejected(self.rejections[digest])

        with self._lock:
            # Write-once: a digest keeps the ref of its first anchor.
            if digest not in self._registry:
                ref = self.refs.get(digest) or mock_ref(digest)
                self._registry[digest] = (ref, datetime.now(timezone.utc))
            return self._registry[digest][0]

    def query(self, digest: str) -> LedgerRecord:
        with self._lock:
            entry = self._registry.get(digest)
        if entry is not None:
            return LedgerRecord(registered=True, owner=self.owner_address, anchored_at=entry[1])
        if self.always_registered:
            return LedgerRecord(
                registered=True,
                owner=self.owner_address,
                anchored_at=datetime.now(timezone.utc),
            )
        return LedgerRecord.unregistered()

    def register(self, digest: str, ref: str | None = None, *, anchored_at: datetime | None = None) -> str:
        """Preload a digest as if some other party had anchored it."""
        ref = ref or mock_ref(digest)
        with self._lock:
            self._registry[digest] = (ref, anchored_at or datetime.now(timezone.utc))
        return ref
