"""
Ledger capability.

The ledger is external, slow and write-once. The pipeline only needs two
things from it, so the capability is a Protocol rather than a base class:
any object with anchor() and query() can stand in for the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from ..errors import AnchorageError


class LedgerError(AnchorageError):
    """Base class for ledger failures. Any of these ends in status failed."""


class LedgerUnavailable(LedgerError):
    """The ledger could not be reached or answered with a server error."""


class LedgerTimeout(LedgerUnavailable):
    """The ledger did not answer within the configured bound."""


class LedgerRejected(LedgerError):
    """The ledger refused the anchor (invalid payload, already anchored, ...)."""


@dataclass(frozen=True)
class LedgerRecord:
    """What the ledger itself says about a digest."""

    registered: bool
    owner: str | None = None  # ledger-side address that anchored the digest
    anchored_at: datetime | None = None

    @classmethod
    def unregistered(cls) -> LedgerRecord:
        return cls(registered=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "registered": self.registered,
            "owner": self.owner,
            "anchored_at": self.anchored_at.isoformat() if self.anchored_at else None,
        }


@runtime_checkable
class LedgerClient(Protocol):
    """Anchor digests on, and query digests from, the external ledger."""

    def anchor(self, digest: str) -> str:
        """
        Commit digest to the ledger.

        Returns:
            Ledger reference for the commit (e.g. transaction hash)

        Raises:
            LedgerUnavailable, LedgerTimeout, LedgerRejected
        """
        ...

    def query(self, digest: str) -> LedgerRecord:
        """Ask the ledger whether digest is registered, bypassing any local state."""
        ...
