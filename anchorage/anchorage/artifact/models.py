"""
Artifact record and its reconciliation lifecycle.

    pending ──▶ anchored   (ledger commit succeeded)
       │
       └─────▶ failed     (ledger rejected, unavailable or timed out)

Both outcomes are terminal. Nothing leaves a terminal state; re-anchoring
a failed artifact is a new submission, not a transition.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import InvalidTransition


class ArtifactStatus(str, Enum):
    PENDING = "pending"
    ANCHORED = "anchored"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ArtifactStatus.PENDING


_ALLOWED_TRANSITIONS = frozenset({
    (ArtifactStatus.PENDING, ArtifactStatus.ANCHORED),
    (ArtifactStatus.PENDING, ArtifactStatus.FAILED),
})


def check_transition(
    current: ArtifactStatus,
    new: ArtifactStatus,
    ledger_ref: str | None = None,
) -> None:
    """
    Validate a status change.

    Raises:
        InvalidTransition: If the change is not pending -> terminal, or the
            ledger_ref does not match the target status
    """
    if (current, new) not in _ALLOWED_TRANSITIONS:
        raise InvalidTransition(f"{current.value} -> {new.value} is not a valid transition")
    if new is ArtifactStatus.ANCHORED and not ledger_ref:
        raise InvalidTransition("anchored requires a ledger_ref")
    if new is ArtifactStatus.FAILED and ledger_ref is not None:
        raise InvalidTransition("failed must not carry a ledger_ref")


_CROCKFORD32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def new_artifact_id(*, timestamp_ms: int | None = None) -> str:
    """
    Generate a ULID artifact id.

    48-bit millisecond timestamp followed by 80 random bits, encoded as 26
    Crockford base32 characters, so ids sort by creation time.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    if not (0 <= timestamp_ms < (1 << 48)):
        raise ValueError("timestamp_ms out of range for ULID")

    value = (timestamp_ms << 80) | int.from_bytes(os.urandom(10), "big")
    chars = []
    for _ in range(26):
        chars.append(_CROCKFORD32[value & 31])
        value >>= 5
    return "".join(reversed(chars))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArtifactRecord:
    """
    One submitted artifact as held by the artifact store.

    content_hash is the global identity of the payload; artifact_id is the
    identity of this submission's lifecycle.
    """

    artifact_id: str
    content_hash: str
    owner_id: str
    title: str
    status: ArtifactStatus = ArtifactStatus.PENDING
    size_bytes: int = 0
    ledger_ref: str | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None

    @classmethod
    def new(cls, *, content_hash: str, owner_id: str, title: str, size_bytes: int = 0) -> ArtifactRecord:
        """Build a fresh pending record with a new id and creation time."""
        return cls(
            artifact_id=new_artifact_id(),
            content_hash=content_hash,
            owner_id=owner_id,
            title=title,
            size_bytes=size_bytes,
            created_at=utc_now(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict (history view)."""
        return {
            "artifact_id": self.artifact_id,
            "title": self.title,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "content_hash": self.content_hash,
            "ledger_ref": self.ledger_ref,
            "owner_id": self.owner_id,
            "size_bytes": self.size_bytes,
            "failure_reason": self.failure_reason,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
