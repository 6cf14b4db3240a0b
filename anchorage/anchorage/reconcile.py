"""
Store/ledger consistency sweep.

A crash between "ledger commit succeeded" and "status stored" leaves a
record pending (or failed, if the outcome was misreported) while the
ledger already holds the digest. This module makes that drift visible.
It only reports; re-anchoring or repairing records is an explicit
operator action outside the pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from .artifact.models import ArtifactRecord, ArtifactStatus
from .artifact.store import ArtifactStore
from .ledger.client import LedgerClient, LedgerError, LedgerRecord

logger = logging.getLogger(__name__)

DriftKind = Literal["unrecorded_anchor", "missing_on_ledger", "ledger_error"]


@dataclass(frozen=True)
class Drift:
    """One record whose local status disagrees with the ledger."""

    kind: DriftKind
    record: ArtifactRecord
    ledger: LedgerRecord | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind,
            "artifact_id": self.record.artifact_id,
            "content_hash": self.record.content_hash,
            "status": self.record.status.value,
            "ledger_ref": self.record.ledger_ref,
        }
        if self.ledger is not None:
            result["ledger"] = self.ledger.to_dict()
        if self.detail:
            result["detail"] = self.detail
        return result


def find_drift(
    store: ArtifactStore,
    ledger: LedgerClient,
    *,
    statuses: tuple[ArtifactStatus, ...] = (
        ArtifactStatus.PENDING,
        ArtifactStatus.FAILED,
        ArtifactStatus.ANCHORED,
    ),
) -> list[Drift]:
    """
    Compare local records with ledger truth.

    - pending/failed record, ledger registered  -> "unrecorded_anchor"
    - anchored record, ledger unregistered      -> "missing_on_ledger"
    - ledger query raised                       -> "ledger_error"

    Pending records the ledger does not know are not drift: their
    reconciliation may simply still be running.
    """
    drift: list[Drift] = []
    for status in statuses:
        for record in store.list_by_status(status):
            try:
                truth = ledger.query(record.content_hash)
            except LedgerError as e:
                logger.warning("Ledger query failed for %s: %s", record.artifact_id, e)
                drift.append(Drift(kind="ledger_error", record=record, detail=str(e)))
                continue

            if record.status is ArtifactStatus.ANCHORED:
                if not truth.registered:
                    drift.append(Drift(kind="missing_on_ledger", record=record, ledger=truth))
            elif truth.registered:
                drift.append(Drift(kind="unrecorded_anchor", record=record, ledger=truth))

    return drift
