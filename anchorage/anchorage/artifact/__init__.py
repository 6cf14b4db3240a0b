"""
Artifact records, their store and their transition journal.

- ArtifactRecord / ArtifactStatus: the pending -> {anchored, failed} lifecycle
- ArtifactStore: sqlite repository, unique by content hash
- TransitionJournal: append-only history of every transition
"""

from .models import ArtifactRecord, ArtifactStatus, check_transition, new_artifact_id
from .store import ArtifactStore
from .journal import (
    JournalEvent,
    TransitionJournal,
    ARTIFACT_SUBMITTED,
    ARTIFACT_CONFLICT,
    ARTIFACT_ANCHORED,
    ARTIFACT_FAILED,
    NOTICE_PUSHED,
)

__all__ = [
    # Records
    "ArtifactRecord",
    "ArtifactStatus",
    "check_transition",
    "new_artifact_id",
    # Storage
    "ArtifactStore",
    # Journal
    "JournalEvent",
    "TransitionJournal",
    "ARTIFACT_SUBMITTED",
    "ARTIFACT_CONFLICT",
    "ARTIFACT_ANCHORED",
    "ARTIFACT_FAILED",
    "NOTICE_PUSHED",
]
