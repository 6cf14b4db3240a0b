"""
Append-only journal of artifact transitions.

Each line of journal.jsonl is one JournalEvent, written once and never
modified. The artifact store holds current state; the journal holds how
it got there (submission, conflicts, ledger outcome, notification).
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Literal

# Event type constants
ARTIFACT_SUBMITTED = "artifact.submitted"
ARTIFACT_CONFLICT = "artifact.conflict"
ARTIFACT_ANCHORED = "artifact.anchored"
ARTIFACT_FAILED = "artifact.failed"
NOTICE_PUSHED = "notice.pushed"

EVENT_TYPES = frozenset({
    ARTIFACT_SUBMITTED,
    ARTIFACT_CONFLICT,
    ARTIFACT_ANCHORED,
    ARTIFACT_FAILED,
    NOTICE_PUSHED,
})


@dataclass(frozen=True)
class JournalEvent:
    """Immutable journal entry."""

    event_type: str  # One of EVENT_TYPES
    artifact_id: str
    timestamp: datetime
    actor: str  # "owner:<id>", "pipeline", "ledger:<provider>"
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event_type: {self.event_type}")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "event_type": self.event_type,
            "artifact_id": self.artifact_id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
        }
        if self.payload:
            result["payload"] = self.payload
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JournalEvent:
        return cls(
            event_type=data["event_type"],
            artifact_id=data["artifact_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            actor=data["actor"],
            payload=data.get("payload", {}),
        )

    @classmethod
    def from_json(cls, line: str) -> JournalEvent:
        return cls.from_dict(json.loads(line))


def create_event(
    event_type: str,
    artifact_id: str,
    actor: str,
    *,
    payload: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> JournalEvent:
    """Factory for journal events with consistent timestamps."""
    return JournalEvent(
        event_type=event_type,
        artifact_id=artifact_id,
        timestamp=timestamp or datetime.now(timezone.utc),
        actor=actor,
        payload=payload or {},
    )


class TransitionJournal:
    """
    Append-only JSONL journal.

    INVARIANT: existing lines are never rewritten. append() is the only
    write and is serialized so concurrent background tasks cannot
    interleave partial lines.
    """

    def __init__(self, journal_path: Path):
        self.journal_path = Path(journal_path)
        self._lock = threading.Lock()

    def append(self, event: JournalEvent) -> None:
        line = event.to_json() + "\n"
        with self._lock:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            with self.journal_path.open("a", encoding="utf-8") as f:
                f.write(line)

    def record(self, event_type: str, artifact_id: str, actor: str, **payload: Any) -> JournalEvent:
        """Create and append an event in one call."""
        event = create_event(event_type, artifact_id, actor, payload=payload)
        self.append(event)
        return event

    def iter_events(self) -> Iterator[JournalEvent]:
        """Iterate over all events in append order."""
        if not self.journal_path.exists():
            return

        with self.journal_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield JournalEvent.from_json(line)

    def query(
        self,
        *,
        artifact_id: str | None = None,
        event_type: str | None = None,
        limit: int | None = None,
        order: Literal["asc", "desc"] = "asc",
    ) -> list[JournalEvent]:
        """
        Filter events.

        Args:
            artifact_id: Only events for this artifact
            event_type: Only events of this type
            limit: Maximum number of events to return (applied after ordering)
            order: "asc" = append order, "desc" = newest first
        """
        events = [
            e
            for e in self.iter_events()
            if (artifact_id is None or e.artifact_id == artifact_id)
            and (event_type is None or e.event_type == event_type)
        ]
        if order == "desc":
            events.reverse()
        if limit is not None:
            events = events[:limit]
        return events
