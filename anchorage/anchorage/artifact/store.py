"""
Persistent artifact records (sqlite).

The UNIQUE constraint on content_hash is the only dedup primitive: two
concurrent submissions of the same bytes race on INSERT, exactly one
wins, and the loser is told the winner's artifact_id. There is no
check-then-insert anywhere in this module.

A store wraps one sqlite connection and belongs to the thread that
opened it. Open a fresh store per scope (request, background task, CLI
command) and close it when the scope ends.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import ArtifactNotFound, DuplicateHash, InvalidTransition
from ..hashing import normalize_digest
from .models import ArtifactRecord, ArtifactStatus, check_transition, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS artifacts (
    artifact_id    TEXT PRIMARY KEY,
    content_hash   TEXT NOT NULL UNIQUE CHECK (length(content_hash) = 64),
    owner_id       TEXT NOT NULL,
    title          TEXT NOT NULL,
    status         TEXT NOT NULL CHECK (status IN ('pending', 'anchored', 'failed')),
    ledger_ref     TEXT,
    failure_reason TEXT,
    size_bytes     INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL,
    resolved_at    TEXT
);
CREATE INDEX IF NOT EXISTS ix_artifacts_owner_id ON artifacts (owner_id, created_at);
CREATE INDEX IF NOT EXISTS ix_artifacts_status ON artifacts (status);
"""

_COLUMNS = (
    "artifact_id, content_hash, owner_id, title, status, ledger_ref, "
    "failure_reason, size_bytes, created_at, resolved_at"
)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: sqlite3.Row) -> ArtifactRecord:
    return ArtifactRecord(
        artifact_id=row["artifact_id"],
        content_hash=row["content_hash"],
        owner_id=row["owner_id"],
        title=row["title"],
        status=ArtifactStatus(row["status"]),
        ledger_ref=row["ledger_ref"],
        failure_reason=row["failure_reason"],
        size_bytes=row["size_bytes"],
        created_at=_parse_ts(row["created_at"]),
        resolved_at=_parse_ts(row["resolved_at"]),
    )


class ArtifactStore:
    """Repository of artifact records keyed by id, unique by content hash."""

    def __init__(self, db_path: Path, *, busy_timeout_s: float = 10.0):
        """
        Open (and if needed create) the artifact database.

        Args:
            db_path: Path to the sqlite database file
            busy_timeout_s: How long a write waits for a competing writer
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), timeout=busy_timeout_s)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)

    @classmethod
    def open(cls, db_path: Path, **kwargs: Any) -> ArtifactStore:
        return cls(db_path, **kwargs)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> ArtifactStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, artifact_id: str) -> ArtifactRecord | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM artifacts WHERE artifact_id = ?",
            (artifact_id,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def find_by_hash(self, digest: str) -> ArtifactRecord | None:
        """Look up the record for a content hash (any case, optional 0x)."""
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM artifacts WHERE content_hash = ?",
            (normalize_digest(digest),),
        ).fetchone()
        return _row_to_record(row) if row else None

    def list_by_owner(self, owner_id: str) -> list[ArtifactRecord]:
        """All records of one owner, newest first."""
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM artifacts WHERE owner_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (owner_id,),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_by_status(self, status: ArtifactStatus) -> list[ArtifactRecord]:
        """All records in one status, oldest first."""
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM artifacts WHERE status = ? ORDER BY created_at ASC, rowid ASC",
            (ArtifactStatus(status).value,),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def try_create(self, record: ArtifactRecord) -> ArtifactRecord:
        """
        Insert a new pending record in one atomic statement.

        Returns:
            The stored record (content_hash normalized)

        Raises:
            DuplicateHash: If a record with the same content hash exists;
                carries the existing artifact_id
            InvalidTransition: If the record is not pending
        """
        if record.status is not ArtifactStatus.PENDING:
            raise InvalidTransition(f"records are created pending, not {record.status.value}")

        record = replace(
            record,
            content_hash=normalize_digest(record.content_hash),
            created_at=record.created_at or utc_now(),
        )
        try:
            with self._conn:
                self._conn.execute(
                    f"INSERT INTO artifacts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.artifact_id,
                        record.content_hash,
                        record.owner_id,
                        record.title,
                        record.status.value,
                        None,
                        None,
                        record.size_bytes,
                        record.created_at.isoformat(),
                        None,
                    ),
                )
        except sqlite3.IntegrityError as e:
            existing = self.find_by_hash(record.content_hash)
            if existing is None:
                raise
            logger.debug("Duplicate content %s (existing %s)", record.content_hash, existing.artifact_id)
            raise DuplicateHash(record.content_hash, existing.artifact_id) from e

        return record

    def update_status(
        self,
        artifact_id: str,
        status: ArtifactStatus,
        ledger_ref: str | None = None,
        *,
        reason: str | None = None,
    ) -> bool:
        """
        Apply the terminal transition of a pending record.

        The UPDATE only matches rows still pending, so a terminal record is
        never regressed or flipped to the other outcome. Repeating the same
        outcome is a no-op.

        Returns:
            True if the transition was applied, False if the record was
            already terminal

        Raises:
            ArtifactNotFound: If no record has this id
            InvalidTransition: If status is not terminal or ledger_ref does
                not fit the status
        """
        status = ArtifactStatus(status)
        check_transition(ArtifactStatus.PENDING, status, ledger_ref)

        with self._conn:
            cur = self._conn.execute(
                "UPDATE artifacts SET status = ?, ledger_ref = ?, failure_reason = ?, resolved_at = ? "
                "WHERE artifact_id = ? AND status = ?",
                (
                    status.value,
                    ledger_ref,
                    reason if status is ArtifactStatus.FAILED else None,
                    utc_now().isoformat(),
                    artifact_id,
                    ArtifactStatus.PENDING.value,
                ),
            )
        if cur.rowcount == 1:
            return True

        if self.get(artifact_id) is None:
            raise ArtifactNotFound(artifact_id)
        return False
