"""Tests for the artifact lifecycle rules and ids."""

from __future__ import annotations

import pytest

from anchorage.artifact.models import ArtifactRecord, ArtifactStatus, check_transition, new_artifact_id
from anchorage.errors import InvalidTransition

PENDING = ArtifactStatus.PENDING
ANCHORED = ArtifactStatus.ANCHORED
FAILED = ArtifactStatus.FAILED


class TestTransitions:
    def test_terminal_states(self) -> None:
        assert not PENDING.is_terminal
        assert ANCHORED.is_terminal
        assert FAILED.is_terminal

    def test_allowed(self) -> None:
        check_transition(PENDING, ANCHORED, "tx123")
        check_transition(PENDING, FAILED)

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (ANCHORED, PENDING),
            (FAILED, PENDING),
            (ANCHORED, FAILED),
            (FAILED, ANCHORED),
            (PENDING, PENDING),
            (ANCHORED, ANCHORED),
        ],
    )
    def test_rejected(self, current: ArtifactStatus, new: ArtifactStatus) -> None:
        with pytest.raises(InvalidTransition):
            check_transition(current, new, "tx123" if new is ANCHORED else None)


class TestIds:
    def test_ulid_shape(self) -> None:
        artifact_id = new_artifact_id()
        assert len(artifact_id) == 26
        assert set(artifact_id) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")

    def test_ulids_sort_by_time(self) -> None:
        earlier = new_artifact_id(timestamp_ms=1_700_000_000_000)
        later = new_artifact_id(timestamp_ms=1_700_000_000_001)
        assert earlier < later

    def test_timestamp_range(self) -> None:
        with pytest.raises(ValueError):
            new_artifact_id(timestamp_ms=-1)


class TestRecord:
    def test_new_record_is_pending(self) -> None:
        record = ArtifactRecord.new(content_hash="a" * 64, owner_id="u1", title="t", size_bytes=3)
        assert record.status is PENDING
        assert record.ledger_ref is None
        assert record.created_at is not None

    def test_history_view_fields(self) -> None:
        record = ArtifactRecord.new(content_hash="a" * 64, owner_id="u1", title="t")
        data = record.to_dict()
        for key in ("artifact_id", "title", "status", "created_at", "content_hash", "ledger_ref"):
            assert key in data
        assert data["status"] == "pending"
