"""Tests for the drop-folder ingress handler (no observer thread needed)."""

from __future__ import annotations

import time
from pathlib import Path

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from anchorage.artifact.models import ArtifactStatus
from anchorage.intake import DropFolderHandler


def _later() -> float:
    return time.time() + DropFolderHandler.DEBOUNCE_SECONDS + 1


class TestDropFolderHandler:
    def test_new_file_is_submitted_after_debounce(self, make_pipeline, tmp_path: Path) -> None:
        pipeline = make_pipeline()
        results = []
        handler = DropFolderHandler(pipeline, "u1", on_result=lambda p, s, e: results.append((p, s, e)))
        path = tmp_path / "scan.pdf"
        path.write_bytes(b"scan")

        handler.on_created(FileCreatedEvent(str(path)))
        assert handler.flush_pending() == []  # still inside the debounce window

        assert handler.flush_pending(now=_later()) == [path]
        assert pipeline.wait_idle(timeout=5)

        [(result_path, submission, error)] = results
        assert result_path == path
        assert error is None
        record = pipeline.get(submission.artifact_id)
        assert record.title == "scan.pdf"
        assert record.owner_id == "u1"
        assert record.status is ArtifactStatus.ANCHORED

    def test_partial_downloads_and_hidden_files_are_ignored(self, make_pipeline, tmp_path: Path) -> None:
        handler = DropFolderHandler(make_pipeline(), "u1")
        for name in ("report.pdf.part", ".hidden.pdf", "draft.tmp"):
            (tmp_path / name).write_bytes(b"x")
            handler.on_created(FileCreatedEvent(str(tmp_path / name)))

        assert handler.pending == {}

    def test_rename_from_partial_name_submits_final_file(self, make_pipeline, tmp_path: Path) -> None:
        pipeline = make_pipeline()
        handler = DropFolderHandler(pipeline, "u1")
        final = tmp_path / "report.pdf"
        final.write_bytes(b"report")

        handler.on_moved(FileMovedEvent(str(tmp_path / "report.pdf.part"), str(final)))

        assert handler.flush_pending(now=_later()) == [final]
        assert pipeline.wait_idle(timeout=5)
        assert [r.title for r in pipeline.history("u1")] == ["report.pdf"]

    def test_modification_resets_debounce(self, make_pipeline, tmp_path: Path) -> None:
        handler = DropFolderHandler(make_pipeline(), "u1")
        path = tmp_path / "growing.pdf"
        path.write_bytes(b"part one")

        handler.on_created(FileCreatedEvent(str(path)))
        first_seen = handler.pending[str(path)]
        time.sleep(0.01)
        handler.on_modified(FileModifiedEvent(str(path)))

        assert handler.pending[str(path)] > first_seen

    def test_duplicate_and_empty_files_are_reported(self, make_pipeline, tmp_path: Path) -> None:
        pipeline = make_pipeline()
        results = []
        handler = DropFolderHandler(pipeline, "u1", on_result=lambda p, s, e: results.append((p.name, s, e)))
        (tmp_path / "a.pdf").write_bytes(b"same")
        (tmp_path / "b.pdf").write_bytes(b"same")
        (tmp_path / "empty.pdf").write_bytes(b"")

        for name in ("a.pdf", "b.pdf", "empty.pdf"):
            handler.on_created(FileCreatedEvent(str(tmp_path / name)))
        handler.flush_pending(now=_later())
        assert pipeline.wait_idle(timeout=5)

        by_name = {name: (s, e) for name, s, e in results}
        accepted = [s for s, e in by_name.values() if s is not None and not s.conflict]
        conflicts = [s for s, e in by_name.values() if s is not None and s.conflict]
        assert len(accepted) == 1
        assert len(conflicts) == 1
        assert conflicts[0].artifact_id == accepted[0].artifact_id
        assert by_name["empty.pdf"][0] is None
        assert by_name["empty.pdf"][1] is not None
