"""
Tests for the anchoring pipeline.

Scenarios follow an artifact from submit through detached reconciliation:
- accepted submissions return pending before the ledger answers
- duplicates conflict with the first artifact and schedule nothing
- ledger success/failure/timeout end in the right terminal status
- notices reach the submitting owner only, after the status is stored
- verify() reads the ledger, never the local store
"""

from __future__ import annotations

import io
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable

import pytest

from anchorage.artifact.journal import (
    ARTIFACT_ANCHORED,
    ARTIFACT_CONFLICT,
    ARTIFACT_FAILED,
    ARTIFACT_SUBMITTED,
    NOTICE_PUSHED,
    TransitionJournal,
)
from anchorage.artifact.models import ArtifactStatus
from anchorage.artifact.store import ArtifactStore
from anchorage.errors import InvalidDigest, SubmissionRejected
from anchorage.hashing import compute_digest
from anchorage.ledger.client import LedgerRecord
from anchorage.ledger.mock import MockLedgerClient
from anchorage.notify import AnchorNotice, ChannelHub, QueueChannel
from anchorage.pipeline import AnchoringPipeline

H1 = compute_digest(b"pdf-A")
H2 = compute_digest(b"pdf-B")

MakePipeline = Callable[..., AnchoringPipeline]


class GatedLedger(MockLedgerClient):
    """Mock ledger whose anchor() blocks until the test opens the gate."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = threading.Event()
        self.entered = threading.Event()

    def anchor(self, digest: str) -> str:
        self.entered.set()
        self.gate.wait(timeout=5)
        return super().anchor(digest)


class TestSubmit:
    def test_accepted_submission_is_pending(self, make_pipeline: MakePipeline) -> None:
        ledger = GatedLedger()
        pipeline = make_pipeline(ledger)

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")

        assert submission.conflict is False
        assert submission.status is ArtifactStatus.PENDING
        assert submission.content_hash == H1
        assert pipeline.get(submission.artifact_id).status is ArtifactStatus.PENDING

        ledger.gate.set()
        assert pipeline.wait_idle(timeout=5)

    def test_submit_returns_before_ledger_answers(self, make_pipeline: MakePipeline) -> None:
        ledger = GatedLedger()
        pipeline = make_pipeline(ledger)

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert ledger.entered.wait(timeout=5)

        # The ledger call is still blocked, yet submit has returned.
        assert pipeline.inflight == 1
        assert pipeline.get(submission.artifact_id).status is ArtifactStatus.PENDING

        ledger.gate.set()
        assert pipeline.wait_idle(timeout=5)
        assert pipeline.get(submission.artifact_id).status is ArtifactStatus.ANCHORED

    def test_accepts_streams_and_paths(self, make_pipeline: MakePipeline, tmp_path: Path) -> None:
        pipeline = make_pipeline()
        path = tmp_path / "report.pdf"
        path.write_bytes(b"pdf-B")

        from_path = pipeline.submit("u1", "report", path)
        from_stream = pipeline.submit("u1", "stream", io.BytesIO(b"pdf-C"))

        assert from_path.content_hash == H2
        assert from_stream.content_hash == compute_digest(b"pdf-C")
        assert pipeline.wait_idle(timeout=5)

    @pytest.mark.parametrize(
        ("owner", "title", "data"),
        [
            ("", "title", b"x"),
            ("u1", "   ", b"x"),
            ("u1", "t" * 201, b"x"),
            ("u1", "title", b""),
        ],
    )
    def test_validation(self, make_pipeline: MakePipeline, owner: str, title: str, data: bytes) -> None:
        pipeline = make_pipeline()
        with pytest.raises(SubmissionRejected):
            pipeline.submit(owner, title, data)
        assert pipeline.history(owner or "u1") == []

    def test_size_limit(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(max_bytes=4)
        with pytest.raises(SubmissionRejected):
            pipeline.submit("u1", "big", b"12345")


class TestDeduplication:
    def test_second_owner_gets_conflict_with_first_id(self, make_pipeline: MakePipeline, hub: ChannelHub) -> None:
        ledger = MockLedgerClient()
        pipeline = make_pipeline(ledger)
        u2_channel = hub.connect("u2", QueueChannel())

        first = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)
        second = pipeline.submit("u2", "Copy", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        assert second.conflict is True
        assert second.artifact_id == first.artifact_id
        assert second.status is ArtifactStatus.ANCHORED
        assert pipeline.history("u2") == []
        assert ledger.anchor_calls == [H1]
        assert u2_channel.drain() == []

    def test_concurrent_identical_submissions(self, make_pipeline: MakePipeline) -> None:
        ledger = MockLedgerClient()
        pipeline = make_pipeline(ledger)
        barrier = threading.Barrier(6)
        results = []
        lock = threading.Lock()

        def go(i: int) -> None:
            barrier.wait()
            submission = pipeline.submit(f"u{i}", "same", b"pdf-A")
            with lock:
                results.append(submission)

        threads = [threading.Thread(target=go, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert pipeline.wait_idle(timeout=5)

        accepted = [s for s in results if not s.conflict]
        assert len(accepted) == 1
        assert {s.artifact_id for s in results} == {accepted[0].artifact_id}
        assert ledger.anchor_calls == [H1]


class TestReconciliation:
    def test_success_scenario(self, make_pipeline: MakePipeline, hub: ChannelHub) -> None:
        pipeline = make_pipeline(MockLedgerClient(refs={H1: "tx123"}))
        channel = hub.connect("u1", QueueChannel())

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert submission.status is ArtifactStatus.PENDING
        assert pipeline.wait_idle(timeout=5)

        [record] = pipeline.history("u1")
        assert record.status is ArtifactStatus.ANCHORED
        assert record.ledger_ref == "tx123"

        notice = channel.get(timeout=1)
        assert notice == AnchorNotice(
            kind="anchored",
            artifact_id=submission.artifact_id,
            owner_id="u1",
            ledger_ref="tx123",
            timestamp=notice.timestamp,
        )

    def test_rejection_scenario(self, make_pipeline: MakePipeline, hub: ChannelHub) -> None:
        pipeline = make_pipeline(MockLedgerClient(rejections={H2: "digest refused"}))
        channel = hub.connect("u1", QueueChannel())

        submission = pipeline.submit("u1", "Thesis v2", b"pdf-B")
        assert submission.status is ArtifactStatus.PENDING
        assert pipeline.wait_idle(timeout=5)

        record = pipeline.get(submission.artifact_id)
        assert record.status is ArtifactStatus.FAILED
        assert record.ledger_ref is None
        assert "digest refused" in record.failure_reason

        notice = channel.get(timeout=1)
        assert notice.kind == "failed"
        assert notice.artifact_id == submission.artifact_id
        assert "digest refused" in notice.reason

    def test_unavailable_ledger_fails(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(MockLedgerClient(unavailable={H1}))

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        record = pipeline.get(submission.artifact_id)
        assert record.status is ArtifactStatus.FAILED
        assert record.failure_reason.startswith("LedgerUnavailable")

    def test_timeout_is_treated_as_failure(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(MockLedgerClient(delay_s=0.5), anchor_timeout_s=0.05)

        submission = pipeline.submit("u1", "Slow", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        record = pipeline.get(submission.artifact_id)
        assert record.status is ArtifactStatus.FAILED
        assert record.failure_reason.startswith("LedgerTimeout")

    def test_unexpected_ledger_error_fails(self, make_pipeline: MakePipeline) -> None:
        class BrokenLedger(MockLedgerClient):
            def anchor(self, digest: str) -> str:
                raise KeyError("boom")

        pipeline = make_pipeline(BrokenLedger())
        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        assert pipeline.get(submission.artifact_id).status is ArtifactStatus.FAILED

    def test_status_is_stored_before_notice(self, make_pipeline: MakePipeline, hub: ChannelHub) -> None:
        seen: list[ArtifactStatus] = []

        class StatusReader:
            channel_id = "status-reader"

            def deliver(self, notice: AnchorNotice) -> None:
                seen.append(pipeline.get(notice.artifact_id).status)

        pipeline = make_pipeline()
        hub.connect("u1", StatusReader())

        pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        assert seen == [ArtifactStatus.ANCHORED]

    def test_notifier_failure_keeps_status(self, make_pipeline: MakePipeline) -> None:
        class BrokenNotifier:
            def push(self, owner_id: str, notice: AnchorNotice) -> int:
                raise RuntimeError("push channel down")

        pipeline = make_pipeline(notifier=BrokenNotifier())
        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        assert pipeline.get(submission.artifact_id).status is ArtifactStatus.ANCHORED

    def test_notices_only_reach_submitting_owner(self, make_pipeline: MakePipeline, hub: ChannelHub) -> None:
        pipeline = make_pipeline()
        mine = hub.connect("u1", QueueChannel())
        theirs = hub.connect("u2", QueueChannel())

        pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        assert len(mine.drain()) == 1
        assert theirs.drain() == []

    def test_record_deleted_out_of_band(self, make_pipeline: MakePipeline, hub: ChannelHub, db_path: Path) -> None:
        ledger = GatedLedger()
        pipeline = make_pipeline(ledger)
        channel = hub.connect("u1", QueueChannel())

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert ledger.entered.wait(timeout=5)
        conn = sqlite3.connect(str(db_path))
        with conn:
            conn.execute("DELETE FROM artifacts WHERE artifact_id = ?", (submission.artifact_id,))
        conn.close()

        ledger.gate.set()
        assert pipeline.wait_idle(timeout=5)

        assert pipeline.get(submission.artifact_id) is None
        assert channel.drain() == []

    def test_store_error_in_task_is_logged(
        self,
        store_factory: Callable[[], ArtifactStore],
        hub: ChannelHub,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        opened: list[int] = []

        def failing_after_submit() -> ArtifactStore:
            opened.append(1)
            if len(opened) > 1:
                raise OSError("disk gone")
            return store_factory()

        caplog.set_level(logging.WARNING, logger="anchorage.pipeline")
        channel = hub.connect("u1", QueueChannel())
        pipeline = AnchoringPipeline(failing_after_submit, MockLedgerClient(), hub)
        try:
            submission = pipeline.submit("u1", "Thesis", b"pdf-A")
            assert pipeline.wait_idle(timeout=5)
        finally:
            pipeline.close()

        errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert any(submission.artifact_id in r.getMessage() for r in errors)
        assert channel.drain() == []
        with store_factory() as store:
            assert store.get(submission.artifact_id).status is ArtifactStatus.PENDING

    def test_independent_artifacts_all_resolve(self, make_pipeline: MakePipeline) -> None:
        payloads = [f"doc-{i}".encode() for i in range(10)]
        pipeline = make_pipeline(MockLedgerClient(rejections={compute_digest(payloads[3]): "no"}), workers=3)

        for i, payload in enumerate(payloads):
            pipeline.submit("u1", f"doc {i}", payload)
        assert pipeline.wait_idle(timeout=10)

        statuses = {r.title: r.status for r in pipeline.history("u1")}
        assert statuses.pop("doc 3") is ArtifactStatus.FAILED
        assert set(statuses.values()) == {ArtifactStatus.ANCHORED}


class TestJournalTrail:
    def test_transitions_are_journaled(self, make_pipeline: MakePipeline, journal: TransitionJournal) -> None:
        pipeline = make_pipeline()

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)
        pipeline.submit("u2", "Copy", b"pdf-A")

        types = [e.event_type for e in journal.query(artifact_id=submission.artifact_id)]
        assert types == [ARTIFACT_SUBMITTED, ARTIFACT_ANCHORED, NOTICE_PUSHED, ARTIFACT_CONFLICT]

    def test_failure_is_journaled(self, make_pipeline: MakePipeline, journal: TransitionJournal) -> None:
        pipeline = make_pipeline(MockLedgerClient(rejections={H1: "no"}))

        submission = pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)

        [failed] = journal.query(artifact_id=submission.artifact_id, event_type=ARTIFACT_FAILED)
        assert "no" in failed.payload["reason"]


class TestVerify:
    def test_verified_without_local_record(self, make_pipeline: MakePipeline) -> None:
        ledger = MockLedgerClient()
        ledger.register(H1)
        pipeline = make_pipeline(ledger)

        verification = pipeline.verify(H1)

        assert pipeline.find_by_hash(H1) is None
        assert verification.status == "verified"
        assert verification.owner == "0xMOCK_OWNER_ADDRESS"

    def test_local_anchored_record_does_not_imply_verified(self, make_pipeline: MakePipeline) -> None:
        class ForgetfulLedger(MockLedgerClient):
            def query(self, digest: str) -> LedgerRecord:
                return LedgerRecord.unregistered()

        pipeline = make_pipeline(ForgetfulLedger())
        pipeline.submit("u1", "Thesis", b"pdf-A")
        assert pipeline.wait_idle(timeout=5)
        assert pipeline.find_by_hash(H1).status is ArtifactStatus.ANCHORED

        assert pipeline.verify(H1).status == "unverified"

    def test_accepts_prefixed_uppercase_hash(self, make_pipeline: MakePipeline) -> None:
        ledger = MockLedgerClient()
        ledger.register(H1)
        pipeline = make_pipeline(ledger)

        assert pipeline.verify("0x" + H1.upper()).verified is True

    def test_rejects_malformed_hash(self, make_pipeline: MakePipeline) -> None:
        with pytest.raises(InvalidDigest):
            make_pipeline().verify("not-a-hash")


class TestLifecycle:
    def test_closed_pipeline_refuses_work(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline()
        pipeline.close()
        with pytest.raises(RuntimeError):
            pipeline.submit("u1", "late", b"pdf-A")

    def test_close_waits_for_reconciliation(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(MockLedgerClient(delay_s=0.05))
        submission = pipeline.submit("u1", "Thesis", b"pdf-A")

        pipeline.close(wait=True)

        assert pipeline.get(submission.artifact_id).status is ArtifactStatus.ANCHORED

    def test_close_during_submit_logs_stranded_record(
        self,
        store_factory: Callable[[], ArtifactStore],
        hub: ChannelHub,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        class ClosingJournal(TransitionJournal):
            pipeline: AnchoringPipeline | None = None

            def record(self, event_type, artifact_id, actor, **payload):
                event = super().record(event_type, artifact_id, actor, **payload)
                if event_type == ARTIFACT_SUBMITTED and self.pipeline is not None:
                    self.pipeline.close(wait=False)
                return event

        journal = ClosingJournal(tmp_path / "journal.jsonl")
        ledger = MockLedgerClient()
        pipeline = AnchoringPipeline(store_factory, ledger, hub, journal=journal)
        journal.pipeline = pipeline
        caplog.set_level(logging.ERROR, logger="anchorage.pipeline")

        with pytest.raises(RuntimeError):
            pipeline.submit("u1", "Thesis", b"pdf-A")

        with store_factory() as store:
            record = store.find_by_hash(H1)
        assert record.status is ArtifactStatus.PENDING
        assert any(record.artifact_id in r.getMessage() for r in caplog.records)
        assert ledger.anchor_calls == []
