"""
Anchoring pipeline: submit, deduplicate, reconcile against the ledger.

submit() does only local work (validate, hash, atomic create) and returns
while the artifact is still pending. The ledger commit happens in a
detached task that owns its own resources:

    submit ──▶ hash ──▶ try_create(pending) ──▶ return Submission
                              │
                              └──▶ AnchorJob(values only) ──▶ worker thread
                                       ledger.anchor (bounded)
                                       store.update_status (own connection)
                                       notifier.push (owner only)

The job carries ids and digests, never the request's store handle. A
store opened by the caller belongs to the caller's thread and is closed
when submit() returns.
"""

from __future__ import annotations

import io
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable

from .artifact.journal import (
    ARTIFACT_ANCHORED,
    ARTIFACT_CONFLICT,
    ARTIFACT_FAILED,
    ARTIFACT_SUBMITTED,
    NOTICE_PUSHED,
    TransitionJournal,
)
from .artifact.models import ArtifactRecord, ArtifactStatus
from .artifact.store import ArtifactStore
from .errors import ArtifactNotFound, DuplicateHash, SubmissionRejected
from .hashing import ContentHasher, normalize_digest
from .ledger.client import LedgerClient, LedgerError, LedgerRecord, LedgerTimeout
from .notify import AnchorNotice, Notifier

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], ArtifactStore]

MAX_REASON_CHARS = 500


@dataclass(frozen=True)
class Submission:
    """Answer to submit(): accepted (pending) or a conflict with the existing id."""

    artifact_id: str
    status: ArtifactStatus
    content_hash: str
    conflict: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact_id": self.artifact_id,
            "status": self.status.value,
            "content_hash": self.content_hash,
            "conflict": self.conflict,
        }


@dataclass(frozen=True)
class AnchorJob:
    """Everything a background task needs, as plain values."""

    artifact_id: str
    owner_id: str
    digest: str


@dataclass(frozen=True)
class Verification:
    """Ledger truth about a digest (the local store is not consulted)."""

    digest: str
    record: LedgerRecord

    @property
    def verified(self) -> bool:
        return self.record.registered

    @property
    def status(self) -> str:
        return "verified" if self.verified else "unverified"

    @property
    def owner(self) -> str | None:
        return self.record.owner

    @property
    def anchored_at(self) -> datetime | None:
        return self.record.anchored_at

    def to_dict(self) -> dict[str, Any]:
        return {"digest": self.digest, "status": self.status, **self.record.to_dict()}


class AnchoringPipeline:
    """
    Orchestrates the pending -> {anchored, failed} state machine.

    Args:
        store_factory: Returns a new ArtifactStore; called once per scope
        ledger: Ledger capability (production or mock)
        notifier: Owner-addressed notifier
        hasher: Content hasher (default sha256, 64 KiB chunks)
        journal: Optional append-only transition journal
        workers: Number of concurrent reconciliation tasks
        anchor_timeout_s: Upper bound on one ledger anchor call
        max_bytes: Largest accepted payload
        max_title_length: Longest accepted title
    """

    def __init__(
        self,
        store_factory: StoreFactory,
        ledger: LedgerClient,
        notifier: Notifier,
        *,
        hasher: ContentHasher | None = None,
        journal: TransitionJournal | None = None,
        workers: int = 4,
        anchor_timeout_s: float = 30.0,
        max_bytes: int = 10 * 1024 * 1024,
        max_title_length: int = 200,
    ):
        self._store_factory = store_factory
        self._ledger = ledger
        self._notifier = notifier
        self._hasher = hasher or ContentHasher()
        self._journal = journal
        self.anchor_timeout_s = anchor_timeout_s
        self.max_bytes = max_bytes
        self.max_title_length = max_title_length

        self._workers = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="anchorage-reconcile")
        # Ledger calls get their own pool so a hung call can be abandoned
        # after anchor_timeout_s without blocking a reconcile worker forever.
        self._ledger_calls = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="anchorage-ledger")

        self._inflight: set[Future[ArtifactStatus | None]] = set()
        self._inflight_lock = threading.Lock()
        self._idle = threading.Condition(self._inflight_lock)
        self._closed = False

    def __enter__(self) -> AnchoringPipeline:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(self, owner_id: str, title: str, data: bytes | BinaryIO | Path) -> Submission:
        """
        Accept an artifact for anchoring.

        Returns as soon as the pending record exists; never waits on the
        ledger. Identical content submitted before (by anyone) yields a
        conflict carrying the existing artifact_id and schedules nothing.

        Raises:
            SubmissionRejected: On missing owner, bad title, or empty or
                oversized payload
        """
        if self._closed:
            raise RuntimeError("pipeline is closed")

        title = self._validate(owner_id, title)
        stream, size = self._open_payload(data)
        try:
            digest = self._hasher.digest(stream)
        finally:
            if stream is not data:
                stream.close()

        record = ArtifactRecord.new(content_hash=digest, owner_id=owner_id, title=title, size_bytes=size)

        with self._store_factory() as store:
            try:
                record = store.try_create(record)
            except DuplicateHash as dup:
                existing = store.get(dup.existing_id)
                status = existing.status if existing else ArtifactStatus.PENDING
                logger.info("Duplicate content %s from %s; existing artifact %s", digest, owner_id, dup.existing_id)
                self._record(ARTIFACT_CONFLICT, dup.existing_id, f"owner:{owner_id}", content_hash=digest)
                return Submission(artifact_id=dup.existing_id, status=status, content_hash=digest, conflict=True)

        logger.info("Accepted artifact %s (%s) from %s", record.artifact_id, digest, owner_id)
        self._record(
            ARTIFACT_SUBMITTED,
            record.artifact_id,
            f"owner:{owner_id}",
            content_hash=digest,
            title=title,
            size_bytes=size,
        )

        self._schedule(AnchorJob(artifact_id=record.artifact_id, owner_id=owner_id, digest=digest))
        return Submission(artifact_id=record.artifact_id, status=ArtifactStatus.PENDING, content_hash=digest)

    def _validate(self, owner_id: str, title: str) -> str:
        if not owner_id or not owner_id.strip():
            raise SubmissionRejected("owner_id is required")
        title = (title or "").strip()
        if not title:
            raise SubmissionRejected("Title is required.")
        if len(title) > self.max_title_length:
            raise SubmissionRejected(f"Title must not exceed {self.max_title_length} characters.")
        return title

    def _open_payload(self, data: bytes | BinaryIO | Path) -> tuple[BinaryIO, int]:
        if isinstance(data, (bytes, bytearray)):
            size = len(data)
            stream: BinaryIO = io.BytesIO(data)
        elif isinstance(data, Path):
            size = data.stat().st_size
            stream = data.open("rb")
        else:
            pos = data.tell()
            data.seek(0, io.SEEK_END)
            size = data.tell() - pos
            data.seek(pos)
            stream = data

        if size == 0:
            if stream is not data:
                stream.close()
            raise SubmissionRejected("File content cannot be empty.")
        if size > self.max_bytes:
            if stream is not data:
                stream.close()
            raise SubmissionRejected(f"File size must not exceed {self.max_bytes} bytes.")
        return stream, size

    def _schedule(self, job: AnchorJob) -> None:
        with self._inflight_lock:
            if self._closed:
                logger.error("Pipeline closed before artifact %s was scheduled; it stays pending", job.artifact_id)
                raise RuntimeError("pipeline is closed")
            future = self._workers.submit(self._reconcile, job)
            self._inflight.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future[ArtifactStatus | None]) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Reconciliation task crashed", exc_info=future.exception())
        with self._idle:
            self._inflight.discard(future)
            if not self._inflight:
                self._idle.notify_all()

    # -------------------------------------------------------------------------
    # Detached reconciliation
    # -------------------------------------------------------------------------

    def _reconcile(self, job: AnchorJob) -> ArtifactStatus | None:
        """
        Drive one artifact to a terminal status.

        Runs on a worker thread after submit() has returned. Store update
        first, then notification, so a polling reader sees the outcome even
        if the push is lost.

        Returns:
            The terminal status written, or None if nothing was written
        """
        try:
            ledger_ref = self._anchor(job.digest)
        except LedgerError as e:
            logger.warning("Anchoring %s failed: %s", job.artifact_id, e)
            return self._finish(job, ArtifactStatus.FAILED, reason=_reason(e))
        except Exception as e:
            logger.exception("Unexpected error anchoring %s", job.artifact_id)
            return self._finish(job, ArtifactStatus.FAILED, reason=_reason(e))

        logger.info("Anchored %s as %s", job.artifact_id, ledger_ref)
        return self._finish(job, ArtifactStatus.ANCHORED, ledger_ref=ledger_ref)

    def _anchor(self, digest: str) -> str:
        call = self._ledger_calls.submit(self._ledger.anchor, digest)
        try:
            return call.result(timeout=self.anchor_timeout_s)
        except FutureTimeout as e:
            call.cancel()
            raise LedgerTimeout(f"Ledger did not answer within {self.anchor_timeout_s}s") from e

    def _finish(
        self,
        job: AnchorJob,
        status: ArtifactStatus,
        *,
        ledger_ref: str | None = None,
        reason: str | None = None,
    ) -> ArtifactStatus | None:
        try:
            with self._store_factory() as store:
                applied = store.update_status(job.artifact_id, status, ledger_ref, reason=reason)
        except ArtifactNotFound:
            logger.warning("Artifact %s vanished before its %s status was stored", job.artifact_id, status.value)
            return None
        except Exception:
            # Record stays pending; find_drift surfaces it if the ledger committed.
            logger.exception("Could not store %s status for artifact %s", status.value, job.artifact_id)
            return None

        if not applied:
            logger.info("Artifact %s already terminal; %s outcome not applied", job.artifact_id, status.value)
            return None

        if status is ArtifactStatus.ANCHORED:
            self._record(ARTIFACT_ANCHORED, job.artifact_id, "pipeline", ledger_ref=ledger_ref)
            notice = AnchorNotice.anchored(job.artifact_id, job.owner_id, ledger_ref or "")
        else:
            self._record(ARTIFACT_FAILED, job.artifact_id, "pipeline", reason=reason)
            notice = AnchorNotice.failed(job.artifact_id, job.owner_id, reason or "unknown error")

        self._notify(job.owner_id, notice)
        return status

    def _notify(self, owner_id: str, notice: AnchorNotice) -> None:
        try:
            delivered = self._notifier.push(owner_id, notice)
        except Exception:
            logger.warning("Notifier failed for artifact %s", notice.artifact_id, exc_info=True)
            return
        self._record(NOTICE_PUSHED, notice.artifact_id, "pipeline", kind=notice.kind, delivered=delivered)

    def _record(self, event_type: str, artifact_id: str, actor: str, **payload: Any) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record(event_type, artifact_id, actor, **payload)
        except OSError:
            logger.warning("Could not append %s for %s to journal", event_type, artifact_id, exc_info=True)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def verify(self, digest: str) -> Verification:
        """
        Check a digest against the ledger only.

        Raises:
            InvalidDigest: If digest is not a sha256 hex digest
            LedgerError: If the ledger cannot be queried
        """
        digest = normalize_digest(digest)
        return Verification(digest=digest, record=self._ledger.query(digest))

    def history(self, owner_id: str) -> list[ArtifactRecord]:
        """Owner's artifacts, newest first."""
        with self._store_factory() as store:
            return store.list_by_owner(owner_id)

    def get(self, artifact_id: str) -> ArtifactRecord | None:
        with self._store_factory() as store:
            return store.get(artifact_id)

    def find_by_hash(self, digest: str) -> ArtifactRecord | None:
        with self._store_factory() as store:
            return store.find_by_hash(digest)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def inflight(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no reconciliation is running. False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._inflight, timeout=timeout)

    def close(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for running reconciliations."""
        with self._inflight_lock:
            self._closed = True
        self._workers.shutdown(wait=wait)
        self._ledger_calls.shutdown(wait=wait, cancel_futures=True)


def _reason(error: BaseException) -> str:
    text = f"{type(error).__name__}: {error}"
    return text[:MAX_REASON_CHARS]
