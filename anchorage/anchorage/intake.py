"""
Drop-folder ingress.

Watches a directory and submits every new file as an artifact for one
owner. Writes are debounced: a file is submitted once it has been quiet
for DEBOUNCE_SECONDS, so half-copied files are not hashed.

This is an ingress adapter only. It holds no artifact state; dedup and
reconciliation are the pipeline's job.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import SubmissionRejected
from .pipeline import AnchoringPipeline, Submission

logger = logging.getLogger(__name__)

IntakeCallback = Callable[[Path, Submission | None, Exception | None], None]


class DropFolderHandler(FileSystemEventHandler):
    """
    Collects new files and submits them after a quiet period.

    Key behaviors:
    - Hidden files and partial-download suffixes are ignored
    - Repeated modifications reset the debounce timer
    - Each path is submitted at most once per appearance
    """

    IGNORED_SUFFIXES = {".tmp", ".part", ".crdownload", ".swp"}
    DEBOUNCE_SECONDS = 1.0

    def __init__(
        self,
        pipeline: AnchoringPipeline,
        owner_id: str,
        on_result: IntakeCallback | None = None,
    ):
        super().__init__()
        self.pipeline = pipeline
        self.owner_id = owner_id
        self.on_result = on_result

        # path -> last activity timestamp
        self.pending: dict[str, float] = {}
        self._lock = threading.Lock()

    def _is_relevant(self, path: str) -> bool:
        p = Path(path)
        if p.name.startswith("."):
            return False
        return p.suffix.lower() not in self.IGNORED_SUFFIXES

    def _touch(self, path: str) -> None:
        if not self._is_relevant(path):
            return
        with self._lock:
            self.pending[path] = time.time()

    def on_created(self, event: FileCreatedEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory:
            return
        with self._lock:
            known = event.src_path in self.pending
        if known:
            self._touch(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:
        # Renaming "x.part" to "x.pdf" is how most downloaders finish.
        if event.is_directory:
            return
        with self._lock:
            self.pending.pop(event.src_path, None)
        self._touch(event.dest_path)

    def flush_pending(self, now: float | None = None) -> list[Path]:
        """Submit files whose debounce window has passed. Returns their paths."""
        now = time.time() if now is None else now
        with self._lock:
            ready = [p for p, ts in self.pending.items() if now - ts >= self.DEBOUNCE_SECONDS]
            for p in ready:
                del self.pending[p]

        submitted = []
        for path_str in ready:
            path = Path(path_str)
            if not path.is_file():
                continue
            self._submit(path)
            submitted.append(path)
        return submitted

    def _submit(self, path: Path) -> None:
        try:
            submission = self.pipeline.submit(self.owner_id, path.name, path)
        except (SubmissionRejected, OSError) as e:
            logger.warning("Skipping %s: %s", path, e)
            if self.on_result:
                self.on_result(path, None, e)
            return

        if submission.conflict:
            logger.info("%s duplicates artifact %s", path.name, submission.artifact_id)
        if self.on_result:
            self.on_result(path, submission, None)


def watch_folder(
    folder: Path,
    pipeline: AnchoringPipeline,
    owner_id: str,
    on_result: IntakeCallback | None = None,
) -> tuple[Observer, DropFolderHandler]:
    """
    Start watching a folder.

    Returns:
        Tuple of (observer, handler) - caller should call observer.stop() to stop watching
    """
    handler = DropFolderHandler(pipeline, owner_id, on_result=on_result)
    observer = Observer()
    observer.schedule(handler, str(folder), recursive=False)
    observer.start()
    return observer, handler


def run_intake_loop(
    folder: Path,
    pipeline: AnchoringPipeline,
    owner_id: str,
    on_result: IntakeCallback | None = None,
    poll_s: float = 0.5,
) -> None:
    """Watch until interrupted (Ctrl+C), flushing debounced files periodically."""
    observer, handler = watch_folder(folder, pipeline, owner_id, on_result=on_result)
    try:
        while True:
            time.sleep(poll_s)
            handler.flush_pending()
    except KeyboardInterrupt:
        observer.stop()

    observer.join()
