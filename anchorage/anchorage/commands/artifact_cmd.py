"""Artifact CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from ..app import Runtime
from ..artifact.models import ArtifactRecord, ArtifactStatus
from ..errors import InvalidDigest, SubmissionRejected
from ..hashing import compute_digest
from ..intake import run_intake_loop
from ..ledger.client import LedgerError
from ..notify import AnchorNotice, CallbackChannel, QueueChannel
from ..pipeline import Submission
from ..reconcile import find_drift

EXIT_OK = 0
EXIT_NEGATIVE = 1
EXIT_USAGE = 2
EXIT_CONFLICT = 3

_STATUS_STYLE = {
    ArtifactStatus.PENDING: "yellow",
    ArtifactStatus.ANCHORED: "green",
    ArtifactStatus.FAILED: "red",
}


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _status_text(status: ArtifactStatus) -> str:
    return f"[{_STATUS_STYLE[status]}]{status.value}[/]"


def run_submit(
    rt: Runtime,
    path: Path,
    *,
    owner_id: str,
    title: str | None = None,
    wait: bool = True,
    timeout_s: float | None = None,
    output_json: bool = False,
) -> int:
    console = Console()
    err = Console(stderr=True)

    channel = rt.hub.connect(owner_id, QueueChannel())
    pipeline = rt.pipeline()
    try:
        try:
            submission = pipeline.submit(owner_id, title or path.name, path)
        except SubmissionRejected as e:
            err.print(f"Rejected: {e}", style="bold red")
            return EXIT_USAGE

        if submission.conflict:
            if output_json:
                _print_json(submission.to_dict())
            else:
                err.print(
                    f"Artifact already exists: {submission.artifact_id} ({submission.status.value})",
                    style="bold yellow",
                )
            return EXIT_CONFLICT

        notice = _await_notice(channel, submission, timeout_s) if wait else None
    finally:
        pipeline.close(wait=True)
        rt.hub.disconnect(channel)

    if output_json:
        data: dict[str, Any] = submission.to_dict()
        if notice is not None:
            data["notice"] = notice.to_dict()
        _print_json(data)
    else:
        console.print(f"Accepted [cyan]{submission.artifact_id}[/] ({submission.content_hash})")
        if notice is not None:
            style = "green" if notice.kind == "anchored" else "red"
            console.print(notice.message(), style=style)
        elif wait:
            console.print("Still pending; check `anchorage history` later.", style="yellow")

    if notice is not None and notice.kind == "failed":
        return EXIT_NEGATIVE
    return EXIT_OK


def _await_notice(channel: QueueChannel, submission: Submission, timeout_s: float | None) -> AnchorNotice | None:
    while True:
        notice = channel.get(timeout=timeout_s)
        if notice is None:
            return None
        if notice.artifact_id == submission.artifact_id:
            return notice


def run_history(rt: Runtime, *, owner_id: str, output_json: bool = False) -> int:
    with rt.open_store() as store:
        records = store.list_by_owner(owner_id)

    if output_json:
        _print_json([r.to_dict() for r in records])
        return EXIT_OK

    table = Table(title=f"Artifacts of {owner_id}")
    table.add_column("artifact_id", style="cyan", no_wrap=True)
    table.add_column("title")
    table.add_column("status")
    table.add_column("created_at", style="dim")
    table.add_column("content_hash", style="dim")
    table.add_column("ledger_ref")

    for r in records:
        table.add_row(
            r.artifact_id,
            r.title,
            _status_text(r.status),
            r.created_at.isoformat(timespec="seconds") if r.created_at else "",
            r.content_hash[:12] + "…",
            r.ledger_ref or "",
        )

    Console().print(table)
    return EXIT_OK


def run_show(rt: Runtime, artifact_id: str, *, output_json: bool = False) -> int:
    err = Console(stderr=True)
    with rt.open_store() as store:
        record = store.get(artifact_id)
    if record is None:
        err.print(f"Artifact not found: {artifact_id}", style="bold red")
        return EXIT_NEGATIVE

    if output_json:
        _print_json(record.to_dict())
    else:
        _print_record(Console(), record)
    return EXIT_OK


def _print_record(console: Console, record: ArtifactRecord) -> None:
    console.print(f"[bold]{record.title}[/] [cyan]{record.artifact_id}[/]")
    console.print(f"  status:       {_status_text(record.status)}")
    console.print(f"  owner:        {record.owner_id}")
    console.print(f"  content_hash: {record.content_hash}")
    console.print(f"  size_bytes:   {record.size_bytes}")
    if record.created_at:
        console.print(f"  created_at:   {record.created_at.isoformat()}")
    if record.ledger_ref:
        console.print(f"  ledger_ref:   {record.ledger_ref}")
    if record.failure_reason:
        console.print(f"  reason:       {record.failure_reason}", style="red")
    if record.resolved_at:
        console.print(f"  resolved_at:  {record.resolved_at.isoformat()}")


def run_verify(
    rt: Runtime,
    digest: str | None = None,
    *,
    file_path: Path | None = None,
    output_json: bool = False,
) -> int:
    err = Console(stderr=True)
    if file_path is not None:
        digest = compute_digest(file_path)
    if not digest:
        err.print("Pass a hash or --file", style="bold red")
        return EXIT_USAGE

    pipeline = rt.pipeline()
    try:
        verification = pipeline.verify(digest)
    except InvalidDigest as e:
        err.print(str(e), style="bold red")
        return EXIT_USAGE
    except LedgerError as e:
        err.print(f"Ledger query failed: {e}", style="bold red")
        return EXIT_NEGATIVE
    finally:
        pipeline.close()

    if output_json:
        _print_json(verification.to_dict())
    elif verification.verified:
        console = Console()
        console.print(f"Verified ✅ {verification.digest}", style="bold green")
        console.print(f"  owner:       {verification.owner or ''}")
        if verification.anchored_at:
            console.print(f"  anchored_at: {verification.anchored_at.isoformat()}")
    else:
        Console().print(f"Unverified ❌ {verification.digest}", style="bold red")

    return EXIT_OK if verification.verified else EXIT_NEGATIVE


def run_audit(rt: Runtime, *, output_json: bool = False) -> int:
    with rt.open_store() as store:
        drift = find_drift(store, rt.ledger)

    if output_json:
        _print_json([d.to_dict() for d in drift])
        return EXIT_NEGATIVE if drift else EXIT_OK

    console = Console()
    if not drift:
        console.print("Store and ledger agree.", style="green")
        return EXIT_OK

    table = Table(title="Store / ledger drift")
    table.add_column("kind", style="magenta")
    table.add_column("artifact_id", style="cyan", no_wrap=True)
    table.add_column("status")
    table.add_column("content_hash", style="dim")
    table.add_column("detail")
    for d in drift:
        table.add_row(
            d.kind,
            d.record.artifact_id,
            _status_text(d.record.status),
            d.record.content_hash[:12] + "…",
            d.detail or "",
        )
    console.print(table)
    return EXIT_NEGATIVE


def run_timeline(rt: Runtime, artifact_id: str, *, output_json: bool = False) -> int:
    err = Console(stderr=True)
    if rt.journal is None:
        err.print("Journal is disabled in configuration.", style="bold red")
        return EXIT_USAGE

    events = rt.journal.query(artifact_id=artifact_id)
    if output_json:
        _print_json([e.to_dict() for e in events])
        return EXIT_OK if events else EXIT_NEGATIVE

    if not events:
        err.print(f"No journal events for {artifact_id}", style="bold red")
        return EXIT_NEGATIVE

    console = Console()
    for e in events:
        detail = ", ".join(f"{k}={v}" for k, v in sorted(e.payload.items()))
        console.print(f"[dim]{e.timestamp.isoformat()}[/] [cyan]{e.event_type}[/] {e.actor} {detail}")
    return EXIT_OK


def run_watch(rt: Runtime, folder: Path, *, owner_id: str) -> int:
    console = Console()

    def on_result(path: Path, submission: Submission | None, error: Exception | None) -> None:
        if error is not None:
            console.print(f"✗ {path.name}: {error}", style="red")
        elif submission is not None and submission.conflict:
            console.print(f"= {path.name}: duplicate of {submission.artifact_id}", style="yellow")
        elif submission is not None:
            console.print(f"+ {path.name}: {submission.artifact_id}", style="green")

    def on_notice(notice: AnchorNotice) -> None:
        console.print(notice.message(), style="green" if notice.kind == "anchored" else "red")

    channel = rt.hub.connect(owner_id, CallbackChannel(on_notice))
    pipeline = rt.pipeline()
    console.print(f"Watching {folder} for {owner_id} (Ctrl+C to stop)", style="dim")
    try:
        run_intake_loop(folder, pipeline, owner_id, on_result=on_result)
    finally:
        pipeline.close(wait=True)
        rt.hub.disconnect(channel)
    return EXIT_OK
