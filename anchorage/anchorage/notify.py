"""
Owner-addressed notifications.

A notice about an artifact goes to every live channel of the artifact's
owner and to nobody else. There is deliberately no broadcast operation.

Delivery is fire-and-forget: a channel that fails is logged and skipped,
and nothing here can undo a status update that was already committed.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

NoticeKind = Literal["anchored", "failed"]


@dataclass(frozen=True)
class AnchorNotice:
    """Outcome of one artifact's reconciliation, as pushed to its owner."""

    kind: NoticeKind
    artifact_id: str
    owner_id: str
    ledger_ref: str | None = None
    reason: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def anchored(cls, artifact_id: str, owner_id: str, ledger_ref: str) -> AnchorNotice:
        return cls(kind="anchored", artifact_id=artifact_id, owner_id=owner_id, ledger_ref=ledger_ref)

    @classmethod
    def failed(cls, artifact_id: str, owner_id: str, reason: str) -> AnchorNotice:
        return cls(kind="failed", artifact_id=artifact_id, owner_id=owner_id, reason=reason)

    def message(self) -> str:
        if self.kind == "anchored":
            return f"Artifact {self.artifact_id} anchored (ref {self.ledger_ref})"
        return f"Artifact {self.artifact_id} failed to anchor: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind,
            "artifact_id": self.artifact_id,
            "owner_id": self.owner_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.ledger_ref is not None:
            result["ledger_ref"] = self.ledger_ref
        if self.reason is not None:
            result["reason"] = self.reason
        return result


@runtime_checkable
class Channel(Protocol):
    """One live connection of an owner (a socket, a session, a queue)."""

    channel_id: str

    def deliver(self, notice: AnchorNotice) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    def push(self, owner_id: str, notice: AnchorNotice) -> int:
        """Deliver notice to the owner's live channels; return deliveries made."""
        ...


_channel_ids = itertools.count(1)


def _next_channel_id(prefix: str) -> str:
    return f"{prefix}-{next(_channel_ids)}"


class QueueChannel:
    """Channel backed by a thread-safe queue; consumers poll it."""

    def __init__(self, channel_id: str | None = None, maxsize: int = 0):
        self.channel_id = channel_id or _next_channel_id("queue")
        self._queue: queue.Queue[AnchorNotice] = queue.Queue(maxsize=maxsize)

    def deliver(self, notice: AnchorNotice) -> None:
        self._queue.put_nowait(notice)

    def get(self, timeout: float | None = None) -> AnchorNotice | None:
        """Wait for the next notice; None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[AnchorNotice]:
        """Return everything delivered so far without blocking."""
        notices = []
        while True:
            try:
                notices.append(self._queue.get_nowait())
            except queue.Empty:
                return notices


class CallbackChannel:
    """Channel that hands notices to a callable."""

    def __init__(self, callback: Callable[[AnchorNotice], None], channel_id: str | None = None):
        self.channel_id = channel_id or _next_channel_id("callback")
        self._callback = callback

    def deliver(self, notice: AnchorNotice) -> None:
        self._callback(notice)


class ChannelHub:
    """
    In-process registry of live channels, grouped by owner.

    A channel belongs to exactly one owner. push(owner_id, ...) only ever
    looks at that owner's group.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._groups: dict[str, dict[str, Channel]] = {}
        self._owner_of: dict[str, str] = {}  # channel_id -> owner_id

    def connect(self, owner_id: str, channel: Channel | None = None) -> Channel:
        """
        Register a channel under an owner.

        Args:
            owner_id: Owner identity the channel belongs to
            channel: Channel to register (default: a new QueueChannel)

        Raises:
            ValueError: If owner_id is empty or the channel is already
                registered under another owner
        """
        if not owner_id:
            raise ValueError("owner_id is required to connect a channel")
        channel = channel or QueueChannel()
        with self._lock:
            current = self._owner_of.get(channel.channel_id)
            if current is not None and current != owner_id:
                raise ValueError(f"Channel {channel.channel_id} already belongs to another owner")
            self._groups.setdefault(owner_id, {})[channel.channel_id] = channel
            self._owner_of[channel.channel_id] = owner_id
        logger.debug("Channel %s connected for owner %s", channel.channel_id, owner_id)
        return channel

    def disconnect(self, channel: Channel) -> None:
        with self._lock:
            owner_id = self._owner_of.pop(channel.channel_id, None)
            if owner_id is None:
                return
            group = self._groups.get(owner_id, {})
            group.pop(channel.channel_id, None)
            if not group:
                self._groups.pop(owner_id, None)
        logger.debug("Channel %s disconnected", channel.channel_id)

    def channels_for(self, owner_id: str) -> list[Channel]:
        with self._lock:
            return list(self._groups.get(owner_id, {}).values())

    def push(self, owner_id: str, notice: AnchorNotice) -> int:
        channels = self.channels_for(owner_id)
        if not channels:
            logger.debug("No live channel for owner %s; notice for %s dropped", owner_id, notice.artifact_id)
            return 0

        delivered = 0
        for channel in channels:
            try:
                channel.deliver(notice)
            except Exception:
                logger.warning(
                    "Delivery to channel %s failed for artifact %s",
                    channel.channel_id,
                    notice.artifact_id,
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered
