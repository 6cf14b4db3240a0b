"""
Process wiring.

Everything configuration decides (which ledger, where the database lives)
is resolved here once, then handed to components through constructors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rich.console import Console
from rich.logging import RichHandler

from .artifact.journal import TransitionJournal
from .artifact.store import ArtifactStore
from .config import AnchorageConfig
from .ledger.client import LedgerClient
from .ledger.provider import build_ledger_client
from .notify import ChannelHub
from .pipeline import AnchoringPipeline


def configure_logging(level: str = "WARNING") -> None:
    """Route library logging to stderr through rich."""
    root = logging.getLogger("anchorage")
    root.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)


@dataclass
class Runtime:
    config: AnchorageConfig
    ledger: LedgerClient
    hub: ChannelHub = field(default_factory=ChannelHub)
    journal: TransitionJournal | None = None

    def open_store(self) -> ArtifactStore:
        return ArtifactStore.open(self.config.store.path)

    def pipeline(self) -> AnchoringPipeline:
        cfg = self.config.pipeline
        return AnchoringPipeline(
            self.open_store,
            self.ledger,
            self.hub,
            journal=self.journal,
            workers=cfg.workers,
            anchor_timeout_s=cfg.anchor_timeout_s,
            max_bytes=cfg.max_bytes,
            max_title_length=cfg.max_title_length,
        )


def build_runtime(config: AnchorageConfig, *, ledger: LedgerClient | None = None) -> Runtime:
    """Resolve the ledger provider and journal once for this process."""
    journal = TransitionJournal(config.store.journal_path) if config.store.journal_path else None
    return Runtime(
        config=config,
        ledger=ledger if ledger is not None else build_ledger_client(config.ledger),
        journal=journal,
    )
