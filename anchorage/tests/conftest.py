"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import pytest

from anchorage.artifact.journal import TransitionJournal
from anchorage.artifact.store import ArtifactStore
from anchorage.ledger.mock import MockLedgerClient
from anchorage.notify import ChannelHub
from anchorage.pipeline import AnchoringPipeline


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path to a fresh artifact database."""
    return tmp_path / ".anchorage" / "artifacts.db"


@pytest.fixture
def store_factory(db_path: Path) -> Callable[[], ArtifactStore]:
    """Open a new store connection per call, like each request/task does."""
    ArtifactStore.open(db_path).close()  # create schema up front
    return lambda: ArtifactStore.open(db_path)


@pytest.fixture
def store(store_factory: Callable[[], ArtifactStore]) -> Iterator[ArtifactStore]:
    s = store_factory()
    yield s
    s.close()


@pytest.fixture
def journal(tmp_path: Path) -> TransitionJournal:
    return TransitionJournal(tmp_path / ".anchorage" / "journal.jsonl")


@pytest.fixture
def ledger() -> MockLedgerClient:
    return MockLedgerClient()


@pytest.fixture
def hub() -> ChannelHub:
    return ChannelHub()


@pytest.fixture
def make_pipeline(
    store_factory: Callable[[], ArtifactStore],
    hub: ChannelHub,
    journal: TransitionJournal,
) -> Iterator[Callable[..., AnchoringPipeline]]:
    """Build pipelines over the shared store; all are closed at teardown."""
    created: list[AnchoringPipeline] = []

    def _make(ledger: MockLedgerClient | None = None, **kwargs) -> AnchoringPipeline:
        pipeline = AnchoringPipeline(
            store_factory,
            ledger if ledger is not None else MockLedgerClient(),
            kwargs.pop("notifier", hub),
            journal=kwargs.pop("journal", journal),
            **kwargs,
        )
        created.append(pipeline)
        return pipeline

    yield _make

    for pipeline in created:
        pipeline.close(wait=True)
