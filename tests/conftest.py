"""Shared pytest configuration, fakes and fixtures."""

from __future__ import annotations

import asyncio
import math
from collections import Counter
from pathlib import Path
from typing import Any

import pytest

from postmarks.collaborators.base import ContentFetcher, Embedder, FetchResult, Notifier, VectorIndex, VectorMatch
from postmarks.errors import NotificationError
from postmarks.orchestrator.orchestrator import RetryPolicy, StepOrchestrator
from postmarks.orchestrator.step_log import StepLog
from postmarks.pipeline.ingestion import LinkIngestionPipeline
from postmarks.service import IngestionService
from postmarks.store.owner_store import OwnerStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake collaborators ──────────────────────────────────────────────────


class FakeFetcher(ContentFetcher):
    """Serves canned pages; an exception value is raised instead of returned."""

    def __init__(self, pages: dict[str, Any] | None = None) -> None:
        self.pages: dict[str, Any] = pages or {}
        self.calls: list[str] = []

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, BaseException):
            raise page
        if isinstance(page, FetchResult):
            return page
        return FetchResult(status=200, text=page)


class FakeEmbedder(Embedder):
    """Deterministic bag-of-letters embedding; counts calls per text."""

    def __init__(self, gate: asyncio.Event | None = None, gated: str | None = None) -> None:
        self.calls: Counter[str] = Counter()
        self.empty_for: set[str] = set()
        self._gate = gate
        self._gated = gated

    async def embed(self, text: str) -> list[float]:
        self.calls[text] += 1
        if self._gate is not None and self._gated is not None and self._gated in text:
            await self._gate.wait()
        if text in self.empty_for:
            return []
        counts = Counter(ch for ch in text.lower() if ch.isalpha())
        vector = [float(counts.get(chr(ord("a") + i), 0)) for i in range(26)]
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]


class FakeIndex(VectorIndex):
    """In-memory namespaced index scored by dot product."""

    def __init__(self) -> None:
        self.namespaces: dict[str, dict[str, tuple[list[float], dict[str, Any]]]] = {}
        self.failures: list[BaseException] = []
        self.upserts = 0
        self.queries: list[str] = []
        self.deleted: list[str] = []

    async def upsert(self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self.upserts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.namespaces.setdefault(namespace, {})[vector_id] = (vector, dict(metadata))

    async def query(
        self,
        namespace: str,
        vector: list[float],
        *,
        top_k: int = 1,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        self.queries.append(namespace)
        scored = [
            VectorMatch(
                vector_id=vid,
                score=sum(a * b for a, b in zip(vec, vector)),
                metadata=meta if return_metadata else {},
            )
            for vid, (vec, meta) in self.namespaces.get(namespace, {}).items()
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:top_k]

    async def delete(self, vector_ids: list[str]) -> None:
        self.deleted.extend(vector_ids)
        for vectors in self.namespaces.values():
            for vid in vector_ids:
                vectors.pop(vid, None)

    def ids(self, namespace: str) -> list[str]:
        return sorted(self.namespaces.get(namespace, {}))


class FakeNotifier(Notifier):
    """Records every message; optionally fails delivery."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = fail

    async def notify(self, owner: str, subject: str, body_text: str, body_html: str) -> None:
        if self.fail:
            raise NotificationError("mail server down")
        self.sent.append({"owner": owner, "subject": subject, "text": body_text, "html": body_html})

    def subjects(self) -> list[str]:
        return [m["subject"] for m in self.sent]


# ── Fixtures ────────────────────────────────────────────────────────────

FAST_POLICY = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, timeout=5.0)


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def step_log(tmp_path: Path) -> StepLog:
    return StepLog(tmp_path / "runs.sqlite3")


@pytest.fixture()
def orchestrator(step_log: StepLog) -> StepOrchestrator:
    return StepOrchestrator(step_log, default_policy=FAST_POLICY, fan_out_limit=4)


@pytest.fixture()
def store(tmp_path: Path, embedder: FakeEmbedder, index: FakeIndex) -> OwnerStore:
    return OwnerStore(tmp_path / "owners", embedder=embedder, index=index)


@pytest.fixture()
def pipeline(
    orchestrator: StepOrchestrator,
    store: OwnerStore,
    fetcher: FakeFetcher,
    embedder: FakeEmbedder,
    index: FakeIndex,
    notifier: FakeNotifier,
) -> LinkIngestionPipeline:
    return LinkIngestionPipeline(
        orchestrator,
        store,
        fetcher=fetcher,
        embedder=embedder,
        index=index,
        notifier=notifier,
        chunk_size=50,
        chunk_overlap=10,
        max_chunks=40,
    )


@pytest.fixture()
def service(
    orchestrator: StepOrchestrator,
    store: OwnerStore,
    pipeline: LinkIngestionPipeline,
    index: FakeIndex,
    notifier: FakeNotifier,
) -> IngestionService:
    return IngestionService(orchestrator, store, pipeline, index=index, notifier=notifier)
