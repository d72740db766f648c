"""Link ingestion workflow.

Decomposes ingestion of one ``(owner, url)`` submission into memoized
orchestrator steps:

    fetch-content → persist-link → split-content
        → embed-chunk[i] → index-vector[i]   (fan-out, one chain per chunk)
        → link-vectors → notify-success

Step names depend only on the run payload and the chunk index, so every
resumption of a run issues exactly the same names and replays whatever
already succeeded.
"""

from __future__ import annotations

import logging
from functools import partial

from postmarks.collaborators.base import ContentFetcher, Embedder, Notifier, VectorIndex
from postmarks.errors import ContentFetchError, DuplicateURLError, EmptyEmbeddingError, NotificationError, TerminalError
from postmarks.ingestion.chunker import split
from postmarks.orchestrator.models import Run
from postmarks.orchestrator.orchestrator import RetryPolicy, StepOrchestrator
from postmarks.pipeline.messages import (
    Message,
    build_link_added_message,
    build_link_exists_message,
    build_link_failed_message,
)
from postmarks.store.models import Link, vector_id_for
from postmarks.store.owner_store import OwnerStore

logger = logging.getLogger(__name__)


class LinkIngestionPipeline:
    """The ingestion workflow, callable as ``await pipeline(run)``.

    Parameters
    ----------
    orchestrator:
        Executes and memoizes the steps.
    store:
        Owner store the link and its vector references are written to.
    fetcher / embedder / index / notifier:
        External collaborators.
    chunk_size / chunk_overlap / max_chunks:
        Chunking parameters; ``max_chunks`` bounds downstream cost.
    fetch_policy:
        Retry policy of ``fetch-content``; other steps use the
        orchestrator's default.
    """

    def __init__(
        self,
        orchestrator: StepOrchestrator,
        store: OwnerStore,
        *,
        fetcher: ContentFetcher,
        embedder: Embedder,
        index: VectorIndex,
        notifier: Notifier,
        chunk_size: int = 2000,
        chunk_overlap: int = 50,
        max_chunks: int | None = 40,
        fetch_policy: RetryPolicy | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._fetcher = fetcher
        self._embedder = embedder
        self._index = index
        self._notifier = notifier
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.max_chunks = max_chunks
        self.fetch_policy = fetch_policy

    async def __call__(self, run: Run) -> Link:
        try:
            return await self._ingest(run)
        except DuplicateURLError:
            await self._notify_step(run, "notify-failure", build_link_exists_message(run.url))
            raise
        except TerminalError:
            await self._notify_step(run, "notify-failure", build_link_failed_message(run.url))
            raise

    async def _ingest(self, run: Run) -> Link:
        do = self._orchestrator.do
        owner, url = run.owner, run.url

        text: str = await do(run, "fetch-content", partial(self._fetch, url), policy=self.fetch_policy)

        record = await do(run, "persist-link", partial(self._persist, run))
        link = Link.model_validate(record)

        chunks: list[str] = await do(run, "split-content", partial(self._split, text))
        logger.info("Run %s: %d chunks for %s", run.run_id, len(chunks), url)

        vector_ids: list[str] = await self._orchestrator.fan_out(
            [partial(self._embed_and_index, run, link, i, chunk) for i, chunk in enumerate(chunks)]
        )

        unique_ids = sorted(set(vector_ids))
        await do(run, "link-vectors", partial(self._store.add_vector_refs, owner, link.id, unique_ids))

        await self._notify_step(run, "notify-success", build_link_added_message(link))
        return link

    # -- step actions ---------------------------------------------------------

    async def _fetch(self, url: str) -> str:
        result = await self._fetcher.fetch(url)
        if not 200 <= result.status < 300:
            raise ContentFetchError(url, f"status {result.status}")
        if not result.text:
            raise ContentFetchError(url, "empty body")
        return result.text

    async def _persist(self, run: Run) -> Link:
        try:
            return await self._store.add_link(run.owner, run.url)
        except DuplicateURLError:
            # An earlier attempt of this step may have committed before it
            # timed out or the host died.
            if run.steps["persist-link"].attempts <= 1:
                raise
            link = await self._store.find_link(run.owner, run.url)
            if link is None:
                raise
            logger.info("Run %s: reusing link %d saved by an earlier attempt", run.run_id, link.id)
            return link

    async def _split(self, text: str) -> list[str]:
        return split(text, self.chunk_size, self.chunk_overlap, max_chunks=self.max_chunks)

    async def _embed_and_index(self, run: Run, link: Link, index: int, chunk: str) -> str:
        do = self._orchestrator.do
        vector: list[float] = await do(run, f"embed-chunk[{index}]", partial(self._embed, chunk))
        return await do(run, f"index-vector[{index}]", partial(self._upsert, link, index, vector))

    async def _embed(self, chunk: str) -> list[float]:
        vector = await self._embedder.embed(chunk)
        if not vector:
            raise EmptyEmbeddingError("Failed to generate embedding")
        return vector

    async def _upsert(self, link: Link, index: int, vector: list[float]) -> str:
        vector_id = vector_id_for(link.owner, link.id, index)
        await self._index.upsert(
            link.owner,
            vector_id,
            vector,
            {"url": link.url, "link_id": link.id, "chunk_index": index},
        )
        return vector_id

    # -- notifications --------------------------------------------------------

    async def _notify_step(self, run: Run, step_name: str, message: Message) -> bool:
        return await self._orchestrator.do(run, step_name, partial(notify_quietly, self._notifier, run.owner, message))


async def notify_quietly(notifier: Notifier, owner: str, message: Message) -> bool:
    """Send *message*; a delivery failure is logged and reported as ``False``."""
    try:
        await notifier.notify(owner, message.subject, message.text, message.html)
    except NotificationError as exc:
        logger.warning("Could not notify %s (%s): %s", owner, message.subject, exc)
        return False
    return True
