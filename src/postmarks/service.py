"""Ingestion service: the inbound boundary of the core.

Every request is acknowledged immediately and processed in a background
task: link submissions become durable runs, list and query requests end
in a notification to the owner.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from postmarks.collaborators.base import Notifier, VectorIndex
from postmarks.config import Settings
from postmarks.orchestrator.models import Run, RunStatus
from postmarks.orchestrator.orchestrator import RetryPolicy, StepOrchestrator
from postmarks.orchestrator.step_log import StepLog
from postmarks.pipeline.ingestion import LinkIngestionPipeline, notify_quietly
from postmarks.pipeline.messages import build_links_list_message, build_query_result_message
from postmarks.store.models import Link
from postmarks.store.owner_store import OwnerStore

logger = logging.getLogger(__name__)


class IngestionService:
    """Accepts link, list and query requests and processes them asynchronously.

    Parameters
    ----------
    orchestrator:
        Runs the ingestion pipeline durably.
    store:
        Owner store used for listings, queries and deletions.
    pipeline:
        Workflow executed for every submitted link.
    index:
        Vector index purged when a link is deleted.
    notifier:
        Delivers list and query results.
    """

    def __init__(
        self,
        orchestrator: StepOrchestrator,
        store: OwnerStore,
        pipeline: LinkIngestionPipeline,
        *,
        index: VectorIndex,
        notifier: Notifier,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.pipeline = pipeline
        self._index = index
        self._notifier = notifier
        self._runs: dict[str, asyncio.Task[Run]] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # -- link runs ------------------------------------------------------------

    async def submit_link(self, owner: str, url: str) -> Run:
        """Record a new run for ``(owner, url)`` and start it in the background."""
        run = await self.orchestrator.create_run(owner, url)
        self._start(run)
        return run

    async def recover(self) -> list[str]:
        """Resume every run left pending or running by a previous host."""
        runs = await self.orchestrator.step_log.list_runs(RunStatus.PENDING, RunStatus.RUNNING)
        for run in runs:
            if run.run_id not in self._runs:
                logger.info("Resuming run %s (%s, %d steps logged)", run.run_id, run.status.value, len(run.steps))
                self._start(run)
        return [run.run_id for run in runs]

    async def cancel(self, run_id: str) -> Run | None:
        """Stop scheduling further steps of a run and mark it failed.

        Steps that already completed stay committed.
        """
        task = self._runs.get(run_id)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        run = await self.orchestrator.load_run(run_id)
        if run is not None:
            await self.orchestrator.fail_run(run, "cancelled")
        return run

    async def get_run(self, run_id: str) -> Run | None:
        return await self.orchestrator.load_run(run_id)

    def _start(self, run: Run) -> None:
        task = asyncio.create_task(self.orchestrator.execute(run, self.pipeline), name=f"run-{run.run_id}")
        self._runs[run.run_id] = task
        task.add_done_callback(lambda t: self._run_done(run.run_id, t))

    def _run_done(self, run_id: str, task: asyncio.Task[Run]) -> None:
        self._runs.pop(run_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Run %s crashed: %r", run_id, task.exception())

    # -- queries --------------------------------------------------------------

    def submit_list(self, owner: str) -> None:
        """Send the owner a list of their links."""
        self._spawn(self.list_links(owner), name=f"list-{owner}")

    def submit_query(self, owner: str, query_text: str) -> None:
        """Send the owner the link best matching *query_text*, or say none was found."""
        self._spawn(self.query_link(owner, query_text), name=f"query-{owner}")

    async def list_links(self, owner: str) -> list[Link]:
        links = await self.store.get_links(owner)
        await notify_quietly(self._notifier, owner, build_links_list_message(links))
        return links

    async def query_link(self, owner: str, query_text: str) -> Link | None:
        link = await self.store.query_by_similarity(owner, query_text)
        await notify_quietly(self._notifier, owner, build_query_result_message(query_text, link))
        return link

    async def delete_link(self, owner: str, link_id: int) -> list[str]:
        """Delete a link, its vector references and its vectors in the index."""
        vector_ids = await self.store.delete_link(owner, link_id)
        await self._index.delete(vector_ids)
        return vector_ids

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=task.exception())

    # -- lifecycle ------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for every outstanding run and background task to finish."""
        while True:
            pending = [t for t in (*self._runs.values(), *self._background) if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding work; interrupted runs stay resumable."""
        tasks = [*self._runs.values(), *self._background]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def build_service(config: Settings) -> IngestionService:
    """Wire the service from *config* with the reference adapters."""
    from postmarks.collaborators import (
        ChromaVectorIndex,
        HttpContentFetcher,
        HuggingFaceEmbedder,
        PostmarkNotifier,
    )

    embedder = HuggingFaceEmbedder(config.embedding_model)
    index = ChromaVectorIndex(config.chroma_collection, host=config.chroma_host, port=config.chroma_port)
    notifier = PostmarkNotifier(
        config.postmark_server_token,
        config.from_email,
        reply_to_email=config.reply_to_email,
        api_url=config.postmark_api_url,
    )
    fetcher = HttpContentFetcher(timeout=config.fetch_timeout, headers={"User-Agent": config.fetch_user_agent})

    policy = RetryPolicy(
        max_attempts=config.step_max_attempts,
        base_delay=config.step_base_delay,
        max_delay=config.step_max_delay,
        timeout=config.step_timeout,
    )
    orchestrator = StepOrchestrator(
        StepLog(config.step_log_path),
        default_policy=policy,
        fan_out_limit=config.fan_out_concurrency,
    )
    store = OwnerStore(config.data_dir, embedder=embedder, index=index)
    pipeline = LinkIngestionPipeline(
        orchestrator,
        store,
        fetcher=fetcher,
        embedder=embedder,
        index=index,
        notifier=notifier,
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
        max_chunks=config.max_chunks,
        fetch_policy=RetryPolicy(
            max_attempts=3,
            base_delay=config.step_base_delay,
            max_delay=config.step_max_delay,
            timeout=config.fetch_timeout * 2,
        ),
    )
    return IngestionService(orchestrator, store, pipeline, index=index, notifier=notifier)
