"""Unit tests for the per-owner store."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

import pytest
from conftest import FakeEmbedder, FakeIndex

from postmarks.errors import DuplicateURLError, InvariantViolation, LinkNotFoundError
from postmarks.store import owner_store
from postmarks.store.owner_store import OwnerStore
from postmarks.store.sqlite import owner_db_path

OWNER = "a@x.com"


class TestLinks:
    @pytest.mark.asyncio
    async def test_add_link_returns_persisted_link(self, store: OwnerStore) -> None:
        link = await store.add_link(OWNER, "https://example.com/page")
        assert link.id == 1
        assert link.owner == OWNER
        assert link.url == "https://example.com/page"
        assert link.created_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_url_is_rejected(self, store: OwnerStore) -> None:
        await store.add_link(OWNER, "https://example.com/page")
        with pytest.raises(DuplicateURLError):
            await store.add_link(OWNER, "https://example.com/page")
        links = await store.get_links(OWNER)
        assert [link.url for link in links] == ["https://example.com/page"]

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_yield_exactly_one_link(self, store: OwnerStore) -> None:
        results = await asyncio.gather(
            *(store.add_link(OWNER, "https://example.com/same") for _ in range(5)),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, DuplicateURLError)) == 4
        assert len(await store.get_links(OWNER)) == 1

    @pytest.mark.asyncio
    async def test_same_url_for_different_owners(self, store: OwnerStore, tmp_path: Path) -> None:
        await store.add_link("a@x.com", "https://example.com")
        await store.add_link("b@x.com", "https://example.com")
        assert len(await store.get_links("a@x.com")) == 1
        assert len(await store.get_links("b@x.com")) == 1
        assert owner_db_path(tmp_path, "a@x.com") != owner_db_path(tmp_path, "b@x.com")

    @pytest.mark.asyncio
    async def test_get_links_keeps_insertion_order(self, store: OwnerStore) -> None:
        urls = [f"https://example.com/{i}" for i in (3, 1, 2)]
        for url in urls:
            await store.add_link(OWNER, url)
        assert [link.url for link in await store.get_links(OWNER)] == urls

    @pytest.mark.asyncio
    async def test_get_links_for_unknown_owner_is_empty(self, store: OwnerStore) -> None:
        assert await store.get_links("nobody@x.com") == []

    @pytest.mark.asyncio
    async def test_cold_start_reloads_committed_links(self, tmp_path: Path, store: OwnerStore) -> None:
        await store.add_link(OWNER, "https://example.com/a")
        await store.add_link(OWNER, "https://example.com/b")

        fresh = OwnerStore(store.data_dir, embedder=FakeEmbedder(), index=FakeIndex())
        assert [link.url for link in await fresh.get_links(OWNER)] == [
            "https://example.com/a",
            "https://example.com/b",
        ]
        with pytest.raises(DuplicateURLError):
            await fresh.add_link(OWNER, "https://example.com/a")

    @pytest.mark.asyncio
    async def test_find_link_by_url(self, store: OwnerStore) -> None:
        link = await store.add_link(OWNER, "https://example.com/a")
        assert await store.find_link(OWNER, "https://example.com/a") == link
        assert await store.find_link(OWNER, "https://example.com/b") is None

    @pytest.mark.asyncio
    async def test_evict_then_reload(self, store: OwnerStore) -> None:
        link = await store.add_link(OWNER, "https://example.com/a")
        store.evict(OWNER)
        assert await store.get_links(OWNER) == [link]


class TestVectorRefs:
    @pytest.mark.asyncio
    async def test_add_vector_refs_is_idempotent(self, store: OwnerStore) -> None:
        link = await store.add_link(OWNER, "https://example.com")
        await store.add_vector_refs(OWNER, link.id, {"v-0", "v-1"})
        await store.add_vector_refs(OWNER, link.id, {"v-1", "v-2"})
        assert await store.get_vector_ids(OWNER, link.id) == ["v-0", "v-1", "v-2"]

    @pytest.mark.asyncio
    async def test_vector_refs_need_an_existing_link(self, store: OwnerStore) -> None:
        with pytest.raises(InvariantViolation):
            await store.add_vector_refs(OWNER, 42, {"v-0"})

    @pytest.mark.asyncio
    async def test_delete_cascades_to_own_refs_only(self, store: OwnerStore) -> None:
        first = await store.add_link(OWNER, "https://example.com/1")
        second = await store.add_link(OWNER, "https://example.com/2")
        await store.add_vector_refs(OWNER, first.id, {"a-0", "a-1"})
        await store.add_vector_refs(OWNER, second.id, {"b-0"})

        removed = await store.delete_link(OWNER, first.id)

        assert removed == ["a-0", "a-1"]
        assert await store.get_vector_ids(OWNER, first.id) == []
        assert await store.get_vector_ids(OWNER, second.id) == ["b-0"]
        assert [link.id for link in await store.get_links(OWNER)] == [second.id]

    @pytest.mark.asyncio
    async def test_delete_unknown_link_raises(self, store: OwnerStore) -> None:
        with pytest.raises(LinkNotFoundError):
            await store.delete_link(OWNER, 7)


class TestQueryBySimilarity:
    @pytest.mark.asyncio
    async def test_resolves_match_to_link(
        self, store: OwnerStore, embedder: FakeEmbedder, index: FakeIndex
    ) -> None:
        link = await store.add_link(OWNER, "https://example.com/docs")
        vector = await embedder.embed("documentation for the docs site")
        await index.upsert(OWNER, "v-0", vector, {"url": link.url})

        found = await store.query_by_similarity(OWNER, "docs")

        assert found == link
        assert index.queries == [OWNER]

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self, store: OwnerStore) -> None:
        assert await store.query_by_similarity(OWNER, "docs") is None

    @pytest.mark.asyncio
    async def test_stale_match_returns_none(
        self, store: OwnerStore, embedder: FakeEmbedder, index: FakeIndex
    ) -> None:
        await index.upsert(OWNER, "v-0", await embedder.embed("docs"), {"url": "https://gone.example.com"})
        assert await store.query_by_similarity(OWNER, "docs") is None

    @pytest.mark.asyncio
    async def test_other_owners_vectors_are_invisible(
        self, store: OwnerStore, embedder: FakeEmbedder, index: FakeIndex
    ) -> None:
        await store.add_link("b@x.com", "https://example.com/docs")
        await index.upsert("b@x.com", "v-0", await embedder.embed("docs"), {"url": "https://example.com/docs"})
        assert await store.query_by_similarity(OWNER, "docs") is None


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_add_link_keeps_cache_in_sync(
        self, store: OwnerStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real_insert = owner_store._insert_link

        def slow_insert(*args: Any) -> Any:
            time.sleep(0.3)
            return real_insert(*args)

        monkeypatch.setattr(owner_store, "_insert_link", slow_insert)
        task = asyncio.create_task(store.add_link(OWNER, "https://example.com/page"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        cached = [link.url for link in await store.get_links(OWNER)]
        fresh = OwnerStore(store.data_dir, embedder=FakeEmbedder(), index=FakeIndex())
        durable = [link.url for link in await fresh.get_links(OWNER)]
        assert cached == durable == ["https://example.com/page"]

    @pytest.mark.asyncio
    async def test_cancelled_delete_link_keeps_cache_in_sync(
        self, store: OwnerStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        link = await store.add_link(OWNER, "https://example.com/page")
        real_delete = owner_store._delete_link

        def slow_delete(*args: Any) -> Any:
            time.sleep(0.3)
            return real_delete(*args)

        monkeypatch.setattr(owner_store, "_delete_link", slow_delete)
        task = asyncio.create_task(store.delete_link(OWNER, link.id))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await store.get_links(OWNER) == []
        fresh = OwnerStore(store.data_dir, embedder=FakeEmbedder(), index=FakeIndex())
        assert await fresh.get_links(OWNER) == []
