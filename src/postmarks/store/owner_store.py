"""Per-owner actor store.

Every owner has an independent SQLite database and an in-memory shard
(cached links plus a lock).  All operations for one owner run under that
owner's lock, so mutations for the same owner are linearized while
different owners proceed concurrently.

Usage::

    store = OwnerStore(Path("data/owners"), embedder=embedder, index=index)
    link  = await store.add_link("a@x.com", "https://example.com/page")
    links = await store.get_links("a@x.com")
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from postmarks.collaborators.base import Embedder, VectorIndex
from postmarks.errors import DuplicateURLError, InvariantViolation, LinkNotFoundError
from postmarks.store.models import Link, VectorRef
from postmarks.store.sqlite import OWNER_SCHEMA, get_connection, initialize_schema, owner_db_path

logger = logging.getLogger(__name__)


@dataclass
class _OwnerShard:
    """Cached state of one owner.

    Attributes
    ----------
    db_path:
        The owner's database file.
    links:
        Mirror of the ``links`` table in insertion order.
    lock:
        Serializes every operation on this owner.
    loaded:
        Whether ``links`` has been materialized from disk yet.
    """

    db_path: Path
    links: list[Link] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    loaded: bool = False


class OwnerStore:
    """Single-writer-per-owner store of links and vector references.

    Parameters
    ----------
    data_dir:
        Directory holding one database file per owner.
    embedder:
        Used by :meth:`query_by_similarity` to embed the query text.
    index:
        Vector index searched by :meth:`query_by_similarity`.
    """

    def __init__(self, data_dir: Path, *, embedder: Embedder, index: VectorIndex) -> None:
        self.data_dir = Path(data_dir)
        self._embedder = embedder
        self._index = index
        self._shards: dict[str, _OwnerShard] = {}

    # -- shard management -----------------------------------------------------

    def _shard(self, owner: str) -> _OwnerShard:
        shard = self._shards.get(owner)
        if shard is None:
            shard = _OwnerShard(db_path=owner_db_path(self.data_dir, owner))
            self._shards[owner] = shard
        return shard

    async def _ensure_loaded(self, shard: _OwnerShard) -> None:
        # Caller holds shard.lock.
        if shard.loaded:
            return
        shard.links = await asyncio.to_thread(_load_links, shard.db_path)
        shard.loaded = True
        logger.debug("Materialized %d links from %s", len(shard.links), shard.db_path)

    def evict(self, owner: str) -> None:
        """Drop the cached shard; the next access reloads it from disk."""
        self._shards.pop(owner, None)

    # -- public API -----------------------------------------------------------

    async def add_link(self, owner: str, url: str) -> Link:
        """Insert a new link for *owner*.

        Raises
        ------
        DuplicateURLError
            When *url* is already saved for *owner*.
        """
        # Insert and cache append complete together even if the caller is cancelled.
        link = await asyncio.shield(self._add_link(self._shard(owner), owner, url))
        logger.info("Added link %d for %s: %s", link.id, owner, url)
        return link

    async def _add_link(self, shard: _OwnerShard, owner: str, url: str) -> Link:
        async with shard.lock:
            await self._ensure_loaded(shard)
            link = await asyncio.to_thread(_insert_link, shard.db_path, owner, url)
            shard.links.append(link)
        return link

    async def get_links(self, owner: str) -> list[Link]:
        """Return every link of *owner* in insertion order."""
        shard = self._shard(owner)
        async with shard.lock:
            await self._ensure_loaded(shard)
            return list(shard.links)

    async def find_link(self, owner: str, url: str) -> Link | None:
        """Return the link of *owner* saved under *url*, if any."""
        for link in await self.get_links(owner):
            if link.url == url:
                return link
        return None

    async def add_vector_refs(self, owner: str, link_id: int, vector_ids: Iterable[str]) -> None:
        """Associate *vector_ids* with *link_id*; already-present ids are ignored."""
        refs = [VectorRef(vector_id=vector_id, link_id=link_id) for vector_id in sorted(set(vector_ids))]
        shard = self._shard(owner)
        async with shard.lock:
            await self._ensure_loaded(shard)
            await asyncio.to_thread(_insert_vector_refs, shard.db_path, link_id, refs)
        logger.debug("Linked %d vectors to link %d for %s", len(refs), link_id, owner)

    async def get_vector_ids(self, owner: str, link_id: int) -> list[str]:
        """Return the vector ids referenced by *link_id*."""
        shard = self._shard(owner)
        async with shard.lock:
            await self._ensure_loaded(shard)
            return await asyncio.to_thread(_select_vector_ids, shard.db_path, link_id)

    async def delete_link(self, owner: str, link_id: int) -> list[str]:
        """Delete a link and, by cascade, its vector references.

        Returns the ids of the removed vector references so the caller can
        purge them from the index.
        """
        removed = await asyncio.shield(self._delete_link(self._shard(owner), owner, link_id))
        logger.info("Deleted link %d for %s (%d vectors)", link_id, owner, len(removed))
        return removed

    async def _delete_link(self, shard: _OwnerShard, owner: str, link_id: int) -> list[str]:
        async with shard.lock:
            await self._ensure_loaded(shard)
            removed = await asyncio.to_thread(_delete_link, shard.db_path, owner, link_id)
            shard.links = [link for link in shard.links if link.id != link_id]
        return removed

    async def query_by_similarity(self, owner: str, query_text: str) -> Link | None:
        """Return the owner's link whose content best matches *query_text*.

        The index match is resolved back to a link through the ``url`` in
        its metadata, checked against the owner's committed links.  A match
        whose link no longer exists is treated as stale and yields ``None``.
        """
        vector = await self._embedder.embed(query_text)
        matches = await self._index.query(owner, vector, top_k=1, return_metadata=True)
        if not matches:
            logger.info("No matching vector found for %s", owner)
            return None

        url = matches[0].metadata.get("url")
        link = await self.find_link(owner, url) if isinstance(url, str) else None
        if link is not None:
            return link
        logger.warning("Stale match %s for %s: %r is not a saved link", matches[0].vector_id, owner, url)
        return None


# ---------------------------------------------------------------------------
# Blocking helpers, run in worker threads
# ---------------------------------------------------------------------------


def _row_to_link(row: sqlite3.Row) -> Link:
    return Link(id=row["id"], owner=row["owner"], url=row["url"], created_at=row["created_at"])


def _load_links(db_path: Path) -> list[Link]:
    initialize_schema(db_path, OWNER_SCHEMA)
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT id, owner, url, created_at FROM links ORDER BY id").fetchall()
    return [_row_to_link(row) for row in rows]


def _insert_link(db_path: Path, owner: str, url: str) -> Link:
    try:
        with get_connection(db_path) as conn:
            row = conn.execute(
                "INSERT INTO links (owner, url) VALUES (?, ?) RETURNING id, owner, url, created_at",
                (owner, url),
            ).fetchall()[0]
    except sqlite3.IntegrityError as exc:
        raise DuplicateURLError(owner, url) from exc
    return _row_to_link(row)


def _insert_vector_refs(db_path: Path, link_id: int, refs: list[VectorRef]) -> None:
    try:
        with get_connection(db_path) as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO link_vectors (id, link_id) VALUES (?, ?)",
                [(ref.vector_id, ref.link_id) for ref in refs],
            )
    except sqlite3.IntegrityError as exc:
        raise InvariantViolation(f"cannot attach vectors to missing link {link_id}") from exc


def _select_vector_ids(db_path: Path, link_id: int) -> list[str]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT id FROM link_vectors WHERE link_id = ? ORDER BY id",
            (link_id,),
        ).fetchall()
    return [row["id"] for row in rows]


def _delete_link(db_path: Path, owner: str, link_id: int) -> list[str]:
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT id FROM link_vectors WHERE link_id = ? ORDER BY id", (link_id,)).fetchall()
        deleted = conn.execute("DELETE FROM links WHERE id = ?", (link_id,)).rowcount
    if not deleted:
        raise LinkNotFoundError(owner, link_id)
    return [row["id"] for row in rows]
