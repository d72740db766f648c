"""Abstract contracts for the services the pipeline and the store call out to.

Swapping a backend (another vector DB, another mail provider, …) only
requires subclassing the matching contract.  The core never imports a
concrete implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class FetchResult(BaseModel):
    """Status and extracted text of a fetched page."""

    status: int
    text: str


class VectorMatch(BaseModel):
    """One hit returned by :meth:`VectorIndex.query`."""

    vector_id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContentFetcher(ABC):
    """Fetches a page and returns its text content."""

    @abstractmethod
    async def fetch(self, url: str) -> FetchResult:
        """Return the page text for *url*.

        Must raise :class:`~postmarks.errors.ContentFetchError` for a
        non-success status or an empty body, and
        :class:`~postmarks.errors.TransientError` for network failures
        worth retrying.
        """
        ...


class Embedder(ABC):
    """Turns text into a dense vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*; an empty list means no embedding."""
        ...


class VectorIndex(ABC):
    """Namespaced similarity index.

    Namespaces partition vectors so a query for one owner never sees
    another owner's vectors.
    """

    @abstractmethod
    async def upsert(
        self,
        namespace: str,
        vector_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        """Insert or overwrite *vector_id* inside *namespace*."""
        ...

    @abstractmethod
    async def query(
        self,
        namespace: str,
        vector: list[float],
        *,
        top_k: int = 1,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        """Return up to *top_k* matches for *vector*, best first."""
        ...

    @abstractmethod
    async def delete(self, vector_ids: list[str]) -> None:
        """Delete vectors by id; unknown ids are ignored."""
        ...


class Notifier(ABC):
    """Delivers a message to an owner."""

    @abstractmethod
    async def notify(self, owner: str, subject: str, body_text: str, body_html: str) -> None:
        """Send the message; raise :class:`~postmarks.errors.NotificationError` on failure."""
        ...
