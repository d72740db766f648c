"""
Collaborators: contracts for the external services the core calls, plus
reference adapters.

Public surface
--------------
- :class:`ContentFetcher`, :class:`Embedder`, :class:`VectorIndex`,
  :class:`Notifier`: abstract contracts.
- :class:`HttpContentFetcher`: ``requests`` + BeautifulSoup page text.
- :class:`PostmarkNotifier`: email delivery through the Postmark API.
- :class:`HuggingFaceEmbedder` / :class:`ChromaVectorIndex`: lazily imported.
"""

from postmarks.collaborators.base import (
    ContentFetcher,
    Embedder,
    FetchResult,
    Notifier,
    VectorIndex,
    VectorMatch,
)
from postmarks.collaborators.fetcher import HttpContentFetcher
from postmarks.collaborators.postmark import PostmarkNotifier

__all__ = [
    "ChromaVectorIndex",
    "ContentFetcher",
    "Embedder",
    "FetchResult",
    "HttpContentFetcher",
    "HuggingFaceEmbedder",
    "Notifier",
    "PostmarkNotifier",
    "VectorIndex",
    "VectorMatch",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import the model- and DB-backed adapters to avoid heavy imports at startup."""
    if name == "ChromaVectorIndex":
        from postmarks.collaborators.chroma_index import ChromaVectorIndex

        return ChromaVectorIndex
    if name == "HuggingFaceEmbedder":
        from postmarks.collaborators.embedder import HuggingFaceEmbedder

        return HuggingFaceEmbedder
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
