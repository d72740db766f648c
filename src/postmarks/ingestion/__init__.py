"""
Ingestion: turning fetched page text into embeddable chunks.

The chunker is a pure function so that re-running a step on retry always
produces the same chunk sequence (chunk indices are part of vector ids).
"""

from postmarks.ingestion.chunker import DEFAULT_SEPARATORS, split

__all__ = ["DEFAULT_SEPARATORS", "split"]
