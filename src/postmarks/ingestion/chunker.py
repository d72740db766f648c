"""Text chunking strategies."""

from __future__ import annotations

import logging

from langchain_text_splitters import RecursiveCharacterTextSplitter

logger = logging.getLogger(__name__)

# Paragraph, line, sentence, word; "" is the character-level fallback that
# keeps every chunk within ``max_size``.
DEFAULT_SEPARATORS: list[str] = ["\n\n", "\n", ".", " ", ""]


def split(
    text: str,
    max_size: int = 2000,
    overlap: int = 50,
    max_chunks: int | None = None,
    separators: list[str] | None = None,
) -> list[str]:
    """Split *text* into overlapping chunks of at most *max_size* characters.

    Parameters
    ----------
    text:
        Raw page text.
    max_size:
        Maximum number of characters per chunk.
    overlap:
        Number of characters shared between consecutive chunks.
    max_chunks:
        Optional cap on the number of chunks. Chunks past the cap are
        dropped from the tail.
    separators:
        Split boundaries in priority order, coarsest first.

    Returns
    -------
    list[str]
        Ordered chunks. Whitespace is kept as-is, so with ``overlap=0``
        ``"".join(chunks) == text``.
    """
    if overlap >= max_size:
        raise ValueError(f"overlap ({overlap}) must be < max_size ({max_size})")
    if not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=max_size,
        chunk_overlap=overlap,
        length_function=len,
        separators=separators or DEFAULT_SEPARATORS,
        strip_whitespace=False,
    )
    chunks = splitter.split_text(text)

    if max_chunks is not None and len(chunks) > max_chunks:
        logger.warning("Truncating %d chunks to %d", len(chunks), max_chunks)
        chunks = chunks[:max_chunks]
    return chunks
