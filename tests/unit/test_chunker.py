"""Unit tests for the chunker module."""

import pytest

from postmarks.ingestion.chunker import split


def _numbered_words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


def test_split_long_text_into_bounded_chunks() -> None:
    """A text longer than max_size should be split into chunks no longer than max_size."""
    text = _numbered_words(400)
    chunks = split(text, max_size=256, overlap=32)
    assert len(chunks) > 1
    assert all(len(c) <= 256 for c in chunks)


def test_split_is_deterministic() -> None:
    text = "First paragraph. It has two sentences.\n\nSecond one.\nWith a line.\n\n" + _numbered_words(300)
    assert split(text, max_size=120, overlap=20) == split(text, max_size=120, overlap=20)


def test_chunks_without_overlap_reconstruct_text() -> None:
    text = "Intro line.\n\nA paragraph about things. Another sentence here.\n" + _numbered_words(200) + "\n\nEnd."
    chunks = split(text, max_size=80, overlap=0)
    assert len(chunks) > 1
    assert "".join(chunks) == text


def _remove_overlaps(chunks: list[str], overlap: int) -> str:
    """Join chunks, dropping at each boundary the longest shared suffix/prefix of at most *overlap* chars."""
    text = chunks[0]
    for prev, nxt in zip(chunks, chunks[1:]):
        shared = next(k for k in range(min(overlap, len(prev), len(nxt)), -1, -1) if prev.endswith(nxt[:k]))
        text += nxt[shared:]
    return text


@pytest.mark.parametrize(("max_size", "overlap"), [(80, 16), (200, 32), (256, 100)])
def test_chunks_minus_overlaps_reconstruct_text(max_size: int, overlap: int) -> None:
    text = _numbered_words(400)
    chunks = split(text, max_size=max_size, overlap=overlap)
    assert len(chunks) > 1
    assert _remove_overlaps(chunks, overlap) == text


def test_adjacent_chunks_share_overlap() -> None:
    chunks = split(_numbered_words(400), max_size=200, overlap=32)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt[:20] in prev[-32:]


def test_prefers_paragraph_boundaries() -> None:
    text = "alpha " * 5 + "\n\n" + "beta " * 5
    chunks = split(text, max_size=40, overlap=0)
    assert chunks[0].strip() == ("alpha " * 5).strip()
    assert chunks[1].strip() == ("beta " * 5).strip()


def test_unbroken_token_is_still_bounded() -> None:
    chunks = split("x" * 500, max_size=100, overlap=0)
    assert len(chunks) == 5
    assert all(len(c) == 100 for c in chunks)


def test_max_chunks_truncates_the_tail() -> None:
    text = _numbered_words(400)
    full = split(text, max_size=100, overlap=10)
    capped = split(text, max_size=100, overlap=10, max_chunks=3)
    assert len(full) > 3
    assert capped == full[:3]


def test_short_text_is_one_chunk() -> None:
    assert split("Hello world. Bye.", max_size=50, overlap=10) == ["Hello world. Bye."]


@pytest.mark.parametrize("text", ["", "   ", "\n\n"])
def test_blank_text_yields_no_chunks(text: str) -> None:
    assert split(text, max_size=50, overlap=10) == []


def test_overlap_gte_max_size_raises() -> None:
    with pytest.raises(ValueError, match="overlap.*must be"):
        split("Hello", max_size=10, overlap=10)
