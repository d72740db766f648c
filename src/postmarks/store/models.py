"""Domain models persisted by the owner store."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Link(BaseModel):
    """A URL an owner has saved.

    Attributes
    ----------
    id:
        Surrogate key assigned by the owner's database.
    owner:
        Opaque owner key, usually an email address.
    url:
        The saved URL; unique per owner.
    created_at:
        Timestamp assigned by the database on insert.
    """

    id: int
    owner: str
    url: str
    created_at: datetime


class VectorRef(BaseModel):
    """Reference from a link to one of its vectors in the external index."""

    vector_id: str
    link_id: int


def vector_id_for(owner: str, link_id: int, chunk_index: int) -> str:
    """Return the stable vector id of chunk *chunk_index* of a link."""
    return f"{owner}-{link_id}-{chunk_index}"
