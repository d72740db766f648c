"""Chroma implementation of the vector-index contract."""

from __future__ import annotations

import asyncio
from typing import Any

import chromadb

from postmarks.collaborators.base import VectorIndex, VectorMatch

NAMESPACE_KEY = "namespace"


def _flat_metadata(namespace: str, metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be flat str/int/float/bool
    meta = {k: v for k, v in metadata.items() if isinstance(v, (str, int, float, bool))}
    meta[NAMESPACE_KEY] = namespace
    return meta


class ChromaVectorIndex(VectorIndex):
    """Chroma-backed index; namespaces are a metadata field enforced by ``where``.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection shared by all owners.
    host / port:
        Chroma server address.
    client:
        Pre-built Chroma client (tests); overrides *host* / *port*.
    """

    def __init__(
        self,
        collection_name: str,
        *,
        host: str = "localhost",
        port: int = 8000,
        client: Any = None,
        distance_metric: str = "cosine",
    ) -> None:
        self.collection_name = collection_name
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": distance_metric},
        )

    async def upsert(self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        await asyncio.to_thread(
            self._collection.upsert,
            ids=[vector_id],
            embeddings=[vector],
            metadatas=[_flat_metadata(namespace, metadata)],
        )

    async def query(
        self,
        namespace: str,
        vector: list[float],
        *,
        top_k: int = 1,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        results = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[vector],
            n_results=top_k,
            where={NAMESPACE_KEY: {"$eq": namespace}},
            include=["metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        matches: list[VectorMatch] = []
        for vector_id, meta, dist in zip(ids, metas, distances):
            # Convert the distance to a 0-1 similarity score.
            meta = dict(meta or {}) if return_metadata else {}
            meta.pop(NAMESPACE_KEY, None)
            matches.append(VectorMatch(vector_id=vector_id, score=1.0 / (1.0 + dist), metadata=meta))
        return matches

    async def delete(self, vector_ids: list[str]) -> None:
        if vector_ids:
            await asyncio.to_thread(self._collection.delete, ids=vector_ids)
