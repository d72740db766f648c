"""Sentence-transformer embeddings through LangChain."""

from __future__ import annotations

import asyncio

from langchain_huggingface import HuggingFaceEmbeddings

from postmarks.collaborators.base import Embedder


class HuggingFaceEmbedder(Embedder):
    """Embed text with a HuggingFace sentence-transformer model.

    The model is loaded on first use and inference runs in a worker thread.
    """

    def __init__(self, model_name: str, *, normalize_embeddings: bool = True) -> None:
        self.model_name = model_name
        self.normalize_embeddings = normalize_embeddings
        self._model: HuggingFaceEmbeddings | None = None

    def _get_model(self) -> HuggingFaceEmbeddings:
        if self._model is None:
            self._model = HuggingFaceEmbeddings(
                model_name=self.model_name,
                encode_kwargs={"normalize_embeddings": self.normalize_embeddings},
            )
        return self._model

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._get_model().embed_query, text)
