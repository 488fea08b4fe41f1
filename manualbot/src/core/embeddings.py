"""
manualbot - Embedding Generators
==================================
Async embedding gateway used by the chatbot, the ingestion script and
the embedding demo.

``EmbeddingGenerator``
    Structural type: ``embed`` (one text) and ``embed_many`` (ordered
    ``(text, vector)`` pairs).

``LangChainEmbeddingGenerator``
    Adapts any LangChain ``Embeddings`` (e.g.
    ``GoogleGenerativeAIEmbeddings``) through its async methods.

``OllamaEmbeddingGenerator``
    Calls the Ollama ``/api/embed`` endpoint through ``ollama.AsyncClient``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np
import ollama
from langchain_core.embeddings import Embeddings

from manualbot.config.settings import settings
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Anything that can turn text into fixed-length vectors."""

    async def embed(self, text: str) -> list[float]: ...

    async def embed_many(self, texts: list[str]) -> list[tuple[str, list[float]]]: ...


class LangChainEmbeddingGenerator:
    """``EmbeddingGenerator`` over a LangChain ``Embeddings`` model."""

    __slots__ = ("_embedder",)

    def __init__(self, embedder: Embeddings) -> None:
        self._embedder = embedder


    async def embed(self, text: str) -> list[float]:
        return await self._embedder.aembed_query(text)


    async def embed_many(self, texts: list[str]) -> list[tuple[str, list[float]]]:
        if not texts:
            return []
        vectors = await self._embedder.aembed_documents(texts)
        return list(zip(texts, vectors))


class OllamaEmbeddingGenerator:
    """``EmbeddingGenerator`` over a local Ollama embedding model."""

    __slots__ = ("_model", "_client")

    def __init__(self, model: str, host: str | None = None, client: ollama.AsyncClient | None = None) -> None:
        self._model = model
        self._client = client or ollama.AsyncClient(host=host or settings.OLLAMA_BASE_URL)


    async def embed(self, text: str) -> list[float]:
        response = await self._client.embed(model=self._model, input=text)
        return [float(x) for x in response.embeddings[0]]


    async def embed_many(self, texts: list[str]) -> list[tuple[str, list[float]]]:
        if not texts:
            return []
        response = await self._client.embed(model=self._model, input=texts)
        return [(text, [float(x) for x in vector]) for text, vector in zip(texts, response.embeddings)]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is all zeros)."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def create_embedding_generator() -> EmbeddingGenerator:
    """Build the configured embedding adapter."""
    if settings.LLM_PROVIDER == "gemini":
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        logger.info("Embedding model: Gemini %s", settings.EMBEDDING_MODEL)
        return LangChainEmbeddingGenerator(GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value()))  # type: ignore[union-attr]

    logger.info("Embedding model: Ollama %s at %s", settings.OLLAMA_EMBEDDING_MODEL, settings.OLLAMA_BASE_URL)
    return OllamaEmbeddingGenerator(settings.OLLAMA_EMBEDDING_MODEL)
