"""
manualbot - IngestionPipeline
==============================
Reads pre-chunked product manual extracts, cleans them, embeds them in
batches and persists them into the ``ManualVectorStore``.

Key design decisions:
    • **Dependency Injection** – receives the store + embedding generator.
    • **Pre-chunked input** – extracts arrive already split per manual
      page, each with a stable ``id`` that the chatbot cites back.
    • **Batching** – ``embed_many`` is called once per
      ``settings.EMBED_BATCH_SIZE`` extracts.
    • **Blank extracts are skipped** – nothing is embedded for text
      that cleans down to an empty string.

Usage:
    from manualbot.src.core.ingestor import IngestionPipeline
    pipeline = IngestionPipeline(vector_store, embedding_generator)
    summary  = await pipeline.run(chunks)
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from manualbot.config.settings import settings
from manualbot.src.core.embeddings import EmbeddingGenerator
from manualbot.src.database.vector_store import ExtractRecord, ManualVectorStore
from manualbot.src.utils.logger import get_logger
from manualbot.src.utils.text_utils import clean_text

logger = get_logger(__name__)


class ManualChunk(BaseModel):
    """One extract of a product manual, as stored in ``manual-chunks.json``."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    product_id: int = Field(alias="productId")
    page_number: int = Field(alias="pageNumber")
    text: str


_CHUNK_LIST = TypeAdapter(list[ManualChunk])


def load_chunks(path: Path | None = None) -> list[ManualChunk]:
    """
    Parse a manual extracts JSON array.

    Raises
    ------
    FileNotFoundError
        If the file is missing.
    pydantic.ValidationError
        If an entry lacks ``id``, ``productId``, ``pageNumber`` or ``text``.
    """
    source = Path(path or settings.MANUAL_CHUNKS_FILE)
    chunks = _CHUNK_LIST.validate_json(source.read_bytes())
    logger.info("Loaded %d manual extract(s) from %s", len(chunks), source)
    return chunks


class IngestionPipeline:
    """
    Manual extract ingestion: clean → embed → store.

    Parameters
    ----------
    vector_store
        An initialised ``ManualVectorStore`` (injected).
    embedding_generator
        Any ``EmbeddingGenerator``.
    collection
        Target collection.  Defaults to ``settings.MANUALS_COLLECTION``.
    batch_size
        Extracts per ``embed_many`` call.  Defaults to ``settings.EMBED_BATCH_SIZE``.
    """

    def __init__(self, vector_store: ManualVectorStore, embedding_generator: EmbeddingGenerator, collection: str | None = None, batch_size: int | None = None) -> None:
        self._store = vector_store
        self._embedder = embedding_generator
        self._collection = collection or settings.MANUALS_COLLECTION
        self._batch_size = batch_size or settings.EMBED_BATCH_SIZE

    # ══════════════════════════════════════════════════════════════════
    #  PUBLIC ENTRY POINT
    # ══════════════════════════════════════════════════════════════════

    async def run(self, chunks: list[ManualChunk]) -> dict[str, Any]:
        """
        Embed and store *chunks*.

        Returns
        -------
        dict
            Execution summary with keys:
            ``total_chunks``, ``chunks_stored``, ``chunks_skipped``,
            ``batches``, ``elapsed_seconds``.
        """
        t_start = time.perf_counter()

        cleaned: list[ManualChunk] = []
        for chunk in chunks:
            text = clean_text(chunk.text)
            if not text:
                logger.warning("Skipping blank extract %d (product %d, page %d).", chunk.id, chunk.product_id, chunk.page_number)
                continue
            cleaned.append(chunk.model_copy(update={"text": text}))

        if not cleaned:
            logger.warning("No extracts to ingest.")
            return self._summary(len(chunks), 0, len(chunks), 0, time.perf_counter() - t_start)

        logger.info("Starting ingestion: %d extract(s) into '%s' (batch size %d).", len(cleaned), self._collection, self._batch_size)

        stored = 0
        batches = 0
        for start in range(0, len(cleaned), self._batch_size):
            batch = cleaned[start:start + self._batch_size]
            stored += await self._ingest_batch(batch)
            batches += 1

        elapsed = time.perf_counter() - t_start
        logger.info("Ingestion complete: %d extract(s) stored in %d batch(es), %.2fs.", stored, batches, elapsed)
        return self._summary(len(chunks), stored, len(chunks) - len(cleaned), batches, elapsed)


    async def _ingest_batch(self, batch: list[ManualChunk]) -> int:
        pairs = await self._embedder.embed_many([chunk.text for chunk in batch])
        records: list[ExtractRecord] = [
            {"id": chunk.id, "vector": vector, "text": chunk.text, "productId": chunk.product_id, "pageNumber": chunk.page_number}
            for chunk, (_, vector) in zip(batch, pairs)
        ]
        return await asyncio.to_thread(self._store.add_extracts, self._collection, records)

    # ── Summary helper ─────────────────────────────────────────────────

    @staticmethod
    def _summary(total: int, stored: int, skipped: int, batches: int, elapsed: float) -> dict[str, Any]:
        return {
            "total_chunks": total,
            "chunks_stored": stored,
            "chunks_skipped": skipped,
            "batches": batches,
            "elapsed_seconds": round(elapsed, 2),
        }
