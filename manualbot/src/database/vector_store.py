"""
manualbot - ManualVectorStore
===============================
OOP wrapper around LanceDB providing a clean interface for:
  • Collection (table) creation with a strict PyArrow schema
  • Manual extract insertion (pre-computed vectors + payload)
  • Vector similarity search with an optional equality filter

Design decisions:
  • **Singleton DB connection**: ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Collections are tables**: one LanceDB table per collection
    name (``"manuals"`` for the chatbot).
  • **Vector width from data**: the fixed-size vector column is sized
    from the first batch written, so any embedding model works.
  • **Async search**: LanceDB's query is blocking; ``search`` runs it
    in a worker thread so the event loop stays free.

Usage:
    from manualbot.src.database.vector_store import FieldMatch, ManualVectorStore
    store = ManualVectorStore()
    records = await store.search("manuals", vector, FieldMatch("productId", 42), limit=3)
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import lancedb
import pyarrow as pa

from manualbot.config.settings import settings
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
ExtractRecord = dict[str, str | int | list[float]]

# ── Constants ──────────────────────────────────────────────────────────
_VECTOR_COLUMN = "vector"
_ID_COLUMN = "id"
_DISTANCE_COLUMN = "_distance"
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def manuals_schema(dimensions: int) -> pa.Schema:
    """PyArrow schema for a manual-extract collection with *dimensions*-wide vectors."""
    return pa.schema([
        pa.field(_ID_COLUMN, pa.int64()),
        pa.field(_VECTOR_COLUMN, pa.list_(pa.float32(), dimensions)),
        pa.field("text", pa.utf8()),
        pa.field("productId", pa.int32()),
        pa.field("pageNumber", pa.int32()),
    ])


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Thread-safe via ``_DB_LOCK``.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


@dataclass(frozen=True, slots=True)
class FieldMatch:
    """Equality predicate on a named payload field."""

    name: str
    value: int | str

    def to_sql(self) -> str:
        # Backticks keep camelCase column names intact
        if isinstance(self.value, str):
            escaped = self.value.replace("'", "''")
            return f"`{self.name}` = '{escaped}'"
        return f"`{self.name}` = {int(self.value)}"


@dataclass(slots=True)
class SearchRecord:
    """One ranked hit: stable id, cosine similarity score, payload fields."""

    id: int
    score: float
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return str(self.payload.get("text", ""))


class ManualVectorStore:
    """
    High-level abstraction over LanceDB collections of manual extracts.

    Parameters
    ----------
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    """

    __slots__ = ("_db_path", "db")

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        try:
            self.db: lancedb.DBConnection = _get_connection(self._db_path)
        except OSError as exc:
            logger.error("LanceDB filesystem error at %s: %s", self._db_path, exc)
            raise


    def _has_collection(self, collection: str) -> bool:
        page_token = None
        while True:
            response = self.db.list_tables(page_token=page_token)
            if collection in response.tables:
                return True
            page_token = response.page_token
            if not page_token:
                return False


    def _open(self, collection: str) -> Any | None:
        if not self._has_collection(collection):
            return None
        return self.db.open_table(collection)


    def add_extracts(self, collection: str, records: list[ExtractRecord]) -> int:
        """
        Persist manual extracts with their pre-computed vectors.

        Each record needs ``id``, ``vector``, ``text``, ``productId``
        and ``pageNumber``.  The collection is created on first write.

        Returns
        -------
        int
            Number of rows added.

        Raises
        ------
        ValueError
            If vectors in the batch do not all have the same width.
        """
        if not records:
            return 0

        dimensions = len(records[0][_VECTOR_COLUMN])  # type: ignore[arg-type]
        if any(len(r[_VECTOR_COLUMN]) != dimensions for r in records):  # type: ignore[arg-type]
            raise ValueError("All vectors in a batch must have the same length.")

        table = self._open(collection)
        if table is None:
            table = self.db.create_table(collection, schema=manuals_schema(dimensions))
            logger.info("[VECTOR] Created collection '%s' (%d dimensions).", collection, dimensions)

        try:
            table.add(records)
        except OSError as exc:
            logger.error("[VECTOR] Failed to write records to '%s': %s", collection, exc)
            raise

        logger.info("[VECTOR] Added %d extracts. Collection '%s' now has %d rows.", len(records), collection, table.count_rows())
        return len(records)


    def search_sync(self, collection: str, query_vector: list[float], match: FieldMatch | None = None, limit: int = 3) -> list[SearchRecord]:
        """
        Blocking similarity search.

        Returns an empty list when the collection does not exist yet.
        """
        table = self._open(collection)
        if table is None:
            logger.warning("[VECTOR] Collection '%s' does not exist: run setup_db first.", collection)
            return []

        query = table.search(query_vector, vector_column_name=_VECTOR_COLUMN).distance_type("cosine").limit(limit)
        if match is not None:
            query = query.where(match.to_sql(), prefilter=True)

        rows: list[dict[str, Any]] = query.to_list()
        records = [
            SearchRecord(
                id=int(row[_ID_COLUMN]),
                score=1.0 - float(row.get(_DISTANCE_COLUMN, 1.0)),
                payload={k: v for k, v in row.items() if k not in (_ID_COLUMN, _VECTOR_COLUMN, _DISTANCE_COLUMN)},
            )
            for row in rows
        ]
        logger.info("[VECTOR] '%s' search (filter=%s, limit=%d) returned %d record(s).", collection, match.to_sql() if match else None, limit, len(records))
        return records


    async def search(self, collection: str, query_vector: list[float], match: FieldMatch | None = None, limit: int = 3) -> list[SearchRecord]:
        """Similarity search without blocking the event loop."""
        return await asyncio.to_thread(self.search_sync, collection, query_vector, match, limit)


    def count(self, collection: str) -> int:
        """Return the number of rows in *collection* (0 if it does not exist)."""
        table = self._open(collection)
        return 0 if table is None else table.count_rows()


    def drop_collection(self, collection: str) -> None:
        """Drop *collection* (useful for re-ingestion)."""
        if not self._has_collection(collection):
            logger.warning("[VECTOR] Collection '%s' does not exist: nothing to drop.", collection)
            return
        self.db.drop_table(collection)
        logger.info("[VECTOR] Dropped collection '%s'.", collection)


    def __repr__(self) -> str:
        return f"ManualVectorStore(db='{self._db_path}')"
