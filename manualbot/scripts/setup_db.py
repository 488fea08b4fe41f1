"""
manualbot - Database Setup & Ingestion Script
===============================================
CLI entry point that orchestrates:
    1. Load settings (fail-fast on a bad ``.env``).
    2. Initialise the embedding generator and ``ManualVectorStore``
       (optionally dropping the existing collection).
    3. Run the ``IngestionPipeline`` over the manual extracts file.
    4. Print an execution summary with a timing breakdown.

Input:
    ``data/manual-chunks.json``: a JSON array of
    ``{"id": int, "productId": int, "pageNumber": int, "text": str}``.

Flags:
    --drop       Drop the collection before ingesting.
    --drop-only  Drop the collection and exit immediately.
    --source     Read extracts from another JSON file.

Usage:
    python -m manualbot.scripts.setup_db
    python -m manualbot.scripts.setup_db --drop
    python -m manualbot.scripts.setup_db --drop-only
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="manualbot: Embed product manual extracts into LanceDB.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the collection before ingesting.")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop the collection and exit (no ingestion).")
    parser.add_argument("--source", type=Path, default=None, help="Manual extracts JSON file (defaults to settings.MANUAL_CHUNKS_FILE).")
    return parser.parse_args()


# ── Main Orchestration ─────────────────────────────────────────────────

def main() -> None:
    args = _parse_args()
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    try:
        from manualbot.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error: check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from manualbot.src.utils.logger import get_logger
    logger = get_logger(__name__)

    logger.info("Settings loaded in %.1fms", settings_ms)
    source = args.source or settings.MANUAL_CHUNKS_FILE
    _print_header(settings, source)

    # ── 1. Initialise embedder (timed) ─────────────────────────────────
    from manualbot.src.core.embeddings import create_embedding_generator

    t_embedder = time.perf_counter()
    embedding_generator = create_embedding_generator()
    embedder_ms = (time.perf_counter() - t_embedder) * 1000
    logger.info("Embedder initialised in %.1fms", embedder_ms)

    # ── 2. Initialise ManualVectorStore (timed) ────────────────────────
    from manualbot.src.database.vector_store import ManualVectorStore

    t_lancedb = time.perf_counter()
    logger.info("Connecting to LanceDB at: %s", settings.LANCEDB_PATH)
    store = ManualVectorStore()
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
    logger.info("LanceDB connection established in %.1fms", lancedb_ms)

    collection = settings.MANUALS_COLLECTION
    startup_ms = settings_ms + embedder_ms + lancedb_ms

    if args.drop or args.drop_only:
        logger.warning("Dropping collection '%s' as requested.", collection)
        store.drop_collection(collection)
        if args.drop_only:
            logger.info("--drop-only: Collection dropped. Exiting.")
            _print_footer({"total_chunks": 0, "chunks_stored": 0, "chunks_skipped": 0, "batches": 0}, time.perf_counter() - t_start, startup_ms)
            return

    logger.info("VectorStore ready: collection '%s' (%d existing rows).", collection, store.count(collection))
    logger.info("Total startup time: %.1fms (settings: %.1fms, embedder: %.1fms, lancedb: %.1fms)", startup_ms, settings_ms, embedder_ms, lancedb_ms)

    # ── 3. Run IngestionPipeline ───────────────────────────────────────
    from manualbot.src.core.ingestor import IngestionPipeline, load_chunks

    try:
        chunks = load_chunks(source)
    except FileNotFoundError:
        logger.error("Manual extracts file not found: %s", source)
        sys.exit(1)

    pipeline = IngestionPipeline(vector_store=store, embedding_generator=embedding_generator, collection=collection)
    summary = asyncio.run(pipeline.run(chunks))

    # ── 4. Print execution summary ─────────────────────────────────────
    _print_footer(summary, time.perf_counter() - t_start, startup_ms)


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object, source: Path) -> None:
    print()
    print("=" * 60)
    print("  MANUALBOT: Vector Database Setup & Ingestion")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                   # type: ignore[attr-defined]
    print(f"  Provider     : {settings.LLM_PROVIDER}")          # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")          # type: ignore[attr-defined]
    print(f"  Collection   : {settings.MANUALS_COLLECTION}")    # type: ignore[attr-defined]
    print(f"  Source file  : {source}")
    print(f"  Batch size   : {settings.EMBED_BATCH_SIZE}")      # type: ignore[attr-defined]
    print("=" * 60)
    print()


def _print_footer(summary: dict, elapsed: float, startup_ms: float) -> None:
    processing_s = elapsed - (startup_ms / 1000)

    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Extracts read        : {summary['total_chunks']}")
    print(f"  Extracts stored      : {summary['chunks_stored']}")
    print(f"  Extracts skipped     : {summary['chunks_skipped']}")
    print(f"  Embedding batches    : {summary['batches']}")
    print("-" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Startup time (total) : {startup_ms:>8.1f}ms")
    print(f"  Processing time      : {processing_s:>8.2f}s")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
