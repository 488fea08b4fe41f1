"""
manualbot - Embedding Demo
============================
``vector``
    Embed a greeting and print the vector.

``restaurants``
    Embed ten restaurant descriptions once, then rank each typed query
    against them by cosine similarity and print the two closest.

Usage:
    python -m manualbot.scripts.embedding_demo vector
    python -m manualbot.scripts.embedding_demo restaurants
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

if TYPE_CHECKING:
    from manualbot.src.core.embeddings import EmbeddingGenerator


def rank(query_vector: list[float], candidates: list[tuple[str, list[float]]], top: int = 2) -> list[tuple[float, str]]:
    """Return the *top* ``(similarity, text)`` pairs, most similar first."""
    from manualbot.src.core.embeddings import cosine_similarity

    scored = [(cosine_similarity(vector, query_vector), text) for text, vector in candidates]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored[:top]


async def vector_demo(generator: EmbeddingGenerator) -> None:
    from manualbot.config.prompt_templates import EMBEDDING_SAMPLE_TEXT

    vector = await generator.embed(EMBEDDING_SAMPLE_TEXT)
    print(f"Vector length: {len(vector)}")
    print(", ".join(f"{value:.2f}" for value in vector))


async def restaurants_demo(generator: EmbeddingGenerator) -> None:
    from manualbot.config.prompt_templates import RESTAURANTS

    print("Starting...")
    restaurants = await generator.embed_many(list(RESTAURANTS))

    while True:
        try:
            query = await asyncio.to_thread(input, "\nChe tipo di ristorante cerchi? ")
        except EOFError:
            break
        if not query.strip():
            continue

        query_vector = await generator.embed(query)
        for similarity, text in rank(query_vector, restaurants):
            print(f"{similarity:.4f}: {text}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="embedding_demo", description="manualbot: Embedding generator demos.")
    parser.add_argument("demo", choices=("vector", "restaurants"), help="Which demo to run.")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    try:
        from manualbot.src.core.embeddings import create_embedding_generator

        generator = create_embedding_generator()
    except Exception as exc:
        print("\n[FATAL] Configuration error: check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)

    try:
        if args.demo == "vector":
            asyncio.run(vector_demo(generator))
        else:
            asyncio.run(restaurants_demo(generator))
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
