"""
manualbot - Product Manual Chatbot
====================================
Interactive console chatbot answering questions about one product from
its manual extracts (run ``setup_db`` first).

Flow:
    1. Load the catalog and ask for a product id (3 random suggestions).
    2. Build the chat pipeline (provider + optional language / rate limit).
    3. Greet, then answer each question with an optional citation.

Flags:
    --product ID     Skip the product prompt.
    --language LANG  Force the reply language (overrides REPLY_LANGUAGE).
    --rate-limit     Allow one model call per RATE_LIMIT_WINDOW_SECONDS.

Usage:
    python -m manualbot.scripts.rag_chat
    python -m manualbot.scripts.rag_chat --product 42 --rate-limit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rag_chat", description="manualbot: Chat about a product using its manual.")
    parser.add_argument("--product", type=int, default=None, help="Product id to chat about.")
    parser.add_argument("--language", default=None, help="Always reply in this language.")
    parser.add_argument("--rate-limit", action="store_true", default=False, help="Throttle model calls to one per window.")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    from manualbot.config.settings import settings
    from manualbot.src.core.chatbot import Chatbot, ConsoleFrontEnd, choose_product
    from manualbot.src.core.chatbot_thread import ChatbotThread
    from manualbot.src.core.embeddings import create_embedding_generator
    from manualbot.src.core.middleware import ChatClientBuilder
    from manualbot.src.core.providers import create_chat_client
    from manualbot.src.database.products import find_product, load_products
    from manualbot.src.database.vector_store import ManualVectorStore
    from manualbot.src.utils.logger import get_logger

    logger = get_logger(__name__)

    products = load_products()
    product = find_product(products, args.product) if args.product is not None else None
    if product is None:
        if args.product is not None:
            logger.warning("Unknown product id %d.", args.product)
        product = await asyncio.to_thread(choose_product, products)

    builder = ChatClientBuilder(create_chat_client())
    language = args.language or settings.REPLY_LANGUAGE
    if language:
        builder.use_language(language)
    if args.rate_limit:
        builder.use_rate_limit(settings.RATE_LIMIT_WINDOW_SECONDS)

    thread = ChatbotThread(builder.build(), create_embedding_generator(), ManualVectorStore(), product)
    return await Chatbot(thread, ConsoleFrontEnd()).run()


def main() -> None:
    args = _parse_args()
    try:
        from manualbot.config.settings import settings  # noqa: F401
    except Exception as exc:
        print("\n[FATAL] Configuration error: check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except (KeyboardInterrupt, EOFError):
        print()


if __name__ == "__main__":
    main()
