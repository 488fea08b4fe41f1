"""
manualbot - Chat Pipeline Demo
================================
Two demos of the ``ChatClient`` abstraction and its middleware.

``basic``
    One plain completion followed by one streamed completion.

``sales``
    A system-prompted sales assistant that keeps pushing Puffin cans.
    The model can call two cart tools (``get_price``,
    ``add_puffin_to_cart``); the pipeline is function invocation →
    (optional) forced language → rate limit → provider.

Usage:
    python -m manualbot.scripts.chat_demo basic
    python -m manualbot.scripts.chat_demo sales --language tedesco
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import aclosing
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from langchain_core.tools import BaseTool, StructuredTool  # noqa: E402

_PUFFIN_UNIT_PRICE = 2.99


class Cart:
    """Simple shopping cart the sales assistant fills through tool calls."""

    def __init__(self) -> None:
        self.total = 0


    def add_puffin_to_cart(self, count: int) -> str:
        """
        Aggiunge il numero indicato di scatole di puffin al carrello.

        Args:
            count: Il numero di scatole da aggiungere.
        """
        self.total += count
        print("*****")
        print(f"Added {count} to your cart. Total: {self.total}.")
        print("*****")
        return f"Carrello aggiornato: {self.total} scatole."


    def get_price(self, count: int) -> float:
        """
        Calcola il prezzo di una scatola di puffin e restituisce il prezzo in euro.

        Args:
            count: Il numero di scatole per il quale calcolare il prezzo in euro.
        """
        return round(count * _PUFFIN_UNIT_PRICE, 2)


    def tools(self) -> list[BaseTool]:
        return [
            StructuredTool.from_function(self.add_puffin_to_cart, parse_docstring=True),
            StructuredTool.from_function(self.get_price, parse_docstring=True),
        ]


# ══════════════════════════════════════════════════════════════════════
#  DEMOS
# ══════════════════════════════════════════════════════════════════════


async def basic_demo() -> None:
    from manualbot.config.prompt_templates import LONG_DESCRIPTION_PROMPT, SHORT_DESCRIPTION_PROMPT
    from manualbot.src.core.chat_client import ChatMessage, ChatRole
    from manualbot.src.core.providers import create_chat_client

    client = create_chat_client()

    print("Asking...")
    response = await client.complete([ChatMessage(ChatRole.USER, SHORT_DESCRIPTION_PROMPT)])
    print(response.text)

    print("\nAsking...")
    async with aclosing(client.complete_streaming([ChatMessage(ChatRole.USER, LONG_DESCRIPTION_PROMPT)])) as stream:
        async for fragment in stream:
            print(fragment, end="", flush=True)
    print()


async def sales_demo(language: str | None) -> None:
    from manualbot.config.prompt_templates import SALES_SYSTEM_PROMPT
    from manualbot.config.settings import settings
    from manualbot.src.core.chat_client import ChatMessage, ChatOptions, ChatRole
    from manualbot.src.core.middleware import ChatClientBuilder
    from manualbot.src.core.providers import create_chat_client

    builder = ChatClientBuilder(create_chat_client()).use_function_invocation()
    if language:
        builder.use_language(language)
    client = builder.use_rate_limit(settings.RATE_LIMIT_WINDOW_SECONDS).build()

    cart = Cart()
    options = ChatOptions(tools=cart.tools())
    messages = [ChatMessage(ChatRole.SYSTEM, SALES_SYSTEM_PROMPT)]

    while True:
        try:
            user_input = await asyncio.to_thread(input, "\nYou: ")
        except EOFError:
            break
        if not user_input.strip():
            continue
        messages.append(ChatMessage(ChatRole.USER, user_input))

        response = await client.complete(messages, options)
        messages.append(response.message)
        print(f"Bot: {response.text}")

    print(f"\nCart total: {cart.total} can(s).")


# ── CLI ────────────────────────────────────────────────────────────────

def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chat_demo", description="manualbot: Chat client and middleware demos.")
    parser.add_argument("demo", choices=("basic", "sales"), help="Which demo to run.")
    parser.add_argument("--language", default=None, help="sales: always reply in this language (overrides REPLY_LANGUAGE).")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    try:
        from manualbot.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error: check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)

    print("Starting...")
    try:
        if args.demo == "basic":
            asyncio.run(basic_demo())
        else:
            asyncio.run(sales_demo(args.language or settings.REPLY_LANGUAGE))
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
