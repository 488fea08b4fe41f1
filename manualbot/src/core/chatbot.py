"""
manualbot - Console Chatbot
=============================
Drives a ``ChatbotThread`` from an interactive front end.

The loop greets the user with the product model, then answers each
non-blank utterance until the front end reports end of input.  Turns
are strictly sequential: a new utterance is only read after the
previous answer has been emitted.

``FrontEnd`` is structural, so a web socket or a test script can stand
in for ``ConsoleFrontEnd``.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from manualbot.config.prompt_templates import CITATION_TEMPLATE, GREETING_TEMPLATE
from manualbot.src.core.chatbot_thread import ChatbotThread, Citation, ThreadAnswer
from manualbot.src.database.products import Product, find_product
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)

_SUGGESTIONS = 3


@runtime_checkable
class FrontEnd(Protocol):
    async def read_utterance(self) -> str | None: ...

    async def emit_greeting(self, text: str) -> None: ...

    async def emit_answer(self, answer: ThreadAnswer) -> None: ...


def format_citation(citation: Citation) -> str:
    return CITATION_TEMPLATE.format(product_id=citation.product_id, page_number=citation.page_number, quote=citation.quote)


class ConsoleFrontEnd:
    """Reads from stdin and prints to stdout without blocking the event loop."""

    __slots__ = ("_prompt",)

    def __init__(self, prompt: str = "\nYou: ") -> None:
        self._prompt = prompt


    async def read_utterance(self) -> str | None:
        try:
            return await asyncio.to_thread(input, self._prompt)
        except EOFError:
            return None


    async def emit_greeting(self, text: str) -> None:
        print(f"Assistant: {text}")


    async def emit_answer(self, answer: ThreadAnswer) -> None:
        print(f"Assistant: {answer.text}\n")
        if answer.citation is not None:
            print(format_citation(answer.citation))


def choose_product(products: list[Product], read: Callable[[str], str] = input, write: Callable[[str], None] = print, rng: random.Random | None = None) -> Product:
    """
    Ask for a product id until a known one is entered.

    Each prompt lists a few random catalog entries as suggestions.

    Raises
    ------
    ValueError
        If *products* is empty.
    EOFError
        Propagated from *read* when input ends.
    """
    if not products:
        raise ValueError("The product catalog is empty.")
    rng = rng or random.Random()

    while True:
        write("Please enter any product ID. Suggestions:\n")
        for suggestion in rng.sample(products, min(_SUGGESTIONS, len(products))):
            write(f"   {suggestion.product_id}: {suggestion.brand} {suggestion.model}")

        raw = read("\n> ").strip()
        try:
            product = find_product(products, int(raw))
        except ValueError:
            product = None
        if product is not None:
            return product
        write(f"'{raw}' is not a known product id.")


class Chatbot:
    """Greets, then answers utterances one at a time until input ends."""

    __slots__ = ("_thread", "_front_end")

    def __init__(self, thread: ChatbotThread, front_end: FrontEnd) -> None:
        self._thread = thread
        self._front_end = front_end


    async def run(self) -> int:
        """Return the number of turns answered."""
        await self._front_end.emit_greeting(GREETING_TEMPLATE.format(model=self._thread.product.model))

        turns = 0
        while True:
            utterance = await self._front_end.read_utterance()
            if utterance is None:
                break
            if not utterance.strip():
                continue
            answer = await self._thread.answer(utterance)
            await self._front_end.emit_answer(answer)
            turns += 1

        logger.info("[RAG] Session for product %d ended after %d turn(s).", self._thread.product.product_id, turns)
        return turns
