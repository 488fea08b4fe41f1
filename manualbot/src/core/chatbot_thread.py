"""
manualbot - ChatbotThread
===========================
One conversation about one product: retrieve manual extracts, ask the
model for a structured answer, resolve its citation.

Turn states
-----------
``IDLE`` → ``RETRIEVING`` (embed + vector search) → ``COMPOSING``
(instruction turn appended) → ``AWAITING_MODEL`` → ``PARSING`` → ``IDLE``.

Per-turn flow:
    1.  Embed the raw user message (no query rewriting).
    2.  Top-K search of the manuals collection, filtered to the
        thread's product.
    3.  Append an *assistant-authored* instruction turn listing each
        extract as ``<manual_extract id='N'>``, the question, and the
        JSON reply format.
    4.  Ask the model for a ``ChatbotAnswer`` (native schema decoding
        when the provider is Ollama, free text + parse otherwise).
    5.  Append the raw reply, whatever it contains.
    6.  Invalid reply → fixed apology, no citation.
    7.  Valid reply → citation from the first extract whose id matches
        ``manualExtractId``.
    8.  Return ``(text, citation, all_context)``.

Failure policy
--------------
Model-side problems (bad JSON, throttling, unknown extract id) never
raise.  Gateway failures propagate.  If the model call fails or the
task is cancelled, the instruction turn from step 3 is rolled back so
the history never ends on an unanswered prompt.

Usage:
    thread = ChatbotThread(chat_client, embedding_generator, vector_store, product)
    text, citation, context = await thread.answer("How do I reset it?")
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from manualbot.config.prompt_templates import APOLOGY_RESPONSE, MANUAL_EXTRACT_TEMPLATE, RAG_PROMPT_TEMPLATE, SYSTEM_PROMPT_TEMPLATE
from manualbot.config.settings import settings
from manualbot.src.core.chat_client import ChatClient, ChatMessage, ChatRole, complete_structured
from manualbot.src.core.embeddings import EmbeddingGenerator
from manualbot.src.core.providers import OllamaChatClient
from manualbot.src.database.products import Product
from manualbot.src.database.vector_store import FieldMatch, ManualVectorStore, SearchRecord
from manualbot.src.utils.logger import get_logger
from manualbot.src.utils.text_utils import truncate_words

logger = get_logger(__name__)

_MAX_QUOTE_WORDS = 10


# ══════════════════════════════════════════════════════════════════════
#  RESULT TYPES
# ══════════════════════════════════════════════════════════════════════


class ChatbotAnswer(BaseModel):
    """The JSON object the model is asked to reply with."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    manual_extract_id: int | None = None
    manual_quote: str | None = None
    answer_text: str

    @model_validator(mode="before")
    @classmethod
    def _accept_pascal_case(cls, data: Any) -> Any:
        # Some models echo "ManualExtractId"-style keys
        if isinstance(data, dict):
            return {(k[:1].lower() + k[1:]) if isinstance(k, str) else k: v for k, v in data.items()}
        return data


    @field_validator("manual_quote")
    @classmethod
    def _clip_quote(cls, v: str | None) -> str | None:
        return None if v is None else truncate_words(v, _MAX_QUOTE_WORDS)


@dataclass(frozen=True, slots=True)
class Citation:
    """Where in which product manual an answer comes from."""

    product_id: int
    page_number: int
    quote: str


class ThreadAnswer(NamedTuple):
    text: str
    citation: Citation | None
    all_context: list[str]


class ThreadState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    COMPOSING = "composing"
    AWAITING_MODEL = "awaiting_model"
    PARSING = "parsing"


# ══════════════════════════════════════════════════════════════════════
#  CHATBOT THREAD
# ══════════════════════════════════════════════════════════════════════


class ChatbotThread:
    """
    Conversation session bound to a single product.

    Parameters
    ----------
    chat_client
        Chat pipeline (provider, optionally wrapped in middleware).
    embedding_generator
        Embeds the user's message for retrieval.
    vector_store
        Holds the manual extracts.
    product
        The product being discussed.
    collection
        Collection to search.  Defaults to ``settings.MANUALS_COLLECTION``.
    limit
        Extracts per turn.  Defaults to ``settings.SEARCH_RESULTS_LIMIT``.
    """

    __slots__ = ("_chat_client", "_embedder", "_store", "_product", "_collection", "_limit", "_use_native_schema", "_messages", "_state")

    def __init__(self, chat_client: ChatClient, embedding_generator: EmbeddingGenerator, vector_store: ManualVectorStore, product: Product, collection: str | None = None, limit: int | None = None) -> None:
        self._chat_client = chat_client
        self._embedder = embedding_generator
        self._store = vector_store
        self._product = product
        self._collection = collection or settings.MANUALS_COLLECTION
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be ≥ 1, got {limit}")
        self._limit = limit if limit is not None else settings.SEARCH_RESULTS_LIMIT
        self._use_native_schema = chat_client.get_service(OllamaChatClient) is not None
        self._messages: list[ChatMessage] = [
            ChatMessage(ChatRole.SYSTEM, SYSTEM_PROMPT_TEMPLATE.format(product_id=product.product_id, brand=product.brand, model=product.model)),
        ]
        self._state = ThreadState.IDLE


    @property
    def product(self) -> Product:
        return self._product


    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        """Read-only snapshot of the conversation history."""
        return tuple(self._messages)


    @property
    def state(self) -> ThreadState:
        return self._state


    async def answer(self, user_message: str) -> ThreadAnswer:
        """
        Answer *user_message* from the product's manual extracts.

        Raises
        ------
        ValueError
            If *user_message* is empty or whitespace.
        RuntimeError
            If another turn is still in progress on this thread.
        """
        if not user_message or not user_message.strip():
            raise ValueError("user_message must not be empty.")
        if self._state is not ThreadState.IDLE:
            raise RuntimeError(f"A turn is already in progress (state={self._state.value}).")

        t_start = time.perf_counter()
        try:
            # ── 1–2. Retrieve ─────────────────────────────────────────
            self._state = ThreadState.RETRIEVING
            query_vector = await self._embedder.embed(user_message)
            closest = await self._store.search(self._collection, query_vector, FieldMatch("productId", self._product.product_id), limit=self._limit)
            all_context = [record.text for record in closest]
            retrieve_ms = (time.perf_counter() - t_start) * 1000
            logger.info("[RAG] Retrieved %d extract(s) for product %d in %.1fms", len(closest), self._product.product_id, retrieve_ms)

            # ── 3. Compose ────────────────────────────────────────────
            self._state = ThreadState.COMPOSING
            prompt = ChatMessage(ChatRole.ASSISTANT, self._format_prompt(user_message, closest))
            self._messages.append(prompt)

            # ── 4. Ask the model ──────────────────────────────────────
            self._state = ThreadState.AWAITING_MODEL
            t_llm = time.perf_counter()
            try:
                structured = await complete_structured(self._chat_client, self._messages, ChatbotAnswer, use_native_schema=self._use_native_schema)
            except BaseException:
                self._rollback(prompt)
                raise
            logger.info("[RAG] Model replied in %.1fms (native_schema=%s)", (time.perf_counter() - t_llm) * 1000, self._use_native_schema)

            # ── 5. Keep the raw reply ─────────────────────────────────
            self._messages.append(structured.response.message)

            # ── 6–7. Parse + cite ─────────────────────────────────────
            self._state = ThreadState.PARSING
            if structured.result is None:
                logger.warning("[RAG] Unusable model reply: %s", structured.error)
                return ThreadAnswer(APOLOGY_RESPONSE, None, all_context)

            citation = self._resolve_citation(structured.result, closest)
            logger.info("[RAG] Turn completed in %.1fms (citation=%s)", (time.perf_counter() - t_start) * 1000, citation is not None)
            return ThreadAnswer(structured.result.answer_text, citation, all_context)
        finally:
            self._state = ThreadState.IDLE


    def _rollback(self, prompt: ChatMessage) -> None:
        if self._messages and self._messages[-1] is prompt:
            self._messages.pop()
            logger.warning("[RAG] Model call did not complete: instruction turn rolled back.")


    @staticmethod
    def _format_prompt(user_message: str, records: list[SearchRecord]) -> str:
        extracts = "\n".join(MANUAL_EXTRACT_TEMPLATE.format(id=record.id, text=record.text) for record in records)
        return RAG_PROMPT_TEMPLATE.format(extracts=extracts, question=user_message)


    @staticmethod
    def _resolve_citation(answer: ChatbotAnswer, records: list[SearchRecord]) -> Citation | None:
        """Map ``manualExtractId`` back to the first retrieved record with that id."""
        if answer.manual_extract_id is None:
            return None

        record = next((r for r in records if r.id == answer.manual_extract_id), None)
        if record is None:
            logger.info("[RAG] Cited extract %d was not retrieved this turn: citation dropped.", answer.manual_extract_id)
            return None

        product_id = record.payload.get("productId")
        page_number = record.payload.get("pageNumber")
        if product_id is None or page_number is None:
            logger.warning("[RAG] Extract %d lacks productId/pageNumber: citation dropped.", record.id)
            return None

        return Citation(product_id=int(product_id), page_number=int(page_number), quote=answer.manual_quote or "")
