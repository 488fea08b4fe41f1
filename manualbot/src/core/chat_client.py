"""
manualbot - Chat Client Abstractions
======================================
Provider-neutral types shared by every chat adapter and middleware.

Architecture
------------
``ChatMessage`` / ``ChatOptions`` / ``ChatResponse``
    The request/response shape.  Messages are compared by *identity*
    so a transient turn can be removed without touching an equal-text
    turn the caller added.

``ChatClient``
    Structural type implemented by the provider adapters
    (``manualbot.src.core.providers``) and by every middleware
    (``manualbot.src.core.middleware``).

``DelegatingChatClient``
    Pass-through base class for middleware.  Subclasses override only
    the calls they intercept.

``complete_structured``
    Requests a reply matching a Pydantic model and returns a typed
    ``StructuredResponse``: a schema mismatch is a result variant,
    never an exception.

Usage:
    from manualbot.src.core.chat_client import ChatMessage, ChatRole
    response = await client.complete([ChatMessage(ChatRole.USER, "Hi")])
    print(response.text)
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from langchain_core.tools import BaseTool
from pydantic import BaseModel, ValidationError

from manualbot.config.prompt_templates import STRUCTURED_OUTPUT_INSTRUCTION
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
ServiceT = TypeVar("ServiceT")

# ── Fenced JSON (```json ... ```) often wraps free-text replies ────────
_RE_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


# ══════════════════════════════════════════════════════════════════════
#  MESSAGE MODEL
# ══════════════════════════════════════════════════════════════════════


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(eq=False, slots=True)
class ImageContent:
    """Raw image bytes attached to a user turn."""

    data: bytes
    media_type: str = "image/jpeg"


@dataclass(eq=False, slots=True)
class ToolCall:
    """A function call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False, slots=True)
class ChatMessage:
    """
    One conversation turn.

    ``structured`` holds the parsed payload when the turn was decoded
    against a response schema (see ``complete_structured``).
    """

    role: ChatRole
    text: str = ""
    images: list[ImageContent] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    structured: Any = None


@dataclass(slots=True)
class ChatOptions:
    """
    Per-request options.

    Attributes
    ----------
    tools
        LangChain tools the model may call.  Executed by the
        function-invocation middleware, not by the adapters.
    response_schema
        JSON schema the reply should conform to.
    use_native_schema
        Ask the provider to enforce ``response_schema`` while decoding.
        Ignored by providers without native support.
    """

    tools: list[BaseTool] = field(default_factory=list)
    response_schema: dict[str, Any] | None = None
    use_native_schema: bool = False


@dataclass(slots=True)
class ChatResponse:
    """A single assistant turn plus the provider's raw response object."""

    message: ChatMessage
    raw: Any = None

    @property
    def text(self) -> str:
        return self.message.text


# ══════════════════════════════════════════════════════════════════════
#  CLIENT PROTOCOL & DELEGATION
# ══════════════════════════════════════════════════════════════════════


@runtime_checkable
class ChatClient(Protocol):
    """Anything that can complete a chat turn."""

    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse: ...

    def complete_streaming(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]: ...

    def get_service(self, service_type: type[ServiceT]) -> ServiceT | None: ...


class DelegatingChatClient:
    """
    Forwards every call to ``inner``.

    ``get_service`` walks the chain outer → inner, so callers can ask a
    composed pipeline whether a given adapter sits at its core.
    """

    __slots__ = ("_inner",)

    def __init__(self, inner: ChatClient) -> None:
        self._inner = inner


    @property
    def inner(self) -> ChatClient:
        return self._inner


    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        return await self._inner.complete(messages, options)


    async def complete_streaming(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]:
        async for fragment in self._inner.complete_streaming(messages, options):
            yield fragment


    def get_service(self, service_type: type[ServiceT]) -> ServiceT | None:
        if isinstance(self, service_type):
            return self
        return self._inner.get_service(service_type)


# ══════════════════════════════════════════════════════════════════════
#  SCOPED HISTORY MUTATION
# ══════════════════════════════════════════════════════════════════════


@contextmanager
def transient_message(messages: list[ChatMessage], message: ChatMessage) -> Iterator[ChatMessage]:
    """
    Append *message* for the duration of the ``with`` block.

    The exact object is removed on every exit path (normal return,
    exception, task cancellation).  Removal is by identity.
    """
    messages.append(message)
    try:
        yield message
    finally:
        for index in range(len(messages) - 1, -1, -1):
            if messages[index] is message:
                del messages[index]
                break


# ══════════════════════════════════════════════════════════════════════
#  STRUCTURED OUTPUT
# ══════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class StructuredResponse(Generic[ModelT]):
    """Typed result-or-error outcome of ``complete_structured``."""

    response: ChatResponse
    result: ModelT | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


def extract_json(text: str) -> str:
    """Return the JSON body of *text*, unwrapping a Markdown code fence if present."""
    match = _RE_JSON_FENCE.search(text)
    if match:
        return match.group(1)
    return text.strip()


def parse_structured(response: ChatResponse, schema: type[ModelT]) -> StructuredResponse[ModelT]:
    """Validate *response* against *schema* without raising."""
    payload = extract_json(response.text)
    if not payload:
        return StructuredResponse(response=response, error="empty response")

    try:
        result = schema.model_validate_json(payload)
    except ValidationError as exc:
        logger.warning("[STRUCTURED] Reply does not match %s (%d error(s)).", schema.__name__, exc.error_count())
        return StructuredResponse(response=response, error=str(exc))

    response.message.structured = result
    return StructuredResponse(response=response, result=result)


async def complete_structured(client: ChatClient, messages: list[ChatMessage], schema: type[ModelT], options: ChatOptions | None = None, use_native_schema: bool = False) -> StructuredResponse[ModelT]:
    """
    Complete a turn whose reply must conform to *schema*.

    With ``use_native_schema`` the JSON schema is handed to the provider
    for constrained decoding.  Otherwise a transient instruction turn
    carrying the schema is appended for this call only, and the free
    text reply is parsed after the fact.
    """
    json_schema = schema.model_json_schema()
    request_options = replace(options) if options is not None else ChatOptions()
    request_options.response_schema = json_schema
    request_options.use_native_schema = use_native_schema

    if use_native_schema:
        response = await client.complete(messages, request_options)
    else:
        instruction = ChatMessage(ChatRole.USER, STRUCTURED_OUTPUT_INSTRUCTION.format(schema=json.dumps(json_schema, indent=2)))
        with transient_message(messages, instruction):
            response = await client.complete(messages, request_options)

    return parse_structured(response, schema)
