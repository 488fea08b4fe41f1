"""
manualbot - Chat Providers
============================
Adapters that turn a concrete model SDK into a ``ChatClient``.

``LangChainChatClient``
    Wraps any LangChain ``BaseChatModel`` (Gemini via
    ``langchain-google-genai`` by default).  Structured output is
    best-effort: the reply is free text parsed afterwards.

``OllamaChatClient``
    Talks to a local Ollama server through ``ollama.AsyncClient``.
    Supports native JSON-schema constrained decoding via ``format=``.

Both adapters translate tool declarations with LangChain's
``convert_to_openai_tool`` and surface tool calls as ``ToolCall``s;
they never execute tools themselves.

Usage:
    from manualbot.src.core.providers import create_chat_client
    client = create_chat_client()
"""

from __future__ import annotations

import base64
import uuid
from collections.abc import AsyncIterator
from typing import Any

import ollama
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.utils.function_calling import convert_to_openai_tool

from manualbot.config.settings import settings
from manualbot.src.core.chat_client import ChatClient, ChatMessage, ChatOptions, ChatResponse, ChatRole, ServiceT, ToolCall
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)


def _content_text(content: str | list[Any]) -> str:
    """Flatten LangChain message content (plain string or list of parts) into text."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


def _data_url(data: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


# ══════════════════════════════════════════════════════════════════════
#  LANGCHAIN (GEMINI)
# ══════════════════════════════════════════════════════════════════════


def to_langchain_messages(messages: list[ChatMessage]) -> list[BaseMessage]:
    """Translate ``ChatMessage``s into LangChain message objects."""
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role is ChatRole.SYSTEM:
            converted.append(SystemMessage(content=message.text))
        elif message.role is ChatRole.USER:
            if message.images:
                content: list[str | dict[str, Any]] = [{"type": "text", "text": message.text}]
                content.extend({"type": "image_url", "image_url": {"url": _data_url(image.data, image.media_type)}} for image in message.images)
                converted.append(HumanMessage(content=content))
            else:
                converted.append(HumanMessage(content=message.text))
        elif message.role is ChatRole.ASSISTANT:
            tool_calls = [{"id": call.id, "name": call.name, "args": call.arguments} for call in message.tool_calls]
            converted.append(AIMessage(content=message.text, tool_calls=tool_calls))
        else:
            converted.append(ToolMessage(content=message.text, tool_call_id=message.tool_call_id or ""))
    return converted


def from_langchain_message(message: AIMessage) -> ChatMessage:
    tool_calls = [ToolCall(id=call.get("id") or uuid.uuid4().hex, name=call["name"], arguments=dict(call.get("args") or {})) for call in message.tool_calls]
    return ChatMessage(ChatRole.ASSISTANT, text=_content_text(message.content), tool_calls=tool_calls)


class LangChainChatClient:
    """
    ``ChatClient`` over a LangChain chat model.

    Parameters
    ----------
    llm
        Any ``BaseChatModel`` supporting ``bind_tools`` when tools are used.
    """

    __slots__ = ("_llm",)

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm


    def _runnable(self, options: ChatOptions | None) -> Any:
        if options is not None and options.tools:
            return self._llm.bind_tools(options.tools)
        return self._llm


    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        result = await self._runnable(options).ainvoke(to_langchain_messages(messages))
        logger.debug("[LLM] LangChain reply: %d chars, %d tool call(s).", len(_content_text(result.content)), len(result.tool_calls))
        return ChatResponse(message=from_langchain_message(result), raw=result)


    async def complete_streaming(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]:
        async for chunk in self._runnable(options).astream(to_langchain_messages(messages)):
            text = _content_text(chunk.content)
            if text:
                yield text


    def get_service(self, service_type: type[ServiceT]) -> ServiceT | None:
        return self if isinstance(self, service_type) else None


# ══════════════════════════════════════════════════════════════════════
#  OLLAMA
# ══════════════════════════════════════════════════════════════════════


def to_ollama_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Translate ``ChatMessage``s into Ollama chat message dicts."""
    converted: list[dict[str, Any]] = []
    for message in messages:
        entry: dict[str, Any] = {"role": message.role.value, "content": message.text}
        if message.images:
            entry["images"] = [base64.b64encode(image.data).decode("ascii") for image in message.images]
        if message.tool_calls:
            entry["tool_calls"] = [{"function": {"name": call.name, "arguments": call.arguments}} for call in message.tool_calls]
        converted.append(entry)
    return converted


def from_ollama_message(message: Any) -> ChatMessage:
    tool_calls = [ToolCall(id=uuid.uuid4().hex, name=call.function.name, arguments=dict(call.function.arguments or {})) for call in (message.tool_calls or [])]
    return ChatMessage(ChatRole.ASSISTANT, text=message.content or "", tool_calls=tool_calls)


class OllamaChatClient:
    """
    ``ChatClient`` over a local Ollama server.

    Parameters
    ----------
    model
        Ollama model tag (e.g. ``llama3.2``, ``llava``).
    host
        Server URL.  Defaults to ``settings.OLLAMA_BASE_URL``.
    client
        Pre-built ``ollama.AsyncClient`` (injectable for tests).
    """

    __slots__ = ("_model", "_client")

    def __init__(self, model: str, host: str | None = None, client: ollama.AsyncClient | None = None) -> None:
        self._model = model
        self._client = client or ollama.AsyncClient(host=host or settings.OLLAMA_BASE_URL)


    @property
    def model(self) -> str:
        return self._model


    @staticmethod
    def _request_kwargs(options: ChatOptions | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if options is None:
            return kwargs
        if options.tools:
            kwargs["tools"] = [convert_to_openai_tool(tool) for tool in options.tools]
        if options.use_native_schema and options.response_schema is not None:
            kwargs["format"] = options.response_schema
        return kwargs


    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        response = await self._client.chat(model=self._model, messages=to_ollama_messages(messages), **self._request_kwargs(options))
        logger.debug("[LLM] Ollama %s reply: %d chars.", self._model, len(response.message.content or ""))
        return ChatResponse(message=from_ollama_message(response.message), raw=response)


    async def complete_streaming(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]:
        stream = await self._client.chat(model=self._model, messages=to_ollama_messages(messages), stream=True, **self._request_kwargs(options))
        async for part in stream:
            if part.message.content:
                yield part.message.content


    def get_service(self, service_type: type[ServiceT]) -> ServiceT | None:
        return self if isinstance(self, service_type) else None


# ══════════════════════════════════════════════════════════════════════
#  FACTORY
# ══════════════════════════════════════════════════════════════════════


def _gemini_llm(temperature: float | None = None) -> BaseChatModel:
    from langchain_google_genai import ChatGoogleGenerativeAI

    return ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE if temperature is None else temperature, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())  # type: ignore[union-attr]


def create_chat_client() -> ChatClient:
    """Build the configured text chat adapter."""
    if settings.LLM_PROVIDER == "gemini":
        logger.info("Chat client: Gemini %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
        return LangChainChatClient(_gemini_llm())
    logger.info("Chat client: Ollama %s at %s", settings.OLLAMA_CHAT_MODEL, settings.OLLAMA_BASE_URL)
    return OllamaChatClient(settings.OLLAMA_CHAT_MODEL)


def create_vision_client() -> ChatClient:
    """Build the configured image-capable chat adapter."""
    if settings.LLM_PROVIDER == "gemini":
        # Gemini chat models accept images natively
        return LangChainChatClient(_gemini_llm())
    logger.info("Vision client: Ollama %s", settings.OLLAMA_VISION_MODEL)
    return OllamaChatClient(settings.OLLAMA_VISION_MODEL)
