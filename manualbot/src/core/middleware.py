"""
manualbot - Chat Middleware
=============================
Composable wrappers around a ``ChatClient``.  Each one keeps the exact
``complete`` / ``complete_streaming`` shape of the client it wraps, so
callers cannot tell a bare provider from a decorated pipeline.

Architecture
------------
``LanguageChatClient``
    Appends a transient "always reply in <language>" turn for the
    duration of a single call.  The caller's history is left exactly
    as it was, whatever the outcome.

``FixedWindowRateLimiter`` / ``RateLimitChatClient``
    Fixed-window limiter (one permit per window, one queued waiter by
    default).  Throttled requests get a canned assistant reply instead
    of an exception.

``FunctionInvocationChatClient``
    Runs the tools the model asks for and feeds their results back,
    up to a bounded number of rounds.

``ChatClientBuilder``
    Ordered composition.  The first middleware registered is the
    outermost: requests flow outer → inner, responses inner → outer.

Usage:
    client = (
        ChatClientBuilder(provider)
        .use_function_invocation()
        .use_language("tedesco")
        .use_rate_limit(5.0)
        .build()
    )
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import Any

from langchain_core.tools import BaseTool

from manualbot.config.prompt_templates import LANGUAGE_INSTRUCTION_TEMPLATE, THROTTLED_RESPONSE
from manualbot.config.settings import settings
from manualbot.src.core.chat_client import ChatClient, ChatMessage, ChatOptions, ChatResponse, ChatRole, DelegatingChatClient, ToolCall, transient_message
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)

# Lower bound for a waiter's sleep, avoids spinning on float rounding at a window edge
_MIN_WAIT_SECONDS = 0.001


# ══════════════════════════════════════════════════════════════════════
#  FORCED LANGUAGE
# ══════════════════════════════════════════════════════════════════════


class LanguageChatClient(DelegatingChatClient):
    """Forces every reply into ``language``."""

    __slots__ = ("_language",)

    def __init__(self, inner: ChatClient, language: str) -> None:
        super().__init__(inner)
        self._language = language


    def _instruction(self) -> ChatMessage:
        return ChatMessage(ChatRole.USER, LANGUAGE_INSTRUCTION_TEMPLATE.format(language=self._language))


    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        with transient_message(messages, self._instruction()):
            logger.debug("[LANG] Forcing reply language: %s", self._language)
            return await self._inner.complete(messages, options)


    async def complete_streaming(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]:
        """
        Stream the reply with the instruction appended.

        The instruction is removed when the generator finishes.  A caller
        that stops early must close the stream (``contextlib.aclosing``)
        to get its history back immediately.
        """
        with transient_message(messages, self._instruction()):
            async for fragment in self._inner.complete_streaming(messages, options):
                yield fragment


# ══════════════════════════════════════════════════════════════════════
#  RATE LIMITING
# ══════════════════════════════════════════════════════════════════════


class FixedWindowRateLimiter:
    """
    Fixed-window permit limiter.

    Time is bucketed into consecutive windows of ``window`` seconds.
    At most ``permit_limit`` permits are issued per window.  When the
    window is exhausted, up to ``queue_limit`` callers may wait for
    the next window; they are served oldest-first, ahead of any new
    arrival.  Everybody else is rejected immediately.
    A waiter cancelled after it was handed a permit does not give the
    permit back; it stays spent until the window ends.

    Counter state is guarded by a lock.  Waiters are ``asyncio``
    futures, so a limiter must be used from a single event loop.

    Parameters
    ----------
    window
        Window length in seconds.
    permit_limit
        Permits issued per window.
    queue_limit
        Maximum number of callers waiting for the next window.
    clock
        Monotonic time source (injectable for tests).
    """

    __slots__ = ("_window", "_permit_limit", "_queue_limit", "_clock", "_lock", "_window_start", "_permits_issued", "_waiters")

    def __init__(self, window: float, permit_limit: int = 1, queue_limit: int = 1, clock: Callable[[], float] = time.monotonic) -> None:
        if window <= 0:
            raise ValueError(f"window must be > 0, got {window}")
        if permit_limit < 1:
            raise ValueError(f"permit_limit must be ≥ 1, got {permit_limit}")
        if queue_limit < 0:
            raise ValueError(f"queue_limit must be ≥ 0, got {queue_limit}")

        self._window = window
        self._permit_limit = permit_limit
        self._queue_limit = queue_limit
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._permits_issued = 0
        self._waiters: deque[asyncio.Future[bool]] = deque()


    @property
    def queued(self) -> int:
        """Number of callers currently waiting for the next window."""
        return sum(1 for waiter in self._waiters if not waiter.done())


    def _roll_window(self, now: float) -> None:
        """Start a new window if the current one elapsed; hand its permits to queued waiters first."""
        if now < self._window_start + self._window:
            return

        elapsed_windows = int((now - self._window_start) // self._window)
        self._window_start += elapsed_windows * self._window
        self._permits_issued = 0

        while self._waiters and self._permits_issued < self._permit_limit:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            waiter.set_result(True)
            self._permits_issued += 1


    def _take_permit(self) -> bool:
        if self._permits_issued < self._permit_limit and not self._waiters:
            self._permits_issued += 1
            return True
        return False


    def attempt_acquire(self) -> bool:
        """Take a permit from the current window without queueing."""
        with self._lock:
            self._roll_window(self._clock())
            return self._take_permit()


    async def acquire(self) -> bool:
        """
        Take a permit, waiting at most until the next window if the
        queue has room.  Returns ``False`` when the request is rejected.
        """
        with self._lock:
            self._roll_window(self._clock())
            if self._take_permit():
                return True
            if len(self._waiters) >= self._queue_limit:
                return False
            waiter: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)

        logger.debug("[RATE] Window exhausted: queued for the next one.")
        try:
            while not waiter.done():
                delay = self._window_start + self._window - self._clock()
                await asyncio.wait((waiter,), timeout=max(delay, _MIN_WAIT_SECONDS))
                with self._lock:
                    self._roll_window(self._clock())
            return waiter.result()
        finally:
            if not waiter.done():
                waiter.cancel()
                with self._lock:
                    if waiter in self._waiters:
                        self._waiters.remove(waiter)


class RateLimitChatClient(DelegatingChatClient):
    """Throttles completions through a ``FixedWindowRateLimiter``."""

    __slots__ = ("_limiter",)

    def __init__(self, inner: ChatClient, window: float, limiter: FixedWindowRateLimiter | None = None) -> None:
        super().__init__(inner)
        self._limiter = limiter or FixedWindowRateLimiter(window=window, permit_limit=1, queue_limit=1)


    @property
    def limiter(self) -> FixedWindowRateLimiter:
        return self._limiter


    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        if not await self._limiter.acquire():
            logger.warning("[RATE] Request throttled.")
            return ChatResponse(message=ChatMessage(ChatRole.ASSISTANT, THROTTLED_RESPONSE))
        return await self._inner.complete(messages, options)


    async def complete_streaming(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]:
        if not await self._limiter.acquire():
            logger.warning("[RATE] Streaming request throttled.")
            yield THROTTLED_RESPONSE
            return
        async for fragment in self._inner.complete_streaming(messages, options):
            yield fragment


# ══════════════════════════════════════════════════════════════════════
#  FUNCTION INVOCATION
# ══════════════════════════════════════════════════════════════════════


class FunctionInvocationChatClient(DelegatingChatClient):
    """
    Executes tool calls requested by the model.

    The assistant tool-call turn and one tool-result turn per call are
    appended to the caller's history, then the model is asked again.
    Unknown tools and tool failures are reported back to the model as
    the tool result.
    """

    __slots__ = ("_max_rounds",)

    def __init__(self, inner: ChatClient, max_rounds: int | None = None) -> None:
        super().__init__(inner)
        if max_rounds is not None and max_rounds < 0:
            raise ValueError(f"max_rounds must be ≥ 0, got {max_rounds}")
        self._max_rounds = max_rounds if max_rounds is not None else settings.MAX_TOOL_ROUNDS


    async def complete(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        tools = {tool.name: tool for tool in options.tools} if options is not None else {}
        response = await self._inner.complete(messages, options)

        rounds = 0
        while response.message.tool_calls and tools:
            if rounds >= self._max_rounds:
                logger.warning("[TOOLS] Stopping after %d round(s); model still requesting tools.", rounds)
                break
            rounds += 1

            messages.append(response.message)
            for call in response.message.tool_calls:
                result = await self._invoke(tools, call)
                messages.append(ChatMessage(ChatRole.TOOL, text=result, tool_call_id=call.id))

            response = await self._inner.complete(messages, options)

        return response


    @staticmethod
    async def _invoke(tools: dict[str, BaseTool], call: ToolCall) -> str:
        tool = tools.get(call.name)
        if tool is None:
            logger.warning("[TOOLS] Model requested unknown tool '%s'.", call.name)
            return f"Error: unknown tool '{call.name}'."

        logger.info("[TOOLS] Invoking %s(%s)", call.name, call.arguments)
        try:
            result = await tool.ainvoke(call.arguments)
        except Exception as exc:
            logger.exception("[TOOLS] Tool '%s' failed.", call.name)
            return f"Error: {exc}"
        return _stringify(result)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except TypeError:
        return str(value)


# ══════════════════════════════════════════════════════════════════════
#  PIPELINE BUILDER
# ══════════════════════════════════════════════════════════════════════


class ChatClientBuilder:
    """Collects middleware factories and wraps them around ``inner`` on ``build``."""

    __slots__ = ("_inner", "_factories")

    def __init__(self, inner: ChatClient) -> None:
        self._inner = inner
        self._factories: list[Callable[[ChatClient], ChatClient]] = []


    def use(self, factory: Callable[[ChatClient], ChatClient]) -> ChatClientBuilder:
        self._factories.append(factory)
        return self


    def use_language(self, language: str) -> ChatClientBuilder:
        return self.use(lambda inner: LanguageChatClient(inner, language))


    def use_rate_limit(self, window: float) -> ChatClientBuilder:
        return self.use(lambda inner: RateLimitChatClient(inner, window))


    def use_function_invocation(self, max_rounds: int | None = None) -> ChatClientBuilder:
        return self.use(lambda inner: FunctionInvocationChatClient(inner, max_rounds))


    def build(self) -> ChatClient:
        client = self._inner
        for factory in reversed(self._factories):
            client = factory(client)
        return client
