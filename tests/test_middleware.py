"""
Tests for the chat middleware.

Scenarios:
- Forced language: the instruction is seen by the inner client only, and
  the caller's history is untouched on success, failure, cancellation
  and streaming (including a stream closed early)
- Fixed-window rate limiting: one permit + one queued waiter per window,
  everyone else receives the canned throttled reply
- A cancelled waiter gives its queue slot back; a permit it was already
  handed is not returned
- Function invocation: tool results are fed back; unknown / failing
  tools are reported to the model; rounds are bounded (zero allowed)
- Builder: first registered middleware is the outermost

Run:
  pytest -q tests/test_middleware.py
"""

import asyncio
from contextlib import aclosing
from typing import Any, List, Optional

import pytest
from langchain_core.tools import StructuredTool

from manualbot.config.prompt_templates import THROTTLED_RESPONSE
from manualbot.src.core.chat_client import ChatMessage, ChatOptions, ChatResponse, ChatRole, DelegatingChatClient, ToolCall
from manualbot.src.core.middleware import (
    ChatClientBuilder,
    FixedWindowRateLimiter,
    FunctionInvocationChatClient,
    LanguageChatClient,
    RateLimitChatClient,
)


class _DummyChat:
    """Inner client: returns scripted responses and snapshots every request."""

    def __init__(self, responses: Optional[List[ChatResponse]] = None, error: Optional[BaseException] = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.seen: List[List[ChatMessage]] = []

    async def complete(self, messages: List[ChatMessage], options: Optional[ChatOptions] = None) -> ChatResponse:
        self.seen.append(list(messages))
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return ChatResponse(ChatMessage(ChatRole.ASSISTANT, "ok"))

    async def complete_streaming(self, messages: List[ChatMessage], options: Optional[ChatOptions] = None):
        self.seen.append(list(messages))
        for fragment in ("Hal", "lo"):
            yield fragment

    def get_service(self, service_type: Any) -> Any:
        return self if isinstance(self, service_type) else None


def _history() -> List[ChatMessage]:
    return [ChatMessage(ChatRole.SYSTEM, "sys"), ChatMessage(ChatRole.USER, "Ciao")]


# ── Forced language ────────────────────────────────────────────────────

def test_language_instruction_is_transient() -> None:
    inner = _DummyChat()
    history = _history()

    response = asyncio.run(LanguageChatClient(inner, "tedesco").complete(history))

    assert response.text == "ok"
    sent = inner.seen[0]
    assert sent[-1].role is ChatRole.USER
    assert sent[-1].text == "Rispondi sempre in tedesco"
    assert [m.text for m in history] == ["sys", "Ciao"]


def test_language_instruction_removed_when_inner_fails() -> None:
    inner = _DummyChat(error=ConnectionError("gateway down"))
    history = _history()

    with pytest.raises(ConnectionError):
        asyncio.run(LanguageChatClient(inner, "tedesco").complete(history))

    assert [m.text for m in history] == ["sys", "Ciao"]


def test_language_streaming_restores_history() -> None:
    inner = _DummyChat()
    history = _history()

    async def _collect() -> List[str]:
        return [f async for f in LanguageChatClient(inner, "tedesco").complete_streaming(history)]

    assert asyncio.run(_collect()) == ["Hal", "lo"]
    assert inner.seen[0][-1].text == "Rispondi sempre in tedesco"
    assert len(history) == 2


def test_language_keeps_callers_identical_message() -> None:
    own = ChatMessage(ChatRole.USER, "Rispondi sempre in tedesco")
    history = [own]

    asyncio.run(LanguageChatClient(_DummyChat(), "tedesco").complete(history))

    assert history == [own]


class _SlowChat(_DummyChat):
    async def complete(self, messages: List[ChatMessage], options: Optional[ChatOptions] = None) -> ChatResponse:
        self.seen.append(list(messages))
        await asyncio.sleep(10)
        return ChatResponse(ChatMessage(ChatRole.ASSISTANT, "late"))


def test_language_instruction_removed_on_cancellation() -> None:
    inner = _SlowChat()
    history = _history()

    async def _cancel_mid_call() -> int:
        task = asyncio.ensure_future(LanguageChatClient(inner, "it").complete(history))
        await asyncio.sleep(0)
        during = len(history)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return during

    assert asyncio.run(_cancel_mid_call()) == 3
    assert inner.seen[0][-1].text == "Rispondi sempre in it"
    assert [m.text for m in history] == ["sys", "Ciao"]


def test_language_stream_closed_early_restores_history() -> None:
    history = _history()

    async def _first_fragment():
        async with aclosing(LanguageChatClient(_DummyChat(), "tedesco").complete_streaming(history)) as stream:
            async for fragment in stream:
                break
        return fragment, len(history)

    assert asyncio.run(_first_fragment()) == ("Hal", 2)


# ── Rate limiting ──────────────────────────────────────────────────────

def test_rate_limit_burst_of_five() -> None:
    inner = _DummyChat()
    client = RateLimitChatClient(inner, window=0.2)

    async def _burst() -> List[str]:
        responses = await asyncio.gather(*(client.complete([ChatMessage(ChatRole.USER, str(i))]) for i in range(5)))
        return [r.text for r in responses]

    texts = asyncio.run(_burst())

    assert len(inner.seen) == 2
    assert texts.count("ok") == 2
    assert texts.count(THROTTLED_RESPONSE) == 3


def test_rate_limit_throttled_reply_is_assistant_turn() -> None:
    limiter = FixedWindowRateLimiter(window=60.0, permit_limit=1, queue_limit=0)
    client = RateLimitChatClient(_DummyChat(), window=60.0, limiter=limiter)

    async def _twice():
        first = await client.complete([ChatMessage(ChatRole.USER, "a")])
        second = await client.complete([ChatMessage(ChatRole.USER, "b")])
        return first, second

    first, second = asyncio.run(_twice())
    assert first.text == "ok"
    assert second.message.role is ChatRole.ASSISTANT
    assert second.text == THROTTLED_RESPONSE


def test_rate_limit_streaming_throttled() -> None:
    limiter = FixedWindowRateLimiter(window=60.0, queue_limit=0)
    client = RateLimitChatClient(_DummyChat(), window=60.0, limiter=limiter)

    async def _twice():
        first = [f async for f in client.complete_streaming([])]
        second = [f async for f in client.complete_streaming([])]
        return first, second

    assert asyncio.run(_twice()) == (["Hal", "lo"], [THROTTLED_RESPONSE])


def test_limiter_window_rolls_over() -> None:
    now = [100.0]
    limiter = FixedWindowRateLimiter(window=5.0, clock=lambda: now[0])

    assert limiter.attempt_acquire() is True
    assert limiter.attempt_acquire() is False
    now[0] = 104.9
    assert limiter.attempt_acquire() is False
    now[0] = 105.0
    assert limiter.attempt_acquire() is True


def test_limiter_queued_waiter_gets_next_window() -> None:
    limiter = FixedWindowRateLimiter(window=0.05, permit_limit=1, queue_limit=1)

    async def _run():
        first = await limiter.acquire()
        waiter = asyncio.ensure_future(limiter.acquire())
        await asyncio.sleep(0)
        queued = limiter.queued
        rejected = await limiter.acquire()
        return first, queued, rejected, await waiter

    assert asyncio.run(_run()) == (True, 1, False, True)


def test_cancelled_waiter_frees_queue_slot() -> None:
    limiter = FixedWindowRateLimiter(window=10.0, permit_limit=1, queue_limit=1)

    async def _run():
        granted = await limiter.acquire()
        first = asyncio.ensure_future(limiter.acquire())
        await asyncio.sleep(0)
        queued_before = limiter.queued
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        second = asyncio.ensure_future(limiter.acquire())
        await asyncio.sleep(0)
        queued_after = limiter.queued
        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second
        return granted, queued_before, queued_after, limiter.queued

    assert asyncio.run(_run()) == (True, 1, 1, 0)


def test_permit_handed_to_cancelled_waiter_stays_spent() -> None:
    now = [0.0]
    limiter = FixedWindowRateLimiter(window=5.0, permit_limit=1, queue_limit=1, clock=lambda: now[0])

    async def _run():
        assert limiter.attempt_acquire() is True
        waiter = asyncio.ensure_future(limiter.acquire())
        await asyncio.sleep(0)
        now[0] = 5.0
        handed_over = limiter.attempt_acquire()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        return handed_over, limiter.attempt_acquire(), limiter.queued

    assert asyncio.run(_run()) == (False, False, 0)


@pytest.mark.parametrize("kwargs", [{"window": 0}, {"window": 1, "permit_limit": 0}, {"window": 1, "queue_limit": -1}])
def test_limiter_rejects_bad_arguments(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(**kwargs)


# ── Function invocation ────────────────────────────────────────────────

def _add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


def _explode(reason: str) -> str:
    """Always fails."""
    raise ValueError(reason)


def _tool_call(name: str, arguments: dict, call_id: str = "call-1") -> ChatResponse:
    return ChatResponse(ChatMessage(ChatRole.ASSISTANT, "", tool_calls=[ToolCall(call_id, name, arguments)]))


def test_function_invocation_feeds_result_back() -> None:
    inner = _DummyChat([_tool_call("_add", {"a": 2, "b": 3}), ChatResponse(ChatMessage(ChatRole.ASSISTANT, "It is 5."))])
    client = FunctionInvocationChatClient(inner)
    history = [ChatMessage(ChatRole.USER, "2+3?")]

    response = asyncio.run(client.complete(history, ChatOptions(tools=[StructuredTool.from_function(_add)])))

    assert response.text == "It is 5."
    assert len(inner.seen) == 2
    assert [m.role for m in history] == [ChatRole.USER, ChatRole.ASSISTANT, ChatRole.TOOL]
    assert history[-1].text == "5"
    assert history[-1].tool_call_id == "call-1"


def test_function_invocation_reports_unknown_and_failing_tools() -> None:
    calls = ChatResponse(ChatMessage(ChatRole.ASSISTANT, "", tool_calls=[ToolCall("c1", "missing", {}), ToolCall("c2", "_explode", {"reason": "boom"})]))
    inner = _DummyChat([calls, ChatResponse(ChatMessage(ChatRole.ASSISTANT, "sorry"))])
    history: List[ChatMessage] = []

    asyncio.run(FunctionInvocationChatClient(inner).complete(history, ChatOptions(tools=[StructuredTool.from_function(_explode)])))

    tool_results = [m.text for m in history if m.role is ChatRole.TOOL]
    assert tool_results == ["Error: unknown tool 'missing'.", "Error: boom"]


def test_function_invocation_bounded_rounds() -> None:
    inner = _DummyChat([_tool_call("_add", {"a": 1, "b": 1}, f"c{i}") for i in range(10)])
    client = FunctionInvocationChatClient(inner, max_rounds=2)

    response = asyncio.run(client.complete([], ChatOptions(tools=[StructuredTool.from_function(_add)])))

    assert len(inner.seen) == 3
    assert response.message.tool_calls


def test_function_invocation_zero_rounds_runs_no_tools() -> None:
    inner = _DummyChat([_tool_call("_add", {"a": 1, "b": 1})])
    history: List[ChatMessage] = []

    response = asyncio.run(FunctionInvocationChatClient(inner, max_rounds=0).complete(history, ChatOptions(tools=[StructuredTool.from_function(_add)])))

    assert len(inner.seen) == 1
    assert history == []
    assert response.message.tool_calls


def test_function_invocation_rejects_negative_rounds() -> None:
    with pytest.raises(ValueError):
        FunctionInvocationChatClient(_DummyChat(), max_rounds=-1)


def test_function_invocation_without_tools_is_pass_through() -> None:
    inner = _DummyChat([_tool_call("_add", {"a": 1, "b": 1})])
    history: List[ChatMessage] = []

    response = asyncio.run(FunctionInvocationChatClient(inner).complete(history))

    assert len(inner.seen) == 1
    assert history == []
    assert response.message.tool_calls


# ── Builder ────────────────────────────────────────────────────────────

class _Tag(DelegatingChatClient):
    def __init__(self, inner: Any, name: str, log: List[str]) -> None:
        super().__init__(inner)
        self.name = name
        self.log = log

    async def complete(self, messages, options=None):
        self.log.append(self.name)
        return await self._inner.complete(messages, options)


def test_builder_first_registered_is_outermost() -> None:
    log: List[str] = []
    core = _DummyChat()
    client = (
        ChatClientBuilder(core)
        .use(lambda inner: _Tag(inner, "outer", log))
        .use(lambda inner: _Tag(inner, "inner", log))
        .build()
    )

    asyncio.run(client.complete([]))

    assert log == ["outer", "inner"]
    assert client.name == "outer"
    assert client.get_service(_DummyChat) is core


def test_builder_helpers_compose_expected_types() -> None:
    client = ChatClientBuilder(_DummyChat()).use_function_invocation().use_language("tedesco").use_rate_limit(5.0).build()

    assert isinstance(client, FunctionInvocationChatClient)
    assert isinstance(client.inner, LanguageChatClient)
    assert isinstance(client.inner.inner, RateLimitChatClient)
    assert isinstance(client.inner.inner.inner, _DummyChat)
