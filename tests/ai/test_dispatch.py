# SPDX-License-Identifier: Apache-2.0
"""
Dispatch: rate limiter hand-off, deadlines, headers and timing.

Covers:
  • The limiter receives a thunk and decides when it runs
  • A limiter rejection propagates unchanged, nothing is dispatched
  • Elapsed time is measured from inside the limiter boundary
  • Adapter observations are named after the dispatched capability
  • Static adapter headers win over per-call headers
  • SimpleDeadline surfaces a timeout as DeadlineExceeded
  • Transport errors propagate unchanged with no trace and no cache write
  • Standalone mode wires a limiter, a deadline and a logging trace sink
"""

import asyncio
import time

import pytest

from textgen_sdk.ai import (
    CallOptions,
    ChatRequest,
    ChatTurn,
    CompletionRequest,
    ConcurrencyLimiter,
    DeadlineExceeded,
    EmbedRequest,
    Dispatcher,
    LoggingTraceSink,
    ResourceExhausted,
    SimpleDeadline,
    TokenBucketLimiter,
    Unavailable,
    merge_headers,
)
from textgen_sdk.mock import MockAIAdapter, MockTransport

pytestmark = pytest.mark.asyncio


class RecordingLimiter:
    """Delays each thunk and records what it was handed."""

    def __init__(self, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s
        self.thunks = []

    async def apply(self, thunk):
        self.thunks.append(thunk)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return await thunk()


class RejectingLimiter:
    async def apply(self, thunk):
        raise ResourceExhausted("local budget spent", retry_after_ms=250)


async def test_limiter_receives_thunk_and_runs_it():
    limiter = RecordingLimiter()
    transport = MockTransport()
    adapter = MockAIAdapter(transport=transport, limiter=limiter)

    res = await adapter.completion(CompletionRequest(prompt="hi"))

    assert res.text == "echo: hi"
    assert len(limiter.thunks) == 1
    assert callable(limiter.thunks[0])
    assert transport.dispatch_count == 1


async def test_limiter_rejection_propagates_unchanged(trace_sink):
    transport = MockTransport()
    adapter = MockAIAdapter(transport=transport, limiter=RejectingLimiter(), trace_sink=trace_sink)

    with pytest.raises(ResourceExhausted) as exc_info:
        await adapter.completion(CompletionRequest(prompt="hi"))

    assert exc_info.value.retry_after_ms == 250
    assert transport.dispatch_count == 0
    assert trace_sink.steps == []


async def test_elapsed_time_excludes_limiter_wait(trace_sink):
    adapter = MockAIAdapter(limiter=RecordingLimiter(delay_s=0.2), trace_sink=trace_sink)

    await adapter.completion(CompletionRequest(prompt="hi"))

    (step,) = trace_sink.steps
    assert step.response.model_response_time_ms is not None
    assert step.response.model_response_time_ms < 150


async def test_dispatcher_limiter_that_skips_thunk_is_an_error():
    class Swallowing:
        async def apply(self, thunk):
            return "never called"

    async def thunk():
        return "value"

    with pytest.raises(RuntimeError):
        await Dispatcher(limiter=Swallowing()).execute(thunk)


async def test_dispatcher_records_metrics(metrics):
    async def thunk():
        return 42

    async def failing():
        raise Unavailable("down")

    dispatcher = Dispatcher(metrics=metrics)
    out = await dispatcher.execute(thunk, op="chat")
    assert out.value == 42
    assert out.elapsed_ms() >= 0

    with pytest.raises(Unavailable):
        await dispatcher.execute(failing, op="chat")

    assert [(o["op"], o["ok"], o["code"]) for o in metrics.observations] == [
        ("chat", True, "OK"),
        ("chat", False, "UNAVAILABLE"),
    ]


async def test_adapter_observations_are_named_by_capability(adapter, metrics):
    await adapter.completion(CompletionRequest(prompt="2+2="))
    await adapter.chat(ChatRequest(chat_prompt=[ChatTurn("user", "hi")]))
    await adapter.embed(EmbedRequest(texts=["a"]))

    assert [o["op"] for o in metrics.observations] == ["completion", "chat", "embed"]


async def test_static_headers_win_over_call_headers():
    assert merge_headers({"a": "call", "b": "call"}, {"b": "static"}) == {"a": "call", "b": "static"}

    transport = MockTransport()
    adapter = MockAIAdapter(
        transport=transport,
        headers={"x-mock-op": "pinned", "Authorization": "Bearer k"},
    )
    await adapter.chat(ChatRequest(chat_prompt=[ChatTurn("user", "hi")]))

    descriptor, _ = transport.calls[0]
    assert descriptor.headers == {"x-mock-op": "pinned", "Authorization": "Bearer k"}
    assert descriptor.url == "mock://local"
    assert descriptor.stream is False


async def test_stop_sequences_reach_the_request_hook():
    transport = MockTransport(replies={"count": "one two STOP three"})
    adapter = MockAIAdapter(transport=transport)

    res = await adapter.completion(
        CompletionRequest(prompt="count"), CallOptions(stop_sequences=("STOP",))
    )

    assert transport.calls[0][1]["stop"] == ["STOP"]
    assert res.text == "one two "


async def test_simple_deadline_raises_deadline_exceeded(trace_sink):
    transport = MockTransport(latency_s=0.5)
    adapter = MockAIAdapter(
        transport=transport,
        deadline_policy=SimpleDeadline(timeout_s=0.05),
        trace_sink=trace_sink,
    )

    with pytest.raises(DeadlineExceeded) as exc_info:
        await adapter.completion(CompletionRequest(prompt="slow"))
    assert exc_info.value.code == "DEADLINE_EXCEEDED"
    assert trace_sink.steps == []


async def test_transport_error_propagates_without_trace_or_cache(adapter, transport, trace_sink, cache):
    boom = Unavailable("upstream down", body={"error": "overloaded"})
    transport.fail_with = boom

    with pytest.raises(Unavailable) as exc_info:
        await adapter.completion(CompletionRequest(prompt="2+2="), CallOptions(cache=True))

    assert exc_info.value is boom
    assert exc_info.value.body == {"error": "overloaded"}
    assert trace_sink.steps == []
    assert len(cache) == 0

    # the next call is not served from a poisoned cache
    res = await adapter.completion(CompletionRequest(prompt="2+2="), CallOptions(cache=True))
    assert res.text == "4"
    assert transport.dispatch_count == 2


async def test_token_bucket_rejects_after_max_wait():
    limiter = TokenBucketLimiter(rate=0.001, capacity=1, max_wait_s=0.02)

    async def thunk():
        return "ok"

    assert await limiter.apply(thunk) == "ok"
    with pytest.raises(ResourceExhausted):
        await limiter.apply(thunk)


async def test_concurrency_limiter_caps_in_flight():
    limiter = ConcurrencyLimiter(max_concurrent=2)
    in_flight = 0
    peak = 0

    async def thunk():
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return True

    results = await asyncio.gather(*(limiter.apply(thunk) for _ in range(6)))
    assert all(results)
    assert peak == 2


async def test_concurrent_calls_share_one_adapter():
    transport = MockTransport(latency_s=0.01)
    adapter = MockAIAdapter(transport=transport, limiter=ConcurrencyLimiter(max_concurrent=3))

    t0 = time.monotonic()
    results = await asyncio.gather(
        *(adapter.completion(CompletionRequest(prompt=f"p{i}")) for i in range(6))
    )
    assert [r.text for r in results] == [f"echo: p{i}" for i in range(6)]
    assert transport.dispatch_count == 6
    assert time.monotonic() - t0 < 1.0


async def test_standalone_mode_wires_policies():
    adapter = MockAIAdapter(mode="standalone")
    assert isinstance(adapter._limiter, TokenBucketLimiter)
    assert isinstance(adapter._deadline_policy, SimpleDeadline)
    assert isinstance(adapter._recorder._sink, LoggingTraceSink)

    thin = MockAIAdapter()
    assert thin._limiter is None
    assert thin._deadline_policy is None
